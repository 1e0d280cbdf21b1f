# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Federation error taxonomy.

Each error carries a stable machine code and the HTTP status the server
answers with. RemoteNotificationFailed never reaches a caller: it is
raised inside the notifier and discarded at the best-effort boundary.
"""

from __future__ import annotations

from ..core.exceptions import ConflictError, NotFoundError, TrafficPlaneException


class FederationError(TrafficPlaneException):
    """Base class for federation protocol errors."""

    code = "FEDERATION_ERROR"
    status_code = 400


class RequestNotFound(NotFoundError, FederationError):
    """Request absent, owned by another organization, or no longer pending."""

    code = "NOT_FOUND_REQUEST"
    status_code = 404

    def __init__(self, request_id: str):
        super().__init__("Federation request", request_id)
        self.message = "Request not found or already processed"


class PartnerNotFound(NotFoundError, FederationError):
    code = "NOT_FOUND_PARTNER"
    status_code = 404

    def __init__(self, partner_id: str):
        super().__init__("Partner", partner_id)


class RequestExpired(FederationError):
    """The request's deadline passed; the requester must start over."""

    code = "REQUEST_EXPIRED"
    status_code = 410

    def __init__(self, request_id: str):
        super().__init__("Request has expired", {"request_id": request_id})
        self.request_id = request_id


class InvalidRequestDirection(FederationError):
    code = "INVALID_REQUEST_DIRECTION"
    status_code = 400

    def __init__(self, request_id: str):
        super().__init__("Can only accept incoming requests", {"request_id": request_id})
        self.request_id = request_id


class AlreadyProcessed(FederationError):
    """The request left PENDING before this caller's transition committed."""

    code = "ALREADY_PROCESSED"
    status_code = 400

    def __init__(self, request_id: str, status: str):
        super().__init__(f"Request already {status.lower()}", {"request_id": request_id, "status": status})
        self.request_id = request_id
        self.status = status


class NoMatchingRequest(FederationError):
    """A callback arrived for which no pending outgoing request exists."""

    code = "NO_MATCHING_REQUEST"
    status_code = 404

    def __init__(self, message: str = "No matching request found"):
        super().__init__(message)


class UnknownPartner(FederationError):
    """Heartbeat credentials matched nothing.

    Deliberately does not say whether the node id or the secret was wrong.
    """

    code = "UNKNOWN_PARTNER"
    status_code = 404

    def __init__(self):
        super().__init__("Unknown partner")


class NotAPartner(FederationError):
    code = "NOT_A_PARTNER"
    status_code = 404

    def __init__(self):
        super().__init__("Not a partner of this principle")


class NotAPartnerOfThisPrinciple(FederationError):
    code = "NOT_A_PARTNER_OF_THIS_PRINCIPLE"
    status_code = 404

    def __init__(self, principle_node_id: str | None):
        super().__init__("Not a partner of this principle", {"principle_node_id": principle_node_id})
        self.principle_node_id = principle_node_id


class FederationNotConfigured(FederationError):
    code = "FEDERATION_NOT_CONFIGURED"
    status_code = 400

    def __init__(self, message: str = "Federation not configured. Please configure this node first."):
        super().__init__(message)


class DuplicateRequest(ConflictError, FederationError):
    code = "CONFLICT_PENDING_REQUEST"
    status_code = 409

    def __init__(self, existing_id: str):
        super().__init__("A pending request from this node already exists", existing_id=existing_id)


class AlreadyPartner(ConflictError, FederationError):
    code = "CONFLICT_ALREADY_PARTNER"
    status_code = 409

    def __init__(self, partner_id: str):
        super().__init__("This node is already a partner", existing_id=partner_id)


class InvalidRoleTransition(FederationError):
    code = "CONFLICT_ROLE"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot change role from {current} to {target}",
            {"current": current, "target": target},
        )


class RemoteNotificationFailed(FederationError):
    """An outbound node-to-node call failed. Logged only, never surfaced."""

    code = "REMOTE_NOTIFICATION_FAILED"
    status_code = 502

    def __init__(self, url: str, reason: str):
        super().__init__(f"Notification to {url} failed: {reason}", {"url": url})
        self.url = url
        self.reason = reason
