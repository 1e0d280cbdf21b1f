# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Partnership handshake.

A node (the requester) proposes a partnership by sending an OUTGOING request
carrying a freshly generated trust secret. The remote node records it as
INCOMING; an administrator there accepts or rejects it. On accept the remote
registers the requester as a Partner under the same secret and calls back;
the requester correlates the callback to its OUTGOING request by that
secret alone and becomes a PARTNER.

Every local transition is committed before any remote node is notified, and
notification failures never undo a committed transition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..core.config import get_config
from ..core.exceptions import ValidationException
from .audit import AuditAction, AuditLogger
from .errors import (
    AlreadyPartner,
    AlreadyProcessed,
    DuplicateRequest,
    FederationNotConfigured,
    InvalidRequestDirection,
    InvalidRoleTransition,
    NoMatchingRequest,
    RequestExpired,
    RequestNotFound,
)
from .identity import IdentityService, validate_node_url
from .models import (
    FederationIdentity,
    FederationRequest,
    NodeRole,
    Partner,
    RequestStatus,
    RequestType,
    utcnow,
)
from .notify import NotificationOutcome, RemoteNotifier, join_url
from .peers import refresh_peer_list
from .store import DEFAULT_REQUEST_LIMIT, FederationStore, get_federation_store
from .trust import generate_secret_key, secrets_match

logger = logging.getLogger(__name__)

INCOMING_PATH = "/api/federation/requests/incoming"
ACKNOWLEDGE_CALLBACK_PATH = "/api/federation/requests/acknowledge-callback"
REJECT_CALLBACK_PATH = "/api/federation/requests/reject-callback"

DEFAULT_REJECTION_REASON = "Rejected by administrator"


class ResponseAction(str, Enum):
    """Administrator decision on a pending request."""
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass
class SendResult:
    request: FederationRequest
    notification: NotificationOutcome

    @property
    def delivered(self) -> bool:
        return self.notification.delivered


@dataclass
class RespondResult:
    request: FederationRequest
    partner: Partner | None = None
    notification: NotificationOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"request": self.request.to_dict()}
        if self.partner is not None:
            result["partner"] = self.partner.to_dict()
        if self.notification is not None:
            result["notification"] = self.notification.to_dict()
        return result


class HandshakeCoordinator:
    """Drives the request ledger through accept, reject, cancel and expiry."""

    def __init__(
        self,
        store: FederationStore | None = None,
        notifier: RemoteNotifier | None = None,
        audit: AuditLogger | None = None,
        identities: IdentityService | None = None,
        now: Callable[[], datetime] = utcnow,
        request_ttl: timedelta | None = None,
    ):
        self.store = store or get_federation_store()
        self.notifier = notifier or RemoteNotifier()
        self.audit = audit or AuditLogger()
        self.identities = identities or IdentityService(self.store, self.audit, now)
        self.now = now
        self.request_ttl = request_ttl or timedelta(hours=get_config().request_ttl_hours)

    # -------------------------------------------------------------------------
    # Ledger helpers
    # -------------------------------------------------------------------------

    def _commit(self, request: FederationRequest) -> bool:
        """Persist a transition out of PENDING; False if another writer won."""
        return self.store.update_request(request, expected_status=RequestStatus.PENDING)

    def _expire(self, request: FederationRequest, now: datetime) -> None:
        request.transition(RequestStatus.EXPIRED, now)
        if self._commit(request):
            logger.info(f"Request {request.id} expired")
            self.audit.log(
                AuditAction.REQUEST_EXPIRED,
                org_id=request.org_id,
                resource_type="federation_request",
                resource_id=request.id,
            )

    def _audit_request(self, action: AuditAction, request: FederationRequest, actor: str | None = None, **details):
        self.audit.log(
            action,
            org_id=request.org_id,
            resource_type="federation_request",
            resource_id=request.id,
            details=details,
            actor=actor,
        )

    # -------------------------------------------------------------------------
    # Requester side
    # -------------------------------------------------------------------------

    async def send_request(
        self,
        org_id: str,
        target_node_url: str,
        message: str | None = None,
        actor: str | None = None,
    ) -> SendResult:
        """Propose a partnership to the node at ``target_node_url``.

        The OUTGOING request is recorded before delivery is attempted; a
        failed delivery is kept in ``metadata["deliveryError"]``.

        Raises:
            InvalidRoleTransition: If this node is a PRINCIPLE.
            FederationNotConfigured: If this node has no callback URL.
            ValidationException: If the target URL is malformed.
        """
        identity = self.identities.get_or_create(org_id)
        if identity.role is NodeRole.PRINCIPLE:
            raise InvalidRoleTransition(identity.role.value, NodeRole.PARTNER.value)
        if not identity.is_configured:
            raise FederationNotConfigured()
        target = validate_node_url(target_node_url, "target_node_url")

        now = self.now()
        request = FederationRequest(
            org_id=org_id,
            request_type=RequestType.OUTGOING,
            requester_node_id=identity.node_id,
            requester_node_name=identity.node_name,
            requester_node_url=identity.node_url,
            secret_key=generate_secret_key(),
            expires_at=now + self.request_ttl,
            target_node_url=target,
            message=message,
            created_at=now,
        )
        self.store.add_request(request)
        self._audit_request(AuditAction.REQUEST_SENT, request, actor, target_node_url=target)

        outcome = await self.notifier.notify_best_effort(
            join_url(target, INCOMING_PATH),
            {
                "requesterNodeId": identity.node_id,
                "requesterNodeName": identity.node_name,
                "requesterNodeUrl": identity.node_url,
                "secretKey": request.secret_key,
                "message": message,
                "expiresAt": request.expires_at.isoformat(),
            },
        )

        if outcome.delivered:
            request.target_node_id = outcome.body.get("nodeId") or request.target_node_id
            if outcome.body.get("requestId"):
                request.metadata["remoteRequestId"] = outcome.body["requestId"]
        else:
            request.metadata["deliveryError"] = outcome.error

        if not self.store.update_request(request, expected_status=RequestStatus.PENDING):
            # The remote answered through a callback before we got here
            request = self.store.get_request(org_id, request.id) or request

        logger.info(f"Sent partnership request {request.id} to {target} (delivered={outcome.delivered})")
        return SendResult(request=request, notification=outcome)

    async def handle_acknowledge_callback(
        self,
        principle_node_id: str,
        principle_node_name: str | None,
        principle_node_url: str,
        secret_key: str,
    ) -> tuple[FederationRequest, FederationIdentity]:
        """The remote Principle accepted one of our OUTGOING requests.

        The callback carries no local request id; the secret is the only
        correlation key. This is the only path from STANDALONE to PARTNER.

        Raises:
            NoMatchingRequest: If no PENDING OUTGOING request holds the
                secret, or the matching request has expired. No identity is
                touched in that case.
            InvalidRoleTransition: This node is a PRINCIPLE; neither the
                request nor the identity is touched.
        """
        principle_url = validate_node_url(principle_node_url, "principleNodeUrl")

        matches = [r for r in self.store.list_pending_outgoing() if secrets_match(r.secret_key, secret_key)]
        if not matches:
            logger.warning(f"Acknowledge callback from {principle_node_id} matched no pending request")
            raise NoMatchingRequest()
        request = matches[0]

        now = self.now()
        if request.is_expired(now):
            self._expire(request, now)
            raise NoMatchingRequest("Request has expired")

        identity = self.identities.get_or_create(request.org_id)
        previous = identity.role
        if previous is NodeRole.PRINCIPLE:
            logger.warning(f"Org {request.org_id} is PRINCIPLE; refusing to partner with {principle_node_id}")
            raise InvalidRoleTransition(previous.value, NodeRole.PARTNER.value)

        request.target_node_id = principle_node_id
        request.metadata["principleNodeName"] = principle_node_name
        request.transition(RequestStatus.ACKNOWLEDGED, now)
        if not self._commit(request):
            raise NoMatchingRequest()
        self._audit_request(AuditAction.REQUEST_ACCEPTED, request, principle_node_id=principle_node_id)

        identity.become_partner(principle_node_id, principle_url, request.secret_key, now)
        self.store.save_identity(identity)
        self.audit.log(
            AuditAction.ROLE_CHANGED,
            org_id=request.org_id,
            resource_type="federation_identity",
            resource_id=identity.node_id,
            details={
                "from": previous.value,
                "to": identity.role.value,
                "principle_node_id": principle_node_id,
            },
        )
        logger.info(f"Org {request.org_id} is now PARTNER of {principle_node_id}")
        return request, identity

    async def handle_reject_callback(
        self,
        remote_request_id: str | None,
        principle_node_id: str | None,
        reason: str | None = None,
    ) -> FederationRequest:
        """The remote node rejected one of our OUTGOING requests.

        Correlates by the remote request id recorded at delivery, falling
        back to the remote node id when that matches exactly one request.
        """
        pending = self.store.list_pending_outgoing()
        matches: list[FederationRequest] = []
        if remote_request_id:
            matches = [r for r in pending if r.metadata.get("remoteRequestId") == remote_request_id]
        if not matches and principle_node_id:
            matches = [r for r in pending if r.target_node_id == principle_node_id]
        if len(matches) != 1:
            raise NoMatchingRequest()

        request = matches[0]
        request.transition(RequestStatus.REJECTED, self.now())
        request.rejection_reason = reason or DEFAULT_REJECTION_REASON
        if not self._commit(request):
            raise NoMatchingRequest()
        self._audit_request(
            AuditAction.REQUEST_REJECTED,
            request,
            principle_node_id=principle_node_id,
            reason=request.rejection_reason,
        )
        logger.info(f"Outgoing request {request.id} rejected by {principle_node_id}")
        return request

    # -------------------------------------------------------------------------
    # Receiver side
    # -------------------------------------------------------------------------

    async def receive_request(
        self,
        org_id: str,
        requester_node_id: str,
        requester_node_name: str,
        requester_node_url: str,
        secret_key: str,
        message: str | None = None,
    ) -> tuple[FederationRequest, FederationIdentity]:
        """Record a partnership proposal from another node as INCOMING.

        Raises:
            DuplicateRequest: The node already has a live pending request.
            AlreadyPartner: The node is already in the Partner Registry.
        """
        requester_url = validate_node_url(requester_node_url, "requesterNodeUrl")
        identity = self.identities.get_or_create(org_id)
        now = self.now()

        existing = self.store.find_pending_from(org_id, requester_node_id)
        if existing is not None:
            if not existing.is_expired(now):
                raise DuplicateRequest(existing.id)
            self._expire(existing, now)

        for partner in self.store.list_partners_by_node(requester_node_id):
            if partner.org_id == org_id:
                raise AlreadyPartner(partner.id)

        request = FederationRequest(
            org_id=org_id,
            request_type=RequestType.INCOMING,
            requester_node_id=requester_node_id,
            requester_node_name=requester_node_name,
            requester_node_url=requester_url,
            target_node_id=identity.node_id,
            target_node_url=identity.node_url,
            secret_key=secret_key,
            message=message or f"Partnership request from {requester_node_name}",
            expires_at=now + self.request_ttl,
            created_at=now,
        )
        self.store.add_request(request)
        self._audit_request(
            AuditAction.REQUEST_RECEIVED,
            request,
            requester_node_id=requester_node_id,
            requester_node_name=requester_node_name,
            requester_node_url=requester_url,
        )
        logger.info(f"Received partnership request {request.id} from node {requester_node_id}")
        return request, identity

    def list_requests(
        self,
        org_id: str,
        status: RequestStatus | None = None,
        limit: int = DEFAULT_REQUEST_LIMIT,
    ) -> list[FederationRequest]:
        """Newest first. Stale PENDING rows are expired as they are read."""
        requests = self.store.list_requests(org_id, status=status, limit=min(limit, DEFAULT_REQUEST_LIMIT))
        now = self.now()
        for request in requests:
            if request.is_pending and request.is_expired(now):
                self._expire(request, now)
        if status is not None:
            requests = [r for r in requests if r.status is status]
        return requests

    async def respond(
        self,
        org_id: str,
        request_id: str,
        action: ResponseAction | str,
        reason: str | None = None,
        actor: str | None = None,
    ) -> RespondResult:
        """Accept or reject a pending request.

        Raises:
            ValidationException: Unknown action.
            RequestNotFound: Missing or owned by another organization.
            AlreadyProcessed: The request is no longer PENDING.
            RequestExpired: The deadline passed; the request is now EXPIRED.
            InvalidRequestDirection: Accepting an OUTGOING request.
            AlreadyPartner: Accepting a node that is already a Partner.
            FederationNotConfigured: Accepting without a callback URL of our own.
        """
        try:
            action = ResponseAction(action)
        except ValueError:
            raise ValidationException(
                'Invalid action. Must be "accept" or "reject"', field="action", value=action
            ) from None

        request = self.store.get_request(org_id, request_id)
        if request is None:
            raise RequestNotFound(request_id)
        if not request.is_pending:
            raise AlreadyProcessed(request.id, request.status.value)

        now = self.now()
        if request.is_expired(now):
            self._expire(request, now)
            raise RequestExpired(request.id)

        if action is ResponseAction.ACCEPT:
            return await self._accept(request, now, actor)
        return await self._reject(request, now, reason, actor)

    async def _accept(self, request: FederationRequest, now: datetime, actor: str | None) -> RespondResult:
        if request.request_type is not RequestType.INCOMING:
            raise InvalidRequestDirection(request.id)

        for partner in self.store.list_partners_by_node(request.requester_node_id):
            if partner.org_id == request.org_id:
                raise AlreadyPartner(partner.id)

        identity = self.identities.get_or_create(request.org_id)
        if not identity.is_configured:
            raise FederationNotConfigured()

        # The Partner row exists before the request leaves PENDING
        partner = self.store.add_partner(
            Partner(
                org_id=request.org_id,
                node_id=request.requester_node_id,
                node_name=request.requester_node_name,
                node_url=request.requester_node_url,
                secret_key=request.secret_key,
                created_at=now,
            )
        )

        request.transition(RequestStatus.ACKNOWLEDGED, now)
        try:
            committed = self._commit(request)
        except Exception:
            self.store.delete_partner(partner.org_id, partner.id)
            raise
        if not committed:
            self.store.delete_partner(partner.org_id, partner.id)
            current = self.store.get_request(request.org_id, request.id)
            raise AlreadyProcessed(request.id, current.status.value if current else "processed")
        self._audit_request(
            AuditAction.REQUEST_ACCEPTED,
            request,
            actor,
            partner_node_id=partner.node_id,
            partner_node_name=partner.node_name,
        )
        logger.info(f"Accepted request {request.id}; node {partner.node_id} is now a partner")

        outcome = await self.notifier.notify_best_effort(
            join_url(request.requester_node_url, ACKNOWLEDGE_CALLBACK_PATH),
            {
                "requestId": request.id,
                "status": RequestStatus.ACKNOWLEDGED.value,
                "secretKey": request.secret_key,
                "principleNodeId": identity.node_id,
                "principleNodeName": identity.node_name,
                "principleNodeUrl": identity.node_url,
            },
        )
        await refresh_peer_list(request.org_id)
        return RespondResult(request=request, partner=partner, notification=outcome)

    async def _reject(
        self,
        request: FederationRequest,
        now: datetime,
        reason: str | None,
        actor: str | None,
    ) -> RespondResult:
        request.transition(RequestStatus.REJECTED, now)
        request.rejection_reason = reason or DEFAULT_REJECTION_REASON
        if not self._commit(request):
            current = self.store.get_request(request.org_id, request.id)
            raise AlreadyProcessed(request.id, current.status.value if current else "processed")
        self._audit_request(
            AuditAction.REQUEST_REJECTED,
            request,
            actor,
            requester_node_id=request.requester_node_id,
            reason=request.rejection_reason,
        )
        logger.info(f"Rejected request {request.id}")

        outcome = None
        if request.request_type is RequestType.INCOMING:
            identity = self.identities.get_or_create(request.org_id)
            outcome = await self.notifier.notify_best_effort(
                join_url(request.requester_node_url, REJECT_CALLBACK_PATH),
                {
                    "requestId": request.id,
                    "status": RequestStatus.REJECTED.value,
                    "reason": request.rejection_reason,
                    "principleNodeId": identity.node_id,
                },
            )
        return RespondResult(request=request, notification=outcome)

    async def cancel(self, org_id: str, request_id: str, actor: str | None = None) -> FederationRequest:
        """Withdraw a PENDING request of either direction.

        Raises:
            RequestNotFound: Missing, owned by another organization, already
                terminal (including a remote accept that won the race), or
                past its deadline (the request is then marked EXPIRED).
        """
        request = self.store.get_request(org_id, request_id)
        if request is None or not request.is_pending:
            raise RequestNotFound(request_id)

        now = self.now()
        if request.is_expired(now):
            self._expire(request, now)
            raise RequestNotFound(request_id)

        request.transition(RequestStatus.CANCELLED, now)
        if not self._commit(request):
            raise RequestNotFound(request_id)
        self._audit_request(AuditAction.REQUEST_CANCELLED, request, actor)
        logger.info(f"Cancelled request {request.id}")
        return request
