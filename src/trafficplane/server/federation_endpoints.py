# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Federation API endpoints.

Node-to-node (unauthenticated; camelCase JSON wire format):
- POST /api/federation/requests/incoming            - Receive a partnership proposal
- POST /api/federation/requests/acknowledge-callback - Remote Principle accepted us
- POST /api/federation/requests/reject-callback      - Remote node rejected us
- POST /api/federation/heartbeat                     - Heartbeat (secret in X-Federation-Secret)
- POST /api/federation/partners/disconnected         - Remote Principle removed us

Administrative (bearer token; OWNER/ADMIN for mutations):
- GET    /api/federation                       - Identity overview
- POST   /api/federation                       - Configure node name / URL
- POST   /api/federation/principle             - Declare this node a Principle
- GET    /api/federation/partners              - List partners
- DELETE /api/federation/partners/{id}         - Revoke a partner
- GET    /api/federation/requests              - List requests
- POST   /api/federation/requests              - Send a partnership request
- PATCH  /api/federation/requests/{id}         - Accept or reject
- DELETE /api/federation/requests/{id}         - Cancel
- GET    /api/federation/heartbeat             - Liveness status
- POST   /api/federation/heartbeat/send        - Send one heartbeat round
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from functools import wraps

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..core.exceptions import ValidationException
from ..federation.errors import FederationError
from ..federation.heartbeat import parse_heartbeat
from ..federation.models import RequestStatus
from ..federation.notify import SECRET_HEADER
from ..federation.service import get_federation_service
from .auth_helpers import authenticate, require_admin
from .config import get_settings
from .errors import (
    VALIDATION_INVALID_VALUE,
    feature_not_enabled_error,
    federation_error,
    internal_error,
    invalid_json_error,
    missing_field_error,
    validation_error,
    validation_exception_error,
)

logger = logging.getLogger(__name__)

FEDERATION_PREFIX = "/api/federation"


# =============================================================================
# DECORATORS
# =============================================================================


def federation_endpoint(handler: Callable) -> Callable:
    """Gate a handler on federation being enabled and map domain errors to responses.

    Usage:
        @federation_endpoint
        async def my_handler(request: Request) -> JSONResponse:
            ...
    """

    @wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        if not get_settings().federation_enabled:
            return feature_not_enabled_error("Federation")

        try:
            return await handler(request)
        except json.JSONDecodeError:
            return invalid_json_error()
        except FederationError as e:
            logger.info(f"{request.method} {request.url.path} -> {e.code}: {e.message}")
            return federation_error(e)
        except ValidationException as e:
            return validation_exception_error(e)
        except Exception as e:
            logger.exception(f"Error handling {request.method} {request.url.path}")
            return internal_error("Federation request failed", exc=e)

    return wrapper


def authenticated(admin: bool = False) -> Callable:
    """Require a bearer token; with ``admin=True`` also require OWNER/ADMIN.

    The authenticated client is placed on ``request.state.client``.
    """

    def decorator(handler: Callable) -> Callable:
        @wraps(handler)
        async def wrapper(request: Request) -> JSONResponse:
            client = authenticate(request)
            if isinstance(client, JSONResponse):
                return client
            if admin:
                denied = require_admin(client)
                if denied is not None:
                    return denied
            request.state.client = client
            return await handler(request)

        return wrapper

    return decorator


async def _json_body(request: Request) -> dict:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValidationException("Request body must be a JSON object")
    return body


# =============================================================================
# NODE-TO-NODE ENDPOINTS
# =============================================================================


@federation_endpoint
async def receive_request_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/requests/incoming - Another node proposes a partnership.

    Request Body (JSON):
        {
            "requesterNodeId": "uuid",
            "requesterNodeName": "edge-eu-1",
            "requesterNodeUrl": "https://edge-eu-1.example.com",
            "secretKey": "hex...",
            "message": "optional"
        }

    Returns:
        200: {success, message, requestId, nodeId, nodeName}
        409: A pending request from this node exists, or it already is a partner
    """
    body = await _json_body(request)
    for field_name in ("requesterNodeId", "requesterNodeName", "requesterNodeUrl", "secretKey"):
        if not body.get(field_name):
            return missing_field_error(field_name)

    service = get_federation_service()
    federation_request, identity = await service.handshake.receive_request(
        org_id=get_settings().federation_org_id,
        requester_node_id=body["requesterNodeId"],
        requester_node_name=body["requesterNodeName"],
        requester_node_url=body["requesterNodeUrl"],
        secret_key=body["secretKey"],
        message=body.get("message"),
    )
    return JSONResponse(
        {
            "success": True,
            "message": "Partnership request received",
            "requestId": federation_request.id,
            "nodeId": identity.node_id,
            "nodeName": identity.node_name,
        }
    )


@federation_endpoint
async def acknowledge_callback_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/requests/acknowledge-callback - Our request was accepted.

    Returns:
        200: {success, message, role}
        404: No pending outgoing request holds this secret
    """
    body = await _json_body(request)
    for field_name in ("principleNodeId", "principleNodeUrl", "secretKey"):
        if not body.get(field_name):
            return missing_field_error(field_name)

    service = get_federation_service()
    _, identity = await service.handshake.handle_acknowledge_callback(
        principle_node_id=body["principleNodeId"],
        principle_node_name=body.get("principleNodeName"),
        principle_node_url=body["principleNodeUrl"],
        secret_key=body["secretKey"],
    )
    return JSONResponse({"success": True, "message": "Partnership established", "role": identity.role.value})


@federation_endpoint
async def reject_callback_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/requests/reject-callback - Our request was rejected."""
    body = await _json_body(request)
    if not body.get("requestId") and not body.get("principleNodeId"):
        return missing_field_error("principleNodeId")

    service = get_federation_service()
    await service.handshake.handle_reject_callback(
        remote_request_id=body.get("requestId"),
        principle_node_id=body.get("principleNodeId"),
        reason=body.get("reason"),
    )
    return JSONResponse({"success": True})


@federation_endpoint
async def heartbeat_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/heartbeat - Heartbeat from a Partner or a Principle.

    Request Body (JSON):
        {"nodeId": "uuid", "nodeUrl": "https://...", "role": "PARTNER" | "PRINCIPLE"}

    Headers:
        X-Federation-Secret: trust secret (Partner heartbeats)

    Returns:
        200: {success, role: <receiver's role>, timestamp}
        400: Invalid role
        404: Unknown partner / not a partner of this principle
    """
    heartbeat = parse_heartbeat(await request.json(), request.headers.get(SECRET_HEADER))
    ack = await get_federation_service().heartbeat.receive_heartbeat(heartbeat)
    return JSONResponse(ack.to_dict())


@federation_endpoint
async def disconnected_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/partners/disconnected - Our Principle removed us.

    Request Body (JSON):
        {"principleNodeId": "uuid", "partnerNodeId": "uuid (optional)"}
    """
    body = await _json_body(request)
    principle_node_id = body.get("principleNodeId")
    if not principle_node_id:
        return missing_field_error("principleNodeId")

    reverted = await get_federation_service().disconnect.handle_disconnected(
        principle_node_id, partner_node_id=body.get("partnerNodeId")
    )
    return JSONResponse({"success": True, "reverted": len(reverted)})


# =============================================================================
# ADMINISTRATIVE ENDPOINTS
# =============================================================================


@federation_endpoint
@authenticated()
async def federation_overview_endpoint(request: Request) -> JSONResponse:
    """GET /api/federation - This organization's identity and counts."""
    client = request.state.client
    service = get_federation_service()
    identity = service.identities.get_or_create(client.org_id)
    pending = service.handshake.list_requests(client.org_id, status=RequestStatus.PENDING)

    return JSONResponse(
        {
            "success": True,
            "identity": identity.to_dict(),
            "partners": len(service.store.list_partners(client.org_id)),
            "pending_requests": len(pending),
        }
    )


@federation_endpoint
@authenticated(admin=True)
async def federation_configure_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation - Set node name and/or public URL.

    Request Body (JSON):
        {"node_name": "edge-eu-1", "node_url": "https://edge-eu-1.example.com"}
    """
    client = request.state.client
    body = await _json_body(request)
    if body.get("node_name") is None and body.get("node_url") is None:
        return missing_field_error("node_name or node_url")

    identity = get_federation_service().identities.configure(
        client.org_id,
        node_name=body.get("node_name"),
        node_url=body.get("node_url"),
        actor=client.client_id,
    )
    return JSONResponse({"success": True, "identity": identity.to_dict()})


@federation_endpoint
@authenticated(admin=True)
async def federation_principle_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/principle - Make this node a Principle."""
    client = request.state.client
    identity = get_federation_service().identities.declare_principle(client.org_id, actor=client.client_id)
    return JSONResponse({"success": True, "identity": identity.to_dict()})


@federation_endpoint
@authenticated()
async def partners_list_endpoint(request: Request) -> JSONResponse:
    """GET /api/federation/partners - List partners of this organization.

    Query Parameters:
        active: "true" to list only active partners
    """
    client = request.state.client
    active_only = request.query_params.get("active", "false").lower() == "true"
    partners = get_federation_service().store.list_partners(client.org_id, active_only=active_only)
    return JSONResponse({"success": True, "partners": [p.to_dict() for p in partners]})


@federation_endpoint
@authenticated(admin=True)
async def partner_revoke_endpoint(request: Request) -> JSONResponse:
    """DELETE /api/federation/partners/{partner_id} - Remove a partner and notify it."""
    client = request.state.client
    result = await get_federation_service().disconnect.revoke(
        client.org_id,
        request.path_params["partner_id"],
        actor=client.client_id,
    )
    return JSONResponse(
        {
            "success": True,
            "partner": result.partner.to_dict(),
            "notification": result.notification.to_dict(),
        }
    )


@federation_endpoint
@authenticated()
async def requests_list_endpoint(request: Request) -> JSONResponse:
    """GET /api/federation/requests - Newest first, at most 50.

    Query Parameters:
        status: PENDING | ACKNOWLEDGED | REJECTED | EXPIRED | CANCELLED
    """
    client = request.state.client
    status = None
    status_param = request.query_params.get("status")
    if status_param:
        try:
            status = RequestStatus(status_param.upper())
        except ValueError:
            return validation_error(f"Invalid status: {status_param}", code=VALIDATION_INVALID_VALUE)

    requests = get_federation_service().handshake.list_requests(client.org_id, status=status)
    return JSONResponse({"success": True, "requests": [r.to_dict() for r in requests]})


@federation_endpoint
@authenticated(admin=True)
async def requests_send_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/requests - Propose a partnership to another node.

    Request Body (JSON):
        {"target_node_url": "https://principle.example.com", "message": "optional"}

    Returns:
        200: Delivered
        202: Recorded locally but delivery failed (see "error")
    """
    client = request.state.client
    body = await _json_body(request)
    target_node_url = body.get("target_node_url")
    if not target_node_url:
        return missing_field_error("target_node_url")

    result = await get_federation_service().handshake.send_request(
        client.org_id,
        target_node_url,
        message=body.get("message"),
        actor=client.client_id,
    )
    return JSONResponse(
        {
            "success": True,
            "request": result.request.to_dict(),
            "delivered": result.delivered,
            "error": result.notification.error,
        },
        status_code=200 if result.delivered else 202,
    )


@federation_endpoint
@authenticated(admin=True)
async def request_respond_endpoint(request: Request) -> JSONResponse:
    """PATCH /api/federation/requests/{request_id} - Accept or reject.

    Request Body (JSON):
        {"action": "accept" | "reject", "reason": "optional"}
    """
    client = request.state.client
    body = await _json_body(request)
    action = body.get("action")
    if not action:
        return missing_field_error("action")

    result = await get_federation_service().handshake.respond(
        client.org_id,
        request.path_params["request_id"],
        action,
        reason=body.get("reason"),
        actor=client.client_id,
    )
    return JSONResponse({"success": True, **result.to_dict()})


@federation_endpoint
@authenticated(admin=True)
async def request_cancel_endpoint(request: Request) -> JSONResponse:
    """DELETE /api/federation/requests/{request_id} - Cancel a pending request."""
    client = request.state.client
    federation_request = await get_federation_service().handshake.cancel(
        client.org_id,
        request.path_params["request_id"],
        actor=client.client_id,
    )
    return JSONResponse({"success": True, "request": federation_request.to_dict()})


@federation_endpoint
@authenticated()
async def liveness_endpoint(request: Request) -> JSONResponse:
    """GET /api/federation/heartbeat - Liveness of partners or of our Principle."""
    client = request.state.client
    report = get_federation_service().heartbeat.get_liveness_status(client.org_id)
    return JSONResponse({"success": True, **report.to_dict()})


@federation_endpoint
@authenticated(admin=True)
async def heartbeat_send_endpoint(request: Request) -> JSONResponse:
    """POST /api/federation/heartbeat/send - Send one round of heartbeats now."""
    client = request.state.client
    service = get_federation_service()
    outcomes = await service.heartbeat.send_heartbeats(client.org_id)
    role = service.identities.get_or_create(client.org_id).role
    return JSONResponse(
        {
            "success": True,
            "role": role.value,
            "sent": len(outcomes),
            "delivered": sum(1 for o in outcomes if o.delivered),
            "results": [o.to_dict() for o in outcomes],
        }
    )


# =============================================================================
# ROUTES
# =============================================================================


def federation_routes() -> list[Route]:
    """Routes for the federation API, mounted at the application root."""
    p = FEDERATION_PREFIX
    return [
        # Node-to-node
        Route(f"{p}/requests/incoming", receive_request_endpoint, methods=["POST"]),
        Route(f"{p}/requests/acknowledge-callback", acknowledge_callback_endpoint, methods=["POST"]),
        Route(f"{p}/requests/reject-callback", reject_callback_endpoint, methods=["POST"]),
        Route(f"{p}/heartbeat", heartbeat_endpoint, methods=["POST"]),
        Route(f"{p}/partners/disconnected", disconnected_endpoint, methods=["POST"]),
        # Administrative
        Route(p, federation_overview_endpoint, methods=["GET"]),
        Route(p, federation_configure_endpoint, methods=["POST"]),
        Route(f"{p}/principle", federation_principle_endpoint, methods=["POST"]),
        Route(f"{p}/partners", partners_list_endpoint, methods=["GET"]),
        Route(f"{p}/partners/{{partner_id}}", partner_revoke_endpoint, methods=["DELETE"]),
        Route(f"{p}/requests", requests_list_endpoint, methods=["GET"]),
        Route(f"{p}/requests", requests_send_endpoint, methods=["POST"]),
        Route(f"{p}/requests/{{request_id}}", request_respond_endpoint, methods=["PATCH"]),
        Route(f"{p}/requests/{{request_id}}", request_cancel_endpoint, methods=["DELETE"]),
        Route(f"{p}/heartbeat", liveness_endpoint, methods=["GET"]),
        Route(f"{p}/heartbeat/send", heartbeat_send_endpoint, methods=["POST"]),
    ]
