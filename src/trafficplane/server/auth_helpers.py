# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Authentication and authorization helpers for REST endpoints.

Provides authenticate() and require_admin() for use by endpoint handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from starlette.requests import Request
from starlette.responses import JSONResponse

from .auth import MembershipRole, verify_token
from .errors import AUTH_MISSING_TOKEN, FORBIDDEN_INSUFFICIENT_PERMISSION, auth_error, forbidden_error

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedClient:
    """An authenticated caller acting for one organization."""

    client_id: str
    org_id: str
    role: MembershipRole = MembershipRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin


def authenticate(request: Request) -> AuthenticatedClient | JSONResponse:
    """Authenticate a request. Returns client on success, error JSONResponse on failure.

    Usage in endpoints::

        client = authenticate(request)
        if isinstance(client, JSONResponse):
            return client
        # client is AuthenticatedClient
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return auth_error("Missing or invalid authentication token", code=AUTH_MISSING_TOKEN)

    token = verify_token(auth_header)
    if token is None:
        return auth_error("Invalid authentication token")

    return AuthenticatedClient(client_id=token.client_id, org_id=token.org_id, role=token.role)


def require_admin(client: AuthenticatedClient) -> JSONResponse | None:
    """Check that the client is an OWNER or ADMIN. Returns 403 response or None."""
    if client.is_admin:
        return None

    logger.warning(f"Client '{client.client_id}' ({client.role.value}) denied admin operation")
    return forbidden_error(
        "Owner or admin role required",
        code=FORBIDDEN_INSUFFICIENT_PERMISSION,
    )
