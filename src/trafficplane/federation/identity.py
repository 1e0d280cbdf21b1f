# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Federation identity service.

One FederationIdentity exists per organization. It is created implicitly as
STANDALONE the first time anything asks for it, and only the handshake and
disconnection flows move it between STANDALONE and PARTNER.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from urllib.parse import urlparse

from ..core.config import get_config
from ..core.exceptions import ValidationException
from .audit import AuditAction, AuditLogger
from .errors import InvalidRoleTransition
from .models import FederationIdentity, NodeRole, utcnow
from .store import FederationStore, get_federation_store

logger = logging.getLogger(__name__)


def validate_node_url(url: str, field_name: str = "node_url") -> str:
    """Check that ``url`` is an absolute http(s) URL and strip any trailing slash."""
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationException(f"{field_name} must be an absolute http(s) URL", field=field_name, value=url)
    return url.rstrip("/")


class IdentityService:
    """Reads and configures the per-organization federation identity."""

    def __init__(
        self,
        store: FederationStore | None = None,
        audit: AuditLogger | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store or get_federation_store()
        self.audit = audit or AuditLogger()
        self.now = now

    def get_or_create(self, org_id: str) -> FederationIdentity:
        identity = self.store.get_identity(org_id)
        if identity is not None:
            return identity

        config = get_config()
        timestamp = self.now()
        identity = FederationIdentity(
            org_id=org_id,
            node_name=config.federation_node_name or org_id,
            node_url=config.federation_node_url.rstrip("/") if config.federation_node_url else None,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.store.save_identity(identity)
        logger.info(f"Created federation identity {identity.node_id} for org {org_id}")
        return identity

    def configure(
        self,
        org_id: str,
        node_name: str | None = None,
        node_url: str | None = None,
        actor: str | None = None,
    ) -> FederationIdentity:
        """Update the display name and/or the callback base URL."""
        identity = self.get_or_create(org_id)
        changes = {}

        if node_name is not None:
            node_name = node_name.strip()
            if not node_name:
                raise ValidationException("node_name must not be empty", field="node_name")
            identity.node_name = node_name
            changes["node_name"] = node_name

        if node_url is not None:
            identity.node_url = validate_node_url(node_url)
            changes["node_url"] = identity.node_url

        if changes:
            identity.updated_at = self.now()
            self.store.save_identity(identity)
            self.audit.log(
                AuditAction.CONFIG_UPDATED,
                org_id=org_id,
                resource_type="federation_identity",
                resource_id=identity.node_id,
                details=changes,
                actor=actor,
            )
        return identity

    def declare_principle(self, org_id: str, actor: str | None = None) -> FederationIdentity:
        """Make this organization's node a PRINCIPLE.

        Idempotent for a node that already is one.

        Raises:
            InvalidRoleTransition: If the node is currently a PARTNER.
        """
        identity = self.get_or_create(org_id)
        if identity.role is NodeRole.PRINCIPLE:
            return identity
        if identity.role is NodeRole.PARTNER:
            raise InvalidRoleTransition(identity.role.value, NodeRole.PRINCIPLE.value)

        previous = identity.role
        identity.become_principle(self.now())
        self.store.save_identity(identity)
        logger.info(f"Node {identity.node_id} of org {org_id} is now PRINCIPLE")
        self.audit.log(
            AuditAction.ROLE_CHANGED,
            org_id=org_id,
            resource_type="federation_identity",
            resource_id=identity.node_id,
            details={"from": previous.value, "to": identity.role.value},
            actor=actor,
        )
        return identity
