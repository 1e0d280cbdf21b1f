# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Heartbeat monitor.

One endpoint carries heartbeats in both directions. The sender's role picks
the validation path:

- HeartbeatFromPartner: the receiver must be a PRINCIPLE holding a Partner
  row whose node id and secret both match. Any mismatch is the same
  ``UnknownPartner`` so callers cannot probe for valid node ids.
- HeartbeatFromPrinciple: the receiver must be a PARTNER of that Principle.

Liveness is derived purely from the age of the last heartbeat received.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.exceptions import ValidationException
from .errors import NotAPartner, UnknownPartner
from .identity import IdentityService
from .models import (
    FederationIdentity,
    Heartbeat,
    HeartbeatFromPartner,
    HeartbeatFromPrinciple,
    Liveness,
    LivenessReport,
    NodeRole,
    utcnow,
)
from .notify import SECRET_HEADER, NotificationOutcome, RemoteNotifier, join_url
from .store import FederationStore, get_federation_store
from .trust import secrets_match

logger = logging.getLogger(__name__)

HEARTBEAT_PATH = "/api/federation/heartbeat"


def parse_heartbeat(body: Any, secret_header: str | None) -> Heartbeat:
    """Turn a wire body ``{nodeId, nodeUrl?, role}`` into a tagged heartbeat.

    Raises:
        ValidationException: Missing node id or a role other than
            PARTNER / PRINCIPLE.
    """
    if not isinstance(body, dict):
        raise ValidationException("Heartbeat body must be a JSON object")

    node_id = body.get("nodeId")
    if not node_id or not isinstance(node_id, str):
        raise ValidationException("nodeId is required", field="nodeId")
    node_url = body.get("nodeUrl")

    role = body.get("role")
    if role == NodeRole.PARTNER.value:
        return HeartbeatFromPartner(node_id=node_id, secret_key=secret_header, node_url=node_url)
    if role == NodeRole.PRINCIPLE.value:
        return HeartbeatFromPrinciple(node_id=node_id, node_url=node_url)
    raise ValidationException("Invalid role", field="role", value=role)


@dataclass
class HeartbeatAck:
    """Reply to an accepted heartbeat, naming the receiver's role."""

    role: NodeRole
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "role": self.role.value, "timestamp": self.timestamp.isoformat()}


class HeartbeatMonitor:
    def __init__(
        self,
        store: FederationStore | None = None,
        notifier: RemoteNotifier | None = None,
        identities: IdentityService | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store or get_federation_store()
        self.notifier = notifier or RemoteNotifier()
        self.identities = identities or IdentityService(self.store, now=now)
        self.now = now

    async def receive_heartbeat(self, heartbeat: Heartbeat) -> HeartbeatAck:
        """Record an inbound heartbeat.

        Raises:
            UnknownPartner: Partner heartbeat with no matching credentials.
            NotAPartner: Principle heartbeat to a node that
                is not its partner.
        """
        if isinstance(heartbeat, HeartbeatFromPartner):
            return self._from_partner(heartbeat)
        if isinstance(heartbeat, HeartbeatFromPrinciple):
            return self._from_principle(heartbeat)
        raise TypeError(f"Unsupported heartbeat: {heartbeat!r}")

    def _from_partner(self, heartbeat: HeartbeatFromPartner) -> HeartbeatAck:
        matched = None
        # Compare against every candidate so timing does not depend on position
        for partner in self.store.list_partners_by_node(heartbeat.node_id):
            if secrets_match(partner.secret_key, heartbeat.secret_key) and matched is None:
                matched = partner

        if matched is None or not matched.is_active:
            raise UnknownPartner()
        owner = self.store.get_identity(matched.org_id)
        if owner is None or owner.role is not NodeRole.PRINCIPLE:
            raise UnknownPartner()

        now = self.now()
        self.store.record_partner_heartbeat(matched.id, now)
        logger.debug(f"Heartbeat from partner {matched.node_id} (org {matched.org_id})")
        return HeartbeatAck(role=NodeRole.PRINCIPLE, timestamp=now)

    def _from_principle(self, heartbeat: HeartbeatFromPrinciple) -> HeartbeatAck:
        identities = self.store.find_identities_by_principle(heartbeat.node_id)
        if not identities:
            raise NotAPartner()

        # The Principle's liveness is shared by every org that follows it
        now = self.now()
        for identity in identities:
            self.store.record_principle_heartbeat(identity.org_id, now)
        logger.debug(f"Heartbeat from principle {heartbeat.node_id} ({len(identities)} org(s))")
        return HeartbeatAck(role=NodeRole.PARTNER, timestamp=now)

    def get_liveness_status(self, org_id: str) -> LivenessReport:
        identity = self.identities.get_or_create(org_id)
        now = self.now()

        if identity.role is NodeRole.PRINCIPLE:
            return LivenessReport(
                role=identity.role,
                partners=[(p, Liveness.compute(p.last_heartbeat, now)) for p in self.store.list_partners(org_id)],
            )
        if identity.role is NodeRole.PARTNER:
            return LivenessReport(
                role=identity.role,
                principle=(identity, Liveness.compute(identity.last_heartbeat, now)),
            )
        return LivenessReport(role=NodeRole.STANDALONE)

    async def send_heartbeats(self, org_id: str) -> list[NotificationOutcome]:
        """Run one round of outbound heartbeats for ``org_id``.

        A PARTNER reports to its Principle; a PRINCIPLE reaches out to each
        active Partner. Every send is best-effort.
        """
        identity = self.identities.get_or_create(org_id)

        if identity.role is NodeRole.PARTNER:
            return [await self._send_to_principle(identity)]

        if identity.role is NodeRole.PRINCIPLE:
            outcomes = []
            for partner in self.store.list_partners(org_id, active_only=True):
                outcomes.append(
                    await self.notifier.notify_best_effort(
                        join_url(partner.node_url, HEARTBEAT_PATH),
                        {"nodeId": identity.node_id, "nodeUrl": identity.node_url, "role": NodeRole.PRINCIPLE.value},
                        headers={SECRET_HEADER: partner.secret_key},
                    )
                )
            delivered = sum(1 for o in outcomes if o.delivered)
            logger.info(f"Heartbeat round for org {org_id}: {delivered}/{len(outcomes)} partners reached")
            return outcomes

        logger.debug(f"Org {org_id} is STANDALONE; no heartbeats to send")
        return []

    async def _send_to_principle(self, identity: FederationIdentity) -> NotificationOutcome:
        url = join_url(identity.principle_url, HEARTBEAT_PATH)
        if not identity.principle_secret_key:
            logger.warning(f"Org {identity.org_id} has no trust secret for its principle; heartbeat skipped")
            return NotificationOutcome(url=url, delivered=False, error="No trust secret for principle")

        return await self.notifier.notify_best_effort(
            url,
            {"nodeId": identity.node_id, "nodeUrl": identity.node_url, "role": NodeRole.PARTNER.value},
            headers={SECRET_HEADER: identity.principle_secret_key},
        )
