# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Partnership teardown.

The Principle revokes a Partner unilaterally and tells it so, best-effort.
The Partner, on hearing the notice, reverts to STANDALONE. If the notice is
lost, the Partner keeps believing it is partnered until its heartbeats start
failing with UnknownPartner.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from .audit import AuditAction, AuditLogger
from .errors import NotAPartnerOfThisPrinciple, PartnerNotFound
from .identity import IdentityService
from .models import FederationIdentity, Partner, utcnow
from .notify import NotificationOutcome, RemoteNotifier, join_url
from .store import FederationStore, get_federation_store

logger = logging.getLogger(__name__)

DISCONNECTED_PATH = "/api/federation/partners/disconnected"


@dataclass
class RevokeResult:
    partner: Partner
    notification: NotificationOutcome


class DisconnectionHandler:
    def __init__(
        self,
        store: FederationStore | None = None,
        notifier: RemoteNotifier | None = None,
        audit: AuditLogger | None = None,
        identities: IdentityService | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store or get_federation_store()
        self.notifier = notifier or RemoteNotifier()
        self.audit = audit or AuditLogger()
        self.identities = identities or IdentityService(self.store, self.audit, now)
        self.now = now

    async def revoke(self, org_id: str, partner_id: str, actor: str | None = None) -> RevokeResult:
        """Remove a Partner and notify it.

        Raises:
            PartnerNotFound: Missing or owned by another organization.
        """
        partner = self.store.get_partner(org_id, partner_id)
        if partner is None or not self.store.delete_partner(org_id, partner_id):
            raise PartnerNotFound(partner_id)

        self.audit.log(
            AuditAction.PARTNER_REMOVED,
            org_id=org_id,
            resource_type="federation_partner",
            resource_id=partner_id,
            details={"node_id": partner.node_id, "node_name": partner.node_name},
            actor=actor,
        )
        logger.info(f"Removed partner {partner.node_id} from org {org_id}")

        identity = self.identities.get_or_create(org_id)
        outcome = await self.notifier.notify_best_effort(
            join_url(partner.node_url, DISCONNECTED_PATH),
            {"principleNodeId": identity.node_id, "partnerNodeId": partner.node_id},
        )
        return RevokeResult(partner=partner, notification=outcome)

    async def handle_disconnected(
        self,
        principle_node_id: str,
        partner_node_id: str | None = None,
    ) -> list[FederationIdentity]:
        """The Principle removed us; revert to STANDALONE.

        Several local organizations may follow the same Principle. When the
        notice names the removed node (``partner_node_id``) only that
        organization reverts; otherwise every follower does.

        Raises:
            NotAPartnerOfThisPrinciple: No local PARTNER identity follows
                ``principle_node_id`` (stale or forged notice).
        """
        identities = self.store.find_identities_by_principle(principle_node_id) if principle_node_id else []
        if partner_node_id:
            identities = [i for i in identities if i.node_id == partner_node_id]
        if not identities:
            raise NotAPartnerOfThisPrinciple(principle_node_id)

        for identity in identities:
            previous = identity.role
            identity.revert_to_standalone(self.now())
            self.store.save_identity(identity)
            self.audit.log(
                AuditAction.ROLE_CHANGED,
                org_id=identity.org_id,
                resource_type="federation_identity",
                resource_id=identity.node_id,
                details={
                    "from": previous.value,
                    "to": identity.role.value,
                    "reason": "Disconnected by Principle",
                    "previous_principle": principle_node_id,
                },
            )
            logger.info(f"Org {identity.org_id} disconnected by principle {principle_node_id}; now STANDALONE")
        return identities
