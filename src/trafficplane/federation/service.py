# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Wiring for the federation components.

``FederationService`` builds every component over one shared store,
notifier, audit logger and clock so that tests and the server see a single
consistent object graph.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .audit import AuditLogger
from .disconnect import DisconnectionHandler
from .handshake import HandshakeCoordinator
from .heartbeat import HeartbeatMonitor
from .identity import IdentityService
from .models import utcnow
from .notify import RemoteNotifier
from .store import FederationStore, get_federation_store


class FederationService:
    def __init__(
        self,
        store: FederationStore | None = None,
        notifier: RemoteNotifier | None = None,
        audit: AuditLogger | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store or get_federation_store()
        self.notifier = notifier or RemoteNotifier()
        self.audit = audit or AuditLogger()
        self.now = now

        self.identities = IdentityService(self.store, self.audit, now)
        self.handshake = HandshakeCoordinator(self.store, self.notifier, self.audit, self.identities, now)
        self.heartbeat = HeartbeatMonitor(self.store, self.notifier, self.identities, now)
        self.disconnect = DisconnectionHandler(self.store, self.notifier, self.audit, self.identities, now)


# Global federation service instance (initialized in app startup)
_federation_service: FederationService | None = None


def get_federation_service() -> FederationService:
    """Get the federation service instance, building a default one on first use."""
    global _federation_service
    if _federation_service is None:
        _federation_service = FederationService()
    return _federation_service


def set_federation_service(service: FederationService | None) -> None:
    """Set (or with None, reset) the federation service instance."""
    global _federation_service
    _federation_service = service
