"""Global test fixtures for the Trafficplane federation test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from trafficplane.federation.audit import AuditLogger, MemoryAuditSink
from trafficplane.federation.notify import NotificationOutcome, RemoteNotifier
from trafficplane.federation.service import FederationService
from trafficplane.federation.store import MemoryFederationStore

# ============================================================================
# Global state isolation
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop any TRAFFICPLANE_* variables inherited from the developer's shell."""
    for key in list(os.environ):
        if key.startswith("TRAFFICPLANE_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset every lazily-built singleton between tests."""
    import trafficplane.server.auth as auth_module
    from trafficplane.core.config import clear_config_cache
    from trafficplane.federation.peers import set_peer_list_refresher
    from trafficplane.federation.service import set_federation_service
    from trafficplane.federation.store import reset_federation_store
    from trafficplane.server.config import clear_settings_cache

    def _reset():
        clear_config_cache()
        clear_settings_cache()
        reset_federation_store()
        set_federation_service(None)
        set_peer_list_refresher(None)
        auth_module._token_store = None

    _reset()
    yield
    _reset()


# ============================================================================
# Federation fixtures
# ============================================================================


class FakeClock:
    """Controllable clock passed as ``now`` to the federation services."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier(RemoteNotifier):
    """Captures best-effort notifications instead of sending them.

    ``responses`` maps a URL to the JSON body the fake remote answers with;
    ``fail`` makes every delivery fail the way an unreachable node would.
    """

    def __init__(self) -> None:
        super().__init__(timeout=1.0, require_tls=False)
        self.sent: list[tuple[str, dict[str, Any], dict[str, str] | None]] = []
        self.responses: dict[str, dict[str, Any]] = {}
        self.fail = False

    async def notify_best_effort(self, url, payload, headers=None):
        self.sent.append((url, payload, headers))
        if self.fail:
            return NotificationOutcome(url=url, delivered=False, error="Cannot connect to host")
        return NotificationOutcome(url=url, delivered=True, status=200, body=self.responses.get(url, {}))

    def urls(self) -> list[str]:
        return [url for url, _, _ in self.sent]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryFederationStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def service(store, notifier, audit_sink, clock):
    """A FederationService over in-memory state with a fake clock and notifier."""
    return FederationService(store=store, notifier=notifier, audit=AuditLogger(audit_sink), now=clock)
