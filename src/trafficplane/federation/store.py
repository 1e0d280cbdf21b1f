# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Federation store backends.

Provides pluggable persistence for the three federation entities: the
per-organization identity, the Partner registry and the request ledger.
Default is in-memory; the PostgreSQL backend is for deployments where a
restart must not forget partnerships.

Configure via environment variables:
    TRAFFICPLANE_FEDERATION_STORE=memory|postgres  (default: memory)
    TRAFFICPLANE_DB_*                                (see core.config)

Secrets are never used as a lookup key here. Callers load candidate rows
and compare secrets themselves with trust.secrets_match.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from ..core.config import get_config
from ..core.exceptions import ConfigException, DatabaseException
from .models import (
    FederationIdentity,
    FederationRequest,
    NodeRole,
    Partner,
    RequestStatus,
    RequestType,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_LIMIT = 50


class FederationStore(ABC):
    """Abstract repository for federation state.

    Returned objects are detached copies: mutating one has no effect until
    it is written back through the matching save/update method.
    """

    # -- identities -----------------------------------------------------------

    @abstractmethod
    def get_identity(self, org_id: str) -> FederationIdentity | None:
        """Return the organization's identity, or None if never created."""
        ...

    @abstractmethod
    def save_identity(self, identity: FederationIdentity) -> None:
        """Insert or replace the organization's identity."""
        ...

    @abstractmethod
    def find_identities_by_principle(self, principle_node_id: str) -> list[FederationIdentity]:
        """PARTNER identities of every local organization following ``principle_node_id``."""
        ...

    @abstractmethod
    def record_principle_heartbeat(self, org_id: str, at: datetime) -> None:
        """Advance the identity's last heartbeat to ``at`` (never backwards)."""
        ...

    # -- partners -------------------------------------------------------------

    @abstractmethod
    def add_partner(self, partner: Partner) -> Partner:
        ...

    @abstractmethod
    def get_partner(self, org_id: str, partner_id: str) -> Partner | None:
        ...

    @abstractmethod
    def list_partners(self, org_id: str, active_only: bool = False) -> list[Partner]:
        """Partners of one organization, newest first."""
        ...

    @abstractmethod
    def list_partners_by_node(self, node_id: str) -> list[Partner]:
        """Partner rows for ``node_id`` across every organization."""
        ...

    @abstractmethod
    def record_partner_heartbeat(self, partner_id: str, at: datetime) -> None:
        """Advance the partner's last heartbeat to ``at`` (never backwards)."""
        ...

    @abstractmethod
    def delete_partner(self, org_id: str, partner_id: str) -> bool:
        """Remove a partner. Returns False if it did not exist."""
        ...

    # -- requests -------------------------------------------------------------

    @abstractmethod
    def add_request(self, request: FederationRequest) -> FederationRequest:
        ...

    @abstractmethod
    def get_request(self, org_id: str, request_id: str) -> FederationRequest | None:
        ...

    @abstractmethod
    def list_requests(
        self,
        org_id: str,
        status: RequestStatus | None = None,
        limit: int = DEFAULT_REQUEST_LIMIT,
    ) -> list[FederationRequest]:
        """Requests of one organization, newest first."""
        ...

    @abstractmethod
    def list_pending_outgoing(self) -> list[FederationRequest]:
        """Every PENDING OUTGOING request, across organizations."""
        ...

    @abstractmethod
    def find_pending_from(self, org_id: str, requester_node_id: str) -> FederationRequest | None:
        """The PENDING request ``requester_node_id`` has open with ``org_id``."""
        ...

    @abstractmethod
    def update_request(
        self,
        request: FederationRequest,
        expected_status: RequestStatus | None = None,
    ) -> bool:
        """Write ``request`` back.

        Args:
            request: The modified request.
            expected_status: If given, only write when the stored row still
                holds this status.

        Returns:
            False when the row is missing or another writer moved it first.
        """
        ...


class MemoryFederationStore(FederationStore):
    """In-memory federation store.

    Suitable for development, tests and single-process deployments.
    State is lost on restart.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._identities: dict[str, FederationIdentity] = {}
        self._partners: dict[str, Partner] = {}
        self._requests: dict[str, FederationRequest] = {}

    # -- identities -----------------------------------------------------------

    def get_identity(self, org_id: str) -> FederationIdentity | None:
        identity = self._identities.get(org_id)
        return copy.deepcopy(identity) if identity else None

    def save_identity(self, identity: FederationIdentity) -> None:
        with self._lock:
            self._identities[identity.org_id] = copy.deepcopy(identity)

    def find_identities_by_principle(self, principle_node_id: str) -> list[FederationIdentity]:
        matches = [
            identity
            for identity in self._identities.values()
            if identity.role is NodeRole.PARTNER and identity.principle_node_id == principle_node_id
        ]
        return [copy.deepcopy(identity) for identity in sorted(matches, key=lambda i: i.org_id)]

    def record_principle_heartbeat(self, org_id: str, at: datetime) -> None:
        with self._lock:
            identity = self._identities.get(org_id)
            if identity is not None and (identity.last_heartbeat is None or identity.last_heartbeat < at):
                identity.last_heartbeat = at

    # -- partners -------------------------------------------------------------

    def add_partner(self, partner: Partner) -> Partner:
        with self._lock:
            self._partners[partner.id] = copy.deepcopy(partner)
        return partner

    def get_partner(self, org_id: str, partner_id: str) -> Partner | None:
        partner = self._partners.get(partner_id)
        if partner is None or partner.org_id != org_id:
            return None
        return copy.deepcopy(partner)

    def list_partners(self, org_id: str, active_only: bool = False) -> list[Partner]:
        partners = [
            p for p in self._partners.values() if p.org_id == org_id and (p.is_active or not active_only)
        ]
        partners.sort(key=lambda p: p.created_at, reverse=True)
        return copy.deepcopy(partners)

    def list_partners_by_node(self, node_id: str) -> list[Partner]:
        return copy.deepcopy([p for p in self._partners.values() if p.node_id == node_id])

    def record_partner_heartbeat(self, partner_id: str, at: datetime) -> None:
        with self._lock:
            partner = self._partners.get(partner_id)
            if partner is not None and (partner.last_heartbeat is None or partner.last_heartbeat < at):
                partner.last_heartbeat = at

    def delete_partner(self, org_id: str, partner_id: str) -> bool:
        with self._lock:
            partner = self._partners.get(partner_id)
            if partner is None or partner.org_id != org_id:
                return False
            del self._partners[partner_id]
            return True

    # -- requests -------------------------------------------------------------

    def add_request(self, request: FederationRequest) -> FederationRequest:
        with self._lock:
            self._requests[request.id] = copy.deepcopy(request)
        return request

    def get_request(self, org_id: str, request_id: str) -> FederationRequest | None:
        request = self._requests.get(request_id)
        if request is None or request.org_id != org_id:
            return None
        return copy.deepcopy(request)

    def list_requests(
        self,
        org_id: str,
        status: RequestStatus | None = None,
        limit: int = DEFAULT_REQUEST_LIMIT,
    ) -> list[FederationRequest]:
        requests = [
            r for r in self._requests.values() if r.org_id == org_id and (status is None or r.status is status)
        ]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return copy.deepcopy(requests[:limit])

    def list_pending_outgoing(self) -> list[FederationRequest]:
        return copy.deepcopy(
            [
                r
                for r in self._requests.values()
                if r.request_type is RequestType.OUTGOING and r.status is RequestStatus.PENDING
            ]
        )

    def find_pending_from(self, org_id: str, requester_node_id: str) -> FederationRequest | None:
        for request in self._requests.values():
            if (
                request.org_id == org_id
                and request.requester_node_id == requester_node_id
                and request.status is RequestStatus.PENDING
            ):
                return copy.deepcopy(request)
        return None

    def update_request(
        self,
        request: FederationRequest,
        expected_status: RequestStatus | None = None,
    ) -> bool:
        with self._lock:
            stored = self._requests.get(request.id)
            if stored is None:
                return False
            if expected_status is not None and stored.status is not expected_status:
                return False
            self._requests[request.id] = copy.deepcopy(request)
            return True

    def clear(self) -> None:
        """Drop all state (useful for testing)."""
        with self._lock:
            self._identities.clear()
            self._partners.clear()
            self._requests.clear()


# =============================================================================
# POSTGRES
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS federation_identities (
    org_id TEXT PRIMARY KEY,
    node_id TEXT NOT NULL UNIQUE,
    node_name TEXT NOT NULL DEFAULT '',
    node_url TEXT,
    role TEXT NOT NULL DEFAULT 'STANDALONE',
    principle_node_id TEXT,
    principle_url TEXT,
    principle_secret_key TEXT,
    last_heartbeat TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT federation_identities_valid_role CHECK (role IN ('STANDALONE', 'PARTNER', 'PRINCIPLE')),
    CONSTRAINT federation_identities_principle_iff_partner CHECK (
        (role = 'PARTNER') = (principle_node_id IS NOT NULL AND principle_url IS NOT NULL)
    )
);
CREATE INDEX IF NOT EXISTS idx_federation_identities_principle
    ON federation_identities(principle_node_id) WHERE principle_node_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS federation_partners (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    node_id TEXT NOT NULL,
    node_name TEXT NOT NULL,
    node_url TEXT NOT NULL,
    secret_key TEXT NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    sync_status TEXT NOT NULL DEFAULT 'PENDING',
    last_heartbeat TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_federation_partners_org ON federation_partners(org_id);
CREATE INDEX IF NOT EXISTS idx_federation_partners_node ON federation_partners(node_id);

CREATE TABLE IF NOT EXISTS federation_requests (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    request_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    requester_node_id TEXT NOT NULL,
    requester_node_name TEXT NOT NULL,
    requester_node_url TEXT NOT NULL,
    target_node_id TEXT,
    target_node_url TEXT,
    secret_key TEXT NOT NULL,
    message TEXT,
    expires_at TIMESTAMPTZ NOT NULL,
    acknowledged_at TIMESTAMPTZ,
    rejected_at TIMESTAMPTZ,
    rejection_reason TEXT,
    metadata JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT federation_requests_valid_type CHECK (request_type IN ('INCOMING', 'OUTGOING')),
    CONSTRAINT federation_requests_valid_status CHECK (
        status IN ('PENDING', 'ACKNOWLEDGED', 'REJECTED', 'EXPIRED', 'CANCELLED')
    )
);
CREATE INDEX IF NOT EXISTS idx_federation_requests_org ON federation_requests(org_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_federation_requests_pending
    ON federation_requests(request_type) WHERE status = 'PENDING';
"""

_REQUEST_COLUMNS = (
    "id, org_id, request_type, status, requester_node_id, requester_node_name, "
    "requester_node_url, target_node_id, target_node_url, secret_key, message, "
    "expires_at, acknowledged_at, rejected_at, rejection_reason, metadata, created_at"
)


class PostgresFederationStore(FederationStore):
    """PostgreSQL-backed federation store using the shared psycopg2 pool.

    Every method is a single short transaction; concurrent writers are
    serialized by row-level locking in the database.
    """

    def __init__(self, cursor_factory=None) -> None:
        if cursor_factory is None:
            from ..core.db import get_cursor

            cursor_factory = get_cursor
        self._cursor = cursor_factory

    def create_schema(self) -> None:
        """Create the federation tables if they do not exist."""
        try:
            with self._cursor() as cur:
                cur.execute(SCHEMA_SQL)
        except Exception as e:
            raise DatabaseException(f"Failed to create federation schema: {e}") from e
        logger.info("Federation schema ready")

    # -- identities -----------------------------------------------------------

    def get_identity(self, org_id: str) -> FederationIdentity | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM federation_identities WHERE org_id = %s", (org_id,))
            row = cur.fetchone()
        return FederationIdentity.from_row(row) if row else None

    def save_identity(self, identity: FederationIdentity) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO federation_identities (
                    org_id, node_id, node_name, node_url, role, principle_node_id,
                    principle_url, principle_secret_key, last_heartbeat, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (org_id) DO UPDATE SET
                    node_name = EXCLUDED.node_name,
                    node_url = EXCLUDED.node_url,
                    role = EXCLUDED.role,
                    principle_node_id = EXCLUDED.principle_node_id,
                    principle_url = EXCLUDED.principle_url,
                    principle_secret_key = EXCLUDED.principle_secret_key,
                    last_heartbeat = EXCLUDED.last_heartbeat,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    identity.org_id,
                    identity.node_id,
                    identity.node_name,
                    identity.node_url,
                    identity.role.value,
                    identity.principle_node_id,
                    identity.principle_url,
                    identity.principle_secret_key,
                    identity.last_heartbeat,
                    identity.created_at,
                    identity.updated_at,
                ),
            )

    def find_identities_by_principle(self, principle_node_id: str) -> list[FederationIdentity]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM federation_identities
                WHERE role = 'PARTNER' AND principle_node_id = %s
                ORDER BY org_id
                """,
                (principle_node_id,),
            )
            rows = cur.fetchall()
        return [FederationIdentity.from_row(row) for row in rows]

    def record_principle_heartbeat(self, org_id: str, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE federation_identities
                SET last_heartbeat = GREATEST(COALESCE(last_heartbeat, %s), %s)
                WHERE org_id = %s
                """,
                (at, at, org_id),
            )

    # -- partners -------------------------------------------------------------

    def add_partner(self, partner: Partner) -> Partner:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO federation_partners (
                    id, org_id, node_id, node_name, node_url, secret_key,
                    is_active, sync_status, last_heartbeat, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    partner.id,
                    partner.org_id,
                    partner.node_id,
                    partner.node_name,
                    partner.node_url,
                    partner.secret_key,
                    partner.is_active,
                    partner.sync_status.value,
                    partner.last_heartbeat,
                    partner.created_at,
                ),
            )
        return partner

    def get_partner(self, org_id: str, partner_id: str) -> Partner | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM federation_partners WHERE id = %s AND org_id = %s",
                (partner_id, org_id),
            )
            row = cur.fetchone()
        return Partner.from_row(row) if row else None

    def list_partners(self, org_id: str, active_only: bool = False) -> list[Partner]:
        sql = "SELECT * FROM federation_partners WHERE org_id = %s"
        if active_only:
            sql += " AND is_active = TRUE"
        sql += " ORDER BY created_at DESC"
        with self._cursor() as cur:
            cur.execute(sql, (org_id,))
            rows = cur.fetchall()
        return [Partner.from_row(row) for row in rows]

    def list_partners_by_node(self, node_id: str) -> list[Partner]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM federation_partners WHERE node_id = %s", (node_id,))
            rows = cur.fetchall()
        return [Partner.from_row(row) for row in rows]

    def record_partner_heartbeat(self, partner_id: str, at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE federation_partners
                SET last_heartbeat = GREATEST(COALESCE(last_heartbeat, %s), %s)
                WHERE id = %s
                """,
                (at, at, partner_id),
            )

    def delete_partner(self, org_id: str, partner_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM federation_partners WHERE id = %s AND org_id = %s",
                (partner_id, org_id),
            )
            return cur.rowcount > 0

    # -- requests -------------------------------------------------------------

    def add_request(self, request: FederationRequest) -> FederationRequest:
        from psycopg2.extras import Json

        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO federation_requests ({_REQUEST_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    request.id,
                    request.org_id,
                    request.request_type.value,
                    request.status.value,
                    request.requester_node_id,
                    request.requester_node_name,
                    request.requester_node_url,
                    request.target_node_id,
                    request.target_node_url,
                    request.secret_key,
                    request.message,
                    request.expires_at,
                    request.acknowledged_at,
                    request.rejected_at,
                    request.rejection_reason,
                    Json(request.metadata),
                    request.created_at,
                ),
            )
        return request

    def get_request(self, org_id: str, request_id: str) -> FederationRequest | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM federation_requests WHERE id = %s AND org_id = %s",
                (request_id, org_id),
            )
            row = cur.fetchone()
        return FederationRequest.from_row(row) if row else None

    def list_requests(
        self,
        org_id: str,
        status: RequestStatus | None = None,
        limit: int = DEFAULT_REQUEST_LIMIT,
    ) -> list[FederationRequest]:
        sql = f"SELECT {_REQUEST_COLUMNS} FROM federation_requests WHERE org_id = %s"
        params: list = [org_id]
        if status is not None:
            sql += " AND status = %s"
            params.append(status.value)
        sql += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [FederationRequest.from_row(row) for row in rows]

    def list_pending_outgoing(self) -> list[FederationRequest]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM federation_requests "
                "WHERE request_type = 'OUTGOING' AND status = 'PENDING'"
            )
            rows = cur.fetchall()
        return [FederationRequest.from_row(row) for row in rows]

    def find_pending_from(self, org_id: str, requester_node_id: str) -> FederationRequest | None:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM federation_requests "
                "WHERE org_id = %s AND requester_node_id = %s AND status = 'PENDING' LIMIT 1",
                (org_id, requester_node_id),
            )
            row = cur.fetchone()
        return FederationRequest.from_row(row) if row else None

    def update_request(
        self,
        request: FederationRequest,
        expected_status: RequestStatus | None = None,
    ) -> bool:
        from psycopg2.extras import Json

        sql = """
            UPDATE federation_requests SET
                status = %s,
                target_node_id = %s,
                acknowledged_at = %s,
                rejected_at = %s,
                rejection_reason = %s,
                metadata = %s
            WHERE id = %s
        """
        params: list = [
            request.status.value,
            request.target_node_id,
            request.acknowledged_at,
            request.rejected_at,
            request.rejection_reason,
            Json(request.metadata),
            request.id,
        ]
        if expected_status is not None:
            sql += " AND status = %s"
            params.append(expected_status.value)
        with self._cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount > 0


# =============================================================================
# FACTORY
# =============================================================================

_store_instance: FederationStore | None = None


def get_federation_store() -> FederationStore:
    """Get or create the global federation store.

    Reads TRAFFICPLANE_FEDERATION_STORE:
        - "memory" (default): In-memory store
        - "postgres": PostgreSQL-backed store

    Returns:
        The configured FederationStore instance.

    Raises:
        ConfigException: If the backend name is not recognised.
    """
    global _store_instance
    if _store_instance is not None:
        return _store_instance

    backend = get_config().federation_store.lower()

    if backend == "postgres":
        logger.info("Using PostgreSQL federation store")
        _store_instance = PostgresFederationStore()
    elif backend == "memory":
        logger.info("Using in-memory federation store")
        _store_instance = MemoryFederationStore()
    else:
        raise ConfigException(
            f"Unknown TRAFFICPLANE_FEDERATION_STORE backend '{backend}' (expected 'memory' or 'postgres')"
        )

    return _store_instance


def reset_federation_store() -> None:
    """Reset the global store instance (for testing)."""
    global _store_instance
    _store_instance = None
