# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Data models for inter-node federation.

These models represent a node's own federation identity, the partners a
Principle has accepted, and the ledger of partnership requests.

Enum values are the literal strings used on the node-to-node wire.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

# A node is considered alive while its last heartbeat is younger than this.
# Independent of any heartbeat interval the operator configures.
LIVENESS_THRESHOLD = timedelta(milliseconds=60_000)


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock for every service."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# =============================================================================
# ENUMS
# =============================================================================


class NodeRole(str, Enum):
    """Role of a node within a federation."""
    STANDALONE = "STANDALONE"  # No federation relationship
    PARTNER = "PARTNER"        # Subordinate to a Principle
    PRINCIPLE = "PRINCIPLE"    # Coordinates a set of Partners


class RequestType(str, Enum):
    """Direction of a partnership request, from this node's point of view."""
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"


class RequestStatus(str, Enum):
    """Lifecycle state of a partnership request."""
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


class PartnerSyncStatus(str, Enum):
    """Configuration sync state of an accepted partner."""
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


# Every transition a request may take; terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {
            RequestStatus.ACKNOWLEDGED,
            RequestStatus.REJECTED,
            RequestStatus.EXPIRED,
            RequestStatus.CANCELLED,
        }
    ),
    RequestStatus.ACKNOWLEDGED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


class InvalidTransition(ValueError):
    """A request was asked to leave a terminal state."""

    def __init__(self, current: RequestStatus, target: RequestStatus):
        super().__init__(f"Cannot move request from {current.value} to {target.value}")
        self.current = current
        self.target = target


# =============================================================================
# FEDERATION IDENTITY
# =============================================================================


@dataclass
class FederationIdentity:
    """This node's own identity and role, one per organization.

    ``principle_node_id``, ``principle_url`` and ``principle_secret_key`` are
    only ever set while ``role`` is PARTNER; use the role mutators rather than
    assigning them directly.
    """

    org_id: str
    node_id: str = field(default_factory=lambda: str(uuid4()))
    node_name: str = ""
    node_url: str | None = None
    role: NodeRole = NodeRole.STANDALONE

    principle_node_id: str | None = None
    principle_url: str | None = None
    # Trust token agreed during the handshake, used for outbound heartbeats
    principle_secret_key: str | None = None
    last_heartbeat: datetime | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_configured(self) -> bool:
        """Whether other nodes can call this node back."""
        return bool(self.node_url)

    def become_partner(
        self,
        principle_node_id: str,
        principle_url: str,
        secret_key: str | None = None,
        now: datetime | None = None,
    ) -> None:
        self.role = NodeRole.PARTNER
        self.principle_node_id = principle_node_id
        self.principle_url = principle_url
        self.principle_secret_key = secret_key
        self.last_heartbeat = None
        self.updated_at = now or utcnow()

    def revert_to_standalone(self, now: datetime | None = None) -> None:
        self.role = NodeRole.STANDALONE
        self._clear_principle()
        self.updated_at = now or utcnow()

    def become_principle(self, now: datetime | None = None) -> None:
        self.role = NodeRole.PRINCIPLE
        self._clear_principle()
        self.updated_at = now or utcnow()

    def _clear_principle(self) -> None:
        self.principle_node_id = None
        self.principle_url = None
        self.principle_secret_key = None
        self.last_heartbeat = None

    def to_dict(self) -> dict[str, Any]:
        """Public view; the trust secret is never included."""
        return {
            "org_id": self.org_id,
            "node_id": self.node_id,
            "node_name": self.node_name,
            "node_url": self.node_url,
            "role": self.role.value,
            "principle_node_id": self.principle_node_id,
            "principle_url": self.principle_url,
            "last_heartbeat": _iso(self.last_heartbeat),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FederationIdentity:
        """Create from a storage row (column names match attribute names)."""
        return cls(
            org_id=row["org_id"],
            node_id=row["node_id"],
            node_name=row.get("node_name") or "",
            node_url=row.get("node_url"),
            role=NodeRole(row.get("role", NodeRole.STANDALONE.value)),
            principle_node_id=row.get("principle_node_id"),
            principle_url=row.get("principle_url"),
            principle_secret_key=row.get("principle_secret_key"),
            last_heartbeat=_parse_dt(row.get("last_heartbeat")),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
            updated_at=_parse_dt(row.get("updated_at")) or utcnow(),
        )


# =============================================================================
# PARTNER REGISTRY
# =============================================================================


@dataclass
class Partner:
    """A subordinate node accepted by this (Principle) node."""

    org_id: str
    node_id: str
    node_name: str
    node_url: str
    secret_key: str
    id: str = field(default_factory=lambda: str(uuid4()))
    is_active: bool = True
    sync_status: PartnerSyncStatus = PartnerSyncStatus.PENDING
    last_heartbeat: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Public view; the trust secret is never included."""
        return {
            "id": self.id,
            "node_id": self.node_id,
            "node_name": self.node_name,
            "node_url": self.node_url,
            "is_active": self.is_active,
            "sync_status": self.sync_status.value,
            "last_heartbeat": _iso(self.last_heartbeat),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Partner:
        return cls(
            id=str(row["id"]),
            org_id=row["org_id"],
            node_id=row["node_id"],
            node_name=row["node_name"],
            node_url=row["node_url"],
            secret_key=row["secret_key"],
            is_active=row.get("is_active", True),
            sync_status=PartnerSyncStatus(row.get("sync_status", PartnerSyncStatus.PENDING.value)),
            last_heartbeat=_parse_dt(row.get("last_heartbeat")),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
        )


# =============================================================================
# PARTNERSHIP REQUEST LEDGER
# =============================================================================


@dataclass
class FederationRequest:
    """One handshake attempt between two nodes.

    Rows are never deleted; terminal rows are kept as history.
    """

    org_id: str
    request_type: RequestType
    requester_node_id: str
    requester_node_name: str
    requester_node_url: str
    secret_key: str
    expires_at: datetime
    id: str = field(default_factory=lambda: str(uuid4()))
    status: RequestStatus = RequestStatus.PENDING
    target_node_id: str | None = None
    target_node_url: str | None = None
    message: str | None = None
    acknowledged_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def transition(self, target: RequestStatus, now: datetime) -> RequestStatus:
        """Move to ``target``, stamping the matching timestamp.

        Returns:
            The status the request held before the move.

        Raises:
            InvalidTransition: If the edge is not in ALLOWED_TRANSITIONS.
        """
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(self.status, target)

        previous = self.status
        self.status = target
        if target is RequestStatus.ACKNOWLEDGED:
            self.acknowledged_at = now
        elif target is RequestStatus.REJECTED:
            self.rejected_at = now
        return previous

    def to_dict(self) -> dict[str, Any]:
        """Public view; the proposed trust secret is never included."""
        return {
            "id": self.id,
            "type": self.request_type.value,
            "status": self.status.value,
            "requester_node_id": self.requester_node_id,
            "requester_node_name": self.requester_node_name,
            "requester_node_url": self.requester_node_url,
            "target_node_id": self.target_node_id,
            "target_node_url": self.target_node_url,
            "message": self.message,
            "rejection_reason": self.rejection_reason,
            "metadata": self.metadata,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "rejected_at": _iso(self.rejected_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> FederationRequest:
        return cls(
            id=str(row["id"]),
            org_id=row["org_id"],
            request_type=RequestType(row["request_type"]),
            status=RequestStatus(row["status"]),
            requester_node_id=row["requester_node_id"],
            requester_node_name=row["requester_node_name"],
            requester_node_url=row["requester_node_url"],
            target_node_id=row.get("target_node_id"),
            target_node_url=row.get("target_node_url"),
            secret_key=row["secret_key"],
            message=row.get("message"),
            expires_at=_parse_dt(row["expires_at"]),
            acknowledged_at=_parse_dt(row.get("acknowledged_at")),
            rejected_at=_parse_dt(row.get("rejected_at")),
            rejection_reason=row.get("rejection_reason"),
            metadata=dict(row.get("metadata") or {}),
            created_at=_parse_dt(row.get("created_at")) or utcnow(),
        )


# =============================================================================
# HEARTBEATS
# =============================================================================


@dataclass(frozen=True)
class HeartbeatFromPartner:
    """A Partner reporting in to its Principle; authenticated by the secret."""

    node_id: str
    secret_key: str | None
    node_url: str | None = None


@dataclass(frozen=True)
class HeartbeatFromPrinciple:
    """A Principle reaching out to one of its Partners."""

    node_id: str
    node_url: str | None = None


Heartbeat = HeartbeatFromPartner | HeartbeatFromPrinciple


@dataclass
class Liveness:
    """Recency of a node's last heartbeat."""

    last_heartbeat: datetime | None
    is_alive: bool
    seconds_since_last_heartbeat: int | None

    @classmethod
    def compute(cls, last_heartbeat: datetime | None, now: datetime) -> Liveness:
        """A node that never sent a heartbeat is never alive."""
        if last_heartbeat is None:
            return cls(last_heartbeat=None, is_alive=False, seconds_since_last_heartbeat=None)
        elapsed = now - last_heartbeat
        return cls(
            last_heartbeat=last_heartbeat,
            is_alive=elapsed < LIVENESS_THRESHOLD,
            seconds_since_last_heartbeat=math.floor(elapsed.total_seconds()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_heartbeat": _iso(self.last_heartbeat),
            "is_alive": self.is_alive,
            "seconds_since_last_heartbeat": self.seconds_since_last_heartbeat,
        }


@dataclass
class LivenessReport:
    """Result of a liveness query for one organization."""

    role: NodeRole
    partners: list[tuple[Partner, Liveness]] = field(default_factory=list)
    principle: tuple[FederationIdentity, Liveness] | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.role is NodeRole.PRINCIPLE:
            return {
                "role": self.role.value,
                "partners": [
                    {
                        "id": partner.id,
                        "node_id": partner.node_id,
                        "node_name": partner.node_name,
                        "is_active": partner.is_active,
                        **liveness.to_dict(),
                    }
                    for partner, liveness in self.partners
                ],
            }
        if self.role is NodeRole.PARTNER and self.principle is not None:
            identity, liveness = self.principle
            return {
                "role": self.role.value,
                "principle": {
                    "node_id": identity.principle_node_id,
                    "url": identity.principle_url,
                    **liveness.to_dict(),
                },
            }
        return {"role": NodeRole.STANDALONE.value, "message": "Not part of a federation"}
