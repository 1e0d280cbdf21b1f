# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Audit trail for federation transitions.

Every role, partner and request transition emits an audit entry after the
transition has been committed. Writing the entry is fire-and-forget: a
failing sink is logged and never fails the transition.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from .models import utcnow

logger = logging.getLogger(__name__)


class AuditAction(StrEnum):
    """Actions that create audit records."""

    # Request ledger
    REQUEST_SENT = "federation.request.sent"
    REQUEST_RECEIVED = "federation.request.received"
    REQUEST_ACCEPTED = "federation.request.accepted"
    REQUEST_REJECTED = "federation.request.rejected"
    REQUEST_CANCELLED = "federation.request.cancelled"
    REQUEST_EXPIRED = "federation.request.expired"

    # Identity
    ROLE_CHANGED = "federation.role.changed"
    CONFIG_UPDATED = "federation.config.updated"

    # Partner registry
    PARTNER_REMOVED = "federation.partner.removed"


@dataclass
class AuditEntry:
    """A single audit log entry."""

    action: AuditAction
    org_id: str
    resource_type: str
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    actor: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "org_id": self.org_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "actor": self.actor,
        }


class AuditSink(ABC):
    """Destination for audit entries."""

    @abstractmethod
    def write(self, entry: AuditEntry) -> None:
        ...


class LoggingAuditSink(AuditSink):
    """Writes each entry as a structured log record on ``trafficplane.audit``."""

    def __init__(self) -> None:
        self._logger = logging.getLogger("trafficplane.audit")

    def write(self, entry: AuditEntry) -> None:
        self._logger.info(
            f"{entry.action.value} {entry.resource_type}={entry.resource_id}",
            extra={"extra_data": entry.to_dict()},
        )


class MemoryAuditSink(AuditSink):
    """Keeps entries in a list (useful for testing)."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[AuditAction]:
        return [e.action for e in self.entries]


class AuditLogger:
    """Append-only audit logger.

    Usage:
        audit = AuditLogger()
        audit.log(
            AuditAction.REQUEST_ACCEPTED,
            org_id=org_id,
            resource_type="federation_request",
            resource_id=request.id,
            details={"requester_node_id": request.requester_node_id},
        )
    """

    def __init__(self, sink: AuditSink | None = None):
        self.sink = sink or LoggingAuditSink()

    def log(
        self,
        action: AuditAction,
        org_id: str,
        resource_type: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        actor: str | None = None,
    ) -> None:
        """Write an audit log entry. Non-fatal on error."""
        entry = AuditEntry(
            action=action,
            org_id=org_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            actor=actor,
        )
        try:
            self.sink.write(entry)
        except Exception as e:
            # Audit logging should never break the main operation
            logger.warning(f"Failed to write audit log: {e}")
