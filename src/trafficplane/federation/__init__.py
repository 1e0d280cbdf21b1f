"""Inter-node federation for Trafficplane.

Independently deployed nodes form a bilateral trust relationship: one node
(the Principle) coordinates a set of subordinate nodes (Partners). This
package implements the request/accept/reject handshake, the shared-secret
trust token, heartbeat-based liveness and disconnection.

Example:
    >>> from trafficplane.federation import FederationService
    >>> service = FederationService()
    >>> result = await service.handshake.send_request(org_id, "https://principle.example.com")
    >>> report = service.heartbeat.get_liveness_status(org_id)
"""

from .audit import AuditAction, AuditEntry, AuditLogger, AuditSink, LoggingAuditSink, MemoryAuditSink
from .disconnect import DisconnectionHandler, RevokeResult
from .errors import (
    AlreadyPartner,
    AlreadyProcessed,
    DuplicateRequest,
    FederationError,
    FederationNotConfigured,
    InvalidRequestDirection,
    InvalidRoleTransition,
    NoMatchingRequest,
    NotAPartner,
    NotAPartnerOfThisPrinciple,
    PartnerNotFound,
    RemoteNotificationFailed,
    RequestExpired,
    RequestNotFound,
    UnknownPartner,
)
from .handshake import HandshakeCoordinator, RespondResult, ResponseAction, SendResult
from .heartbeat import HeartbeatAck, HeartbeatMonitor, parse_heartbeat
from .identity import IdentityService
from .models import (
    LIVENESS_THRESHOLD,
    FederationIdentity,
    FederationRequest,
    Heartbeat,
    HeartbeatFromPartner,
    HeartbeatFromPrinciple,
    Liveness,
    LivenessReport,
    NodeRole,
    Partner,
    PartnerSyncStatus,
    RequestStatus,
    RequestType,
)
from .notify import NotificationOutcome, RemoteNotifier
from .peers import refresh_peer_list, set_peer_list_refresher
from .service import FederationService, get_federation_service, set_federation_service
from .store import (
    FederationStore,
    MemoryFederationStore,
    PostgresFederationStore,
    get_federation_store,
    reset_federation_store,
)
from .trust import generate_secret_key, secrets_match

__all__ = [
    # Models
    "NodeRole",
    "RequestType",
    "RequestStatus",
    "PartnerSyncStatus",
    "FederationIdentity",
    "Partner",
    "FederationRequest",
    "Heartbeat",
    "HeartbeatFromPartner",
    "HeartbeatFromPrinciple",
    "Liveness",
    "LivenessReport",
    "LIVENESS_THRESHOLD",
    # Errors
    "FederationError",
    "RequestNotFound",
    "PartnerNotFound",
    "RequestExpired",
    "InvalidRequestDirection",
    "AlreadyProcessed",
    "NoMatchingRequest",
    "UnknownPartner",
    "NotAPartner",
    "NotAPartnerOfThisPrinciple",
    "FederationNotConfigured",
    "DuplicateRequest",
    "AlreadyPartner",
    "InvalidRoleTransition",
    "RemoteNotificationFailed",
    # Store
    "FederationStore",
    "MemoryFederationStore",
    "PostgresFederationStore",
    "get_federation_store",
    "reset_federation_store",
    # Trust
    "generate_secret_key",
    "secrets_match",
    # Notification
    "RemoteNotifier",
    "NotificationOutcome",
    # Audit
    "AuditAction",
    "AuditEntry",
    "AuditSink",
    "AuditLogger",
    "LoggingAuditSink",
    "MemoryAuditSink",
    # Peer hook
    "refresh_peer_list",
    "set_peer_list_refresher",
    # Services
    "IdentityService",
    "HandshakeCoordinator",
    "ResponseAction",
    "SendResult",
    "RespondResult",
    "HeartbeatMonitor",
    "HeartbeatAck",
    "parse_heartbeat",
    "DisconnectionHandler",
    "RevokeResult",
    "FederationService",
    "get_federation_service",
    "set_federation_service",
]
