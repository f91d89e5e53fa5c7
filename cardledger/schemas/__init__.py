# Canonical Schemas for the card catalog authority
# These define the contract every surrounding layer must honor.

from .records import (
    Alias,
    CanonicalRecord,
    Card,
    ConsensusMeta,
    ImageFeature,
    Print,
    RecordVersion,
    RoiType,
    TargetType,
)
from .principal import Principal, Role, SYSTEM_PRINCIPAL, TrustProfile, TrustStats
from .contributions import (
    Claim,
    ClaimStatus,
    CompetingValue,
    DiffEntity,
    Draft,
    DraftStatus,
    DraftStatusCache,
    DraftTargetType,
    FieldValue,
    ModerationProposal,
    Observation,
    ObservationStatus,
    ProposalDiff,
    ProposalPayload,
    ProposalStatus,
    ProposalType,
    PublishAction,
    PublishEvent,
    normalize_value,
)
from .audit import AuditAction, AuditDiff, AuditEntity, AuditLogEntry
from .sync import (
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    OutboxStatus,
    PullResponse,
    PushFailure,
    PushResult,
    SnapshotBundle,
    SyncCursor,
)
from .matching import MatchCandidate, MatchReason, MatchResult, ScanQuery

__all__ = [
    # Records
    "Alias",
    "CanonicalRecord",
    "Card",
    "ConsensusMeta",
    "ImageFeature",
    "Print",
    "RecordVersion",
    "RoiType",
    "TargetType",
    # Principals
    "Principal",
    "Role",
    "SYSTEM_PRINCIPAL",
    "TrustProfile",
    "TrustStats",
    # Contributions
    "Claim",
    "ClaimStatus",
    "CompetingValue",
    "DiffEntity",
    "Draft",
    "DraftStatus",
    "DraftStatusCache",
    "DraftTargetType",
    "FieldValue",
    "ModerationProposal",
    "Observation",
    "ObservationStatus",
    "ProposalDiff",
    "ProposalPayload",
    "ProposalStatus",
    "ProposalType",
    "PublishAction",
    "PublishEvent",
    "normalize_value",
    # Audit
    "AuditAction",
    "AuditDiff",
    "AuditEntity",
    "AuditLogEntry",
    # Sync
    "OutboxDraft",
    "OutboxObservation",
    "OutboxProposal",
    "OutboxStatus",
    "PullResponse",
    "PushFailure",
    "PushResult",
    "SnapshotBundle",
    "SyncCursor",
    # Matching
    "MatchCandidate",
    "MatchReason",
    "MatchResult",
    "ScanQuery",
]
