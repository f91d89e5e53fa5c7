# Core authority services
from .errors import (
    CardLedgerError,
    Conflict,
    Forbidden,
    NotFound,
    RateLimited,
    ValidationError,
)
from .hasher import Hasher, CanonicalSerializationError
from .signer import Signer
from .similarity import (
    average_hash,
    fingerprint_distance,
    fingerprint_regions,
    normalize_text,
    text_similarity,
)
from .matcher import CatalogSnapshot, IdentityMatcher
from .intake import ContributionIntake, DeviceRateLimiter
from .consensus import ConsensusEngine, ConsensusPolicy, observation_weight, tally
from .trust import (
    EmaReputationPolicy,
    FixedReputationPolicy,
    ReputationPolicy,
    TrustTracker,
    create_reputation_policy,
)
from .audit import AuditLog
from .versioning import VersionManager
from .moderation import ModerationService
from .authority import CentralAuthority

__all__ = [
    "CardLedgerError",
    "Conflict",
    "Forbidden",
    "NotFound",
    "RateLimited",
    "ValidationError",
    "Hasher",
    "CanonicalSerializationError",
    "Signer",
    "average_hash",
    "fingerprint_distance",
    "fingerprint_regions",
    "normalize_text",
    "text_similarity",
    "CatalogSnapshot",
    "IdentityMatcher",
    "ContributionIntake",
    "DeviceRateLimiter",
    "ConsensusEngine",
    "ConsensusPolicy",
    "observation_weight",
    "tally",
    "EmaReputationPolicy",
    "FixedReputationPolicy",
    "ReputationPolicy",
    "TrustTracker",
    "create_reputation_policy",
    "AuditLog",
    "VersionManager",
    "ModerationService",
    "CentralAuthority",
]
