"""
Contribution Schemas

Everything a principal can submit about the catalog, and the state the
authority derives from it:

- Observation: one principal's raw assertion about one field
- Claim: the current consensus over all observations for one field
- ModerationProposal: a free-form edit diff reviewed by a moderator
- Draft: a structured candidate edit derived from a scan
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from .principal import Role
from .records import TargetType


FieldValue = Union[int, str]


def normalize_value(value: Any) -> str:
    """Bucket key for an observed value."""
    return str(value).strip().lower()


# ------------------------------------------------------------
# Observations and claims
# ------------------------------------------------------------

class ObservationStatus(str, Enum):
    ACTIVE = "active"
    WITHDRAWN = "withdrawn"   # Retracted by its author
    SPAM = "spam"             # Flagged by a moderator


class Observation(BaseModel):
    """
    The atomic unit of evidence.

    Immutable once admitted, except for `status`.
    """
    observation_id: str
    principal_id: str
    target_type: TargetType
    target_id: str
    field_path: str
    value: FieldValue
    value_norm: str
    ocr_confidence: float = Field(..., ge=0.0, le=1.0)
    capture_quality_score: float = Field(..., ge=0.0, le=1.0)
    scan_ref: Optional[str] = None
    created_at: datetime
    status: ObservationStatus = ObservationStatus.ACTIVE


class ClaimStatus(str, Enum):
    """
    Only OPEN claims are recomputed. The other states are final.
    """
    OPEN = "open"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class CompetingValue(BaseModel):
    """One value bucket inside a claim."""
    value_norm: str
    value: FieldValue
    total_weight: float
    principals: int


class Claim(BaseModel):
    """Current consensus for one (target_type, target_id, field_path)."""
    claim_id: str
    target_type: TargetType
    target_id: str
    field_path: str

    proposed_value: FieldValue
    proposed_value_norm: str
    generated_from: list[str] = Field(
        default_factory=list,
        description="Observation ids backing the leading value",
    )
    considered_ids: list[str] = Field(
        default_factory=list,
        description="Every observation id that fed the last computation",
    )

    consensus_score: float = 0.0
    consensus_count: int = 0
    disagreement_count: int = 0
    competing_values: list[CompetingValue] = Field(default_factory=list)

    status: ClaimStatus = ClaimStatus.OPEN
    created_at: datetime
    last_computed_at: datetime
    closed_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.target_type.value, self.target_id, self.field_path)


# ------------------------------------------------------------
# Moderation proposals
# ------------------------------------------------------------

class ProposalType(str, Enum):
    NEW_CARD = "new_card"
    EDIT_CARD = "edit_card"
    NEW_PRINT = "new_print"
    EDIT_PRINT = "edit_print"
    ALIAS = "alias"
    CORRECTION = "correction"


class ProposalStatus(str, Enum):
    NEW = "new"
    REVIEWING = "reviewing"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MORE_INFO = "more_info"


class DiffEntity(str, Enum):
    CARD = "card"
    PRINT = "print"
    ALIAS = "alias"


class ProposalDiff(BaseModel):
    """
    Old/new field values. A missing `entity_id` means "create".
    """
    entity: DiffEntity
    entity_id: Optional[str] = None
    old_values: dict[str, Any] = Field(default_factory=dict)
    new_values: dict[str, Any] = Field(default_factory=dict)


class ProposalPayload(BaseModel):
    diff: ProposalDiff
    note: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    scan_image_ref: Optional[str] = None
    ocr_extracted_name: Optional[str] = None
    ocr_extracted_set_code: Optional[str] = None


class ModerationProposal(BaseModel):
    proposal_id: str
    created_at: datetime
    created_by_device_id: str
    user_id: str
    type: ProposalType
    payload: ProposalPayload
    status: ProposalStatus = ProposalStatus.NEW
    flagged: bool = False
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewer_notes: Optional[str] = None


# ------------------------------------------------------------
# Drafts
# ------------------------------------------------------------

class DraftTargetType(str, Enum):
    CARD = "card"
    PRINT = "print"
    UNKNOWN = "unknown"


class DraftStatus(str, Enum):
    """
    new -> reviewing -> published | rejected | request_changes

    request_changes is terminal. A resubmission is a new draft.
    """
    NEW = "new"
    REVIEWING = "reviewing"
    PUBLISHED = "published"
    REJECTED = "rejected"
    REQUEST_CHANGES = "request_changes"


class Draft(BaseModel):
    draft_id: str
    created_at: datetime
    created_by: str
    source_scan_ref: Optional[str] = None
    target_type: DraftTargetType = DraftTargetType.UNKNOWN
    target_id: Optional[str] = None
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    proposed_payload: dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    status: DraftStatus = DraftStatus.NEW
    review_notes: Optional[str] = None
    published_at: Optional[datetime] = None
    published_by: Optional[str] = None


class DraftStatusCache(BaseModel):
    """Status delta row shipped to clients on pull."""
    draft_id: str
    created_by: str
    status: DraftStatus
    updated_at: datetime
    review_notes: Optional[str] = None


class PublishAction(str, Enum):
    PUBLISH = "publish"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"


class PublishEvent(BaseModel):
    event_id: str
    draft_id: str
    timestamp: datetime
    action: PublishAction
    actor_id: str
    actor_role: Role
    diff_applied: dict[str, Any] = Field(default_factory=dict)
    resulting_target_ids: list[str] = Field(default_factory=list)
