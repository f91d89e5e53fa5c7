"""
Audit Log Schema

Every state-changing moderation action leaves an entry.
Entries are append-only and hash-chained: each entry's hash covers its
content and the previous entry's hash, so an edited or deleted entry
breaks the chain.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .principal import Role


class AuditAction(str, Enum):
    """
    You can add more later, never remove.
    """
    # Proposals
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MORE_INFO = "more_info"

    # Direct record changes
    ROLLBACK = "rollback"
    ADMIN_EDIT = "admin_edit"
    DEPRECATED = "deprecated"

    # Consensus
    CLAIM_ACCEPTED = "claim_accepted"
    CLAIM_REJECTED = "claim_rejected"
    CLAIM_SUPERSEDED = "claim_superseded"
    OBSERVATION_SPAM = "observation_spam"

    # Drafts
    DRAFT_PUBLISHED = "draft_published"
    DRAFT_REJECTED = "draft_rejected"
    DRAFT_REQUEST_CHANGES = "draft_request_changes"


class AuditEntity(str, Enum):
    CARD = "card"
    PRINT = "print"
    ALIAS = "alias"
    CLAIM = "claim"
    DRAFT = "draft"
    PROPOSAL = "proposal"
    OBSERVATION = "observation"


class AuditDiff(BaseModel):
    old_values: dict[str, Any] = Field(default_factory=dict)
    new_values: dict[str, Any] = Field(default_factory=dict)


class AuditLogEntry(BaseModel):
    """
    Immutable record of one moderation action.
    """
    audit_id: str
    sequence_number: int = Field(..., ge=0)
    timestamp: datetime
    action: AuditAction
    actor_id: str
    actor_role: Role
    entity: AuditEntity
    entity_id: str
    diff: AuditDiff = Field(default_factory=AuditDiff)
    notes: Optional[str] = None
    proposal_id: Optional[str] = None

    previous_hash: Optional[str] = Field(
        default=None,
        description="Hash of the previous entry. None only for the first entry.",
    )
    entry_hash: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 over the canonical entry body and previous_hash",
    )

    def hashable_body(self) -> dict[str, Any]:
        """The fields covered by entry_hash."""
        return self.model_dump(mode="python", exclude={"entry_hash", "previous_hash"})
