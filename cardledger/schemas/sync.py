"""
Sync Protocol Schemas

Outbox items are queued locally and only transitioned by the sync client.
Push results are per item: one bad item never fails the batch.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .contributions import (
    Claim,
    DraftStatusCache,
    DraftTargetType,
    FieldValue,
    ProposalPayload,
    ProposalType,
)
from .records import Alias, Card, ImageFeature, Print, TargetType


class OutboxStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class OutboxProposal(BaseModel):
    local_proposal_id: str
    created_at: datetime
    created_by_device_id: str
    user_id: Optional[str] = None
    type: ProposalType
    payload: ProposalPayload
    related_scan_id: Optional[str] = None
    status: OutboxStatus = OutboxStatus.QUEUED
    last_error: Optional[str] = None

    @property
    def local_id(self) -> str:
        return self.local_proposal_id


class OutboxObservation(BaseModel):
    local_observation_id: str
    created_at: datetime
    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    field_path: str
    value: FieldValue
    ocr_confidence: float = Field(..., ge=0.0, le=1.0)
    capture_quality_score: float = Field(..., ge=0.0, le=1.0)
    scan_ref: Optional[str] = None
    status: OutboxStatus = OutboxStatus.QUEUED
    last_error: Optional[str] = None

    @property
    def local_id(self) -> str:
        return self.local_observation_id


class OutboxDraft(BaseModel):
    local_draft_id: str
    created_at: datetime
    source_scan_id: Optional[str] = None
    target_type: DraftTargetType = DraftTargetType.UNKNOWN
    target_id: Optional[str] = None
    extracted_fields: dict[str, Any] = Field(default_factory=dict)
    proposed_payload: dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    status: OutboxStatus = OutboxStatus.QUEUED
    last_error: Optional[str] = None

    @property
    def local_id(self) -> str:
        return self.local_draft_id


class PushFailure(BaseModel):
    id: str
    error: str
    code: str = Field(
        ...,
        description="Stable error code: validation, rate_limited, not_found, ...",
    )


class PushResult(BaseModel):
    accepted_ids: list[str] = Field(default_factory=list)
    failed: list[PushFailure] = Field(default_factory=list)


class SyncCursor(BaseModel):
    last_sync_at: Optional[datetime] = None
    last_cards_version: int = 0
    last_prints_version: int = 0
    last_aliases_version: int = 0


class PullResponse(BaseModel):
    cards: list[Card] = Field(default_factory=list)
    prints: list[Print] = Field(default_factory=list)
    aliases: list[Alias] = Field(default_factory=list)
    image_features: list[ImageFeature] = Field(default_factory=list)
    claims: list[Claim] = Field(default_factory=list)
    draft_statuses: list[DraftStatusCache] = Field(default_factory=list)
    sync_cursor: SyncCursor


class SnapshotBundle(BaseModel):
    """
    Full-state recovery bundle.

    `checksum` covers `content`; `signature` is the authority's Ed25519
    signature over the checksum.
    """
    app_version: str
    schema_version: int
    exported_at: datetime
    content: dict[str, Any]
    checksum: str
    signature: Optional[str] = None
    public_key: Optional[str] = None
