"""
Canonical Record Schemas

Cards and prints are the canonical records. They are never edited in place:
every accepted mutation produces a new version, and the previous version is
kept for rollback.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TargetType(str, Enum):
    """Entity types that observations and claims can point at."""
    CARD = "card"
    PRINT = "print"


class RoiType(str, Enum):
    """Image region a fingerprint was computed from."""
    FULL_CARD = "full_card"
    ART_BOX = "art_box"


class ConsensusMeta(BaseModel):
    """Consensus figures stamped on a record field when a claim is applied."""
    consensus_score: float = Field(..., ge=0.0, le=1.0)
    consensus_count: int = Field(..., ge=0)
    disagreement_count: int = Field(..., ge=0)
    last_computed_at: datetime


class Card(BaseModel):
    """
    A canonical card.

    `def` is a Python keyword, so the attribute is `def_` and the wire key
    stays `def`.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    type: str
    attribute: Optional[str] = None
    level_rank_link: Optional[int] = None
    atk: Optional[int] = None
    def_: Optional[int] = Field(default=None, alias="def")
    text: str = ""
    archetype: Optional[str] = None
    image_key: Optional[str] = None

    version: int = Field(default=1, ge=1)
    updated_at: datetime
    deprecated_at: Optional[datetime] = None
    consensus: dict[str, ConsensusMeta] = Field(default_factory=dict)

    @property
    def record_id(self) -> str:
        return self.id


class Print(BaseModel):
    """A specific printing of a card (set, rarity, edition, language)."""
    print_id: str = Field(..., min_length=1)
    card_id: str
    set_code: str
    set_name: str = ""
    rarity: Optional[str] = None
    edition: Optional[str] = None
    language: str = "en"
    release_date: Optional[str] = None

    version: int = Field(default=1, ge=1)
    updated_at: datetime
    deprecated_at: Optional[datetime] = None
    consensus: dict[str, ConsensusMeta] = Field(default_factory=dict)

    @property
    def record_id(self) -> str:
        return self.print_id


CanonicalRecord = Union[Card, Print]


class Alias(BaseModel):
    """Free-text name variant for a card. Only used by text-assist matching."""
    alias_id: str
    card_id: str
    alias_text: str
    locale: str = "en"
    version: int = Field(default=1, ge=1)
    updated_at: datetime


class ImageFeature(BaseModel):
    """A known fingerprint for one region of one card/print image."""
    feature_id: str
    card_id: Optional[str] = None
    print_id: Optional[str] = None
    fingerprint: str = Field(
        ...,
        pattern=r"^[0-9a-fA-F]+$",
        description="Average-hash fingerprint as hex (16 chars for 64 bits)",
    )
    roi_type: RoiType
    width: Optional[int] = None
    height: Optional[int] = None


class RecordVersion(BaseModel):
    """Stored snapshot of one version of a canonical record."""
    target_type: TargetType
    record_id: str
    version: int
    recorded_at: datetime
    snapshot: dict = Field(
        ...,
        description="Wire-form dump of the record at this version",
    )
