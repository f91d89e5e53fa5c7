"""
Matching Schemas

What the acquisition boundary hands the matcher, and what comes back.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .records import Card, Print


HEX_FINGERPRINT = r"^[0-9a-fA-F]{16}$"


class ScanQuery(BaseModel):
    """
    Zero or more signals derived from one captured image.
    """
    fingerprint_full: Optional[str] = Field(
        default=None,
        pattern=HEX_FINGERPRINT,
        description="64-bit average hash of the whole card",
    )
    fingerprint_focus: Optional[str] = Field(
        default=None,
        pattern=HEX_FINGERPRINT,
        description="64-bit average hash of the art box",
    )
    extracted_name: Optional[str] = None
    extracted_set_code: Optional[str] = None
    ocr_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def has_visual_signal(self) -> bool:
        return bool(self.fingerprint_full or self.fingerprint_focus)


class MatchReason(str, Enum):
    VISUAL = "visual"
    SET_CODE = "set_code"
    OCR_NAME = "ocr_name"
    ALIAS = "alias"


class MatchCandidate(BaseModel):
    card: Card
    print: Optional[Print] = None
    score: float = Field(..., ge=0.0, le=1.0)
    reason: MatchReason
    details: str = ""


class MatchResult(BaseModel):
    top: Optional[MatchCandidate] = None
    alternatives: list[MatchCandidate] = Field(default_factory=list)
    needs_confirmation: bool = True
    visual_signal: bool = False
