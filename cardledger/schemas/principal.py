"""
Principal Schemas

A principal is an authenticated user or device identity.
Every authority-side operation is checked against the principal's role,
and every contribution is weighted by the principal's reputation.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """
    Roles in ascending order of privilege.
    """
    GUEST = "guest"               # Read-only, anonymous
    VIEWER = "viewer"             # Can pull catalog state
    CONTRIBUTOR = "contributor"   # Can push proposals, observations, drafts
    MODERATOR = "moderator"       # Can decide proposals, claims, drafts
    ADMIN = "admin"               # Can roll back, edit and deprecate records

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)

    def at_least(self, minimum: "Role") -> bool:
        return self.rank >= minimum.rank


_ROLE_ORDER = [Role.GUEST, Role.VIEWER, Role.CONTRIBUTOR, Role.MODERATOR, Role.ADMIN]


class Principal(BaseModel):
    """The identity a request acts as."""
    principal_id: str = Field(..., min_length=1)
    username: str
    device_id: str = Field(..., min_length=1)
    role: Role


SYSTEM_PRINCIPAL = Principal(
    principal_id="system",
    username="system",
    device_id="system",
    role=Role.ADMIN,
)


class TrustProfile(BaseModel):
    """
    Per-principal reputation and moderation history.

    Seeded on first authentication, updated by moderation outcomes.
    """
    principal_id: str
    reputation_score: float = Field(..., ge=0.0, le=1.0)
    accepted_count: int = 0
    rejected_count: int = 0
    spam_flag_count: int = 0
    created_at: datetime
    last_updated_at: datetime

    @property
    def rejection_rate(self) -> float:
        return self.rejected_count / max(1, self.accepted_count + self.rejected_count)


class TrustStats(BaseModel):
    """Moderator-facing summary of a trust profile."""
    principal_id: str
    accepted_count: int
    rejected_count: int
    spam_flag_count: int
    rejection_rate: float
    trust_score: int = Field(..., ge=0, le=100)
