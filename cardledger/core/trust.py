"""
Trust / Reputation Tracker

Per-principal acceptance and rejection history. Read by the consensus engine
(observation weighting) and by intake (auto-flagging). How an outcome moves
the reputation score is delegated to a ReputationPolicy.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional

from ..config import AuthorityConfig
from ..db import Repository
from ..observability import get_logger
from ..schemas import Principal, Role, TrustProfile, TrustStats
from .runtime import Clock, utc_now

logger = get_logger(__name__)


# ============================================================
# REPUTATION POLICIES
# ============================================================

class ReputationPolicy(ABC):
    """Maps (current score, outcome) to a new score in [0, 1]."""

    name: str = "abstract"

    @abstractmethod
    def on_accepted(self, score: float) -> float:
        pass

    @abstractmethod
    def on_rejected(self, score: float) -> float:
        pass

    @abstractmethod
    def on_spam(self, score: float) -> float:
        pass


class FixedReputationPolicy(ReputationPolicy):
    """Counters only; the seeded score never moves."""

    name = "fixed"

    def on_accepted(self, score: float) -> float:
        return score

    def on_rejected(self, score: float) -> float:
        return score

    def on_spam(self, score: float) -> float:
        return score


class EmaReputationPolicy(ReputationPolicy):
    """Exponential moving average toward 1 on accept and toward 0 on reject or spam."""

    name = "ema"

    def __init__(self, alpha: float = 0.1):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"EMA alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha

    def _step(self, score: float, target: float) -> float:
        return min(1.0, max(0.0, score + self.alpha * (target - score)))

    def on_accepted(self, score: float) -> float:
        return self._step(score, 1.0)

    def on_rejected(self, score: float) -> float:
        return self._step(score, 0.0)

    def on_spam(self, score: float) -> float:
        return self._step(score, 0.0)


def create_reputation_policy(name: str, alpha: float = 0.1) -> ReputationPolicy:
    if name == FixedReputationPolicy.name:
        return FixedReputationPolicy()
    if name == EmaReputationPolicy.name:
        return EmaReputationPolicy(alpha)
    raise ValueError(f"Unknown reputation policy: {name}. Valid values: fixed, ema")


# ============================================================
# TRACKER
# ============================================================

class TrustTracker:
    """
    Every profile read-modify-write holds the tracker lock, including
    decisions on different records that credit the same principal.
    """

    def __init__(
        self,
        repository: Repository,
        config: AuthorityConfig,
        policy: Optional[ReputationPolicy] = None,
        clock: Clock = utc_now,
    ):
        self._repo = repository
        self._config = config
        self._policy = policy or create_reputation_policy(
            config.reputation_policy, config.reputation_ema_alpha
        )
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def policy(self) -> ReputationPolicy:
        return self._policy

    def get(self, principal_id: str) -> Optional[TrustProfile]:
        return self._repo.get(principal_id)

    def ensure_profile(self, principal: Principal) -> TrustProfile:
        """Seed a profile on first authentication; existing profiles are untouched."""
        with self._lock:
            existing = self._repo.get(principal.principal_id)
            if existing is not None:
                return existing
            seed = (
                self._config.guest_reputation
                if principal.role == Role.GUEST
                else self._config.default_reputation
            )
            return self._create(principal.principal_id, seed)

    def _create(self, principal_id: str, reputation: float) -> TrustProfile:
        now = self._clock()
        profile = TrustProfile(
            principal_id=principal_id,
            reputation_score=reputation,
            created_at=now,
            last_updated_at=now,
        )
        logger.debug("Trust profile seeded", principal=principal_id, reputation=reputation)
        return self._repo.put(profile)

    def set_reputation(self, principal_id: str, reputation: float) -> TrustProfile:
        with self._lock:
            profile = self._repo.get(principal_id) or self._create(principal_id, reputation)
            return self._repo.put(
                profile.model_copy(update={"reputation_score": reputation, "last_updated_at": self._clock()})
            )

    def reputation_of(self, principal_id: str) -> float:
        profile = self._repo.get(principal_id)
        return profile.reputation_score if profile else self._config.unknown_reputation

    def _update(self, principal_id: str, counter: str, step) -> TrustProfile:
        with self._lock:
            profile = self._repo.get(principal_id) or self._create(
                principal_id, self._config.unknown_reputation
            )
            updated = profile.model_copy(update={
                counter: getattr(profile, counter) + 1,
                "reputation_score": step(profile.reputation_score),
                "last_updated_at": self._clock(),
            })
            return self._repo.put(updated)

    def record_accepted(self, principal_id: str) -> TrustProfile:
        return self._update(principal_id, "accepted_count", self._policy.on_accepted)

    def record_rejected(self, principal_id: str) -> TrustProfile:
        return self._update(principal_id, "rejected_count", self._policy.on_rejected)

    def record_spam(self, principal_id: str) -> TrustProfile:
        return self._update(principal_id, "spam_flag_count", self._policy.on_spam)

    def stats(self) -> list[TrustStats]:
        return [
            TrustStats(
                principal_id=p.principal_id,
                accepted_count=p.accepted_count,
                rejected_count=p.rejected_count,
                spam_flag_count=p.spam_flag_count,
                rejection_rate=p.rejection_rate,
                trust_score=round(p.reputation_score * 100),
            )
            for p in self._repo.list_all()
        ]
