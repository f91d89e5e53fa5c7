"""
Consensus Engine

Turns many independent, differently-trusted observations about one field
into a single Claim.

For one (target_type, target_id, field_path) tuple:
1. Take the active observations not already consumed by a closed Claim
2. Weight each one:
       w = (0.5 + 0.5*ocr) * (0.6 + 0.4*quality) * (0.5 + 0.5*reputation)
   Every factor bottoms out at half weight, never zero.
3. Bucket by normalized value, rank buckets by total weight
4. Upsert the tuple's single open Claim with the full breakdown

Whether a Claim is then applied is decided by ConsensusPolicy; applying it
is Moderation's job.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from ..config import AuthorityConfig
from ..db import AuthorityRepositories
from ..observability import get_logger
from ..schemas import (
    Claim,
    ClaimStatus,
    CompetingValue,
    FieldValue,
    Observation,
    ObservationStatus,
    TargetType,
)
from .runtime import Clock, new_id, utc_now

logger = get_logger(__name__)


ClaimKey = tuple[str, str, str]  # (target_type, target_id, field_path)


def claim_key(target_type: TargetType, target_id: str, field_path: str) -> ClaimKey:
    return (target_type.value, target_id, field_path)


def observation_key(observation: Observation) -> ClaimKey:
    return claim_key(observation.target_type, observation.target_id, observation.field_path)


def observation_weight(ocr_confidence: float, capture_quality: float, reputation: float) -> float:
    return (0.5 + 0.5 * ocr_confidence) * (0.6 + 0.4 * capture_quality) * (0.5 + 0.5 * reputation)


# ============================================================
# POLICY
# ============================================================

@dataclass(frozen=True)
class ConsensusPolicy:
    min_score: float = 0.85
    min_count: int = 3
    max_disagreement: int = 1

    @classmethod
    def from_config(cls, config: AuthorityConfig) -> "ConsensusPolicy":
        return cls(
            min_score=config.auto_accept_min_score,
            min_count=config.auto_accept_min_count,
            max_disagreement=config.auto_accept_max_disagreement,
        )

    def should_auto_accept(self, score: float, count: int, disagreement: int) -> bool:
        return (
            score >= self.min_score
            and count >= self.min_count
            and disagreement <= self.max_disagreement
        )

    def accepts(self, claim: Claim) -> bool:
        return claim.status == ClaimStatus.OPEN and self.should_auto_accept(
            claim.consensus_score, claim.consensus_count, claim.disagreement_count
        )


# ============================================================
# TALLY
# ============================================================

@dataclass
class _Bucket:
    value: FieldValue
    weight: float
    principals: set
    observation_ids: list


@dataclass(frozen=True)
class Tally:
    """Consensus figures for one tuple. Pure data, no persistence."""
    proposed_value: FieldValue
    proposed_value_norm: str
    generated_from: list[str]
    considered_ids: list[str]
    consensus_score: float
    consensus_count: int
    disagreement_count: int
    competing_values: list[CompetingValue]


def tally(
    observations: Iterable[Observation],
    reputation_of: Callable[[str], float],
) -> Optional[Tally]:
    """
    Weighted vote over observations. None when there is nothing to count.

    Ties between buckets go to the value seen first (by created_at, then id).
    """
    ordered = sorted(observations, key=lambda o: (o.created_at, o.observation_id))
    buckets: dict[str, _Bucket] = {}
    total = 0.0
    for obs in ordered:
        weight = observation_weight(
            obs.ocr_confidence,
            obs.capture_quality_score,
            reputation_of(obs.principal_id),
        )
        total += weight
        bucket = buckets.setdefault(obs.value_norm, _Bucket(obs.value, 0.0, set(), []))
        bucket.weight += weight
        bucket.principals.add(obs.principal_id)
        bucket.observation_ids.append(obs.observation_id)

    if not buckets:
        return None

    # sorted() is stable, so equal weights keep first-seen order
    ranked = sorted(buckets.items(), key=lambda item: -item[1].weight)
    lead_norm, lead = ranked[0]
    return Tally(
        proposed_value=lead.value,
        proposed_value_norm=lead_norm,
        generated_from=list(lead.observation_ids),
        considered_ids=[o.observation_id for o in ordered],
        consensus_score=lead.weight / total if total else 0.0,
        consensus_count=len(lead.principals),
        disagreement_count=sum(len(b.principals) for _, b in ranked[1:]),
        competing_values=[
            CompetingValue(
                value_norm=norm,
                value=b.value,
                total_weight=b.weight,
                principals=len(b.principals),
            )
            for norm, b in ranked
        ],
    )


# ============================================================
# ENGINE
# ============================================================

class ConsensusEngine:
    def __init__(
        self,
        repos: AuthorityRepositories,
        reputation_of: Callable[[str], float],
        clock: Clock = utc_now,
    ):
        self._repos = repos
        self._reputation_of = reputation_of
        self._clock = clock

    def claims_for(self, key: ClaimKey) -> list[Claim]:
        return [c for c in self._repos.claims.list_all() if c.key == key]

    def open_claim(self, key: ClaimKey) -> Optional[Claim]:
        return next((c for c in self.claims_for(key) if c.status == ClaimStatus.OPEN), None)

    def eligible_observations(self, key: ClaimKey) -> list[Observation]:
        """Active observations for the tuple that no closed Claim has consumed."""
        consumed = {
            obs_id
            for c in self.claims_for(key)
            if c.status != ClaimStatus.OPEN
            for obs_id in c.considered_ids
        }
        return [
            o for o in self._repos.observations.list_all()
            if observation_key(o) == key
            and o.status == ObservationStatus.ACTIVE
            and o.observation_id not in consumed
        ]

    def all_keys(self) -> list[ClaimKey]:
        """Every tuple that has at least one active observation, in first-seen order."""
        keys: dict[ClaimKey, None] = {}
        for o in self._repos.observations.list_all():
            if o.status == ObservationStatus.ACTIVE:
                keys.setdefault(observation_key(o), None)
        return list(keys)

    def upsert(self, key: ClaimKey) -> Optional[Claim]:
        """
        Recompute the tuple's open Claim from current evidence.

        Returns the open Claim, or None if there is no evidence and no open
        Claim. An open Claim whose evidence has all gone away is returned
        with zeroed figures so the caller can decide to close it.
        """
        now = self._clock()
        current = self.open_claim(key)
        result = tally(self.eligible_observations(key), self._reputation_of)

        if result is None:
            if current is None:
                return None
            emptied = current.model_copy(update={
                "generated_from": [],
                "considered_ids": [],
                "consensus_score": 0.0,
                "consensus_count": 0,
                "disagreement_count": 0,
                "competing_values": [],
                "last_computed_at": now,
            })
            return self._repos.claims.put(emptied)

        figures = {
            "proposed_value": result.proposed_value,
            "proposed_value_norm": result.proposed_value_norm,
            "generated_from": result.generated_from,
            "considered_ids": result.considered_ids,
            "consensus_score": result.consensus_score,
            "consensus_count": result.consensus_count,
            "disagreement_count": result.disagreement_count,
            "competing_values": result.competing_values,
            "last_computed_at": now,
        }
        if current is None:
            target_type, target_id, field_path = key
            claim = Claim(
                claim_id=new_id(),
                target_type=TargetType(target_type),
                target_id=target_id,
                field_path=field_path,
                created_at=now,
                **figures,
            )
            logger.info("Claim opened", claim_id=claim.claim_id, field_path=field_path, target_id=target_id)
        else:
            claim = current.model_copy(update=figures)

        logger.debug(
            "Claim recomputed",
            claim_id=claim.claim_id,
            score=round(claim.consensus_score, 4),
            count=claim.consensus_count,
            disagreement=claim.disagreement_count,
        )
        return self._repos.claims.put(claim)
