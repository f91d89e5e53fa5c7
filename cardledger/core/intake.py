"""
Contribution Intake

Shape validation, duplicate suppression and per-device rate limiting for
everything principals push: proposals, observations and drafts.

Nothing here touches canonical records. Intake decides whether an item is
admissible; the authority stores it.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable

from ..config import AuthorityConfig
from ..schemas import (
    DiffEntity,
    DraftTargetType,
    Observation,
    ObservationStatus,
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    TargetType,
)
from .errors import RateLimited, ValidationError
from .fields import MIN_NAME_LENGTH, FieldSpec, field_for_path, parse_values
from .runtime import Clock, utc_now


# ============================================================
# RATE LIMITING
# ============================================================

class DeviceRateLimiter:
    """
    Rolling-window write budget per device.

    Only admitted writes are recorded; a rejected or ignored item costs nothing.
    """

    def __init__(self, max_writes: int, window_seconds: int, clock: Clock = utc_now):
        self.max_writes = max_writes
        self.window = timedelta(seconds=window_seconds)
        self._clock = clock
        self._writes: dict[str, deque] = {}
        self._lock = threading.Lock()

    def _recent(self, device_id: str) -> deque:
        cutoff = self._clock() - self.window
        writes = self._writes.setdefault(device_id, deque())
        while writes and writes[0] <= cutoff:
            writes.popleft()
        return writes

    def acquire(self, device_id: str) -> None:
        """
        Consume one write from the device's budget.

        Raises:
            RateLimited: if the budget for the current window is spent
        """
        with self._lock:
            writes = self._recent(device_id)
            if len(writes) >= self.max_writes:
                retry_after = (writes[0] + self.window) - self._clock()
                raise RateLimited(
                    f"Rate limit exceeded: max {self.max_writes} writes per "
                    f"{int(self.window.total_seconds() // 60)} minutes per device",
                    retry_after=max(1, int(retry_after.total_seconds()) + 1),
                )
            writes.append(self._clock())

    def remaining(self, device_id: str) -> int:
        with self._lock:
            return max(0, self.max_writes - len(self._recent(device_id)))


# ============================================================
# VALIDATION
# ============================================================

@dataclass(frozen=True)
class ParsedObservation:
    target_type: TargetType
    target_id: str
    field: FieldSpec
    value: Any


_NAME_KEYS = {
    DiffEntity.CARD: "name",
    DiffEntity.ALIAS: "alias_text",
}

_DRAFT_ENTITY = {
    DraftTargetType.CARD: DiffEntity.CARD,
    DraftTargetType.UNKNOWN: DiffEntity.CARD,
    DraftTargetType.PRINT: DiffEntity.PRINT,
}


def draft_entity(target_type: DraftTargetType) -> DiffEntity:
    """Drafts without a known target type publish as cards."""
    return _DRAFT_ENTITY[target_type]


def _check_name(entity: DiffEntity, values: dict[str, Any]) -> None:
    key = _NAME_KEYS.get(entity)
    if key and key in values and len(str(values[key] or "").strip()) < MIN_NAME_LENGTH:
        raise ValidationError(f"Proposed {key} must be at least {MIN_NAME_LENGTH} characters")


class ContributionIntake:
    def __init__(self, config: AuthorityConfig, clock: Clock = utc_now):
        self._config = config
        self._clock = clock
        self.rate_limiter = DeviceRateLimiter(
            config.rate_limit_max_writes,
            config.rate_limit_window_seconds,
            clock,
        )

    def check_proposal(self, item: OutboxProposal) -> bool:
        """
        Validate a proposal's shape.

        Returns:
            True if the proposal must go straight to manual review

        Raises:
            ValidationError
        """
        diff = item.payload.diff
        if not diff.new_values:
            raise ValidationError("Proposal diff must change at least one field")
        parse_values(diff.entity, diff.new_values)
        _check_name(diff.entity, diff.new_values)
        confidence = item.payload.confidence
        return confidence is not None and confidence < self._config.low_confidence_threshold

    def check_observation(self, item: OutboxObservation) -> ParsedObservation:
        if item.target_type is None or not item.target_id:
            raise ValidationError("Observation must name target_type and target_id")
        spec = field_for_path(item.target_type, item.field_path)
        value = spec.parse(item.value)
        if spec.key == "name":
            _check_name(DiffEntity.CARD, {"name": value})
        return ParsedObservation(item.target_type, item.target_id, spec, value)

    def check_draft(self, item: OutboxDraft) -> None:
        if not item.proposed_payload:
            raise ValidationError("Draft must carry a non-empty proposed payload")
        parse_values(draft_entity(item.target_type), item.proposed_payload)

    def is_duplicate(
        self,
        existing: Iterable[Observation],
        principal_id: str,
        parsed: ParsedObservation,
    ) -> bool:
        """Same principal, same (target, field), inside the duplicate window."""
        cutoff = self._clock() - timedelta(seconds=self._config.duplicate_window_seconds)
        return any(
            o.principal_id == principal_id
            and o.target_type == parsed.target_type
            and o.target_id == parsed.target_id
            and o.field_path == parsed.field.path
            and o.status != ObservationStatus.WITHDRAWN
            and o.created_at > cutoff
            for o in existing
        )
