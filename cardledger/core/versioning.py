"""
Record Versioning

Canonical cards and prints are never edited in place. Every accepted
mutation goes through commit(), which:
1. Validates the new state against the record rules
2. Bumps `version` by exactly one and stamps `updated_at`
3. Stores the result and a snapshot of it in the version history

The full history (v1 included) is kept, so any prior version can be
reapplied by rollback() as a *new* version.
"""

from typing import Union

from pydantic import BaseModel

from ..db import AuthorityRepositories, version_key
from ..schemas import Alias, Card, Print, RecordVersion, TargetType
from .errors import Conflict, NotFound
from .fields import validate_record
from .runtime import Clock, utc_now


Versioned = Union[Card, Print]


def target_type_of(record: Versioned) -> TargetType:
    return TargetType.CARD if isinstance(record, Card) else TargetType.PRINT


def wire_form(record: BaseModel) -> dict:
    """The record as stored and shipped (JSON mode, wire aliases)."""
    return record.model_dump(mode="json", by_alias=True)


class VersionManager:
    def __init__(self, repos: AuthorityRepositories, clock: Clock = utc_now):
        self._repos = repos
        self._clock = clock

    def get(self, target_type: TargetType, record_id: str) -> Versioned:
        record = self._repos.records(target_type).get(record_id)
        if record is None:
            raise NotFound(f"{target_type.value} '{record_id}' not found")
        return record

    def _snapshot(self, record: Versioned) -> RecordVersion:
        return RecordVersion(
            target_type=target_type_of(record),
            record_id=record.record_id,
            version=record.version,
            recorded_at=record.updated_at,
            snapshot=wire_form(record),
        )

    def create(self, record: Versioned) -> Versioned:
        """Store a brand-new record as version 1."""
        validate_record(record)
        record = record.model_copy(update={"version": 1, "updated_at": self._clock()})
        self._repos.records(target_type_of(record)).put(record)
        self._repos.versions.put(self._snapshot(record))
        return record

    def commit(self, current: Versioned, proposed: Versioned) -> Versioned:
        """
        Persist `proposed` as the next version of `current`.

        Raises:
            ValidationError: if `proposed` breaks a record rule
        """
        validate_record(proposed)
        committed = proposed.model_copy(update={
            "version": current.version + 1,
            "updated_at": self._clock(),
        })
        self._repos.records(target_type_of(committed)).put(committed)
        self._repos.versions.put(self._snapshot(committed))
        return committed

    def history(self, target_type: TargetType, record_id: str) -> list[RecordVersion]:
        versions = [
            v for v in self._repos.versions.list_all()
            if v.target_type == target_type and v.record_id == record_id
        ]
        return sorted(versions, key=lambda v: v.version)

    def get_version(self, target_type: TargetType, record_id: str, version: int) -> RecordVersion:
        stored = self._repos.versions.get(version_key(target_type, record_id, version))
        if stored is None:
            raise Conflict(f"{target_type.value} '{record_id}' has no version {version}")
        return stored

    def rollback(self, target_type: TargetType, record_id: str, to_version: int) -> tuple[Versioned, Versioned]:
        """
        Reapply the stored snapshot of `to_version` as a new version.

        Returns:
            (previous current record, new current record)

        Raises:
            NotFound: if the record does not exist
            Conflict: if `to_version` was never stored
        """
        current = self.get(target_type, record_id)
        stored = self.get_version(target_type, record_id, to_version)
        model = Card if target_type == TargetType.CARD else Print
        restored = model.model_validate(stored.snapshot)
        return current, self.commit(current, restored)

    # Aliases carry a version but no stored history

    def create_alias(self, alias: Alias) -> Alias:
        validate_record(alias)
        return self._repos.aliases.put(
            alias.model_copy(update={"version": 1, "updated_at": self._clock()})
        )

    def commit_alias(self, current: Alias, proposed: Alias) -> Alias:
        validate_record(proposed)
        return self._repos.aliases.put(proposed.model_copy(update={
            "version": current.version + 1,
            "updated_at": self._clock(),
        }))
