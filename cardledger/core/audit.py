"""
Audit Log

Append-only, hash-chained record of every state-changing moderation action.

Each entry hashes its own body together with the previous entry's hash, so
editing or deleting any stored entry breaks verify_chain() from that point on.
"""

import json
import threading
from typing import Any, Optional

from ..db import Repository
from ..schemas import AuditAction, AuditDiff, AuditEntity, AuditLogEntry, Principal
from .hasher import Hasher
from .runtime import Clock, new_id, utc_now


def _jsonable(values: Optional[dict[str, Any]]) -> dict[str, Any]:
    # Diffs are stored as JSON; hash what will be read back, not the live objects
    return json.loads(json.dumps(values or {}, default=str))


class AuditLog:
    """Appends and verifies audit entries over one repository."""

    def __init__(self, repository: Repository, clock: Clock = utc_now):
        self._repo = repository
        self._clock = clock
        self._lock = threading.Lock()

    def append(
        self,
        action: AuditAction,
        actor: Principal,
        entity: AuditEntity,
        entity_id: str,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
        proposal_id: Optional[str] = None,
    ) -> AuditLogEntry:
        with self._lock:
            entries = self._repo.list_all()
            previous_hash = entries[-1].entry_hash if entries else None
            draft = AuditLogEntry(
                audit_id=new_id(),
                sequence_number=len(entries),
                timestamp=self._clock(),
                action=action,
                actor_id=actor.principal_id,
                actor_role=actor.role,
                entity=entity,
                entity_id=entity_id,
                diff=AuditDiff(old_values=_jsonable(old_values), new_values=_jsonable(new_values)),
                notes=notes,
                proposal_id=proposal_id,
                previous_hash=previous_hash,
                entry_hash="0" * 64,
            )
            entry = draft.model_copy(
                update={"entry_hash": Hasher.hash_entry(draft.hashable_body(), previous_hash)}
            )
            return self._repo.put(entry)

    def list(
        self,
        entity: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        """Entries newest-first, optionally filtered."""
        entries = [
            e for e in reversed(self._repo.list_all())
            if (entity is None or e.entity == entity)
            and (entity_id is None or e.entity_id == entity_id)
        ]
        return entries[:limit] if limit is not None else entries

    def count(self) -> int:
        return len(self._repo.list_all())

    def verify_chain(self) -> bool:
        """Recompute every hash in sequence order. False on the first mismatch."""
        previous_hash = None
        for sequence, entry in enumerate(self._repo.list_all()):
            if entry.sequence_number != sequence or entry.previous_hash != previous_hash:
                return False
            if not Hasher.verify_entry(entry.hashable_body(), entry.entry_hash, previous_hash):
                return False
            previous_hash = entry.entry_hash
        return True
