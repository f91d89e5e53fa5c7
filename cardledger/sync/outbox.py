"""
Client Outbox

Locally queued contributions waiting to be pushed. Items are only moved
between states by the sync client:

    queued -> sent
    queued -> failed -> sent (on a later successful resubmission)
"""

from typing import Union

from ..db import KeyValueStore, Repository
from ..schemas import (
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    OutboxStatus,
    PushResult,
)


OutboxItem = Union[OutboxProposal, OutboxObservation, OutboxDraft]


class Outbox:
    def __init__(self, store: KeyValueStore):
        self.proposals = Repository(store, "outbox_proposals", OutboxProposal, lambda p: p.local_id)
        self.observations = Repository(store, "outbox_observations", OutboxObservation, lambda o: o.local_id)
        self.drafts = Repository(store, "outbox_drafts", OutboxDraft, lambda d: d.local_id)

    def _repository(self, item: OutboxItem) -> Repository:
        if isinstance(item, OutboxProposal):
            return self.proposals
        if isinstance(item, OutboxObservation):
            return self.observations
        return self.drafts

    def enqueue(self, item: OutboxItem) -> OutboxItem:
        queued = item.model_copy(update={"status": OutboxStatus.QUEUED, "last_error": None})
        return self._repository(queued).put(queued)

    @staticmethod
    def pending(repository: Repository) -> list:
        """Queued items plus failed ones awaiting resubmission."""
        return [i for i in repository.list_all() if i.status != OutboxStatus.SENT]

    @staticmethod
    def failed(repository: Repository) -> list:
        return [i for i in repository.list_all() if i.status == OutboxStatus.FAILED]

    @staticmethod
    def apply_result(repository: Repository, items: list, result: PushResult) -> None:
        """Mark accepted items sent and failed ones failed with their error."""
        accepted = set(result.accepted_ids)
        errors = {f.id: f.error for f in result.failed}
        for item in items:
            if item.local_id in accepted:
                repository.put(item.model_copy(update={"status": OutboxStatus.SENT, "last_error": None}))
            elif item.local_id in errors:
                repository.put(item.model_copy(update={
                    "status": OutboxStatus.FAILED,
                    "last_error": errors[item.local_id],
                }))

    def counts(self) -> dict[str, dict[str, int]]:
        summary = {}
        for name, repository in (
            ("proposals", self.proposals),
            ("observations", self.observations),
            ("drafts", self.drafts),
        ):
            tally = {s.value: 0 for s in OutboxStatus}
            for item in repository.list_all():
                tally[item.status.value] += 1
            summary[name] = tally
        return summary
