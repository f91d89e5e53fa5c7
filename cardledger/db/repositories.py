"""
Authority-side repositories, one namespace per entity type.
"""

from ..schemas import (
    Alias,
    AuditLogEntry,
    Card,
    Claim,
    Draft,
    DraftStatusCache,
    ImageFeature,
    ModerationProposal,
    Observation,
    Print,
    PublishEvent,
    RecordVersion,
    TargetType,
    TrustProfile,
)
from .store import KeyValueStore, Repository


def version_key(target_type: TargetType, record_id: str, version: int) -> str:
    return f"{target_type.value}:{record_id}:{version:08d}"


def audit_key(sequence_number: int) -> str:
    return f"{sequence_number:012d}"


class AuthorityRepositories:
    """All typed repositories the authority reads and writes, over one store."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.cards = Repository(store, "cards", Card, lambda c: c.id)
        self.prints = Repository(store, "prints", Print, lambda p: p.print_id)
        self.aliases = Repository(store, "aliases", Alias, lambda a: a.alias_id)
        self.image_features = Repository(store, "image_features", ImageFeature, lambda f: f.feature_id)
        self.versions = Repository(
            store, "record_versions", RecordVersion,
            lambda v: version_key(v.target_type, v.record_id, v.version),
        )
        self.observations = Repository(store, "observations", Observation, lambda o: o.observation_id)
        self.claims = Repository(store, "claims", Claim, lambda c: c.claim_id)
        self.proposals = Repository(store, "proposals", ModerationProposal, lambda p: p.proposal_id)
        self.drafts = Repository(store, "drafts", Draft, lambda d: d.draft_id)
        self.draft_statuses = Repository(store, "draft_statuses", DraftStatusCache, lambda d: d.draft_id)
        self.publish_events = Repository(store, "publish_events", PublishEvent, lambda e: e.event_id)
        self.trust = Repository(store, "trust_profiles", TrustProfile, lambda t: t.principal_id)
        self.audit = Repository(store, "audit_log", AuditLogEntry, lambda e: audit_key(e.sequence_number))

    def records(self, target_type: TargetType) -> Repository:
        return self.cards if target_type == TargetType.CARD else self.prints
