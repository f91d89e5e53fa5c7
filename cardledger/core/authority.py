"""
Central Authority - the single owner of canonical state

Every canonical mutation in the system goes through one CentralAuthority
instance. It is created explicitly (on app startup, or per test) and handed
to whoever needs it; there is no module-level instance.

The authority:
- Enforces role minimums on every operation
- Admits contributions through intake (validation, duplicates, rate limits)
- Recomputes claims for touched tuples and applies auto-accepted ones
- Routes moderation and admin decisions to ModerationService
- Serves pull, push and snapshot for the sync protocol

Role minimums:
- match: guest
- pull / snapshot: viewer
- push proposals / observations / drafts: contributor
- moderation: moderator
- rollback / direct edit / deprecation: admin

CONCURRENCY:
Writes to one record, and to the Claim for one (target, field) tuple, are
serialized with keyed locks. Intake is serialized per device. The matcher
runs over an immutable CatalogSnapshot and needs no locks.
"""

import time
from datetime import datetime
from typing import Any, Iterable, Optional, Type, Union

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from .. import __version__
from ..config import AuthorityConfig
from ..db import AuthorityRepositories, InMemoryStore, KeyValueStore
from ..observability import get_logger, get_metrics
from ..schemas import (
    Alias,
    AuditLogEntry,
    Card,
    Claim,
    ClaimStatus,
    Draft,
    DraftStatus,
    ImageFeature,
    MatchResult,
    ModerationProposal,
    Observation,
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    Principal,
    Print,
    ProposalStatus,
    PublishEvent,
    PullResponse,
    PushFailure,
    PushResult,
    RecordVersion,
    Role,
    ScanQuery,
    SnapshotBundle,
    SyncCursor,
    SYSTEM_PRINCIPAL,
    TargetType,
    TrustProfile,
    TrustStats,
    normalize_value,
)
from .audit import AuditLog
from .consensus import ClaimKey, ConsensusEngine, ConsensusPolicy, claim_key, observation_key
from .errors import CardLedgerError, Forbidden, NotFound, RateLimited, ValidationError
from .fields import validate_record
from .hasher import Hasher
from .intake import ContributionIntake, draft_entity
from .matcher import CatalogSnapshot, IdentityMatcher
from .moderation import ModerationService
from .runtime import Clock, KeyedLocks, utc_now
from .signer import Signer
from .trust import ReputationPolicy, TrustTracker
from .versioning import VersionManager, wire_form

logger = get_logger(__name__)


SNAPSHOT_SCHEMA_VERSION = 1


def _record_lock(target_type: TargetType, record_id: str) -> str:
    return f"record:{target_type.value}:{record_id}"


def _claim_lock(key: ClaimKey) -> str:
    return "claim:" + ":".join(key)


def _raw_item_id(raw: Any, id_field: str, index: int) -> str:
    """Best id for a push item that failed to parse."""
    if isinstance(raw, dict) and isinstance(raw.get(id_field), str):
        return raw[id_field]
    return f"item-{index}"


def _schema_error_text(error: SchemaError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in e['loc']) or 'item'}: {e['msg']}"
        for e in error.errors()
    )


class CentralAuthority:
    """
    The authoritative service instance.

    Args:
        store: KeyValueStore for all authority state (in-memory if omitted)
        config: Intake, consensus and trust tunables
        clock: Time source; injectable for tests
        reputation_policy: Overrides the policy named in config
        signing_key: Base64 Ed25519 private key for snapshot signatures.
                     Falls back to config, then to an ephemeral key.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        config: Optional[AuthorityConfig] = None,
        clock: Clock = utc_now,
        reputation_policy: Optional[ReputationPolicy] = None,
        signing_key: Optional[str] = None,
    ):
        self.config = config or AuthorityConfig()
        self.store = store if store is not None else InMemoryStore()
        self.repos = AuthorityRepositories(self.store)
        self._clock = clock
        self._locks = KeyedLocks()

        self.audit = AuditLog(self.repos.audit, clock)
        self.trust = TrustTracker(self.repos.trust, self.config, reputation_policy, clock)
        self.versions = VersionManager(self.repos, clock)
        self.intake = ContributionIntake(self.config, clock)
        self.policy = ConsensusPolicy.from_config(self.config)
        self.consensus = ConsensusEngine(self.repos, self.trust.reputation_of, clock)
        self.moderation = ModerationService(self.repos, self.versions, self.audit, self.trust, clock)

        key = signing_key or self.config.signing_key
        if key is None:
            key, _ = Signer.generate_keypair()
            logger.warning("No snapshot signing key configured; using an ephemeral key")
        self._signing_key = key
        self.public_key = Signer.public_key_for(key)

    # ================================================================
    # ACCESS CONTROL
    # ================================================================

    @staticmethod
    def _require(principal: Principal, minimum: Role) -> None:
        if not principal.role.at_least(minimum):
            raise Forbidden(
                f"Role '{principal.role.value}' cannot perform this action "
                f"(requires {minimum.value} or above)"
            )

    def authenticate(self, principal: Principal) -> TrustProfile:
        """Called once per login; seeds the trust profile on first sight."""
        return self.trust.ensure_profile(principal)

    # ================================================================
    # CATALOG
    # ================================================================

    def seed_catalog(
        self,
        cards: Iterable[Card] = (),
        prints: Iterable[Print] = (),
        aliases: Iterable[Alias] = (),
        features: Iterable[ImageFeature] = (),
    ) -> None:
        """Load canonical records as version 1. Existing ids are left alone."""
        for card in cards:
            if card.id not in self.repos.cards:
                self.versions.create(card)
        for print_ in prints:
            if print_.print_id not in self.repos.prints:
                self.versions.create(print_)
        for alias in aliases:
            if alias.alias_id not in self.repos.aliases:
                self.versions.create_alias(alias)
        for feature in features:
            self.repos.image_features.put(feature)

    def catalog_snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot.build(
            self.repos.cards.list_all(),
            self.repos.prints.list_all(),
            self.repos.aliases.list_all(),
            self.repos.image_features.list_all(),
        )

    def match(self, principal: Principal, query: ScanQuery) -> MatchResult:
        self._require(principal, Role.GUEST)
        start = time.perf_counter()
        result = IdentityMatcher(self.catalog_snapshot()).match(query)
        get_metrics().record_match((time.perf_counter() - start) * 1000, result.needs_confirmation)
        return result

    def get_record(self, principal: Principal, target_type: TargetType, record_id: str):
        self._require(principal, Role.VIEWER)
        return self.versions.get(target_type, record_id)

    # ================================================================
    # SYNC: PULL AND SNAPSHOT
    # ================================================================

    def _cursor(self) -> SyncCursor:
        return SyncCursor(
            last_sync_at=self._clock(),
            last_cards_version=max((c.version for c in self.repos.cards.list_all()), default=0),
            last_prints_version=max((p.version for p in self.repos.prints.list_all()), default=0),
            last_aliases_version=max((a.version for a in self.repos.aliases.list_all()), default=0),
        )

    def pull(self, principal: Principal, since: Optional[datetime] = None) -> PullResponse:
        """
        Non-deprecated canonical state, plus claims and draft statuses that
        changed after `since` (everything when `since` is None).
        """
        self._require(principal, Role.VIEWER)

        def changed(*stamps: Optional[datetime]) -> bool:
            return since is None or any(s is not None and s > since for s in stamps)

        sees_all_drafts = principal.role.at_least(Role.MODERATOR)
        return PullResponse(
            cards=[c for c in self.repos.cards.list_all() if c.deprecated_at is None],
            prints=[p for p in self.repos.prints.list_all() if p.deprecated_at is None],
            aliases=self.repos.aliases.list_all(),
            image_features=self.repos.image_features.list_all(),
            claims=[
                c for c in self.repos.claims.list_all()
                if changed(c.last_computed_at, c.closed_at)
            ],
            draft_statuses=[
                d for d in self.repos.draft_statuses.list_all()
                if (sees_all_drafts or d.created_by == principal.principal_id)
                and changed(d.updated_at)
            ],
            sync_cursor=self._cursor(),
        )

    def download_snapshot(self, principal: Principal) -> SnapshotBundle:
        """Full-state recovery bundle with checksum and Ed25519 signature."""
        state = self.pull(principal)
        content = {
            "cards": [wire_form(c) for c in state.cards],
            "prints": [wire_form(p) for p in state.prints],
            "aliases": [wire_form(a) for a in state.aliases],
            "image_features": [wire_form(f) for f in state.image_features],
            "claims": [wire_form(c) for c in state.claims],
            "draft_statuses": [wire_form(d) for d in state.draft_statuses],
            "sync_cursor": wire_form(state.sync_cursor),
        }
        checksum = Hasher.checksum(content)
        return SnapshotBundle(
            app_version=__version__,
            schema_version=SNAPSHOT_SCHEMA_VERSION,
            exported_at=self._clock(),
            content=content,
            checksum=checksum,
            signature=Signer.sign(checksum, self._signing_key),
            public_key=self.public_key,
        )

    # ================================================================
    # SYNC: PUSH
    # ================================================================

    def _push(
        self,
        principal: Principal,
        items: list[Union[BaseModel, dict[str, Any]]],
        model: Type[BaseModel],
        id_field: str,
        admit,
    ) -> tuple[PushResult, list]:
        """
        Run `admit` per item under the device lock. One bad item never fails
        the batch. Items may arrive as raw dicts (HTTP); each is parsed on
        its own and a malformed one fails with code `validation`.

        Returns the result and whatever `admit` returned for each accepted item.
        """
        self._require(principal, Role.CONTRIBUTOR)
        start = time.perf_counter()
        result = PushResult()
        admitted = []
        with self._locks.hold(f"device:{principal.device_id}"):
            for index, raw in enumerate(items):
                try:
                    item = raw if isinstance(raw, model) else model.model_validate(raw)
                except SchemaError as e:
                    item_id = _raw_item_id(raw, id_field, index)
                    logger.info("Push item malformed", item_id=item_id, errors=e.error_count())
                    result.failed.append(PushFailure(
                        id=item_id, error=_schema_error_text(e), code=ValidationError.code,
                    ))
                    continue
                try:
                    admitted.append(admit(principal, item))
                    result.accepted_ids.append(item.local_id)
                except CardLedgerError as e:
                    if isinstance(e, RateLimited):
                        get_metrics().incr("rate_limited_writes")
                    logger.info(
                        "Push item rejected",
                        item_id=item.local_id,
                        code=e.code,
                        error=str(e),
                    )
                    result.failed.append(PushFailure(id=item.local_id, error=str(e), code=e.code))
        get_metrics().record_push((time.perf_counter() - start) * 1000)
        return result, admitted

    @staticmethod
    def _server_id(principal: Principal, local_id: str) -> str:
        return f"{principal.principal_id}-{local_id}"

    def _admit_proposal(self, principal: Principal, item: OutboxProposal) -> Optional[str]:
        proposal_id = self._server_id(principal, item.local_id)
        if proposal_id in self.repos.proposals:
            return None

        manual_review = self.intake.check_proposal(item)
        flagged = manual_review or self.moderation.is_flagged_contributor(
            principal.principal_id,
            self.config.flag_min_decided,
            self.config.flag_rejection_rate,
        )
        self.intake.rate_limiter.acquire(principal.device_id)
        self.repos.proposals.put(ModerationProposal(
            proposal_id=proposal_id,
            created_at=self._clock(),
            created_by_device_id=principal.device_id,
            user_id=principal.principal_id,
            type=item.type,
            payload=item.payload,
            status=ProposalStatus.REVIEWING if flagged else ProposalStatus.NEW,
            flagged=flagged,
        ))
        get_metrics().incr("proposals_admitted")
        if flagged:
            logger.info("Proposal flagged for review", proposal_id=proposal_id, low_confidence=manual_review)
        return proposal_id

    def _admit_observation(self, principal: Principal, item: OutboxObservation) -> Optional[ClaimKey]:
        observation_id = self._server_id(principal, item.local_id)
        if observation_id in self.repos.observations:
            return None

        parsed = self.intake.check_observation(item)
        target = self.versions.get(parsed.target_type, parsed.target_id)
        if target.deprecated_at is not None:
            raise ValidationError(f"{parsed.target_type.value} '{parsed.target_id}' is deprecated")
        validate_record(parsed.field.set(target, parsed.value))

        if self.intake.is_duplicate(self.repos.observations.list_all(), principal.principal_id, parsed):
            get_metrics().incr("duplicates_ignored")
            logger.debug("Duplicate observation ignored", item_id=item.local_id, field_path=parsed.field.path)
            return None

        self.intake.rate_limiter.acquire(principal.device_id)
        observation = self.repos.observations.put(Observation(
            observation_id=observation_id,
            principal_id=principal.principal_id,
            target_type=parsed.target_type,
            target_id=parsed.target_id,
            field_path=parsed.field.path,
            value=parsed.value,
            value_norm=normalize_value(parsed.value),
            ocr_confidence=item.ocr_confidence,
            capture_quality_score=item.capture_quality_score,
            scan_ref=item.scan_ref,
            created_at=self._clock(),
        ))
        get_metrics().incr("observations_admitted")
        return observation_key(observation)

    def _admit_draft(self, principal: Principal, item: OutboxDraft) -> Optional[str]:
        draft_id = self._server_id(principal, item.local_id)
        if draft_id in self.repos.drafts:
            return None

        self.intake.check_draft(item)
        if item.target_id:
            target_type = TargetType(draft_entity(item.target_type).value)
            self.versions.get(target_type, item.target_id)

        self.intake.rate_limiter.acquire(principal.device_id)
        self.moderation.record_new_draft(Draft(
            draft_id=draft_id,
            created_at=self._clock(),
            created_by=principal.principal_id,
            source_scan_ref=item.source_scan_id,
            target_type=item.target_type,
            target_id=item.target_id,
            extracted_fields=item.extracted_fields,
            proposed_payload=item.proposed_payload,
            confidence=item.confidence,
        ))
        get_metrics().incr("drafts_admitted")
        return draft_id

    def push_proposals(self, principal: Principal, items: list[Union[OutboxProposal, dict]]) -> PushResult:
        result, _ = self._push(principal, items, OutboxProposal, "local_proposal_id", self._admit_proposal)
        return result

    def push_observations(self, principal: Principal, items: list[Union[OutboxObservation, dict]]) -> PushResult:
        """Admit observations, then recompute every touched claim once."""
        result, keys = self._push(
            principal, items, OutboxObservation, "local_observation_id", self._admit_observation
        )
        for key in dict.fromkeys(k for k in keys if k is not None):
            self._settle(key)
        return result

    def push_drafts(self, principal: Principal, items: list[Union[OutboxDraft, dict]]) -> PushResult:
        result, _ = self._push(principal, items, OutboxDraft, "local_draft_id", self._admit_draft)
        return result

    # ================================================================
    # CONSENSUS
    # ================================================================

    def _settle(self, key: ClaimKey) -> Optional[Claim]:
        """Recompute one tuple's claim and auto-accept it if policy allows."""
        target_type, target_id, _ = key
        with self._locks.hold(_claim_lock(key), _record_lock(TargetType(target_type), target_id)):
            claim = self.consensus.upsert(key)
            if claim is None:
                return None

            if not claim.considered_ids:
                return self.moderation.supersede_claim(
                    claim, SYSTEM_PRINCIPAL, "no remaining active evidence"
                )

            if self.policy.accepts(claim):
                try:
                    claim = self.moderation.accept_claim(claim, SYSTEM_PRINCIPAL, auto=True)
                    get_metrics().incr("claims_auto_accepted")
                except ValidationError as e:
                    logger.warning(
                        "Auto-accept skipped: value no longer valid",
                        claim_id=claim.claim_id,
                        error=str(e),
                    )
            return claim

    def recompute_all(self, principal: Principal) -> list[Claim]:
        """Full recompute over every tuple with active evidence, plus open claims."""
        self._require(principal, Role.MODERATOR)
        keys = dict.fromkeys(self.consensus.all_keys())
        for claim in self.repos.claims.list_all():
            if claim.status == ClaimStatus.OPEN:
                keys.setdefault(claim.key, None)
        settled = [self._settle(key) for key in keys]
        return [c for c in settled if c is not None]

    def consensus_queue(self, principal: Principal) -> list[Claim]:
        """Open claims, strongest consensus first."""
        self._require(principal, Role.MODERATOR)
        open_claims = [c for c in self.repos.claims.list_all() if c.status == ClaimStatus.OPEN]
        return sorted(open_claims, key=lambda c: -c.consensus_score)

    def claim_observations(self, principal: Principal, claim_id: str) -> list[Observation]:
        self._require(principal, Role.MODERATOR)
        claim = self.moderation.get_claim(claim_id)
        considered = set(claim.considered_ids)
        return [o for o in self.repos.observations.list_all() if o.observation_id in considered]

    def resolve_claim(
        self,
        principal: Principal,
        claim_id: str,
        status: ClaimStatus,
        note: Optional[str] = None,
    ) -> Claim:
        self._require(principal, Role.MODERATOR)
        claim = self.moderation.get_claim(claim_id)
        lock_keys = (_claim_lock(claim.key), _record_lock(claim.target_type, claim.target_id))
        with self._locks.hold(*lock_keys):
            claim = self.moderation.get_claim(claim_id)
            if status == ClaimStatus.ACCEPTED:
                resolved = self.moderation.accept_claim(claim, principal)
            elif status == ClaimStatus.REJECTED:
                resolved = self.moderation.reject_claim(claim, principal, note)
            elif status == ClaimStatus.SUPERSEDED:
                resolved = self.moderation.supersede_claim(claim, principal, note)
            else:
                raise ValidationError(f"Cannot resolve a claim to '{status.value}'")
        get_metrics().incr("claims_resolved")
        return resolved

    def withdraw_observation(self, principal: Principal, observation_id: str) -> Observation:
        self._require(principal, Role.CONTRIBUTOR)
        observation = self.moderation.withdraw_observation(observation_id, principal)
        self._settle(observation_key(observation))
        return observation

    def mark_observation_spam(
        self,
        principal: Principal,
        observation_id: str,
        note: Optional[str] = None,
    ) -> Observation:
        self._require(principal, Role.MODERATOR)
        observation = self.moderation.mark_observation_spam(observation_id, principal, note)
        self._settle(observation_key(observation))
        return observation

    # ================================================================
    # PROPOSALS
    # ================================================================

    def list_proposals(
        self,
        principal: Principal,
        status: Optional[ProposalStatus] = None,
    ) -> list[ModerationProposal]:
        """Proposals in `status`. The default queue is new plus reviewing."""
        self._require(principal, Role.MODERATOR)
        wanted = {status} if status else {ProposalStatus.NEW, ProposalStatus.REVIEWING}
        return [p for p in self.repos.proposals.list_all() if p.status in wanted]

    def _proposal_locks(self, proposal_id: str) -> tuple[str, ...]:
        proposal = self.moderation.get_proposal(proposal_id)
        keys = [f"proposal:{proposal_id}"]
        diff = proposal.payload.diff
        if diff.entity_id:
            keys.append(f"record:{diff.entity.value}:{diff.entity_id}")
        return tuple(keys)

    def approve_proposal(self, principal: Principal, proposal_id: str, note: Optional[str] = None):
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(*self._proposal_locks(proposal_id)):
            return self.moderation.approve_proposal(proposal_id, principal, note)

    def reject_proposal(self, principal: Principal, proposal_id: str, note: Optional[str] = None):
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(f"proposal:{proposal_id}"):
            return self.moderation.reject_proposal(proposal_id, principal, note)

    def request_more_info(self, principal: Principal, proposal_id: str, note: Optional[str] = None):
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(f"proposal:{proposal_id}"):
            return self.moderation.request_more_info(proposal_id, principal, note)

    # ================================================================
    # DRAFTS
    # ================================================================

    def draft_queue(self, principal: Principal) -> list[Draft]:
        self._require(principal, Role.MODERATOR)
        return [
            d for d in self.repos.drafts.list_all()
            if d.status in (DraftStatus.NEW, DraftStatus.REVIEWING)
        ]

    def _draft_locks(self, draft_id: str) -> tuple[str, ...]:
        draft = self.moderation.get_draft(draft_id)
        keys = [f"draft:{draft_id}"]
        if draft.target_id:
            keys.append(f"record:{draft_entity(draft.target_type).value}:{draft.target_id}")
        return tuple(keys)

    def mark_draft_reviewing(self, principal: Principal, draft_id: str) -> Draft:
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(f"draft:{draft_id}"):
            return self.moderation.mark_draft_reviewing(draft_id, principal)

    def publish_draft(
        self,
        principal: Principal,
        draft_id: str,
        edited_payload: Optional[dict[str, Any]] = None,
    ) -> tuple[Draft, PublishEvent]:
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(*self._draft_locks(draft_id)):
            return self.moderation.publish_draft(draft_id, principal, edited_payload)

    def reject_draft(self, principal: Principal, draft_id: str, note: Optional[str] = None):
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(f"draft:{draft_id}"):
            return self.moderation.reject_draft(draft_id, principal, note)

    def request_draft_changes(self, principal: Principal, draft_id: str, note: Optional[str] = None):
        self._require(principal, Role.MODERATOR)
        with self._locks.hold(f"draft:{draft_id}"):
            return self.moderation.request_draft_changes(draft_id, principal, note)

    def publish_events(self, principal: Principal) -> list[PublishEvent]:
        """Newest first."""
        self._require(principal, Role.MODERATOR)
        return list(reversed(self.repos.publish_events.list_all()))

    # ================================================================
    # AUDIT, HISTORY, TRUST
    # ================================================================

    def audit_log(self, principal: Principal, limit: Optional[int] = None) -> list[AuditLogEntry]:
        self._require(principal, Role.MODERATOR)
        return self.audit.list(limit=limit)

    def record_history(
        self,
        principal: Principal,
        target_type: TargetType,
        record_id: str,
    ) -> tuple[list[RecordVersion], list[AuditLogEntry]]:
        """Stored versions (oldest first) and audit entries touching the record (newest first)."""
        self._require(principal, Role.MODERATOR)
        self.versions.get(target_type, record_id)
        entries = [
            e for e in self.audit.list()
            if e.entity_id == record_id or e.diff.new_values.get("target_id") == record_id
        ]
        return self.versions.history(target_type, record_id), entries

    def trust_stats(self, principal: Principal) -> list[TrustStats]:
        self._require(principal, Role.MODERATOR)
        return self.trust.stats()

    # ================================================================
    # ADMIN
    # ================================================================

    def rollback(
        self,
        principal: Principal,
        target_type: TargetType,
        record_id: str,
        to_version: int,
        note: Optional[str] = None,
    ):
        self._require(principal, Role.ADMIN)
        with self._locks.hold(_record_lock(target_type, record_id)):
            return self.moderation.rollback(target_type, record_id, to_version, principal, note)

    def admin_edit(
        self,
        principal: Principal,
        target_type: TargetType,
        record_id: str,
        values: dict[str, Any],
        note: Optional[str] = None,
    ):
        self._require(principal, Role.ADMIN)
        with self._locks.hold(_record_lock(target_type, record_id)):
            return self.moderation.admin_edit(target_type, record_id, values, principal, note)

    def deprecate(
        self,
        principal: Principal,
        target_type: TargetType,
        record_id: str,
        note: Optional[str] = None,
    ):
        self._require(principal, Role.ADMIN)
        with self._locks.hold(_record_lock(target_type, record_id)):
            return self.moderation.deprecate(target_type, record_id, principal, note)
