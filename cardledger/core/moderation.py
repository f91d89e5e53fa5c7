"""
Moderation

Human and system decisions that change canonical state:

- Proposals: new -> (reviewing) -> accepted | rejected | more_info
- Drafts:    new -> reviewing -> published | rejected | request_changes
- Claims:    open -> accepted | rejected | superseded
- Observations: withdrawn by their author, flagged as spam by a moderator
- Admin: direct edit, deprecation, rollback

Every decision writes an audit entry. Every record change goes through
VersionManager, so versions only move forward and history is kept.

Callers (the authority) hold the relevant record/claim locks; nothing here
locks on its own.
"""

from typing import Any, Optional

from ..db import AuthorityRepositories
from ..observability import get_logger
from ..schemas import (
    Alias,
    AuditAction,
    AuditEntity,
    Card,
    Claim,
    ClaimStatus,
    ConsensusMeta,
    DiffEntity,
    Draft,
    DraftStatus,
    DraftStatusCache,
    ModerationProposal,
    Observation,
    ObservationStatus,
    Principal,
    Print,
    ProposalStatus,
    PublishAction,
    PublishEvent,
    TargetType,
)
from .audit import AuditLog
from .errors import Forbidden, NotFound, ValidationError
from .fields import apply_values, field_for_path
from .intake import draft_entity
from .runtime import Clock, new_id, utc_now
from .trust import TrustTracker
from .versioning import VersionManager, wire_form

logger = get_logger(__name__)


_OPEN_PROPOSAL = {ProposalStatus.NEW, ProposalStatus.REVIEWING, ProposalStatus.MORE_INFO}
_OPEN_DRAFT = {DraftStatus.NEW, DraftStatus.REVIEWING}

_ENTITY_TARGET = {
    DiffEntity.CARD: TargetType.CARD,
    DiffEntity.PRINT: TargetType.PRINT,
}


def _subset(wire: dict[str, Any], keys) -> dict[str, Any]:
    return {k: wire.get(k) for k in keys}


class ModerationService:
    def __init__(
        self,
        repos: AuthorityRepositories,
        versions: VersionManager,
        audit: AuditLog,
        trust: TrustTracker,
        clock: Clock = utc_now,
    ):
        self._repos = repos
        self._versions = versions
        self._audit = audit
        self._trust = trust
        self._clock = clock

    # ================================================================
    # DIFF APPLICATION
    # ================================================================

    def apply_diff(
        self,
        entity: DiffEntity,
        entity_id: Optional[str],
        values: dict[str, Any],
    ) -> tuple[str, dict[str, Any], dict[str, Any]]:
        """
        Update or create one record from wire-keyed values.

        Returns:
            (record id, old values, new values) for the audit diff

        Raises:
            NotFound: entity_id given but the record does not exist
            ValidationError: the resulting record breaks a rule
        """
        if entity == DiffEntity.ALIAS:
            return self._apply_alias(entity_id, values)

        target_type = _ENTITY_TARGET[entity]
        if entity_id:
            current = self._versions.get(target_type, entity_id)
            proposed = apply_values(current, entity, values)
            if isinstance(proposed, Print):
                self._require_card(proposed.card_id)
            committed = self._versions.commit(current, proposed)
            return (
                committed.record_id,
                _subset(wire_form(current), values),
                _subset(wire_form(committed), values),
            )

        now = self._clock()
        if entity == DiffEntity.CARD:
            blank = Card(id=new_id(), name="", type="", updated_at=now)
        else:
            blank = Print(print_id=new_id(), card_id="", set_code="", updated_at=now)
        proposed = apply_values(blank, entity, values)
        if isinstance(proposed, Print):
            self._require_card(proposed.card_id)
        created = self._versions.create(proposed)
        return created.record_id, {}, _subset(wire_form(created), values)

    def _apply_alias(self, alias_id: Optional[str], values: dict[str, Any]):
        if alias_id:
            current = self._repos.aliases.get(alias_id)
            if current is None:
                raise NotFound(f"alias '{alias_id}' not found")
            proposed = apply_values(current, DiffEntity.ALIAS, values)
            self._require_card(proposed.card_id)
            committed = self._versions.commit_alias(current, proposed)
            return alias_id, _subset(wire_form(current), values), _subset(wire_form(committed), values)

        blank = Alias(alias_id=new_id(), card_id="", alias_text="", updated_at=self._clock())
        proposed = apply_values(blank, DiffEntity.ALIAS, values)
        self._require_card(proposed.card_id)
        created = self._versions.create_alias(proposed)
        return created.alias_id, {}, _subset(wire_form(created), values)

    def _require_card(self, card_id: str) -> None:
        if not card_id or self._repos.cards.get(card_id) is None:
            raise ValidationError(f"Referenced card '{card_id}' does not exist")

    # ================================================================
    # PROPOSALS
    # ================================================================

    def get_proposal(self, proposal_id: str) -> ModerationProposal:
        proposal = self._repos.proposals.get(proposal_id)
        if proposal is None:
            raise NotFound(f"proposal '{proposal_id}' not found")
        return proposal

    def _decide_proposal(
        self,
        proposal: ModerationProposal,
        status: ProposalStatus,
        actor: Principal,
        note: Optional[str],
    ) -> ModerationProposal:
        return self._repos.proposals.put(proposal.model_copy(update={
            "status": status,
            "reviewed_at": self._clock(),
            "reviewed_by": actor.principal_id,
            "reviewer_notes": note,
        }))

    def _require_open_proposal(self, proposal: ModerationProposal, allowed=_OPEN_PROPOSAL) -> None:
        if proposal.status not in allowed:
            raise ValidationError(
                f"Proposal '{proposal.proposal_id}' is {proposal.status.value} and cannot be changed"
            )

    def approve_proposal(self, proposal_id: str, actor: Principal, note: Optional[str] = None) -> ModerationProposal:
        """Re-validate against current state, apply, audit and credit the submitter."""
        proposal = self.get_proposal(proposal_id)
        self._require_open_proposal(proposal)
        diff = proposal.payload.diff
        record_id, old_values, new_values = self.apply_diff(diff.entity, diff.entity_id, diff.new_values)

        decided = self._decide_proposal(proposal, ProposalStatus.ACCEPTED, actor, note)
        self._audit.append(
            AuditAction.ACCEPTED, actor, AuditEntity(diff.entity.value), record_id,
            old_values=old_values, new_values=new_values,
            notes=note, proposal_id=proposal_id,
        )
        self._trust.record_accepted(proposal.user_id)
        logger.info("Proposal approved", proposal_id=proposal_id, entity=diff.entity.value, record_id=record_id)
        return decided

    def reject_proposal(self, proposal_id: str, actor: Principal, note: Optional[str] = None) -> ModerationProposal:
        proposal = self.get_proposal(proposal_id)
        self._require_open_proposal(proposal)
        decided = self._decide_proposal(proposal, ProposalStatus.REJECTED, actor, note)
        self._audit.append(
            AuditAction.REJECTED, actor, AuditEntity.PROPOSAL, proposal_id,
            old_values={"status": proposal.status.value},
            new_values={"status": ProposalStatus.REJECTED.value},
            notes=note, proposal_id=proposal_id,
        )
        self._trust.record_rejected(proposal.user_id)
        return decided

    def request_more_info(self, proposal_id: str, actor: Principal, note: Optional[str] = None) -> ModerationProposal:
        proposal = self.get_proposal(proposal_id)
        self._require_open_proposal(proposal, {ProposalStatus.NEW, ProposalStatus.REVIEWING})
        decided = self._decide_proposal(proposal, ProposalStatus.MORE_INFO, actor, note)
        self._audit.append(
            AuditAction.MORE_INFO, actor, AuditEntity.PROPOSAL, proposal_id,
            old_values={"status": proposal.status.value},
            new_values={"status": ProposalStatus.MORE_INFO.value},
            notes=note, proposal_id=proposal_id,
        )
        return decided

    def is_flagged_contributor(self, principal_id: str, min_decided: int, rejection_rate: float) -> bool:
        """True if the principal's decided proposals are mostly rejections."""
        decided = [
            p for p in self._repos.proposals.list_all()
            if p.user_id == principal_id
            and p.status in (ProposalStatus.ACCEPTED, ProposalStatus.REJECTED)
        ]
        if len(decided) < min_decided:
            return False
        rejected = sum(1 for p in decided if p.status == ProposalStatus.REJECTED)
        return rejected / len(decided) > rejection_rate

    # ================================================================
    # CLAIMS
    # ================================================================

    def get_claim(self, claim_id: str) -> Claim:
        claim = self._repos.claims.get(claim_id)
        if claim is None:
            raise NotFound(f"claim '{claim_id}' not found")
        return claim

    def _close_claim(self, claim: Claim, status: ClaimStatus) -> Claim:
        return self._repos.claims.put(claim.model_copy(update={
            "status": status,
            "closed_at": self._clock(),
        }))

    def _require_open_claim(self, claim: Claim) -> None:
        if claim.status != ClaimStatus.OPEN:
            raise ValidationError(f"Claim '{claim.claim_id}' is already {claim.status.value}")

    def _claim_principals(self, claim: Claim) -> tuple[set[str], set[str]]:
        """(supporting principals, dissenting principals) over the considered evidence."""
        supporters, dissenters = set(), set()
        lead = set(claim.generated_from)
        for obs_id in claim.considered_ids:
            obs = self._repos.observations.get(obs_id)
            if obs is None:
                continue
            (supporters if obs_id in lead else dissenters).add(obs.principal_id)
        return supporters, dissenters - supporters

    def accept_claim(self, claim: Claim, actor: Principal, auto: bool = False) -> Claim:
        """
        Write the claim's value into its record as a new version.

        Raises:
            ValidationError: the claim is closed, or the value breaks a record rule
            NotFound: the target record is gone
        """
        self._require_open_claim(claim)
        spec = field_for_path(claim.target_type, claim.field_path)
        current = self._versions.get(claim.target_type, claim.target_id)

        consensus = dict(current.consensus)
        consensus[claim.field_path] = ConsensusMeta(
            consensus_score=claim.consensus_score,
            consensus_count=claim.consensus_count,
            disagreement_count=claim.disagreement_count,
            last_computed_at=claim.last_computed_at,
        )
        proposed = spec.set(current, claim.proposed_value).model_copy(update={"consensus": consensus})
        committed = self._versions.commit(current, proposed)

        closed = self._close_claim(claim, ClaimStatus.ACCEPTED)
        self._audit.append(
            AuditAction.CLAIM_ACCEPTED, actor, AuditEntity.CLAIM, claim.claim_id,
            old_values={spec.key: wire_form(current).get(spec.key), "version": current.version},
            new_values={
                spec.key: wire_form(committed).get(spec.key),
                "version": committed.version,
                "target_type": claim.target_type.value,
                "target_id": claim.target_id,
                "consensus_score": claim.consensus_score,
            },
            notes="auto-accepted by consensus policy" if auto else None,
        )

        supporters, dissenters = self._claim_principals(claim)
        for principal_id in sorted(supporters):
            self._trust.record_accepted(principal_id)
        for principal_id in sorted(dissenters):
            self._trust.record_rejected(principal_id)

        logger.info(
            "Claim accepted",
            claim_id=claim.claim_id,
            field_path=claim.field_path,
            target_id=claim.target_id,
            version=committed.version,
            auto=auto,
        )
        return closed

    def reject_claim(self, claim: Claim, actor: Principal, note: Optional[str] = None) -> Claim:
        self._require_open_claim(claim)
        closed = self._close_claim(claim, ClaimStatus.REJECTED)
        self._audit.append(
            AuditAction.CLAIM_REJECTED, actor, AuditEntity.CLAIM, claim.claim_id,
            new_values={"proposed_value": claim.proposed_value, "target_id": claim.target_id},
            notes=note,
        )
        supporters, _ = self._claim_principals(claim)
        for principal_id in sorted(supporters):
            self._trust.record_rejected(principal_id)
        return closed

    def supersede_claim(self, claim: Claim, actor: Principal, note: Optional[str] = None) -> Claim:
        self._require_open_claim(claim)
        closed = self._close_claim(claim, ClaimStatus.SUPERSEDED)
        self._audit.append(
            AuditAction.CLAIM_SUPERSEDED, actor, AuditEntity.CLAIM, claim.claim_id,
            new_values={"proposed_value": claim.proposed_value, "target_id": claim.target_id},
            notes=note,
        )
        return closed

    # ================================================================
    # OBSERVATIONS
    # ================================================================

    def get_observation(self, observation_id: str) -> Observation:
        obs = self._repos.observations.get(observation_id)
        if obs is None:
            raise NotFound(f"observation '{observation_id}' not found")
        return obs

    def withdraw_observation(self, observation_id: str, actor: Principal) -> Observation:
        obs = self.get_observation(observation_id)
        if obs.principal_id != actor.principal_id:
            raise Forbidden("Only the author can withdraw an observation")
        if obs.status != ObservationStatus.ACTIVE:
            raise ValidationError(f"Observation is already {obs.status.value}")
        return self._repos.observations.put(obs.model_copy(update={"status": ObservationStatus.WITHDRAWN}))

    def mark_observation_spam(self, observation_id: str, actor: Principal, note: Optional[str] = None) -> Observation:
        obs = self.get_observation(observation_id)
        if obs.status == ObservationStatus.SPAM:
            raise ValidationError("Observation is already marked as spam")
        flagged = self._repos.observations.put(obs.model_copy(update={"status": ObservationStatus.SPAM}))
        self._audit.append(
            AuditAction.OBSERVATION_SPAM, actor, AuditEntity.OBSERVATION, observation_id,
            old_values={"status": obs.status.value},
            new_values={"status": ObservationStatus.SPAM.value, "principal_id": obs.principal_id},
            notes=note,
        )
        self._trust.record_spam(obs.principal_id)
        return flagged

    # ================================================================
    # DRAFTS
    # ================================================================

    def get_draft(self, draft_id: str) -> Draft:
        draft = self._repos.drafts.get(draft_id)
        if draft is None:
            raise NotFound(f"draft '{draft_id}' not found")
        return draft

    def _require_open_draft(self, draft: Draft, allowed=_OPEN_DRAFT) -> None:
        if draft.status not in allowed:
            raise ValidationError(f"Draft '{draft.draft_id}' is {draft.status.value} and cannot be changed")

    def _cache_status(self, draft: Draft) -> None:
        self._repos.draft_statuses.put(DraftStatusCache(
            draft_id=draft.draft_id,
            created_by=draft.created_by,
            status=draft.status,
            updated_at=self._clock(),
            review_notes=draft.review_notes,
        ))

    def record_new_draft(self, draft: Draft) -> Draft:
        stored = self._repos.drafts.put(draft)
        self._cache_status(stored)
        return stored

    def _publish_event(
        self,
        draft: Draft,
        action: PublishAction,
        actor: Principal,
        diff: Optional[dict[str, Any]] = None,
        resulting_ids: Optional[list[str]] = None,
    ) -> PublishEvent:
        return self._repos.publish_events.put(PublishEvent(
            event_id=new_id(),
            draft_id=draft.draft_id,
            timestamp=self._clock(),
            action=action,
            actor_id=actor.principal_id,
            actor_role=actor.role,
            diff_applied=diff or {},
            resulting_target_ids=resulting_ids or [],
        ))

    def mark_draft_reviewing(self, draft_id: str, actor: Principal) -> Draft:
        draft = self.get_draft(draft_id)
        self._require_open_draft(draft, {DraftStatus.NEW})
        updated = self._repos.drafts.put(draft.model_copy(update={"status": DraftStatus.REVIEWING}))
        self._cache_status(updated)
        return updated

    def publish_draft(
        self,
        draft_id: str,
        actor: Principal,
        edited_payload: Optional[dict[str, Any]] = None,
    ) -> tuple[Draft, PublishEvent]:
        """
        Apply the draft (or a moderator's edit of it) to its target, or create
        a new record when it has none.
        """
        draft = self.get_draft(draft_id)
        self._require_open_draft(draft)
        payload = edited_payload if edited_payload is not None else draft.proposed_payload
        if not payload:
            raise ValidationError("Nothing to publish: payload is empty")

        entity = draft_entity(draft.target_type)
        record_id, old_values, new_values = self.apply_diff(entity, draft.target_id, payload)

        published = self._repos.drafts.put(draft.model_copy(update={
            "status": DraftStatus.PUBLISHED,
            "proposed_payload": payload,
            "published_at": self._clock(),
            "published_by": actor.principal_id,
        }))
        self._cache_status(published)
        event = self._publish_event(published, PublishAction.PUBLISH, actor, payload, [record_id])
        self._audit.append(
            AuditAction.DRAFT_PUBLISHED, actor, AuditEntity.DRAFT, draft_id,
            old_values=old_values,
            new_values={**new_values, "target_id": record_id},
        )
        self._trust.record_accepted(draft.created_by)
        logger.info("Draft published", draft_id=draft_id, record_id=record_id)
        return published, event

    def _close_draft(
        self,
        draft_id: str,
        actor: Principal,
        status: DraftStatus,
        action: PublishAction,
        audit_action: AuditAction,
        note: Optional[str],
    ) -> tuple[Draft, PublishEvent]:
        draft = self.get_draft(draft_id)
        self._require_open_draft(draft)
        closed = self._repos.drafts.put(draft.model_copy(update={"status": status, "review_notes": note}))
        self._cache_status(closed)
        event = self._publish_event(closed, action, actor)
        self._audit.append(
            audit_action, actor, AuditEntity.DRAFT, draft_id,
            old_values={"status": draft.status.value},
            new_values={"status": status.value},
            notes=note,
        )
        return closed, event

    def reject_draft(self, draft_id: str, actor: Principal, note: Optional[str] = None):
        result = self._close_draft(
            draft_id, actor, DraftStatus.REJECTED, PublishAction.REJECT,
            AuditAction.DRAFT_REJECTED, note,
        )
        self._trust.record_rejected(result[0].created_by)
        return result

    def request_draft_changes(self, draft_id: str, actor: Principal, note: Optional[str] = None):
        return self._close_draft(
            draft_id, actor, DraftStatus.REQUEST_CHANGES, PublishAction.REQUEST_CHANGES,
            AuditAction.DRAFT_REQUEST_CHANGES, note,
        )

    # ================================================================
    # ADMIN
    # ================================================================

    def admin_edit(
        self,
        target_type: TargetType,
        record_id: str,
        values: dict[str, Any],
        actor: Principal,
        note: Optional[str] = None,
    ):
        if not values:
            raise ValidationError("Edit must change at least one field")
        entity = DiffEntity(target_type.value)
        _, old_values, new_values = self.apply_diff(entity, record_id, values)
        self._audit.append(
            AuditAction.ADMIN_EDIT, actor, AuditEntity(target_type.value), record_id,
            old_values=old_values, new_values=new_values, notes=note,
        )
        return self._versions.get(target_type, record_id)

    def deprecate(self, target_type: TargetType, record_id: str, actor: Principal, note: Optional[str] = None):
        current = self._versions.get(target_type, record_id)
        if current.deprecated_at is not None:
            raise ValidationError(f"{target_type.value} '{record_id}' is already deprecated")
        committed = self._versions.commit(current, current.model_copy(update={"deprecated_at": self._clock()}))
        self._audit.append(
            AuditAction.DEPRECATED, actor, AuditEntity(target_type.value), record_id,
            old_values={"version": current.version},
            new_values={"version": committed.version, "deprecated_at": committed.deprecated_at.isoformat()},
            notes=note,
        )
        return committed

    def rollback(
        self,
        target_type: TargetType,
        record_id: str,
        to_version: int,
        actor: Principal,
        note: Optional[str] = None,
    ):
        previous, restored = self._versions.rollback(target_type, record_id, to_version)
        self._audit.append(
            AuditAction.ROLLBACK, actor, AuditEntity(target_type.value), record_id,
            old_values={"version": previous.version},
            new_values={"version": restored.version, "restored_from": to_version},
            notes=note,
        )
        logger.info(
            "Record rolled back",
            target_type=target_type.value,
            record_id=record_id,
            restored_from=to_version,
            version=restored.version,
        )
        return restored
