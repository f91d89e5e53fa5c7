"""
Tests for moderation, record versioning, rollback and the audit chain.
"""

import threading
import time

import pytest

from cardledger.core import (
    CentralAuthority,
    Conflict,
    EmaReputationPolicy,
    Forbidden,
    NotFound,
    ValidationError,
)
from cardledger.db import InMemoryStore
from cardledger.schemas import (
    AuditAction,
    AuditEntity,
    ClaimStatus,
    DiffEntity,
    DraftStatus,
    DraftTargetType,
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    Principal,
    ProposalDiff,
    ProposalPayload,
    ProposalStatus,
    ProposalType,
    PublishAction,
    Role,
    TargetType,
)
from cardledger.seed import seed_demo_catalog


def submit_proposal(authority, principal, clock, local_id="p1", entity=DiffEntity.CARD,
                    entity_id="c4", new_values=None, proposal_type=ProposalType.EDIT_CARD):
    authority.push_proposals(principal, [OutboxProposal(
        local_proposal_id=local_id,
        created_at=clock(),
        created_by_device_id=principal.device_id,
        type=proposal_type,
        payload=ProposalPayload(diff=ProposalDiff(
            entity=entity,
            entity_id=entity_id,
            new_values=new_values or {"def": 400},
        )),
    )])
    return f"{principal.principal_id}-{local_id}"


def submit_draft(authority, principal, clock, local_id="d1", target_type=DraftTargetType.CARD,
                 target_id="c4", payload=None):
    authority.push_drafts(principal, [OutboxDraft(
        local_draft_id=local_id,
        created_at=clock(),
        target_type=target_type,
        target_id=target_id,
        proposed_payload=payload or {"archetype": "Elemental HERO"},
    )])
    return f"{principal.principal_id}-{local_id}"


class SlowTrustStore(InMemoryStore):
    """Widens the gap between reading and writing a trust profile."""

    def get(self, namespace, key):
        value = super().get(namespace, key)
        if namespace == "trust_profiles":
            time.sleep(0.05)
        return value


class TestProposals:

    def test_approve_applies_diff(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        decided = authority.approve_proposal(moderator, proposal_id, "matches the card")

        assert decided.status == ProposalStatus.ACCEPTED
        assert decided.reviewed_by == "mod"
        card = authority.repos.cards.get("c4")
        assert card.def_ == 400
        assert card.version == 2

        [entry] = authority.audit.list()
        assert entry.action == AuditAction.ACCEPTED
        assert entry.entity == AuditEntity.CARD
        assert entry.diff.old_values == {"def": 300}
        assert entry.diff.new_values == {"def": 400}
        assert entry.proposal_id == proposal_id
        assert authority.trust.get("alice").accepted_count == 1

    def test_approve_creates_card(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(
            authority, contributor, clock,
            entity_id=None,
            new_values={"name": "Pot of Greed", "type": "Spell"},
            proposal_type=ProposalType.NEW_CARD,
        )
        authority.approve_proposal(moderator, proposal_id)
        [entry] = authority.audit.list()
        created = authority.repos.cards.get(entry.entity_id)
        assert created.name == "Pot of Greed"
        assert created.version == 1

    def test_approve_creates_alias(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(
            authority, contributor, clock,
            entity=DiffEntity.ALIAS, entity_id=None,
            new_values={"card_id": "c1", "alias_text": "BEWD"},
            proposal_type=ProposalType.ALIAS,
        )
        authority.approve_proposal(moderator, proposal_id)
        assert any(a.alias_text == "BEWD" for a in authority.repos.aliases.list_all())

    def test_approval_revalidates(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(
            authority, contributor, clock,
            entity=DiffEntity.PRINT, entity_id=None,
            new_values={"card_id": "c99", "set_code": "LOB-001"},
            proposal_type=ProposalType.NEW_PRINT,
        )
        with pytest.raises(ValidationError):
            authority.approve_proposal(moderator, proposal_id)
        assert authority.moderation.get_proposal(proposal_id).status == ProposalStatus.NEW

    def test_reject(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        decided = authority.reject_proposal(moderator, proposal_id, "wrong stat")
        assert decided.status == ProposalStatus.REJECTED
        assert decided.reviewer_notes == "wrong stat"
        assert authority.repos.cards.get("c4").version == 1
        assert authority.trust.get("alice").rejected_count == 1

    def test_more_info_then_approve(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        assert authority.request_more_info(moderator, proposal_id).status == ProposalStatus.MORE_INFO
        assert authority.approve_proposal(moderator, proposal_id).status == ProposalStatus.ACCEPTED

    def test_decided_proposal_is_final(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        authority.reject_proposal(moderator, proposal_id)
        with pytest.raises(ValidationError):
            authority.approve_proposal(moderator, proposal_id)

    def test_queue_filters(self, authority, contributor, moderator, clock):
        first = submit_proposal(authority, contributor, clock, "p1")
        submit_proposal(authority, contributor, clock, "p2")
        authority.reject_proposal(moderator, first)
        assert [p.proposal_id for p in authority.list_proposals(moderator)] == ["alice-p2"]
        rejected = authority.list_proposals(moderator, ProposalStatus.REJECTED)
        assert [p.proposal_id for p in rejected] == [first]

    def test_unknown_proposal(self, authority, moderator):
        with pytest.raises(NotFound):
            authority.approve_proposal(moderator, "nobody-p1")

    def test_contributor_cannot_moderate(self, authority, contributor, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        with pytest.raises(Forbidden):
            authority.approve_proposal(contributor, proposal_id)


class TestDrafts:

    def test_publish(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        reviewing = authority.mark_draft_reviewing(moderator, draft_id)
        assert reviewing.status == DraftStatus.REVIEWING

        draft, event = authority.publish_draft(moderator, draft_id)
        assert draft.status == DraftStatus.PUBLISHED
        assert draft.published_by == "mod"
        assert event.action == PublishAction.PUBLISH
        assert event.resulting_target_ids == ["c4"]
        assert authority.repos.cards.get("c4").archetype == "Elemental HERO"
        assert authority.trust.get("alice").accepted_count == 1

    def test_publish_with_moderator_edit(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        draft, event = authority.publish_draft(moderator, draft_id, {"archetype": "HERO", "atk": 1900})
        card = authority.repos.cards.get("c4")
        assert card.atk == 1900
        assert draft.proposed_payload == {"archetype": "HERO", "atk": 1900}
        assert event.diff_applied == {"archetype": "HERO", "atk": 1900}

    def test_publish_without_target_creates_card(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(
            authority, contributor, clock,
            target_type=DraftTargetType.UNKNOWN, target_id=None,
            payload={"name": "Monster Reborn", "type": "Spell"},
        )
        _, event = authority.publish_draft(moderator, draft_id)
        created = authority.repos.cards.get(event.resulting_target_ids[0])
        assert created.name == "Monster Reborn"

    def test_reject(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        draft, event = authority.reject_draft(moderator, draft_id, "blurry scan")
        assert draft.status == DraftStatus.REJECTED
        assert draft.review_notes == "blurry scan"
        assert event.action == PublishAction.REJECT
        assert authority.trust.get("alice").rejected_count == 1

    def test_request_changes_is_terminal(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        draft, _ = authority.request_draft_changes(moderator, draft_id, "crop the art box")
        assert draft.status == DraftStatus.REQUEST_CHANGES
        with pytest.raises(ValidationError):
            authority.publish_draft(moderator, draft_id)
        assert authority.draft_queue(moderator) == []

    def test_reviewing_only_from_new(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        authority.mark_draft_reviewing(moderator, draft_id)
        with pytest.raises(ValidationError):
            authority.mark_draft_reviewing(moderator, draft_id)

    def test_status_cache_follows_draft(self, authority, contributor, moderator, clock):
        draft_id = submit_draft(authority, contributor, clock)
        authority.reject_draft(moderator, draft_id, "no")
        cached = authority.repos.draft_statuses.get(draft_id)
        assert cached.status == DraftStatus.REJECTED
        assert cached.review_notes == "no"

    def test_publish_events_newest_first(self, authority, contributor, moderator, clock):
        first = submit_draft(authority, contributor, clock, "d1")
        second = submit_draft(authority, contributor, clock, "d2", payload={"text": "Updated text."})
        authority.reject_draft(moderator, first)
        clock.advance(seconds=1)
        authority.publish_draft(moderator, second)
        assert [e.draft_id for e in authority.publish_events(moderator)] == [second, first]


class TestClaimResolution:

    @pytest.fixture
    def open_claim(self, authority, contributor, clock):
        authority.push_observations(contributor, [OutboxObservation(
            local_observation_id="o1",
            created_at=clock(),
            target_type=TargetType.CARD,
            target_id="c1",
            field_path="cards.def",
            value=2500,
            ocr_confidence=0.9,
            capture_quality_score=0.9,
        )])
        [claim] = authority.repos.claims.list_all()
        return claim

    def test_queue(self, authority, moderator, open_claim):
        assert [c.claim_id for c in authority.consensus_queue(moderator)] == [open_claim.claim_id]
        [obs] = authority.claim_observations(moderator, open_claim.claim_id)
        assert obs.observation_id == "alice-o1"

    def test_manual_accept_bumps_version(self, authority, moderator, open_claim):
        resolved = authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.ACCEPTED)
        assert resolved.status == ClaimStatus.ACCEPTED
        card = authority.repos.cards.get("c1")
        assert card.version == 2
        assert card.def_ == 2500
        assert "cards.def" in card.consensus

    def test_manual_reject(self, authority, moderator, open_claim):
        resolved = authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.REJECTED, "misread")
        assert resolved.status == ClaimStatus.REJECTED
        assert authority.repos.cards.get("c1").version == 1
        assert authority.trust.get("alice").rejected_count == 1

    def test_supersede(self, authority, moderator, open_claim):
        resolved = authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.SUPERSEDED)
        assert resolved.status == ClaimStatus.SUPERSEDED
        assert resolved.closed_at is not None

    def test_cannot_resolve_to_open(self, authority, moderator, open_claim):
        with pytest.raises(ValidationError):
            authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.OPEN)

    def test_closed_claim_is_final(self, authority, moderator, open_claim):
        authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.REJECTED)
        with pytest.raises(ValidationError):
            authority.resolve_claim(moderator, open_claim.claim_id, ClaimStatus.ACCEPTED)

    def test_unknown_claim(self, authority, moderator):
        with pytest.raises(NotFound):
            authority.resolve_claim(moderator, "missing", ClaimStatus.ACCEPTED)


class TestVersioning:

    def test_versions_only_move_forward(self, authority, admin):
        versions = [authority.repos.cards.get("c4").version]
        for atk in (1900, 2000, 2100):
            versions.append(authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": atk}).version)
        assert versions == [1, 2, 3, 4]
        history = authority.versions.history(TargetType.CARD, "c4")
        assert [v.version for v in history] == [1, 2, 3, 4]

    def test_rollback_reapplies_as_new_version(self, authority, admin):
        authority.admin_edit(admin, TargetType.CARD, "c4", {"archetype": "Elemental HERO"})
        restored = authority.rollback(admin, TargetType.CARD, "c4", 1, "revert")
        assert restored.version == 3
        assert restored.archetype == "HERO"

        [rollback, _] = authority.audit.list()
        assert rollback.action == AuditAction.ROLLBACK
        assert rollback.diff.new_values == {"version": 3, "restored_from": 1}

    def test_rollback_to_missing_version(self, authority, admin):
        with pytest.raises(Conflict):
            authority.rollback(admin, TargetType.CARD, "c4", 7)

    def test_rollback_missing_record(self, authority, admin):
        with pytest.raises(NotFound):
            authority.rollback(admin, TargetType.CARD, "c99", 1)

    def test_admin_edit_validates(self, authority, admin):
        with pytest.raises(ValidationError):
            authority.admin_edit(admin, TargetType.PRINT, "p1", {"set_code": "bad code"})
        assert authority.repos.prints.get("p1").version == 1

    def test_print_cannot_be_relinked_to_missing_card(self, authority, admin):
        with pytest.raises(ValidationError, match="c99"):
            authority.admin_edit(admin, TargetType.PRINT, "p1", {"card_id": "c99"})
        assert authority.repos.prints.get("p1").card_id == "c1"
        assert authority.repos.prints.get("p1").version == 1

    def test_print_can_be_relinked_to_existing_card(self, authority, admin):
        relinked = authority.admin_edit(admin, TargetType.PRINT, "p1", {"card_id": "c2"})
        assert relinked.card_id == "c2"
        assert relinked.version == 2

    def test_deprecate(self, authority, admin, moderator):
        deprecated = authority.deprecate(admin, TargetType.CARD, "c3", "banned art")
        assert deprecated.deprecated_at is not None
        assert deprecated.version == 2
        assert "c3" not in [c.id for c in authority.pull(moderator).cards]
        with pytest.raises(ValidationError):
            authority.deprecate(admin, TargetType.CARD, "c3")

    def test_admin_only(self, authority, moderator):
        with pytest.raises(Forbidden):
            authority.rollback(moderator, TargetType.CARD, "c4", 1)
        with pytest.raises(Forbidden):
            authority.admin_edit(moderator, TargetType.CARD, "c4", {"atk": 0})

    def test_record_history(self, authority, admin, moderator):
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 1900}, "errata")
        versions, entries = authority.record_history(moderator, TargetType.CARD, "c4")
        assert [v.version for v in versions] == [1, 2]
        assert versions[0].snapshot["atk"] == 1800
        assert [e.action for e in entries] == [AuditAction.ADMIN_EDIT]


class TestAuditChain:

    def test_chain_links(self, authority, admin):
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 1900})
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 2000})
        newest, oldest = authority.audit.list()
        assert oldest.sequence_number == 0
        assert oldest.previous_hash is None
        assert newest.previous_hash == oldest.entry_hash
        assert authority.audit.verify_chain()

    def test_tampering_detected(self, authority, admin):
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 1900})
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 2000})
        _, oldest = authority.audit.list()
        forged = oldest.model_copy(update={"notes": "nothing to see"})
        authority.repos.audit.put(forged)
        assert not authority.audit.verify_chain()

    def test_deleted_entry_detected(self, authority, admin):
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 1900})
        authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": 2000})
        authority.repos.store.delete("audit_log", "000000000000")
        assert not authority.audit.verify_chain()

    def test_audit_limit(self, authority, admin, moderator):
        for atk in (1900, 2000, 2100):
            authority.admin_edit(admin, TargetType.CARD, "c4", {"atk": atk})
        assert len(authority.audit_log(moderator, limit=2)) == 2


class TestTrust:

    def test_profiles_seeded_by_role(self, authority, make_principal):
        make_principal("walk-in", Role.GUEST)
        make_principal("regular")
        assert authority.trust.get("walk-in").reputation_score == 0.2
        assert authority.trust.get("regular").reputation_score == 0.7

    def test_stats(self, authority, contributor, moderator, clock):
        proposal_id = submit_proposal(authority, contributor, clock)
        authority.reject_proposal(moderator, proposal_id)
        stats = {s.principal_id: s for s in authority.trust_stats(moderator)}
        assert stats["alice"].rejected_count == 1
        assert stats["alice"].rejection_rate == 1.0
        assert stats["alice"].trust_score == 70

    def test_ema_policy_moves_scores(self, clock):
        authority = CentralAuthority(clock=clock, reputation_policy=EmaReputationPolicy(alpha=0.5))
        seed_demo_catalog(authority, clock())
        authority.trust.set_reputation("alice", 0.6)
        authority.trust.record_accepted("alice")
        assert authority.trust.get("alice").reputation_score == pytest.approx(0.8)
        authority.trust.record_rejected("alice")
        assert authority.trust.get("alice").reputation_score == pytest.approx(0.4)

    def test_concurrent_decisions_keep_every_count(self, clock):
        authority = CentralAuthority(store=SlowTrustStore(), clock=clock)
        seed_demo_catalog(authority, clock())
        alice = Principal(principal_id="alice", username="alice", device_id="alice-device", role=Role.CONTRIBUTOR)
        moderator = Principal(principal_id="mod", username="mod", device_id="mod-device", role=Role.MODERATOR)
        authority.authenticate(alice)
        first = submit_proposal(authority, alice, clock, "p1", entity_id="c4")
        second = submit_proposal(authority, alice, clock, "p2", entity_id="c3", new_values={"text": "Destroy 1."})

        errors = []

        def decide(action, proposal_id):
            try:
                action(moderator, proposal_id)
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [
            threading.Thread(target=decide, args=(authority.approve_proposal, first)),
            threading.Thread(target=decide, args=(authority.reject_proposal, second)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        profile = authority.trust.get("alice")
        assert profile.accepted_count == 1
        assert profile.rejected_count == 1

    def test_ema_alpha_bounds(self):
        with pytest.raises(ValueError):
            EmaReputationPolicy(alpha=0.0)
