"""
Tests for contribution intake: validation, duplicates and rate limits.
"""

import pytest

from cardledger.core import DeviceRateLimiter, Forbidden, RateLimited
from cardledger.schemas import (
    DiffEntity,
    DraftTargetType,
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    ProposalDiff,
    ProposalPayload,
    ProposalStatus,
    ProposalType,
    Role,
    TargetType,
)


def make_proposal(local_id, new_values=None, entity_id="c1", confidence=None, when=None):
    return OutboxProposal(
        local_proposal_id=local_id,
        created_at=when,
        created_by_device_id="alice-device",
        type=ProposalType.EDIT_CARD,
        payload=ProposalPayload(
            diff=ProposalDiff(
                entity=DiffEntity.CARD,
                entity_id=entity_id,
                new_values=new_values if new_values is not None else {"text": f"edit {local_id}"},
            ),
            confidence=confidence,
        ),
    )


def make_observation(local_id, field_path="cards.atk", value=3000, target_id="c1",
                     target_type=TargetType.CARD, when=None):
    return OutboxObservation(
        local_observation_id=local_id,
        created_at=when,
        target_type=target_type,
        target_id=target_id,
        field_path=field_path,
        value=value,
        ocr_confidence=0.9,
        capture_quality_score=0.9,
    )


class TestRateLimit:

    def test_thirty_first_write_is_rate_limited(self, authority, contributor, clock):
        items = [make_proposal(f"p{i}", when=clock()) for i in range(31)]
        result = authority.push_proposals(contributor, items)
        assert len(result.accepted_ids) == 30
        assert len(result.failed) == 1
        assert result.failed[0].id == "p30"
        assert result.failed[0].code == "rate_limited"

    def test_window_rolls(self, authority, contributor, clock):
        authority.push_proposals(contributor, [make_proposal(f"p{i}", when=clock()) for i in range(30)])
        blocked = authority.push_proposals(contributor, [make_proposal("late", when=clock())])
        assert blocked.failed[0].code == "rate_limited"

        clock.advance(seconds=3601)
        result = authority.push_proposals(contributor, [make_proposal("late", when=clock())])
        assert result.accepted_ids == ["late"]

    def test_rejected_items_cost_nothing(self, authority, contributor, clock):
        invalid = [make_proposal(f"bad{i}", new_values={"power": 1}, when=clock()) for i in range(5)]
        valid = [make_proposal(f"p{i}", when=clock()) for i in range(30)]
        result = authority.push_proposals(contributor, invalid + valid)
        assert len(result.accepted_ids) == 30
        assert {f.code for f in result.failed} == {"validation"}

    def test_budget_is_per_device(self, authority, make_principal, clock):
        alice = make_principal("alice")
        bob = make_principal("bob")
        authority.push_proposals(alice, [make_proposal(f"p{i}", when=clock()) for i in range(30)])
        result = authority.push_proposals(bob, [make_proposal("p0", when=clock())])
        assert result.accepted_ids == ["p0"]


class TestDeviceRateLimiter:

    def test_retry_after(self, clock):
        limiter = DeviceRateLimiter(max_writes=2, window_seconds=60, clock=clock)
        limiter.acquire("d1")
        clock.advance(seconds=10)
        limiter.acquire("d1")
        with pytest.raises(RateLimited) as exc_info:
            limiter.acquire("d1")
        # Oldest write expires 50s from now
        assert exc_info.value.retry_after == 51

    def test_remaining(self, clock):
        limiter = DeviceRateLimiter(max_writes=3, window_seconds=60, clock=clock)
        limiter.acquire("d1")
        assert limiter.remaining("d1") == 2
        assert limiter.remaining("d2") == 3


class TestProposalIntake:

    def test_server_id_is_namespaced(self, authority, contributor, moderator, clock):
        authority.push_proposals(contributor, [make_proposal("local-1", when=clock())])
        [stored] = authority.list_proposals(moderator)
        assert stored.proposal_id == "alice-local-1"
        assert stored.user_id == "alice"
        assert stored.status == ProposalStatus.NEW

    def test_resubmission_is_idempotent(self, authority, contributor, moderator, clock):
        item = make_proposal("local-1", when=clock())
        first = authority.push_proposals(contributor, [item])
        second = authority.push_proposals(contributor, [item])
        assert first.accepted_ids == second.accepted_ids == ["local-1"]
        assert len(authority.list_proposals(moderator)) == 1

    def test_low_confidence_goes_to_review(self, authority, contributor, moderator, clock):
        authority.push_proposals(contributor, [make_proposal("shaky", confidence=0.1, when=clock())])
        [stored] = authority.list_proposals(moderator)
        assert stored.status == ProposalStatus.REVIEWING
        assert stored.flagged

    def test_short_name_rejected(self, authority, contributor, clock):
        result = authority.push_proposals(contributor, [make_proposal("n", {"name": "X"}, when=clock())])
        assert result.failed[0].code == "validation"

    def test_empty_diff_rejected(self, authority, contributor, clock):
        result = authority.push_proposals(contributor, [make_proposal("e", {}, when=clock())])
        assert result.failed[0].code == "validation"

    def test_mostly_rejected_contributor_is_flagged(self, authority, contributor, moderator, clock):
        authority.push_proposals(contributor, [make_proposal(f"p{i}", when=clock()) for i in range(5)])
        for i in range(5):
            authority.reject_proposal(moderator, f"alice-p{i}", "not helpful")

        authority.push_proposals(contributor, [make_proposal("next", when=clock())])
        stored = authority.moderation.get_proposal("alice-next")
        assert stored.flagged
        assert stored.status == ProposalStatus.REVIEWING

    def test_viewer_cannot_push(self, authority, make_principal, clock):
        viewer = make_principal("watcher", Role.VIEWER)
        with pytest.raises(Forbidden):
            authority.push_proposals(viewer, [make_proposal("p", when=clock())])


class TestObservationIntake:

    def test_admitted_with_server_clock(self, authority, contributor, clock):
        result = authority.push_observations(contributor, [make_observation("o1", when=clock())])
        assert result.accepted_ids == ["o1"]
        stored = authority.repos.observations.get("alice-o1")
        assert stored.value == 3000
        assert stored.value_norm == "3000"
        assert stored.created_at == clock()

    def test_duplicate_within_window_ignored(self, authority, contributor, clock):
        authority.push_observations(contributor, [make_observation("o1", when=clock())])
        clock.advance(hours=1)
        result = authority.push_observations(contributor, [make_observation("o2", value=2900, when=clock())])
        assert result.accepted_ids == ["o2"]
        assert authority.repos.observations.get("alice-o2") is None

    def test_duplicate_window_expires(self, authority, contributor, clock):
        authority.push_observations(contributor, [make_observation("o1", when=clock())])
        clock.advance(hours=25)
        authority.push_observations(contributor, [make_observation("o2", when=clock())])
        assert authority.repos.observations.get("alice-o2") is not None

    def test_unknown_field_path(self, authority, contributor, clock):
        result = authority.push_observations(
            contributor, [make_observation("o1", field_path="cards.power", when=clock())]
        )
        assert result.failed[0].code == "validation"

    def test_field_must_match_target_type(self, authority, contributor, clock):
        result = authority.push_observations(
            contributor, [make_observation("o1", field_path="prints.set_code", value="SDK-001", when=clock())]
        )
        assert result.failed[0].code == "validation"

    def test_value_checked_against_record_rules(self, authority, contributor, clock):
        result = authority.push_observations(contributor, [
            make_observation("o1", value=12000, when=clock()),
            make_observation(
                "o2", field_path="prints.set_code", value="nope",
                target_type=TargetType.PRINT, target_id="p1", when=clock(),
            ),
        ])
        assert [f.code for f in result.failed] == ["validation", "validation"]

    def test_missing_target(self, authority, contributor, clock):
        result = authority.push_observations(contributor, [make_observation("o1", target_id="c99", when=clock())])
        assert result.failed[0].code == "not_found"

    def test_deprecated_target(self, authority, contributor, admin, clock):
        authority.deprecate(admin, TargetType.CARD, "c1")
        result = authority.push_observations(contributor, [make_observation("o1", when=clock())])
        assert result.failed[0].code == "validation"

    def test_target_required(self, authority, contributor, clock):
        item = make_observation("o1", when=clock()).model_copy(update={"target_id": None})
        result = authority.push_observations(contributor, [item])
        assert result.failed[0].code == "validation"

    def test_raw_items_parsed_one_by_one(self, authority, contributor, clock):
        good = make_observation("o1", when=clock()).model_dump(mode="json")
        no_id = {k: v for k, v in good.items() if k != "local_observation_id"}
        result = authority.push_observations(contributor, [good, no_id])
        assert result.accepted_ids == ["o1"]
        assert result.failed[0].id == "item-1"
        assert result.failed[0].code == "validation"
        assert "local_observation_id" in result.failed[0].error


class TestDraftIntake:

    def test_draft_admitted(self, authority, contributor, moderator, clock):
        result = authority.push_drafts(contributor, [OutboxDraft(
            local_draft_id="d1",
            created_at=clock(),
            target_type=DraftTargetType.CARD,
            target_id="c4",
            proposed_payload={"archetype": "Elemental HERO"},
            confidence=0.8,
        )])
        assert result.accepted_ids == ["d1"]
        [draft] = authority.draft_queue(moderator)
        assert draft.draft_id == "alice-d1"
        assert draft.created_by == "alice"

    def test_empty_payload_rejected(self, authority, contributor, clock):
        result = authority.push_drafts(contributor, [OutboxDraft(local_draft_id="d1", created_at=clock())])
        assert result.failed[0].code == "validation"

    def test_unknown_key_rejected(self, authority, contributor, clock):
        result = authority.push_drafts(contributor, [OutboxDraft(
            local_draft_id="d1", created_at=clock(), proposed_payload={"colour": "blue"},
        )])
        assert result.failed[0].code == "validation"

    def test_missing_target_rejected(self, authority, contributor, clock):
        result = authority.push_drafts(contributor, [OutboxDraft(
            local_draft_id="d1", created_at=clock(), target_type=DraftTargetType.PRINT,
            target_id="p99", proposed_payload={"rarity": "Rare"},
        )])
        assert result.failed[0].code == "not_found"
