"""
Tests for the identity matcher.

Fingerprints below are chosen against the demo catalog:
    c2/p2 art box  f0a0a0f0f0a0a0f0
    c2/p2 full     00ff0f0ff0f00fff
"""

import pytest

from cardledger.core import CatalogSnapshot, IdentityMatcher
from cardledger.core.matcher import _VisualGroup
from cardledger.schemas import MatchReason, Role, ScanQuery
from cardledger.seed import demo_aliases, demo_cards, demo_image_features, demo_prints


# Four bits away from the Dark Magician art box
NEAR_DARK_MAGICIAN_ART = "f0a0a0f0f0a0a0ff"
DARK_MAGICIAN_FULL = "00ff0f0ff0f00fff"


@pytest.fixture
def matcher(clock):
    now = clock()
    snapshot = CatalogSnapshot.build(
        demo_cards(now), demo_prints(now), demo_aliases(now), demo_image_features()
    )
    return IdentityMatcher(snapshot)


class TestVisualStage:

    def test_focus_only_distance(self, matcher):
        candidates = matcher.visual_stage(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        assert candidates[0].card.id == "c2"
        assert candidates[0].print.print_id == "p2"
        assert candidates[0].score == pytest.approx(1 - 4 / 64)
        assert candidates[0].reason == MatchReason.VISUAL

    def test_missing_catalog_region_counts_as_worst(self, matcher):
        candidates = matcher.visual_stage(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        scores = {c.card.id: c.score for c in candidates}
        # c3 and c4 have no art-box fingerprint
        assert scores["c3"] == 0.0
        assert scores["c4"] == 0.0
        assert scores["c1"] == pytest.approx(1 - 24 / 64)

    def test_equal_distances_order_by_card_id(self, matcher):
        candidates = matcher.visual_stage(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        assert [c.card.id for c in candidates] == ["c2", "c1", "c3", "c4"]

    def test_weighted_blend_when_query_has_both(self):
        group = _VisualGroup("c1", "p1", dist_full=10, dist_focus=None)
        assert IdentityMatcher.weighted_distance(group, True, True) == pytest.approx(0.65 * 10 + 0.35 * 64)
        assert IdentityMatcher.weighted_distance(group, True, False) == 10
        assert IdentityMatcher.weighted_distance(group, False, True) == 64

    def test_no_visual_signal(self, matcher):
        assert matcher.visual_stage(ScanQuery(extracted_name="Dark Magician")) == []


class TestMatch:

    def test_strong_visual_needs_no_confirmation(self, matcher):
        result = matcher.match(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        assert result.visual_signal
        assert result.top.card.id == "c2"
        assert result.top.score >= 0.9375
        assert not result.needs_confirmation
        assert "gap-sharpened" in result.top.details

    def test_gap_sharpening_only_lifts_leader(self, matcher):
        result = matcher.match(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        # 0.9375 + 0.15 * (0.9375 - 0.625)
        assert result.top.score == pytest.approx(0.984375)
        runner_up = result.alternatives[0]
        assert runner_up.card.id == "c1"
        assert runner_up.score == pytest.approx(0.625)

    def test_set_code_conflict_penalizes(self, matcher):
        result = matcher.match(ScanQuery(fingerprint_full=DARK_MAGICIAN_FULL, extracted_set_code="SDK-001"))
        assert result.top.card.id == "c2"
        assert "set-code-conflict" in result.top.details
        blue_eyes = next(c for c in result.alternatives if c.card.id == "c1")
        assert "set-code-confirmed" in blue_eyes.details
        assert blue_eyes.score == pytest.approx(1 - 21 / 64 + 0.12)

    def test_name_bonus(self, matcher):
        plain = matcher.visual_stage(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        assisted = IdentityMatcher.assist_visual(plain, None, "Dark Magician")
        dm = next(c for c in assisted if c.card.id == "c2")
        assert "name-confirmed" in dm.details

    def test_assist_does_not_mutate_input(self, matcher):
        plain = matcher.visual_stage(ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART))
        before = [c.score for c in plain]
        IdentityMatcher.assist_visual(plain, "SDY-006", "Dark Magician")
        assert [c.score for c in plain] == before

    def test_scores_stay_in_range(self, matcher):
        result = matcher.match(ScanQuery(
            fingerprint_full=DARK_MAGICIAN_FULL,
            fingerprint_focus="f0a0a0f0f0a0a0f0",
            extracted_set_code="SDY-006",
            extracted_name="Dark Magician",
        ))
        assert result.top.score == 1.0
        assert all(0.0 <= c.score <= 1.0 for c in result.alternatives)

    @pytest.mark.parametrize("query", [
        ScanQuery(fingerprint_focus=NEAR_DARK_MAGICIAN_ART),
        ScanQuery(fingerprint_full=DARK_MAGICIAN_FULL, extracted_set_code="SDK-001"),
        ScanQuery(extracted_name="Dark Magician"),
    ])
    def test_repeated_match_is_identical(self, matcher, query):
        first = matcher.match(query)
        second = matcher.match(query)
        assert first.model_dump() == second.model_dump()

    def test_alternatives_capped(self, matcher):
        result = matcher.match(ScanQuery(fingerprint_full=DARK_MAGICIAN_FULL))
        assert len(result.alternatives) <= 5


class TestTextFallback:

    def test_set_code_only(self, matcher):
        result = matcher.match(ScanQuery(extracted_set_code="SDK-001"))
        assert not result.visual_signal
        assert result.top.card.id == "c1"
        assert result.top.print.print_id == "p1"
        assert result.top.reason == MatchReason.SET_CODE
        assert result.top.score == pytest.approx(0.58)
        assert result.needs_confirmation

    def test_set_code_case_insensitive(self, matcher):
        result = matcher.match(ScanQuery(extracted_set_code="sdy-006"))
        assert result.top.card.id == "c2"

    def test_fuzzy_set_code(self, matcher):
        result = matcher.match(ScanQuery(extracted_set_code="CT07EN006"))
        assert result.top is not None
        assert result.top.card.id == "c4"

    def test_exact_name(self, matcher):
        result = matcher.match(ScanQuery(extracted_name="Dark Magician"))
        assert result.top.card.id == "c2"
        assert result.top.reason == MatchReason.OCR_NAME
        assert result.top.score == pytest.approx(0.65)
        assert result.needs_confirmation

    def test_alias(self, matcher):
        result = matcher.match(ScanQuery(extracted_name="Stratos"))
        assert result.top.card.id == "c4"
        assert result.top.reason == MatchReason.ALIAS
        assert result.top.score == pytest.approx(0.62)

    def test_nothing_found(self, matcher):
        result = matcher.match(ScanQuery(extracted_name="Pot of Greed"))
        assert result.top is None
        assert result.alternatives == []
        assert result.needs_confirmation

    def test_empty_query(self, matcher):
        result = matcher.match(ScanQuery())
        assert result.top is None
        assert result.needs_confirmation
        assert not result.visual_signal


class TestCatalogSnapshot:

    def test_deprecated_records_not_matchable(self, clock):
        now = clock()
        cards = demo_cards(now)
        cards[0] = cards[0].model_copy(update={"deprecated_at": now})
        snapshot = CatalogSnapshot.build(cards, demo_prints(now), demo_aliases(now), demo_image_features())
        assert snapshot.card("c1") is None
        result = IdentityMatcher(snapshot).match(ScanQuery(extracted_name="Blue-Eyes White Dragon"))
        assert result.top is None or result.top.card.id != "c1"


class TestAuthorityMatch:

    def test_guest_can_match(self, authority, make_principal):
        guest = make_principal("walk-in", Role.GUEST)
        result = authority.match(guest, ScanQuery(extracted_set_code="MRL-047"))
        assert result.top.card.name == "Mystical Space Typhoon"
