"""
Identity Matcher

Ranks canonical records against one scan.

Two stages:
1. Visual: fingerprint distance against every known image region
2. Text assist: set code and name either adjust visual scores or, when no
   visual candidate exists, produce candidates on their own

The matcher is a pure function of an immutable CatalogSnapshot and the
query. It never raises for "no match": ambiguity is an expected outcome and
comes back as needs_confirmation=True.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..schemas import (
    Alias,
    Card,
    ImageFeature,
    MatchCandidate,
    MatchReason,
    MatchResult,
    Print,
    RoiType,
    ScanQuery,
)
from .similarity import MAX_FINGERPRINT_DISTANCE, fingerprint_distance, text_similarity


# Visual stage
FULL_WEIGHT = 0.65
FOCUS_WEIGHT = 0.35
VISUAL_SHORTLIST = 20

# Text assist on top of visual candidates
SET_CODE_BONUS = 0.12
NAME_BONUS = 0.08
NAME_BONUS_THRESHOLD = 0.75
GAP_SHARPENING = 0.15

# Text-only fallback
SET_CODE_SCORE = 0.58
SET_CODE_FUZZY_THRESHOLD = 0.8
NAME_THRESHOLD = 0.55
NAME_BASE, NAME_SCALE = 0.40, 0.25
ALIAS_THRESHOLD = 0.6
ALIAS_BASE, ALIAS_SCALE = 0.38, 0.24

# Confirmation thresholds
VISUAL_CONFIRM_THRESHOLD = 0.78
TEXT_CONFIRM_THRESHOLD = 0.84

MAX_ALTERNATIVES = 5


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Point-in-time, read-only view of the catalog.

    Safe to share across threads: nothing here is mutated after construction.
    """
    cards: tuple[Card, ...]
    prints: tuple[Print, ...]
    aliases: tuple[Alias, ...]
    features: tuple[ImageFeature, ...]

    @classmethod
    def build(
        cls,
        cards: Iterable[Card],
        prints: Iterable[Print],
        aliases: Iterable[Alias] = (),
        features: Iterable[ImageFeature] = (),
    ) -> "CatalogSnapshot":
        # Deprecated records are not matchable
        return cls(
            cards=tuple(c for c in cards if c.deprecated_at is None),
            prints=tuple(p for p in prints if p.deprecated_at is None),
            aliases=tuple(aliases),
            features=tuple(features),
        )

    def card(self, card_id: Optional[str]) -> Optional[Card]:
        return next((c for c in self.cards if c.id == card_id), None)

    def print_(self, print_id: Optional[str]) -> Optional[Print]:
        return next((p for p in self.prints if p.print_id == print_id), None)


@dataclass(frozen=True)
class _VisualGroup:
    card_id: Optional[str]
    print_id: Optional[str]
    dist_full: Optional[int]
    dist_focus: Optional[int]


def _candidate_key(candidate: MatchCandidate) -> tuple[str, str]:
    return (candidate.card.id, candidate.print.print_id if candidate.print else "")


def _with_score(candidate: MatchCandidate, score: float, note: Optional[str] = None) -> MatchCandidate:
    details = f"{candidate.details}; {note}" if note else candidate.details
    return candidate.model_copy(update={"score": min(1.0, max(0.0, score)), "details": details})


class IdentityMatcher:
    """Matches scans against one CatalogSnapshot."""

    def __init__(self, snapshot: CatalogSnapshot):
        self._snapshot = snapshot

    @property
    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    def match(self, query: ScanQuery) -> MatchResult:
        visual = self.visual_stage(query)
        if visual:
            candidates = self.assist_visual(visual, query.extracted_set_code, query.extracted_name)
            threshold = VISUAL_CONFIRM_THRESHOLD
        else:
            candidates = self.text_fallback(query.extracted_name, query.extracted_set_code)
            threshold = TEXT_CONFIRM_THRESHOLD

        ranked = sorted(candidates, key=lambda c: (-c.score, *_candidate_key(c)))
        top = ranked[0] if ranked else None
        return MatchResult(
            top=top,
            alternatives=ranked[1:1 + MAX_ALTERNATIVES],
            needs_confirmation=top is None or top.score < threshold,
            visual_signal=bool(visual),
        )

    # ================================================================
    # VISUAL STAGE
    # ================================================================

    def _group_distances(self, query: ScanQuery) -> list[_VisualGroup]:
        groups: dict[tuple, dict] = {}
        for feature in self._snapshot.features:
            key = (feature.card_id, feature.print_id)
            entry = groups.setdefault(key, {"full": None, "focus": None})
            try:
                if query.fingerprint_full and feature.roi_type == RoiType.FULL_CARD:
                    entry["full"] = fingerprint_distance(query.fingerprint_full.lower(), feature.fingerprint.lower())
                if query.fingerprint_focus and feature.roi_type == RoiType.ART_BOX:
                    entry["focus"] = fingerprint_distance(query.fingerprint_focus.lower(), feature.fingerprint.lower())
            except ValueError:
                # Fingerprint of a different bit length; not comparable
                continue
        return [
            _VisualGroup(card_id, print_id, entry["full"], entry["focus"])
            for (card_id, print_id), entry in groups.items()
        ]

    @staticmethod
    def weighted_distance(group: _VisualGroup, has_full: bool, has_focus: bool) -> float:
        """
        Blend region distances. A region the catalog lacks counts as the worst
        case; a region the query lacks is left out of the blend.
        """
        worst = MAX_FINGERPRINT_DISTANCE
        full = group.dist_full if group.dist_full is not None else worst
        focus = group.dist_focus if group.dist_focus is not None else worst
        if has_full and has_focus:
            return FULL_WEIGHT * full + FOCUS_WEIGHT * focus
        return full if has_full else focus

    def visual_stage(self, query: ScanQuery) -> list[MatchCandidate]:
        if not query.has_visual_signal:
            return []
        has_full = bool(query.fingerprint_full)
        has_focus = bool(query.fingerprint_focus)

        scored = [
            (self.weighted_distance(g, has_full, has_focus), g)
            for g in self._group_distances(query)
        ]
        scored.sort(key=lambda item: (item[0], item[1].card_id or "", item[1].print_id or ""))

        candidates = []
        for distance, group in scored[:VISUAL_SHORTLIST]:
            card = self._snapshot.card(group.card_id)
            if card is None:
                continue
            candidates.append(
                MatchCandidate(
                    card=card,
                    print=self._snapshot.print_(group.print_id) if group.print_id else None,
                    score=max(0.0, 1 - distance / MAX_FINGERPRINT_DISTANCE),
                    reason=MatchReason.VISUAL,
                    details=f"visual distance={distance:.2f}",
                )
            )
        return candidates

    # ================================================================
    # TEXT ASSIST
    # ================================================================

    @staticmethod
    def assist_visual(
        candidates: list[MatchCandidate],
        set_code: Optional[str],
        name: Optional[str],
    ) -> list[MatchCandidate]:
        """
        Adjust visual scores with text signals, then sharpen the leader.

        Returns a new list; the input candidates are not modified.
        """
        adjusted = []
        for candidate in candidates:
            score = candidate.score
            notes = []
            printed_code = candidate.print.set_code if candidate.print else None
            if set_code and printed_code:
                if printed_code.upper() == set_code.upper():
                    score = min(1.0, score + SET_CODE_BONUS)
                    notes.append("set-code-confirmed")
                else:
                    score = max(0.0, score - SET_CODE_BONUS)
                    notes.append("set-code-conflict")
            if name and text_similarity(name, candidate.card.name) > NAME_BONUS_THRESHOLD:
                score = min(1.0, score + NAME_BONUS)
                notes.append("name-confirmed")
            adjusted.append(_with_score(candidate, score, "; ".join(notes) or None))

        if not adjusted:
            return adjusted

        scores = sorted((c.score for c in adjusted), reverse=True)
        best = scores[0]
        second = scores[1] if len(scores) > 1 else 0.0
        boost = max(0.0, best - second) * GAP_SHARPENING
        if boost == 0:
            return adjusted
        return [
            _with_score(c, c.score + boost, "gap-sharpened") if c.score == best else c
            for c in adjusted
        ]

    def text_fallback(self, name: Optional[str], set_code: Optional[str]) -> list[MatchCandidate]:
        """Text-only candidates for when no visual candidate exists."""
        found: dict[tuple[str, str], MatchCandidate] = {}

        def keep(candidate: MatchCandidate) -> None:
            key = _candidate_key(candidate)
            if key not in found or candidate.score > found[key].score:
                found[key] = candidate

        if set_code:
            print_ = self._find_print_by_set_code(set_code)
            card = self._snapshot.card(print_.card_id) if print_ else None
            if card is not None:
                keep(MatchCandidate(
                    card=card,
                    print=print_,
                    score=SET_CODE_SCORE,
                    reason=MatchReason.SET_CODE,
                    details="visual unavailable; set code fallback",
                ))

        if name:
            for card in self._snapshot.cards:
                similarity = text_similarity(name, card.name)
                if similarity > NAME_THRESHOLD:
                    keep(MatchCandidate(
                        card=card,
                        score=NAME_BASE + similarity * NAME_SCALE,
                        reason=MatchReason.OCR_NAME,
                        details=f"visual unavailable; name similarity={similarity:.2f}",
                    ))
            for alias in self._snapshot.aliases:
                similarity = text_similarity(name, alias.alias_text)
                card = self._snapshot.card(alias.card_id)
                if similarity > ALIAS_THRESHOLD and card is not None:
                    keep(MatchCandidate(
                        card=card,
                        score=ALIAS_BASE + similarity * ALIAS_SCALE,
                        reason=MatchReason.ALIAS,
                        details=f"visual unavailable; alias '{alias.alias_text}'",
                    ))

        return list(found.values())

    def _find_print_by_set_code(self, set_code: str) -> Optional[Print]:
        wanted = set_code.strip().upper()
        exact = next((p for p in self._snapshot.prints if p.set_code.upper() == wanted), None)
        if exact is not None:
            return exact
        best, best_similarity = None, SET_CODE_FUZZY_THRESHOLD
        for print_ in self._snapshot.prints:
            similarity = text_similarity(wanted, print_.set_code)
            if similarity >= best_similarity:
                best, best_similarity = print_, similarity
        return best
