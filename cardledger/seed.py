"""
Demo Catalog

Four cards, one print each, a short alias per card and the fingerprints the
scanner matches against. Used for local development, the demo script and
tests.

SEEDING:
- Disabled at app startup unless CARDLEDGER_SEED_DEMO_DATA=1
- seed_catalog() skips ids that already exist, so seeding twice is harmless
"""

from datetime import datetime
from typing import Optional

from .core.runtime import utc_now
from .schemas import Alias, Card, ImageFeature, Print, RoiType


def demo_cards(now: datetime) -> list[Card]:
    return [
        Card(
            id="c1", name="Blue-Eyes White Dragon", type="Monster", attribute="LIGHT",
            level_rank_link=8, atk=3000, def_=2500,
            text="This legendary dragon is a powerful engine of destruction.",
            archetype="Blue-Eyes", image_key="img-blueeyes", updated_at=now,
        ),
        Card(
            id="c2", name="Dark Magician", type="Monster", attribute="DARK",
            level_rank_link=7, atk=2500, def_=2100,
            text="The ultimate wizard in terms of attack and defense.",
            archetype="Dark Magician", image_key="img-darkmagician", updated_at=now,
        ),
        Card(
            id="c3", name="Mystical Space Typhoon", type="Spell",
            text="Target 1 Spell/Trap on the field; destroy that target.",
            image_key="img-mst", updated_at=now,
        ),
        Card(
            id="c4", name="Elemental HERO Stratos", type="Monster", attribute="WIND",
            level_rank_link=4, atk=1800, def_=300,
            text="When this card is Normal or Special Summoned...",
            archetype="HERO", image_key="img-stratos", updated_at=now,
        ),
    ]


def demo_prints(now: datetime) -> list[Print]:
    return [
        Print(print_id="p1", card_id="c1", set_code="SDK-001", set_name="Starter Deck Kaiba",
              rarity="Ultra Rare", edition="1st", release_date="2002-03-29", updated_at=now),
        Print(print_id="p2", card_id="c2", set_code="SDY-006", set_name="Starter Deck Yugi",
              rarity="Ultra Rare", edition="Unlimited", release_date="2002-03-29", updated_at=now),
        Print(print_id="p3", card_id="c3", set_code="MRL-047", set_name="Magic Ruler",
              rarity="Super Rare", edition="1st", release_date="2002-09-16", updated_at=now),
        Print(print_id="p4", card_id="c4", set_code="CT07-EN006", set_name="Collector Tin 2010",
              rarity="Secret Rare", edition="Limited", release_date="2010-08-31", updated_at=now),
    ]


def demo_aliases(now: datetime) -> list[Alias]:
    return [
        Alias(alias_id="a1", card_id="c1", alias_text="Blue Eyes", updated_at=now),
        Alias(alias_id="a2", card_id="c2", alias_text="DM", updated_at=now),
        Alias(alias_id="a3", card_id="c3", alias_text="MST", updated_at=now),
        Alias(alias_id="a4", card_id="c4", alias_text="Stratos", updated_at=now),
    ]


# (feature_id, card_id, print_id, fingerprint, region)
_FEATURES = [
    ("f1", "c1", "p1", "8f0f0f0ff0f0f0f0", RoiType.FULL_CARD),
    ("f2", "c1", "p1", "f0f08f8f7070f0f0", RoiType.ART_BOX),
    ("f3", "c2", "p2", "00ff0f0ff0f00fff", RoiType.FULL_CARD),
    ("f4", "c2", "p2", "f0a0a0f0f0a0a0f0", RoiType.ART_BOX),
    ("f5", "c3", "p3", "3f3f0f0f0f0f3f3f", RoiType.FULL_CARD),
    ("f6", "c4", "p4", "f00ff00ff00ff00f", RoiType.FULL_CARD),
]


def demo_image_features() -> list[ImageFeature]:
    features = []
    for feature_id, card_id, print_id, fingerprint, region in _FEATURES:
        full = region == RoiType.FULL_CARD
        features.append(ImageFeature(
            feature_id=feature_id,
            card_id=card_id,
            print_id=print_id,
            fingerprint=fingerprint,
            roi_type=region,
            width=320 if full else 256,
            height=466 if full else 192,
        ))
    return features


def seed_demo_catalog(authority, now: Optional[datetime] = None) -> None:
    """Load the demo catalog into a CentralAuthority."""
    now = now or utc_now()
    authority.seed_catalog(
        cards=demo_cards(now),
        prints=demo_prints(now),
        aliases=demo_aliases(now),
        features=demo_image_features(),
    )
