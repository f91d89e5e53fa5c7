"""
Demonstration: Scan to Canonical Record

This example walks one card through the system: an offline scan, crowd
observations that reach consensus, a moderator-published draft, an admin
rollback and a verified snapshot restore on a second device.

Run with: python -m examples.demo_lifecycle
"""

from datetime import datetime, timezone

from cardledger.core import CentralAuthority
from cardledger.db import InMemoryStore
from cardledger.schemas import (
    DraftTargetType,
    OutboxDraft,
    OutboxObservation,
    Principal,
    Role,
    ScanQuery,
    TargetType,
)
from cardledger.seed import seed_demo_catalog
from cardledger.sync import LocalTransport, SyncClient


def banner(title: str) -> None:
    print("=" * 60)
    print(title)
    print("=" * 60)


def principal(name: str, role: Role) -> Principal:
    return Principal(principal_id=name, username=name, device_id=f"{name}-phone", role=role)


def main():
    banner("CardLedger - Scan Lifecycle Demonstration")
    print()

    authority = CentralAuthority()
    seed_demo_catalog(authority)

    alice = principal("alice", Role.CONTRIBUTOR)
    bob = principal("bob", Role.CONTRIBUTOR)
    carol = principal("carol", Role.CONTRIBUTOR)
    mallory = principal("mallory", Role.CONTRIBUTOR)
    moderator = principal("mod", Role.MODERATOR)
    admin = principal("admin", Role.ADMIN)
    for p in (alice, bob, carol, mallory, moderator, admin):
        authority.authenticate(p)
    authority.trust.set_reputation("alice", 0.8)
    authority.trust.set_reputation("bob", 0.7)
    authority.trust.set_reputation("carol", 0.6)
    authority.trust.set_reputation("mallory", 0.5)

    # ================================================================
    # STEP 1: OFFLINE SCAN
    # ================================================================
    banner("STEP 1: OFFLINE SCAN")

    device = SyncClient(InMemoryStore(), LocalTransport(authority, alice), authority.public_key)
    device.pull()
    result = device.match(ScanQuery(fingerprint_focus="f0a0a0f0f0a0a0f4"))

    print(f"[OK] Top match: {result.top.card.name} ({result.top.score:.3f})")
    print(f"   Needs confirmation: {result.needs_confirmation}")
    print()

    # ================================================================
    # STEP 2: CROWD OBSERVATIONS
    # ================================================================
    banner("STEP 2: CROWD OBSERVATIONS")

    now = datetime.now(timezone.utc)

    def observe(who: Principal, value: str, confidence: float, quality: float):
        item = OutboxObservation(
            local_observation_id="obs-1",
            created_at=now,
            target_type=TargetType.CARD,
            target_id="c2",
            field_path="cards.name",
            value=value,
            ocr_confidence=confidence,
            capture_quality_score=quality,
        )
        return authority.push_observations(who, [item])

    observe(mallory, "Dark Magician Girl", 0.4, 0.4)
    for who in (alice, bob, carol):
        observe(who, "Dark Magician", 0.9, 0.9)

    card = authority.get_record(moderator, TargetType.CARD, "c2")
    meta = card.consensus["cards.name"]
    print("[OK] Claim auto-accepted")
    print(f"   Name: {card.name} (version {card.version})")
    print(f"   Score: {meta.consensus_score:.4f}  count={meta.consensus_count}  dissent={meta.disagreement_count}")
    print()

    # ================================================================
    # STEP 3: DRAFT REVIEW
    # ================================================================
    banner("STEP 3: DRAFT REVIEW")

    authority.push_drafts(bob, [OutboxDraft(
        local_draft_id="draft-1",
        created_at=now,
        target_type=DraftTargetType.CARD,
        target_id="c4",
        extracted_fields={"atk": "1800"},
        proposed_payload={"archetype": "Elemental HERO"},
        confidence=0.9,
    )])
    draft = authority.draft_queue(moderator)[0]
    authority.mark_draft_reviewing(moderator, draft.draft_id)
    published, event = authority.publish_draft(moderator, draft.draft_id)

    print(f"[OK] Draft {published.status.value}")
    print(f"   Resulting records: {event.resulting_target_ids}")
    print()

    # ================================================================
    # STEP 4: ROLLBACK
    # ================================================================
    banner("STEP 4: ROLLBACK")

    restored = authority.rollback(admin, TargetType.CARD, "c4", 1, note="archetype was right before")
    print(f"[OK] c4 restored to v1 content as version {restored.version}")
    print(f"   Archetype: {restored.archetype}")
    print()

    # ================================================================
    # STEP 5: SNAPSHOT RESTORE ON A NEW DEVICE
    # ================================================================
    banner("STEP 5: SNAPSHOT RESTORE")

    fresh = SyncClient(InMemoryStore(), LocalTransport(authority, carol), authority.public_key)
    report = fresh.restore_snapshot()
    print(f"[OK] Snapshot verified: {', '.join(report.checks_passed)}")
    print(f"   Local cards: {len(fresh.cards.list_all())}")
    print()

    # ================================================================
    # AUDIT TRAIL
    # ================================================================
    banner("AUDIT TRAIL")

    for entry in reversed(authority.audit_log(moderator)):
        print(f"  #{entry.sequence_number} {entry.action.value:<20} {entry.entity.value}:{entry.entity_id[:12]}")
    print(f"\n  Chain valid: {authority.audit.verify_chain()}")
    print()

    trust = {s.principal_id: s.trust_score for s in authority.trust_stats(moderator)}
    print(f"Trust scores: {trust}")


if __name__ == "__main__":
    main()
