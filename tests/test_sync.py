"""
Tests for the device side of sync: outbox, pull, and snapshot restore.
"""

import pytest

from cardledger.core import Forbidden, Signer
from cardledger.db import InMemoryStore
from cardledger.schemas import (
    DraftTargetType,
    OutboxDraft,
    OutboxObservation,
    OutboxStatus,
    Role,
    ScanQuery,
    SnapshotBundle,
    TargetType,
)
from cardledger.sync import (
    LocalTransport,
    Outbox,
    SnapshotInvalid,
    SyncClient,
    verify_snapshot,
)


def observation(local_id, target_id="c1", field_path="cards.atk", value=3000, when=None):
    return OutboxObservation(
        local_observation_id=local_id,
        created_at=when,
        target_type=TargetType.CARD,
        target_id=target_id,
        field_path=field_path,
        value=value,
        ocr_confidence=0.8,
        capture_quality_score=0.7,
    )


class TamperingTransport(LocalTransport):
    """Serves snapshots whose content was edited after signing."""

    def download_snapshot(self) -> SnapshotBundle:
        bundle = super().download_snapshot()
        content = dict(bundle.content)
        content["cards"] = [dict(c, atk=9999) if c["id"] == "c1" else c for c in content["cards"]]
        return bundle.model_copy(update={"content": content})


@pytest.fixture
def device(authority, contributor, keypair):
    _, public_key = keypair
    return SyncClient(InMemoryStore(), LocalTransport(authority, contributor), public_key)


class TestOutbox:

    def test_enqueue_resets_status(self, clock):
        outbox = Outbox(InMemoryStore())
        item = observation("o1", when=clock()).model_copy(update={"status": OutboxStatus.FAILED})
        outbox.enqueue(item)
        assert outbox.observations.get("o1").status == OutboxStatus.QUEUED

    def test_counts(self, clock):
        outbox = Outbox(InMemoryStore())
        outbox.enqueue(observation("o1", when=clock()))
        outbox.enqueue(OutboxDraft(local_draft_id="d1", created_at=clock(), proposed_payload={"atk": 1}))
        counts = outbox.counts()
        assert counts["observations"]["queued"] == 1
        assert counts["drafts"]["queued"] == 1
        assert counts["proposals"] == {"queued": 0, "sent": 0, "failed": 0}


class TestPush:

    def test_per_item_results(self, device, clock):
        device.enqueue(observation("good", when=clock()))
        device.enqueue(observation("bad", field_path="cards.colour", when=clock()))
        results = device.push_all()

        assert results["observations"].accepted_ids == ["good"]
        assert device.outbox.observations.get("good").status == OutboxStatus.SENT
        failed = device.outbox.observations.get("bad")
        assert failed.status == OutboxStatus.FAILED
        assert "cards.colour" in failed.last_error

    def test_sent_items_are_not_resent(self, device, clock):
        device.enqueue(observation("o1", when=clock()))
        device.push_all()
        assert device.push_all() == {}

    def test_failed_item_is_retried(self, device, authority, admin, clock):
        authority.deprecate(admin, TargetType.CARD, "c3")
        device.enqueue(observation("o1", target_id="c3", field_path="cards.text", value="Destroy 1 Spell/Trap.",
                                   when=clock()))
        device.push_all()
        assert device.outbox.observations.get("o1").status == OutboxStatus.FAILED

        authority.rollback(admin, TargetType.CARD, "c3", 1, "deprecated by mistake")
        device.push_all()
        assert device.outbox.observations.get("o1").status == OutboxStatus.SENT
        assert device.outbox.observations.get("o1").last_error is None

    def test_transport_error_leaves_items_queued(self, authority, make_principal, clock):
        viewer = make_principal("watcher", Role.VIEWER)
        client = SyncClient(InMemoryStore(), LocalTransport(authority, viewer))
        client.enqueue(observation("o1", when=clock()))
        with pytest.raises(Forbidden):
            client.push_all()
        assert client.outbox.observations.get("o1").status == OutboxStatus.QUEUED


class TestPull:

    def test_first_pull_loads_catalog(self, device, clock):
        response = device.pull()
        assert {c.id for c in device.cards.list_all()} == {"c1", "c2", "c3", "c4"}
        assert len(device.image_features.list_all()) == 6
        assert device.cursor.last_sync_at == clock()
        assert device.cursor.last_cards_version == 1
        assert response.claims == []

    def test_claims_delta_since_cursor(self, device, authority, make_principal, clock):
        device.pull()
        clock.advance(minutes=1)
        bob = make_principal("bob")
        authority.push_observations(bob, [observation("o1", when=clock())])

        assert len(device.pull().claims) == 1
        assert len(device.claims.list_all()) == 1
        assert device.pull().claims == []

    def test_deprecated_records_excluded(self, device, authority, admin):
        authority.deprecate(admin, TargetType.CARD, "c2")
        device.pull()
        assert device.cards.get("c2") is None

    def test_record_deprecated_after_first_pull_is_dropped(self, device, authority, admin):
        device.pull()
        assert device.cards.get("c2") is not None

        authority.deprecate(admin, TargetType.CARD, "c2")
        device.pull()
        assert device.cards.get("c2") is None
        result = device.match(ScanQuery(fingerprint_focus="f0a0a0f0f0a0a0f4"))
        assert result.top is None or result.top.card.id != "c2"

    def test_deprecated_print_is_dropped(self, device, authority, admin):
        device.pull()
        authority.deprecate(admin, TargetType.PRINT, "p1")
        device.pull()
        assert device.prints.get("p1") is None
        assert device.prints.get("p2") is not None

    def test_draft_statuses_visibility(self, authority, make_principal, moderator, clock):
        alice = make_principal("alice")
        bob = make_principal("bob")
        for who in (alice, bob):
            authority.push_drafts(who, [OutboxDraft(
                local_draft_id="d1",
                created_at=clock(),
                target_type=DraftTargetType.CARD,
                target_id="c4",
                proposed_payload={"atk": 1900},
            )])
        assert [d.draft_id for d in authority.pull(alice).draft_statuses] == ["alice-d1"]
        assert len(authority.pull(moderator).draft_statuses) == 2

    def test_guest_cannot_pull(self, authority, make_principal):
        guest = make_principal("walk-in", Role.GUEST)
        with pytest.raises(Forbidden):
            authority.pull(guest)

    def test_offline_match(self, device):
        device.pull()
        result = device.match(ScanQuery(fingerprint_focus="f0a0a0f0f0a0a0f4"))
        assert result.top.card.id == "c2"
        assert not result.needs_confirmation


class TestSnapshot:

    def test_bundle_shape(self, authority, contributor):
        bundle = authority.download_snapshot(contributor)
        assert bundle.checksum.startswith("sha256-")
        assert bundle.public_key == authority.public_key
        assert bundle.schema_version == 1
        dark_magician = next(c for c in bundle.content["cards"] if c["id"] == "c2")
        assert dark_magician["def"] == 2100

    def test_restore(self, device):
        report = device.restore_snapshot()
        assert report.verified
        assert report.checks_passed == ["structure", "checksum", "signature"]
        assert report.warnings == []
        assert len(device.cards.list_all()) == 4
        assert device.cards.get("c2").def_ == 2100
        assert device.cursor.last_cards_version == 1

    def test_restore_replaces_local_state(self, device, authority, admin):
        device.pull()
        authority.deprecate(admin, TargetType.CARD, "c1")
        device.restore_snapshot()
        assert device.cards.get("c1") is None

    def test_restore_keeps_outbox(self, device, clock):
        device.enqueue(observation("o1", when=clock()))
        device.restore_snapshot()
        assert device.outbox.observations.get("o1").status == OutboxStatus.QUEUED

    def test_tampered_snapshot_rejected(self, authority, contributor, keypair):
        _, public_key = keypair
        client = SyncClient(InMemoryStore(), TamperingTransport(authority, contributor), public_key)
        with pytest.raises(SnapshotInvalid, match="checksum mismatch"):
            client.restore_snapshot()
        assert client.cards.list_all() == []

    def test_wrong_pinned_key(self, authority, contributor):
        _, other_key = Signer.generate_keypair()
        client = SyncClient(InMemoryStore(), LocalTransport(authority, contributor), other_key)
        with pytest.raises(SnapshotInvalid, match="signature invalid"):
            client.restore_snapshot()


class TestVerifySnapshot:

    def test_unpinned_key_warns(self, authority, contributor):
        report = verify_snapshot(authority.download_snapshot(contributor))
        assert report.verified
        assert "signature checked against the bundle's own key" in report.warnings

    def test_unsigned(self, authority, contributor):
        bundle = authority.download_snapshot(contributor).model_copy(update={"signature": None})
        report = verify_snapshot(bundle)
        assert report.verified
        assert "signature" not in report.checks_passed
        assert "bundle is unsigned" in report.warnings

    def test_missing_sections(self, authority, contributor):
        bundle = authority.download_snapshot(contributor)
        content = {k: v for k, v in bundle.content.items() if k != "claims"}
        report = verify_snapshot(bundle.model_copy(update={"content": content}))
        assert not report.verified
        assert "missing sections: claims" in report.checks_failed
        assert "checksum mismatch" in report.checks_failed
