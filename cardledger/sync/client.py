"""
Sync Client

Device-side half of the sync protocol. Owns the outbox and the local copy of
the catalog, and is the only thing that moves outbox items between states.

    push_all()          queued + failed items -> authority, per-item results
    pull()              current catalog, plus claim and draft deltas since the cursor
    restore_snapshot()  verified full-state replacement of the local catalog

Matching works offline against local_catalog().
"""

from typing import Optional

from ..core.matcher import CatalogSnapshot, IdentityMatcher
from ..db import KeyValueStore, Repository
from ..observability import get_logger
from ..schemas import (
    Alias,
    Card,
    Claim,
    DraftStatusCache,
    ImageFeature,
    MatchResult,
    Print,
    PullResponse,
    PushResult,
    ScanQuery,
    SnapshotBundle,
    SyncCursor,
)
from .outbox import Outbox, OutboxItem
from .snapshot import SnapshotReport, require_verified
from .transport import Transport

logger = get_logger(__name__)


_CURSOR_KEY = "cursor"


class SyncClient:
    """
    Args:
        store: Device-local KeyValueStore
        transport: Route to the authority
        trusted_public_key: Pinned authority key for snapshot signatures
    """

    def __init__(
        self,
        store: KeyValueStore,
        transport: Transport,
        trusted_public_key: Optional[str] = None,
    ):
        self._store = store
        self.transport = transport
        self.trusted_public_key = trusted_public_key
        self.outbox = Outbox(store)

        self.cards = Repository(store, "local_cards", Card, lambda c: c.id)
        self.prints = Repository(store, "local_prints", Print, lambda p: p.print_id)
        self.aliases = Repository(store, "local_aliases", Alias, lambda a: a.alias_id)
        self.image_features = Repository(store, "local_image_features", ImageFeature, lambda f: f.feature_id)
        self.claims = Repository(store, "local_claims", Claim, lambda c: c.claim_id)
        self.draft_statuses = Repository(store, "local_draft_statuses", DraftStatusCache, lambda d: d.draft_id)

    # ------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------

    def enqueue(self, item: OutboxItem) -> OutboxItem:
        return self.outbox.enqueue(item)

    def push_all(self) -> dict[str, PushResult]:
        """
        Push every pending proposal, observation and draft.

        Transport errors propagate and leave the items untouched.
        """
        results = {}
        for kind, repository, push in (
            ("proposals", self.outbox.proposals, self.transport.push_proposals),
            ("observations", self.outbox.observations, self.transport.push_observations),
            ("drafts", self.outbox.drafts, self.transport.push_drafts),
        ):
            pending = Outbox.pending(repository)
            if not pending:
                continue
            result = push(pending)
            Outbox.apply_result(repository, pending, result)
            results[kind] = result
            logger.info(
                "Outbox pushed",
                kind=kind,
                accepted=len(result.accepted_ids),
                failed=len(result.failed),
            )
        return results

    # ------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------

    @property
    def cursor(self) -> SyncCursor:
        data = self._store.get("sync_state", _CURSOR_KEY)
        return SyncCursor.model_validate(data) if data else SyncCursor()

    def _save_cursor(self, cursor: SyncCursor) -> None:
        self._store.put("sync_state", _CURSOR_KEY, cursor.model_dump(mode="json"))

    @staticmethod
    def _replace(repository: Repository, records: list) -> None:
        """Make `repository` hold exactly `records`."""
        incoming = {repository.key_of(r) for r in records}
        for key in repository.keys():
            if key not in incoming:
                repository.delete(key)
        for record in records:
            repository.put(record)

    def _apply(self, response: PullResponse) -> None:
        # Catalog sections are the full non-deprecated state; claims and
        # draft statuses are deltas since the cursor.
        self._replace(self.cards, response.cards)
        self._replace(self.prints, response.prints)
        self._replace(self.aliases, response.aliases)
        self._replace(self.image_features, response.image_features)
        for claim in response.claims:
            self.claims.put(claim)
        for status in response.draft_statuses:
            self.draft_statuses.put(status)

    def pull(self) -> PullResponse:
        response = self.transport.pull(self.cursor.last_sync_at)
        self._apply(response)
        self._save_cursor(response.sync_cursor)
        return response

    # ------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------

    def _clear_catalog(self) -> None:
        for repository in (
            self.cards, self.prints, self.aliases,
            self.image_features, self.claims, self.draft_statuses,
        ):
            for key in repository.keys():
                repository.delete(key)

    def restore_snapshot(self) -> SnapshotReport:
        """
        Download, verify and load a full snapshot. The local catalog is
        replaced only if verification passes; the outbox is never touched.

        Raises:
            SnapshotInvalid: on checksum or signature failure
        """
        bundle: SnapshotBundle = self.transport.download_snapshot()
        report = require_verified(bundle, self.trusted_public_key)

        content = bundle.content
        self._clear_catalog()
        self._apply(PullResponse.model_validate(content))
        self._save_cursor(SyncCursor.model_validate(content["sync_cursor"]))
        logger.info(
            "Snapshot restored",
            app_version=bundle.app_version,
            cards=len(content["cards"]),
            warnings=len(report.warnings),
        )
        return report

    # ------------------------------------------------------------
    # Offline matching
    # ------------------------------------------------------------

    def local_catalog(self) -> CatalogSnapshot:
        return CatalogSnapshot.build(
            self.cards.list_all(),
            self.prints.list_all(),
            self.aliases.list_all(),
            self.image_features.list_all(),
        )

    def match(self, query: ScanQuery) -> MatchResult:
        return IdentityMatcher(self.local_catalog()).match(query)
