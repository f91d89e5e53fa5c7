# Device-side sync: outbox, transports, snapshot verification
from .outbox import Outbox, OutboxItem
from .snapshot import SnapshotInvalid, SnapshotReport, require_verified, verify_snapshot
from .transport import HttpTransport, LocalTransport, Transport
from .client import SyncClient

__all__ = [
    "Outbox",
    "OutboxItem",
    "SnapshotInvalid",
    "SnapshotReport",
    "require_verified",
    "verify_snapshot",
    "HttpTransport",
    "LocalTransport",
    "Transport",
    "SyncClient",
]
