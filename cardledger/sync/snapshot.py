"""
Snapshot bundle verification

A bundle is trusted only if its checksum matches its content and, when a
public key is known, its signature verifies against that key.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import CardLedgerError
from ..core.hasher import CanonicalSerializationError, Hasher
from ..core.signer import Signer
from ..schemas import SnapshotBundle


SNAPSHOT_SECTIONS = (
    "cards",
    "prints",
    "aliases",
    "image_features",
    "claims",
    "draft_statuses",
    "sync_cursor",
)


class SnapshotInvalid(CardLedgerError):
    """Raised when a snapshot bundle fails verification."""
    code = "snapshot_invalid"


@dataclass
class SnapshotReport:
    checks_passed: list[str] = field(default_factory=list)
    checks_failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return not self.checks_failed


def verify_snapshot(bundle: SnapshotBundle, trusted_public_key: Optional[str] = None) -> SnapshotReport:
    """
    Check a bundle's structure, checksum and signature.

    Args:
        bundle: The downloaded bundle
        trusted_public_key: Authority key pinned by the client. When omitted,
            the key shipped in the bundle is used and a warning is recorded.
    """
    report = SnapshotReport()

    missing = [s for s in SNAPSHOT_SECTIONS if s not in bundle.content]
    if missing:
        report.checks_failed.append(f"missing sections: {', '.join(missing)}")
    else:
        report.checks_passed.append("structure")

    try:
        computed = Hasher.checksum(bundle.content)
    except CanonicalSerializationError as e:
        report.checks_failed.append(f"content not canonicalizable: {e}")
        return report

    if computed == bundle.checksum:
        report.checks_passed.append("checksum")
    else:
        report.checks_failed.append("checksum mismatch")

    public_key = trusted_public_key or bundle.public_key
    if not bundle.signature:
        report.warnings.append("bundle is unsigned")
    elif not public_key:
        report.warnings.append("no public key to verify the signature")
    elif Signer.verify(bundle.checksum, bundle.signature, public_key):
        report.checks_passed.append("signature")
        if trusted_public_key is None:
            report.warnings.append("signature checked against the bundle's own key")
    else:
        report.checks_failed.append("signature invalid")

    if trusted_public_key and bundle.public_key and bundle.public_key != trusted_public_key:
        report.warnings.append("bundle carries a different public key than the pinned one")

    return report


def require_verified(bundle: SnapshotBundle, trusted_public_key: Optional[str] = None) -> SnapshotReport:
    """
    Raises:
        SnapshotInvalid: if any check failed
    """
    report = verify_snapshot(bundle, trusted_public_key)
    if not report.verified:
        raise SnapshotInvalid("Snapshot rejected: " + "; ".join(report.checks_failed))
    return report
