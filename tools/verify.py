#!/usr/bin/env python3
"""
CardLedger Snapshot Verifier

Checks a snapshot bundle exported by the authority (GET /api/sync/snapshot
or `manage.py export-snapshot`) before a device restores from it.
No server connection required: verification is checksum plus Ed25519.

Usage:
    python tools/verify.py snapshot.json
    python tools/verify.py snapshot.json --public-key <base64>
    python tools/verify.py snapshot.json --json

Exit codes:
    0 - VERIFIED: All checks passed
    1 - TAMPERED: Checksum or signature mismatch
    2 - UNSIGNED: No signature, or no key to check it against
    3 - INVALID_FORMAT: Bundle structure invalid
"""

import argparse
import json
import sys
from enum import Enum
from pathlib import Path

from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cardledger.schemas import SnapshotBundle  # noqa: E402
from cardledger.sync.snapshot import SnapshotReport, verify_snapshot  # noqa: E402


class VerificationResult(Enum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    UNSIGNED = "UNSIGNED"
    INVALID_FORMAT = "INVALID_FORMAT"


EXIT_CODES = {
    VerificationResult.VERIFIED: 0,
    VerificationResult.TAMPERED: 1,
    VerificationResult.UNSIGNED: 2,
    VerificationResult.INVALID_FORMAT: 3,
}


def classify(report: SnapshotReport) -> VerificationResult:
    if any(c.startswith("missing sections") for c in report.checks_failed):
        return VerificationResult.INVALID_FORMAT
    if report.checks_failed:
        return VerificationResult.TAMPERED
    if "signature" not in report.checks_passed:
        return VerificationResult.UNSIGNED
    return VerificationResult.VERIFIED


def print_report(bundle: SnapshotBundle, report: SnapshotReport, result: VerificationResult, json_output: bool):
    content = bundle.content
    counts = {
        section: len(content[section])
        for section in ("cards", "prints", "aliases", "image_features", "claims")
        if isinstance(content.get(section), list)
    }

    if json_output:
        print(json.dumps({
            "result": result.value,
            "app_version": bundle.app_version,
            "schema_version": bundle.schema_version,
            "exported_at": bundle.exported_at.isoformat(),
            "counts": counts,
            "checks_passed": report.checks_passed,
            "checks_failed": report.checks_failed,
            "warnings": report.warnings,
        }, indent=2))
        return

    print("\n" + "=" * 60)
    print(f"  [{result.value}]")
    print("=" * 60)

    print(f"\nApp version:    {bundle.app_version}")
    print(f"Schema version: {bundle.schema_version}")
    print(f"Exported at:    {bundle.exported_at.isoformat()}")
    for section, count in counts.items():
        print(f"  {section}: {count}")

    if report.checks_passed:
        print("\nPassed:")
        for check in report.checks_passed:
            print(f"  + {check}")

    if report.checks_failed:
        print("\nFailed:")
        for check in report.checks_failed:
            print(f"  - {check}")

    if report.warnings:
        print("\nWarnings:")
        for warning in report.warnings:
            print(f"  ! {warning}")

    print()


def main():
    parser = argparse.ArgumentParser(
        description="Verify a CardLedger snapshot bundle",
        epilog="Exit codes: 0=VERIFIED, 1=TAMPERED, 2=UNSIGNED, 3=INVALID_FORMAT"
    )
    parser.add_argument("bundle", type=str, help="Path to the bundle JSON file")
    parser.add_argument("--public-key", help="Pinned authority public key (base64)")
    parser.add_argument("--json", action="store_true", help="Output result as JSON")

    args = parser.parse_args()

    bundle_path = Path(args.bundle)
    if not bundle_path.exists():
        print(f"ERROR: File not found: {bundle_path}")
        sys.exit(3)

    try:
        bundle = SnapshotBundle.model_validate_json(bundle_path.read_text(encoding="utf-8"))
    except ValidationError as e:
        print(f"ERROR: Not a snapshot bundle: {e}")
        sys.exit(3)
    except OSError as e:
        print(f"ERROR: Failed to read file: {e}")
        sys.exit(3)

    report = verify_snapshot(bundle, args.public_key)
    result = classify(report)
    print_report(bundle, report, result, json_output=args.json)
    sys.exit(EXIT_CODES[result])


if __name__ == "__main__":
    main()
