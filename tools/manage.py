#!/usr/bin/env python3
"""
CardLedger Management CLI

Commands for operating the authority:
- hash-password: Generate an Argon2 password hash for an account override
- keypair: Generate an Ed25519 keypair for snapshot signing
- seed-demo: Load the demo catalog into the configured store
- export-snapshot: Write a signed snapshot bundle to JSON
- verify-audit: Verify the audit log hash chain
- fingerprint: Compute full-card and art-box fingerprints of an image array
- match: Identify a card against the configured catalog
- health-check: Run store, audit chain and environment checks

The store comes from CARDLEDGER_STORE_DRIVER / CARDLEDGER_STORE_PATH, so use
the json driver for anything that should outlive the command.

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage hash-password --password "mysecretpassword"
    python -m tools.manage match --set-code SDK-001 --demo
    python -m tools.manage export-snapshot -o snapshot.json
"""

import argparse
import json
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _authority(args=None):
    from cardledger.main import build_authority
    from cardledger.seed import seed_demo_catalog

    authority = build_authority()
    if args is not None and getattr(args, "demo", False):
        seed_demo_catalog(authority)
    return authority


def cmd_hash_password(args):
    """Generate an Argon2 password hash."""
    from cardledger.api.auth import hash_password

    if args.password:
        password = args.password
    else:
        import getpass
        password = getpass.getpass("Enter password: ")

    hashed = hash_password(password)
    print("\nPassword hash (set as CARDLEDGER_PASSWORD_HASH_<USERNAME>):")
    print(hashed)


def cmd_keypair(args):
    """Generate an Ed25519 keypair for snapshot signing."""
    from cardledger.core import Signer

    private_key, public_key = Signer.generate_keypair()
    print("\n  Public key (pin this on clients):")
    print(f"  {public_key}")
    print("\n  Private key (KEEP SECRET!):")
    print(f"  {private_key}")
    print("\n  Set this environment variable on the authority:")
    print(f"  CARDLEDGER_SIGNING_KEY={private_key}")


def cmd_seed_demo(args):
    """Load the demo catalog."""
    from cardledger.seed import seed_demo_catalog

    authority = _authority()
    seed_demo_catalog(authority)
    snapshot = authority.catalog_snapshot()
    print(f"[OK] Catalog has {len(snapshot.cards)} cards, {len(snapshot.prints)} prints")


def cmd_export_snapshot(args):
    """Export a signed snapshot bundle."""
    from cardledger.schemas import SYSTEM_PRINCIPAL

    authority = _authority(args)
    bundle = authority.download_snapshot(SYSTEM_PRINCIPAL)

    output_file = args.output or "snapshot.json"
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(bundle.model_dump_json(indent=2))

    print(f"[OK] Exported snapshot to {output_file}")
    print(f"  Cards: {len(bundle.content['cards'])}")
    print(f"  Checksum: {bundle.checksum[:23]}...")
    print(f"  Public key: {bundle.public_key}")


def cmd_verify_audit(args):
    """Verify the audit log chain."""
    authority = _authority()
    count = authority.audit.count()
    print(f"Audit log: {count} entries")

    if authority.audit.verify_chain():
        print("[OK] Audit chain verified OK")
        return 0
    print("[FAIL] Audit chain verification FAILED!")
    return 1


def cmd_fingerprint(args):
    """Fingerprint a saved image array (.npy, HxW or HxWx3/4)."""
    import numpy as np

    from cardledger.core import fingerprint_regions

    pixels = np.load(args.image)
    full, focus = fingerprint_regions(pixels)
    print(json.dumps({"fingerprint_full": full, "fingerprint_focus": focus}, indent=2))


def cmd_match(args):
    """Identify a card from fingerprints and/or OCR text."""
    from cardledger.core import IdentityMatcher
    from cardledger.schemas import ScanQuery

    query = ScanQuery(
        fingerprint_full=args.full,
        fingerprint_focus=args.focus,
        extracted_name=args.name,
        extracted_set_code=args.set_code,
    )
    result = IdentityMatcher(_authority(args).catalog_snapshot()).match(query)

    if result.top is None:
        print("No match")
        return 1

    def describe(candidate):
        print_ = candidate.print
        set_code = print_.set_code if print_ else "-"
        return f"{candidate.card.name} [{set_code}] score={candidate.score:.3f} via {candidate.reason.value}"

    print(f"Top: {describe(result.top)}")
    print(f"Needs confirmation: {result.needs_confirmation}")
    for alt in result.alternatives:
        print(f"  alt: {describe(alt)}")
    return 0


def cmd_health_check(args):
    """Run comprehensive health checks."""
    from cardledger.db import StoreConfig
    from cardledger.observability import check_health

    print("=== CardLedger Health Check ===\n")

    store_config = StoreConfig.from_env()
    print("Store:")
    print(f"  Driver: {store_config.driver.value}")
    if store_config.driver.value == "json":
        print(f"  Path: {store_config.path}")

    status = check_health(authority=_authority())
    for name, check in status.checks.items():
        marker = "[OK]" if check.get("status") == "healthy" else "[FAIL]"
        print(f"  {name}: {marker} {json.dumps({k: v for k, v in check.items() if k != 'status'})}")

    print("\nEnvironment:")
    if len(os.environ.get("CARDLEDGER_SESSION_SECRET", "")) >= 16:
        print("  Session secret: [OK] Set")
    else:
        print("  Session secret: [WARN] Using default (development)")

    if os.environ.get("CARDLEDGER_SIGNING_KEY"):
        print("  Snapshot signing key: [OK] Set")
    else:
        print("  Snapshot signing key: [WARN] Using ephemeral (development)")

    print("\n=== Health Check Complete ===")
    return 0 if status.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="CardLedger Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # hash-password
    p_hash = subparsers.add_parser("hash-password", help="Generate an Argon2 password hash")
    p_hash.add_argument("--password", help="Password to hash (prompts if not provided)")

    # keypair
    subparsers.add_parser("keypair", help="Generate an Ed25519 snapshot signing keypair")

    # seed-demo
    subparsers.add_parser("seed-demo", help="Load the demo catalog into the configured store")

    # export-snapshot
    p_export = subparsers.add_parser("export-snapshot", help="Write a signed snapshot bundle")
    p_export.add_argument("--output", "-o", help="Output file (default: snapshot.json)")
    p_export.add_argument("--demo", action="store_true", help="Seed the demo catalog first")

    # verify-audit
    subparsers.add_parser("verify-audit", help="Verify the audit log hash chain")

    # fingerprint
    p_fp = subparsers.add_parser("fingerprint", help="Fingerprint an image saved with numpy.save")
    p_fp.add_argument("image", help="Path to a .npy image array")

    # match
    p_match = subparsers.add_parser("match", help="Identify a card")
    p_match.add_argument("--full", help="Full-card fingerprint (16 hex chars)")
    p_match.add_argument("--focus", help="Art-box fingerprint (16 hex chars)")
    p_match.add_argument("--name", help="OCR-extracted card name")
    p_match.add_argument("--set-code", help="OCR-extracted set code")
    p_match.add_argument("--demo", action="store_true", help="Seed the demo catalog first")

    # health-check
    subparsers.add_parser("health-check", help="Run comprehensive health checks")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "hash-password": cmd_hash_password,
        "keypair": cmd_keypair,
        "seed-demo": cmd_seed_demo,
        "export-snapshot": cmd_export_snapshot,
        "verify-audit": cmd_verify_audit,
        "fingerprint": cmd_fingerprint,
        "match": cmd_match,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
