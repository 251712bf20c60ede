#!/usr/bin/env python3
"""Purge expired sessions and stale OTP records from the record store.

Usage:
    # Report what would be removed:
    python scripts/purge_expired.py --dry-run

    # Remove it:
    python scripts/purge_expired.py

Environment Variables:
    REDIS_URL: Redis connection string for the record store
    USE_MEMORY_STORE: Use the JSON snapshot under SHARED_FS_ROOT instead of Redis
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def run(dry_run: bool = False) -> dict:
    # Import here to avoid loading config before env vars are set
    from parentauth.service.runtime import get_runtime

    runtime = get_runtime()
    report = runtime.run_maintenance(dry_run=dry_run)
    prefix = "[DRY RUN] Would purge" if dry_run else "Purged"
    print(f"{prefix} {report.sessions} session(s) and {report.otp_records} OTP record(s)")
    return {
        "sessions": report.sessions,
        "otp_records": report.otp_records,
        "dry_run": dry_run,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Purge expired sessions and stale OTP records"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without deleting anything",
    )
    args = parser.parse_args(argv)

    try:
        run(dry_run=args.dry_run)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
