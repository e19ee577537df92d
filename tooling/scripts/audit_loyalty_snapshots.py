#!/usr/bin/env python3
"""Audit persisted loyalty snapshots for ledger and tier drift.

Usage:
    python tooling/scripts/audit_loyalty_snapshots.py --limit 500

The script loads every customer profile that carries a loyalty snapshot and
replays its history, reporting:
  * balances that do not match the ledger sum,
  * stored tiers that disagree with the configured tier table,
  * redemptions without a matching ledger debit.

Exits with status 1 when any error-level finding is reported.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
API_SRC = ROOT / "apps" / "api" / "src"
if str(API_SRC) not in sys.path:
    sys.path.append(str(API_SRC))

from storefront_api.db.session import async_session  # noqa: E402
from storefront_api.services.loyalty import LoyaltySnapshotAuditor  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Storefront loyalty snapshot auditor")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of profiles to audit (default: all).",
    )
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Fail when only warning-level findings are present.",
    )
    return parser.parse_args()


def _log(message: str) -> None:
    print(f"[audit-loyalty] {message}", file=sys.stderr)


async def main() -> int:
    args = parse_args()

    async with async_session() as session:
        report = await LoyaltySnapshotAuditor(session).run(limit=args.limit)

    print(json.dumps(report.as_dict(), indent=2))

    if report.errors:
        _log(f"❌ {len(report.errors)} error finding(s) across {report.checked} snapshot(s)")
        return 1
    if args.warnings_as_errors and report.findings:
        _log(f"❌ {len(report.findings)} warning finding(s) across {report.checked} snapshot(s)")
        return 1

    _log(f"✅ {report.checked} snapshot(s) audited, {len(report.findings)} warning(s)")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
