#!/usr/bin/env python3
"""Quick health check for storefront loyalty observability endpoints.

Usage:
    python tooling/scripts/check_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$CHECKOUT_API_KEY"

The script validates:
  * Readiness: database and loyalty engine components report ready.
  * Loyalty persistence: failed commits and snapshot conflicts stay within thresholds.
  * Notification delivery: failed inbox writes stay within threshold.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Storefront loyalty observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the storefront API service.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Checkout API key (required for the loyalty observability endpoint).",
    )
    parser.add_argument(
        "--max-persistence-failures",
        type=int,
        default=0,
        help="Maximum allowed loyalty operations that failed to persist (default: 0).",
    )
    parser.add_argument(
        "--max-snapshot-conflicts",
        type=int,
        default=25,
        help="Maximum allowed optimistic snapshot conflicts before failing (default: 25).",
    )
    parser.add_argument(
        "--max-notification-failures",
        type=int,
        default=0,
        help="Maximum allowed failed inbox notifications before failing (default: 0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-observability] ❌ {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-observability] ✅ {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/readyz")
    components = payload.get("components", {}) or {}

    for name in ("database", "loyalty_engine"):
        status = (components.get(name) or {}).get("status")
        if status != "ready":
            _fail(f"Component {name} reports status {status!r}")

    _log_ok(f"Readiness OK (status={payload.get('status')})")


async def validate_loyalty(
    client: httpx.AsyncClient,
    api_key: Optional[str],
    max_persistence_failures: int,
    max_snapshot_conflicts: int,
    max_notification_failures: int,
) -> None:
    if not api_key:
        _log_ok("Skipping loyalty observability (no API key provided)")
        return

    payload = await _get_json(
        client,
        "/api/v1/observability/loyalty",
        headers={"X-API-Key": api_key},
    )
    operations = payload.get("operations", {}) or {}
    persistence = payload.get("persistence", {}) or {}
    notifications = payload.get("notifications", {}) or {}
    tier_changes = payload.get("tier_changes", {}) or {}

    failures = int(persistence.get("failures", 0))
    conflicts = int(persistence.get("conflicts", 0))
    notification_failures = int(notifications.get("failed", 0))
    committed = sum(int(outcomes.get("committed", 0)) for outcomes in operations.values())

    if failures > max_persistence_failures:
        _fail(f"Loyalty persistence failures {failures} exceed threshold {max_persistence_failures}")
    if conflicts > max_snapshot_conflicts:
        _fail(f"Loyalty snapshot conflicts {conflicts} exceed threshold {max_snapshot_conflicts}")
    if notification_failures > max_notification_failures:
        _fail(
            f"Loyalty notification failures {notification_failures} exceed threshold {max_notification_failures}"
        )

    _log_ok(
        "Loyalty observability OK "
        f"(committed={committed}, upgrades={tier_changes.get('upgrades', 0)}, "
        f"downgrades={tier_changes.get('downgrades', 0)}, conflicts={conflicts}, failures={failures})"
    )


async def main() -> None:
    args = parse_args()

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_loyalty(
            client,
            api_key=args.api_key,
            max_persistence_failures=args.max_persistence_failures,
            max_snapshot_conflicts=args.max_snapshot_conflicts,
            max_notification_failures=args.max_notification_failures,
        )

    _log_ok("Observability checks completed successfully")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
    except httpx.HTTPError as exc:
        _fail(f"Request failed: {exc}")
