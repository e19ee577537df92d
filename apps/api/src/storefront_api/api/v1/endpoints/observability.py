"""Observability endpoints for loyalty telemetry and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from storefront_api.api.dependencies.security import require_checkout_api_key
from storefront_api.observability.loyalty import get_loyalty_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/loyalty",
    dependencies=[Depends(require_checkout_api_key)],
    summary="Loyalty engine observability snapshot",
)
async def get_loyalty_snapshot() -> dict[str, object]:
    """Operation outcomes, tier transitions and persistence counters (requires checkout API key)."""
    return get_loyalty_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_checkout_api_key)],
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot().as_dict()

    lines: list[str] = []

    operations: dict[str, dict[str, int]] = snapshot.get("operations", {})
    for operation, outcomes in sorted(operations.items()):
        for outcome, value in sorted(outcomes.items()):
            lines.extend(
                _format_metric(
                    "storefront_loyalty_operations_total",
                    "Loyalty engine operations grouped by outcome",
                    value,
                    labels={"operation": operation, "outcome": outcome},
                )
            )

    tier_changes: dict[str, int] = snapshot.get("tier_changes", {})
    lines.extend(
        _format_metric(
            "storefront_loyalty_tier_upgrades_total",
            "Tier upgrades committed",
            tier_changes.get("upgrades", 0),
        )
    )
    lines.extend(
        _format_metric(
            "storefront_loyalty_tier_downgrades_total",
            "Tier downgrades committed",
            tier_changes.get("downgrades", 0),
        )
    )

    persistence: dict[str, int] = snapshot.get("persistence", {})
    lines.extend(
        _format_metric(
            "storefront_loyalty_snapshot_conflicts_total",
            "Snapshot writes rejected by a newer version",
            persistence.get("conflicts", 0),
        )
    )
    lines.extend(
        _format_metric(
            "storefront_loyalty_persistence_failures_total",
            "Loyalty operations that could not be persisted",
            persistence.get("failures", 0),
        )
    )

    notifications: dict[str, int] = snapshot.get("notifications", {})
    for bucket in ("delivered", "failed"):
        lines.extend(
            _format_metric(
                "storefront_loyalty_notifications_total",
                "Loyalty inbox notifications by delivery result",
                notifications.get(bucket, 0),
                labels={"result": bucket},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
