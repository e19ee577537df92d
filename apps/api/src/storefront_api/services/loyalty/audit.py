"""Replay persisted loyalty snapshots and report ledger inconsistencies."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.domain.loyalty import (
    DEFAULT_TIERS,
    Ledger,
    LedgerEntryKind,
    RedeemedReward,
    Tier,
    resolve_tier,
)
from storefront_api.models.customer_profile import CustomerProfile

Severity = Literal["error", "warning"]


@dataclass(frozen=True, slots=True)
class AuditFinding:
    owner_id: str
    severity: Severity
    code: str
    detail: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "ownerId": self.owner_id,
            "severity": self.severity,
            "code": self.code,
            "detail": self.detail,
        }


@dataclass(slots=True)
class LoyaltyAuditReport:
    checked: int = 0
    findings: List[AuditFinding] = field(default_factory=list)

    @property
    def errors(self) -> List[AuditFinding]:
        return [finding for finding in self.findings if finding.severity == "error"]

    @property
    def healthy(self) -> bool:
        return not self.errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "errors": len(self.errors),
            "warnings": len(self.findings) - len(self.errors),
            "findings": [finding.as_dict() for finding in self.findings],
        }


def audit_snapshot(
    owner_id: str,
    payload: Mapping[str, Any],
    tiers: Sequence[Tier] = DEFAULT_TIERS,
) -> List[AuditFinding]:
    """Check one snapshot.

    Errors break the balance/ledger/tier invariants. Warnings flag history
    that no longer matches the current tier table; tier-change markers are
    never rewritten when thresholds change.
    """

    findings: List[AuditFinding] = []

    def report(severity: Severity, code: str, detail: str) -> None:
        findings.append(AuditFinding(owner_id=owner_id, severity=severity, code=code, detail=detail))

    try:
        ledger = Ledger.from_payload(payload.get("history"))
        redemptions = [RedeemedReward.from_payload(item) for item in payload.get("rewards") or []]
        points = int(payload.get("points") or 0)
    except ValueError as error:
        report("error", "malformed_snapshot", str(error))
        return findings

    duplicates = [entry_id for entry_id, count in Counter(entry.id for entry in ledger).items() if count > 1]
    for entry_id in duplicates:
        report("error", "duplicate_entry", f"Ledger entry {entry_id} appears more than once")

    running = 0
    tier = resolve_tier(0, tiers)
    for entry in ledger:
        if entry.kind == LedgerEntryKind.TIER_CHANGE:
            if entry.points_delta != 0:
                report("error", "tier_change_with_points", f"Tier change {entry.id} carries {entry.points_delta} points")
            recorded_from = entry.details.get("fromTier")
            recorded_to = entry.details.get("toTier")
            if recorded_from != tier.id or recorded_to != resolve_tier(running, tiers).id:
                report(
                    "warning",
                    "tier_marker_mismatch",
                    f"Marker {entry.id} records {recorded_from}->{recorded_to}, replay gives "
                    f"{tier.id}->{resolve_tier(running, tiers).id}",
                )
            tier = resolve_tier(running, tiers)
            continue

        if entry.kind == LedgerEntryKind.EARNED and entry.points_delta <= 0:
            report("error", "non_positive_earn", f"Earned entry {entry.id} has delta {entry.points_delta}")
        if entry.kind == LedgerEntryKind.REDEEMED and entry.points_delta >= 0:
            report("error", "non_negative_redeem", f"Redeemed entry {entry.id} has delta {entry.points_delta}")
        running += entry.points_delta
        if running < 0:
            report("error", "negative_running_balance", f"Balance drops to {running} at entry {entry.id}")
        resolved = resolve_tier(max(running, 0), tiers)
        if resolved.id != tier.id and not _has_marker_after(ledger, entry.id):
            report("warning", "missing_tier_marker", f"No tier change recorded after entry {entry.id}")
            tier = resolved

    if running != points:
        report("error", "balance_mismatch", f"Stored points {points} but ledger sums to {running}")

    expected_tier = resolve_tier(max(points, 0), tiers).id
    stored_tier = payload.get("tierId")
    if stored_tier != expected_tier:
        report("error", "tier_mismatch", f"Stored tier {stored_tier} but balance resolves to {expected_tier}")

    redeemed_ids = {
        str(entry.details.get("redemptionId"))
        for entry in ledger
        if entry.kind == LedgerEntryKind.REDEEMED and entry.details.get("redemptionId")
    }
    for record in redemptions:
        if record.redemption_id not in redeemed_ids:
            report("warning", "unmatched_redemption", f"Redemption {record.redemption_id} has no ledger debit")
        if record.used and record.used_at is None:
            report("error", "used_without_timestamp", f"Redemption {record.redemption_id} used without usedAt")

    return findings


def _has_marker_after(ledger: Ledger, entry_id: str) -> bool:
    entries = ledger.entries
    for index, entry in enumerate(entries):
        if entry.id == entry_id:
            following = entries[index + 1] if index + 1 < len(entries) else None
            return following is not None and following.kind == LedgerEntryKind.TIER_CHANGE
    return False


class LoyaltySnapshotAuditor:
    """Run ``audit_snapshot`` across every stored customer profile."""

    def __init__(self, db_session: AsyncSession, *, tiers: Sequence[Tier] = DEFAULT_TIERS) -> None:
        self._db = db_session
        self._tiers = tuple(tiers)

    async def run(self, *, limit: int | None = None) -> LoyaltyAuditReport:
        stmt = (
            select(CustomerProfile.user_id, CustomerProfile.loyalty_snapshot)
            .where(CustomerProfile.loyalty_snapshot.is_not(None))
            .order_by(CustomerProfile.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)

        report = LoyaltyAuditReport()
        for user_id, snapshot in result.all():
            report.checked += 1
            report.findings.extend(audit_snapshot(str(user_id), snapshot or {}, self._tiers))

        logger.info(
            "Completed loyalty snapshot audit",
            checked=report.checked,
            errors=len(report.errors),
            warnings=len(report.findings) - len(report.errors),
        )
        return report


__all__ = ["AuditFinding", "LoyaltyAuditReport", "LoyaltySnapshotAuditor", "audit_snapshot"]
