"""Append-only points ledger and its snapshot serialization."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping, Sequence, Tuple
from uuid import uuid4


class LedgerEntryKind(str, Enum):
    """Kinds of ledger entries."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    TIER_CHANGE = "tier_change"


class LedgerSource(str, Enum):
    """Cause recorded on every ledger entry."""

    PURCHASE = "purchase"
    REVIEW = "review"
    REFERRAL = "referral"
    REWARD_REDEMPTION = "reward_redemption"
    TIER_UPGRADE = "tier_upgrade"
    TIER_DOWNGRADE = "tier_downgrade"


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """Immutable signed point transaction."""

    id: str
    timestamp: datetime
    kind: LedgerEntryKind
    points_delta: int
    source: LedgerSource
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        *,
        kind: LedgerEntryKind,
        points_delta: int,
        source: LedgerSource,
        details: Mapping[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> "LedgerEntry":
        if kind == LedgerEntryKind.TIER_CHANGE and points_delta != 0:
            raise ValueError("Tier change entries carry no points")
        return cls(
            id=str(uuid4()),
            timestamp=timestamp or datetime.now(timezone.utc),
            kind=kind,
            points_delta=points_delta,
            source=source,
            details=dict(details or {}),
        )

    def as_payload(self) -> Dict[str, Any]:
        """Snapshot wire form: ``{id, date, type, points, source, details}``."""

        return {
            "id": self.id,
            "date": self.timestamp.isoformat(),
            "type": self.kind.value,
            "points": self.points_delta,
            "source": self.source.value,
            "details": dict(self.details),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LedgerEntry":
        try:
            return cls(
                id=str(payload["id"]),
                timestamp=parse_timestamp(payload["date"]),
                kind=LedgerEntryKind(payload["type"]),
                points_delta=int(payload["points"]),
                source=LedgerSource(payload["source"]),
                details=dict(payload.get("details") or {}),
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Malformed ledger entry payload: {payload!r}") from error


@dataclass(frozen=True, slots=True)
class Ledger:
    """Chronologically ordered, append-only sequence of ledger entries."""

    entries: Tuple[LedgerEntry, ...] = ()

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, *entries: LedgerEntry) -> "Ledger":
        """Return a new ledger with ``entries`` added after the existing ones."""

        return Ledger(entries=self.entries + tuple(entries))

    def balance(self) -> int:
        return sum(entry.points_delta for entry in self.entries)

    def newest_first(self) -> list[LedgerEntry]:
        return list(reversed(self.entries))

    def filter(self, *, kinds: Iterable[LedgerEntryKind] | None = None) -> list[LedgerEntry]:
        if not kinds:
            return list(self.entries)
        allowed = set(kinds)
        return [entry for entry in self.entries if entry.kind in allowed]

    def to_payload(self) -> list[Dict[str, Any]]:
        """Serialize newest-first, the order persisted snapshots use for display."""

        return [entry.as_payload() for entry in self.newest_first()]

    @classmethod
    def from_payload(cls, payload: Sequence[Mapping[str, Any]] | None) -> "Ledger":
        entries = [LedgerEntry.from_payload(item) for item in payload or []]
        entries.reverse()
        return cls(entries=tuple(entries))


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 timestamps, including a trailing ``Z`` suffix."""

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "Ledger",
    "LedgerEntry",
    "LedgerEntryKind",
    "LedgerSource",
    "parse_timestamp",
]
