"""Membership tier table and tier resolution.

Tiers are static configuration ordered ascending by ``min_points``. The
resolver is the only place a tier is derived from a balance; callers never
compare thresholds themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple


@dataclass(frozen=True, slots=True)
class Tier:
    """Immutable membership level with an earning multiplier."""

    id: str
    name: str
    min_points: int
    multiplier: Decimal
    benefits: Tuple[str, ...] = field(default_factory=tuple)

    def as_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "minPoints": self.min_points,
            "multiplier": float(self.multiplier),
            "benefits": list(self.benefits),
        }


DEFAULT_TIERS: Tuple[Tier, ...] = (
    Tier(
        id="bronze",
        name="Bronze",
        min_points=0,
        multiplier=Decimal("1"),
        benefits=(
            "Earn 1 point per $1 spent",
            "Birthday reward",
            "Access to exclusive promotions",
        ),
    ),
    Tier(
        id="silver",
        name="Silver",
        min_points=500,
        multiplier=Decimal("1.5"),
        benefits=(
            "Earn 1.5 points per $1 spent",
            "Free shipping on orders over $50",
            "Early access to new products",
            "All Bronze benefits",
        ),
    ),
    Tier(
        id="gold",
        name="Gold",
        min_points=1000,
        multiplier=Decimal("2"),
        benefits=(
            "Earn 2 points per $1 spent",
            "Free shipping on all orders",
            "Exclusive seasonal gifts",
            "Priority customer service",
            "All Silver benefits",
        ),
    ),
    Tier(
        id="platinum",
        name="Platinum",
        min_points=2500,
        multiplier=Decimal("3"),
        benefits=(
            "Earn 3 points per $1 spent",
            "Personal shopping assistant",
            "Exclusive access to limited editions",
            "Free gift wrapping",
            "All Gold benefits",
        ),
    ),
)


def resolve_tier(balance: int, tiers: Sequence[Tier] = DEFAULT_TIERS) -> Tier:
    """Return the highest tier whose threshold is covered by ``balance``.

    Scans from the top of the table down, so when two tiers share a threshold
    the later one in the table wins. The base tier has ``min_points == 0`` and
    therefore always matches a non-negative balance.
    """

    for tier in reversed(tiers):
        if tier.min_points <= balance:
            return tier
    return tiers[0]


def get_tier(tier_id: str | None, tiers: Sequence[Tier] = DEFAULT_TIERS) -> Optional[Tier]:
    """Lookup a tier by identifier."""

    if tier_id is None:
        return None
    return next((tier for tier in tiers if tier.id == tier_id), None)


def next_tier(current: Tier, tiers: Sequence[Tier] = DEFAULT_TIERS) -> Optional[Tier]:
    """Return the tier above ``current`` or ``None`` at the top of the table."""

    for index, tier in enumerate(tiers):
        if tier.id == current.id:
            if index + 1 < len(tiers):
                return tiers[index + 1]
            return None
    return None


def points_to_next_tier(
    balance: int,
    current: Tier,
    tiers: Sequence[Tier] = DEFAULT_TIERS,
) -> int:
    """Points still required to reach the next tier (0 at the top tier)."""

    upcoming = next_tier(current, tiers)
    if upcoming is None:
        return 0
    return max(upcoming.min_points - balance, 0)


def validate_tier_table(tiers: Sequence[Tier]) -> None:
    """Raise ``ValueError`` when a tier table breaks its ordering rules."""

    if not tiers:
        raise ValueError("Tier table must contain at least one tier")
    if tiers[0].min_points != 0:
        raise ValueError("Base tier must start at 0 points")

    seen: set[str] = set()
    previous: Tier | None = None
    for tier in tiers:
        if tier.id in seen:
            raise ValueError(f"Duplicate tier id {tier.id!r}")
        seen.add(tier.id)
        if tier.multiplier <= 0:
            raise ValueError(f"Tier {tier.id!r} multiplier must be positive")
        if previous is not None and tier.min_points <= previous.min_points:
            raise ValueError(
                f"Tier {tier.id!r} threshold must exceed {previous.id!r} threshold"
            )
        previous = tier


__all__ = [
    "DEFAULT_TIERS",
    "Tier",
    "get_tier",
    "next_tier",
    "points_to_next_tier",
    "resolve_tier",
    "validate_tier_table",
]
