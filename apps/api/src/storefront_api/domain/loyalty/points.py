"""Points earning rules."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from .tiers import Tier

REVIEW_POINTS = 50
REFERRAL_POINTS = 200


def calculate_earned_points(amount: Decimal | int | float | str, tier: Tier) -> int:
    """Return ``floor(amount * tier.multiplier)`` for a purchase amount.

    ``tier`` must be the member's tier before the purchase is credited.
    """

    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if value < 0:
        raise ValueError("Purchase amount must be non-negative")
    earned = (value * tier.multiplier).to_integral_value(rounding=ROUND_FLOOR)
    return int(earned)


__all__ = ["REFERRAL_POINTS", "REVIEW_POINTS", "calculate_earned_points"]
