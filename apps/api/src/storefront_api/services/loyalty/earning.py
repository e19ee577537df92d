"""Point awards driven by purchases, reviews and referrals."""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from storefront_api.domain.loyalty import (
    REFERRAL_POINTS,
    REVIEW_POINTS,
    LedgerSource,
)

from .engine import LoyaltyAccountEngine, OperationResult

Amount = Union[Decimal, int, float, str]


class LoyaltyEarningService:
    def __init__(self, engine: LoyaltyAccountEngine) -> None:
        self._engine = engine

    async def award_purchase(self, owner_id: str, order_id: str, amount: Amount) -> OperationResult:
        """Award points for an order total at the member's current tier multiplier.

        The multiplier comes from the tier held before the purchase, read in the
        same locked step as the credit; a purchase that crosses a threshold is
        not blended.
        """

        return await self._engine.earn_purchase(owner_id, amount, {"orderId": str(order_id)})

    async def award_review(self, owner_id: str, product_id: str, review_id: str) -> OperationResult:
        return await self._engine.earn(
            owner_id,
            REVIEW_POINTS,
            LedgerSource.REVIEW,
            {"productId": str(product_id), "reviewId": str(review_id)},
        )

    async def award_referral(self, owner_id: str, referred_user_id: str) -> OperationResult:
        return await self._engine.earn(
            owner_id,
            REFERRAL_POINTS,
            LedgerSource.REFERRAL,
            {"referredUserId": str(referred_user_id)},
        )


__all__ = ["LoyaltyEarningService"]
