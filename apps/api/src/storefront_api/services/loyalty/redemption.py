"""Exchange loyalty points for catalog rewards."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from loguru import logger

from storefront_api.domain.loyalty import (
    REWARD_CATALOG,
    LedgerSource,
    LoyaltyAccount,
    RedeemedReward,
    Reward,
    get_reward,
)
from storefront_api.services.notifications import render_insufficient_points, render_reward_redeemed

from .engine import LoyaltyAccountEngine, OperationOutcome, OperationResult


class RedemptionOutcome(str, Enum):
    COMMITTED = "committed"
    REWARD_NOT_FOUND = "reward_not_found"
    INVALID_POINTS = "invalid_points"
    INSUFFICIENT_POINTS = "insufficient_points"
    REDEMPTION_NOT_FOUND = "redemption_not_found"
    REDEMPTION_ALREADY_USED = "redemption_already_used"
    PERSISTENCE_FAILED = "persistence_failed"


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    """Result of a redeem or mark-used request."""

    ok: bool
    outcome: RedemptionOutcome
    reward: Optional[Reward] = None
    redemption: Optional[RedeemedReward] = None
    account: Optional[LoyaltyAccount] = None
    shortfall: int = 0
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def from_operation(cls, result: OperationResult, *, reward: Reward | None = None) -> "RedemptionResult":
        return cls(
            ok=result.ok,
            outcome=RedemptionOutcome(result.outcome.value),
            reward=reward,
            redemption=result.redemption,
            account=result.account,
            shortfall=result.shortfall,
            message=result.message,
        )


class RedemptionService:
    """Burn points through the engine and mint redeemed-reward records."""

    def __init__(self, engine: LoyaltyAccountEngine, *, catalog: Sequence[Reward] = REWARD_CATALOG) -> None:
        self._engine = engine
        self._catalog = tuple(catalog)

    @property
    def catalog(self) -> tuple[Reward, ...]:
        return self._catalog

    def get_reward(self, reward_id: str | int) -> Reward | None:
        return get_reward(reward_id, self._catalog)

    async def redeem(self, owner_id: str, reward_id: str | int) -> RedemptionResult:
        reward = self.get_reward(reward_id)
        if reward is None:
            logger.info("Unknown loyalty reward requested", owner_id=owner_id, reward_id=str(reward_id))
            return RedemptionResult(
                ok=False,
                outcome=RedemptionOutcome.REWARD_NOT_FOUND,
                message=f"Reward {reward_id} not found",
            )

        record = RedeemedReward.issue(reward)
        result = await self._engine.deduct(
            owner_id,
            reward.point_cost,
            LedgerSource.REWARD_REDEMPTION,
            {"rewardId": reward.id, "rewardName": reward.name, "redemptionId": record.redemption_id},
            redemption=record,
        )
        if result.outcome == OperationOutcome.INSUFFICIENT_POINTS:
            return self._insufficient(owner_id, reward, result.shortfall)
        if not result.ok:
            logger.warning(
                "Loyalty redemption failed",
                owner_id=owner_id,
                reward_id=reward.id,
                outcome=result.outcome.value,
            )
            return RedemptionResult.from_operation(result, reward=reward)

        logger.info(
            "Loyalty reward redeemed",
            owner_id=owner_id,
            reward_id=reward.id,
            redemption_id=record.redemption_id,
            points=reward.point_cost,
        )
        self._engine.notify(owner_id, render_reward_redeemed(reward.name))
        return RedemptionResult.from_operation(result, reward=reward)

    async def mark_used(self, owner_id: str, redemption_id: str) -> RedemptionResult:
        result = await self._engine.mark_reward_used(owner_id, redemption_id)
        return RedemptionResult.from_operation(result)

    def _insufficient(self, owner_id: str, reward: Reward, shortfall: int) -> RedemptionResult:
        logger.info(
            "Insufficient loyalty points for reward",
            owner_id=owner_id,
            reward_id=reward.id,
            shortfall=shortfall,
        )
        self._engine.notify(owner_id, render_insufficient_points(shortfall))
        return RedemptionResult(
            ok=False,
            outcome=RedemptionOutcome.INSUFFICIENT_POINTS,
            reward=reward,
            shortfall=shortfall,
            message=f"Insufficient points, need {shortfall} more",
        )


__all__ = ["RedemptionOutcome", "RedemptionResult", "RedemptionService"]
