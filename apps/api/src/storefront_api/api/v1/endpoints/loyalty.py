"""API endpoints for loyalty tiers, balances, earning and redemptions."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, NoReturn, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from storefront_api.api.dependencies.loyalty import (
    get_earning_service,
    get_loyalty_engine,
    get_redemption_service,
)
from storefront_api.api.dependencies.security import require_checkout_api_key
from storefront_api.api.dependencies.session import require_member_owner
from storefront_api.core.settings import settings
from storefront_api.domain.loyalty import (
    LedgerEntry,
    LedgerEntryKind,
    LoyaltyAccount,
    RedeemedReward,
    Reward,
    Tier,
    next_tier,
    points_to_next_tier,
)
from storefront_api.models.user import User
from storefront_api.services.loyalty import (
    LoyaltyAccountEngine,
    LoyaltyEarningService,
    OperationResult,
    RedemptionResult,
    RedemptionService,
    SnapshotPersistenceError,
)


router = APIRouter(prefix="/loyalty", tags=["loyalty"])

_OUTCOME_STATUS = {
    "invalid_points": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "insufficient_points": status.HTTP_409_CONFLICT,
    "reward_not_found": status.HTTP_404_NOT_FOUND,
    "redemption_not_found": status.HTTP_404_NOT_FOUND,
    "redemption_already_used": status.HTTP_409_CONFLICT,
    "persistence_failed": status.HTTP_503_SERVICE_UNAVAILABLE,
}


class LoyaltyTierResponse(BaseModel):
    id: str
    name: str
    minPoints: int
    multiplier: float
    benefits: list[str]


class LoyaltyRewardResponse(BaseModel):
    id: str
    name: str
    points: int
    type: str
    value: Any
    description: str
    image: Optional[str] = None


class MemberRewardResponse(LoyaltyRewardResponse):
    available: bool


class LoyaltyMemberResponse(BaseModel):
    userId: UUID
    points: int
    tier: LoyaltyTierResponse
    nextTier: Optional[LoyaltyTierResponse]
    pointsToNextTier: int
    version: int


class LedgerEntryResponse(BaseModel):
    id: str
    date: datetime
    type: str
    points: int
    source: str
    details: dict[str, Any]


class RedeemedRewardResponse(BaseModel):
    id: str
    rewardId: str
    name: str
    points: int
    type: str
    value: Any
    description: str
    redeemedAt: datetime
    expiresAt: datetime
    used: bool
    usedAt: Optional[datetime]
    expired: bool


class PurchaseEarnRequest(BaseModel):
    orderId: str = Field(..., min_length=1, description="Order that produced the points")
    amount: Decimal = Field(..., ge=0, description="Order total in store currency")


class ReviewEarnRequest(BaseModel):
    productId: str = Field(..., min_length=1)
    reviewId: str = Field(..., min_length=1)


class ReferralEarnRequest(BaseModel):
    referredUserId: str = Field(..., min_length=1, description="Customer who signed up through the referral")


class EarnResponse(BaseModel):
    pointsEarned: int
    points: int
    tier: str
    tierChanged: bool
    entries: List[LedgerEntryResponse]


class RedemptionCreateRequest(BaseModel):
    rewardId: Union[str, int] = Field(..., description="Catalog reward identifier")


class RedemptionResponse(BaseModel):
    points: int
    tier: str
    redemption: RedeemedRewardResponse


def _serialize_tier(tier: Tier) -> LoyaltyTierResponse:
    return LoyaltyTierResponse(
        id=tier.id,
        name=tier.name,
        minPoints=tier.min_points,
        multiplier=float(tier.multiplier),
        benefits=list(tier.benefits),
    )


def _serialize_reward(reward: Reward) -> LoyaltyRewardResponse:
    return LoyaltyRewardResponse(**reward.as_payload())


def _serialize_entry(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(**entry.as_payload())


def _serialize_redemption(record: RedeemedReward) -> RedeemedRewardResponse:
    return RedeemedRewardResponse(
        **record.as_payload(),
        expired=record.is_expired(datetime.now(timezone.utc)),
    )


def _raise_for_outcome(result: Union[OperationResult, RedemptionResult]) -> NoReturn:
    outcome = result.outcome.value
    detail: dict[str, Any] = {"outcome": outcome, "message": result.message}
    if result.shortfall:
        detail["shortfall"] = result.shortfall
    raise HTTPException(status_code=_OUTCOME_STATUS.get(outcome, status.HTTP_400_BAD_REQUEST), detail=detail)


async def _load_account(engine: LoyaltyAccountEngine, user_id: UUID) -> LoyaltyAccount:
    try:
        return await engine.get_account(str(user_id))
    except SnapshotPersistenceError as error:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"outcome": "persistence_failed", "message": str(error)},
        ) from error


def _earn_response(result: OperationResult) -> EarnResponse:
    if not result.ok:
        _raise_for_outcome(result)
    assert result.account is not None
    return EarnResponse(
        pointsEarned=sum(entry.points_delta for entry in result.entries),
        points=result.account.balance,
        tier=result.account.current_tier_id,
        tierChanged=any(entry.kind == LedgerEntryKind.TIER_CHANGE for entry in result.entries),
        entries=[_serialize_entry(entry) for entry in result.entries],
    )


@router.get("/tiers", response_model=List[LoyaltyTierResponse])
async def list_loyalty_tiers(
    engine: LoyaltyAccountEngine = Depends(get_loyalty_engine),
) -> List[LoyaltyTierResponse]:
    """List membership tiers in ascending threshold order."""

    return [_serialize_tier(tier) for tier in engine.tiers]


@router.get("/rewards", response_model=List[LoyaltyRewardResponse])
async def list_loyalty_rewards(
    redemptions: RedemptionService = Depends(get_redemption_service),
) -> List[LoyaltyRewardResponse]:
    return [_serialize_reward(reward) for reward in redemptions.catalog]


@router.get("/members/{user_id}", response_model=LoyaltyMemberResponse)
async def get_loyalty_member(
    user_id: UUID,
    engine: LoyaltyAccountEngine = Depends(get_loyalty_engine),
) -> LoyaltyMemberResponse:
    """Balance, tier and progress for a member; unseen members start at the base tier."""

    account = await _load_account(engine, user_id)
    tier = account.current_tier(engine.tiers)
    upcoming = next_tier(tier, engine.tiers)
    return LoyaltyMemberResponse(
        userId=user_id,
        points=account.balance,
        tier=_serialize_tier(tier),
        nextTier=_serialize_tier(upcoming) if upcoming else None,
        pointsToNextTier=points_to_next_tier(account.balance, tier, engine.tiers),
        version=account.version,
    )


@router.get("/members/{user_id}/history", response_model=List[LedgerEntryResponse])
async def list_member_history(
    user_id: UUID,
    limit: int = Query(settings.loyalty_history_page_limit, ge=1, le=500),
    kind: Optional[LedgerEntryKind] = Query(None, description="Restrict to one entry kind"),
    _: User = Depends(require_member_owner),
    engine: LoyaltyAccountEngine = Depends(get_loyalty_engine),
) -> List[LedgerEntryResponse]:
    """Ledger entries, newest first."""

    account = await _load_account(engine, user_id)
    entries = account.ledger.newest_first()
    if kind is not None:
        entries = [entry for entry in entries if entry.kind == kind]
    return [_serialize_entry(entry) for entry in entries[:limit]]


@router.get("/members/{user_id}/rewards", response_model=List[MemberRewardResponse])
async def list_member_rewards(
    user_id: UUID,
    engine: LoyaltyAccountEngine = Depends(get_loyalty_engine),
    redemptions: RedemptionService = Depends(get_redemption_service),
) -> List[MemberRewardResponse]:
    account = await _load_account(engine, user_id)
    return [
        MemberRewardResponse(**reward.as_payload(), available=account.balance >= reward.point_cost)
        for reward in redemptions.catalog
    ]


@router.get("/members/{user_id}/redemptions", response_model=List[RedeemedRewardResponse])
async def list_member_redemptions(
    user_id: UUID,
    _: User = Depends(require_member_owner),
    engine: LoyaltyAccountEngine = Depends(get_loyalty_engine),
) -> List[RedeemedRewardResponse]:
    account = await _load_account(engine, user_id)
    records = sorted(account.redemptions, key=lambda item: item.redeemed_at, reverse=True)
    return [_serialize_redemption(record) for record in records]


@router.post(
    "/members/{user_id}/earn/purchase",
    response_model=EarnResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def earn_purchase_points(
    user_id: UUID,
    payload: PurchaseEarnRequest,
    earning: LoyaltyEarningService = Depends(get_earning_service),
) -> EarnResponse:
    """Award points for a completed order at the member's current multiplier."""

    result = await earning.award_purchase(str(user_id), payload.orderId, payload.amount)
    return _earn_response(result)


@router.post(
    "/members/{user_id}/earn/review",
    response_model=EarnResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def earn_review_points(
    user_id: UUID,
    payload: ReviewEarnRequest,
    earning: LoyaltyEarningService = Depends(get_earning_service),
) -> EarnResponse:
    result = await earning.award_review(str(user_id), payload.productId, payload.reviewId)
    return _earn_response(result)


@router.post(
    "/members/{user_id}/earn/referral",
    response_model=EarnResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def earn_referral_points(
    user_id: UUID,
    payload: ReferralEarnRequest,
    earning: LoyaltyEarningService = Depends(get_earning_service),
) -> EarnResponse:
    result = await earning.award_referral(str(user_id), payload.referredUserId)
    return _earn_response(result)


@router.post(
    "/members/{user_id}/redemptions",
    response_model=RedemptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    user_id: UUID,
    payload: RedemptionCreateRequest,
    _: User = Depends(require_member_owner),
    redemptions: RedemptionService = Depends(get_redemption_service),
) -> RedemptionResponse:
    """Exchange points for a catalog reward on behalf of the session member."""

    result = await redemptions.redeem(str(user_id), str(payload.rewardId))
    if not result.ok:
        _raise_for_outcome(result)
    assert result.account is not None and result.redemption is not None
    return RedemptionResponse(
        points=result.account.balance,
        tier=result.account.current_tier_id,
        redemption=_serialize_redemption(result.redemption),
    )


@router.post(
    "/members/{user_id}/redemptions/{redemption_id}/use",
    response_model=RedeemedRewardResponse,
)
async def use_redeemed_reward(
    user_id: UUID,
    redemption_id: str,
    _: User = Depends(require_member_owner),
    redemptions: RedemptionService = Depends(get_redemption_service),
) -> RedeemedRewardResponse:
    result = await redemptions.mark_used(str(user_id), redemption_id)
    if not result.ok:
        _raise_for_outcome(result)
    assert result.redemption is not None
    return _serialize_redemption(result.redemption)
