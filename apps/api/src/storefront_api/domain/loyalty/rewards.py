"""Reward catalog and redeemed reward records."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from .ledger import parse_timestamp

REDEMPTION_VALIDITY = timedelta(days=30)


class RewardType(str, Enum):
    """Reward fulfilment categories."""

    DISCOUNT = "discount"
    SHIPPING = "shipping"
    PRODUCT = "product"
    CREDIT = "credit"


@dataclass(frozen=True, slots=True)
class Reward:
    """Catalog entry redeemable for points."""

    id: str
    name: str
    point_cost: int
    type: RewardType
    value: Any
    description: str
    image_url: Optional[str] = None

    def as_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "points": self.point_cost,
            "type": self.type.value,
            "value": self.value,
            "description": self.description,
            "image": self.image_url,
        }


REWARD_CATALOG: Tuple[Reward, ...] = (
    Reward(
        id="1",
        name="10% Off Coupon",
        point_cost=200,
        type=RewardType.DISCOUNT,
        value=10,
        description="Get 10% off your next purchase",
        image_url="https://images.unsplash.com/photo-1607082349566-187342175e2f?w=320&auto=format&fit=crop&q=60",
    ),
    Reward(
        id="2",
        name="Free Shipping",
        point_cost=300,
        type=RewardType.SHIPPING,
        value=100,
        description="Free shipping on your next order",
        image_url="https://images.unsplash.com/photo-1586528116311-ad8dd3c8310d?w=320&auto=format&fit=crop&q=60",
    ),
    Reward(
        id="3",
        name="Premium Gift Box",
        point_cost=500,
        type=RewardType.PRODUCT,
        value="gift-box",
        description="Receive a premium gift box with your next order",
        image_url="https://images.unsplash.com/photo-1513885535751-8b9238bd345a?w=320&auto=format&fit=crop&q=60",
    ),
    Reward(
        id="4",
        name="$25 Store Credit",
        point_cost=1000,
        type=RewardType.CREDIT,
        value=25,
        description="Get $25 store credit to use on any purchase",
        image_url="https://images.unsplash.com/photo-1580048915913-4f8f5cb481c4?w=320&auto=format&fit=crop&q=60",
    ),
)


def get_reward(reward_id: str | int, catalog: Sequence[Reward] = REWARD_CATALOG) -> Optional[Reward]:
    """Lookup a catalog reward by identifier."""

    key = str(reward_id)
    return next((reward for reward in catalog if reward.id == key), None)


@dataclass(frozen=True, slots=True)
class RedeemedReward:
    """A reward a member has paid for; only ``used``/``used_at`` ever change."""

    redemption_id: str
    reward_id: str
    reward_name: str
    point_cost: int
    type: RewardType
    value: Any
    description: str
    redeemed_at: datetime
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None

    @classmethod
    def issue(cls, reward: Reward, *, now: datetime | None = None) -> "RedeemedReward":
        redeemed_at = now or datetime.now(timezone.utc)
        return cls(
            redemption_id=str(uuid4()),
            reward_id=reward.id,
            reward_name=reward.name,
            point_cost=reward.point_cost,
            type=reward.type,
            value=reward.value,
            description=reward.description,
            redeemed_at=redeemed_at,
            expires_at=redeemed_at + REDEMPTION_VALIDITY,
        )

    def mark_used(self, *, now: datetime | None = None) -> "RedeemedReward":
        if self.used:
            raise ValueError(f"Redemption {self.redemption_id} already used")
        return replace(self, used=True, used_at=now or datetime.now(timezone.utc))

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def as_payload(self) -> Dict[str, Any]:
        return {
            "id": self.redemption_id,
            "rewardId": self.reward_id,
            "name": self.reward_name,
            "points": self.point_cost,
            "type": self.type.value,
            "value": self.value,
            "description": self.description,
            "redeemedAt": self.redeemed_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "used": self.used,
            "usedAt": self.used_at.isoformat() if self.used_at else None,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "RedeemedReward":
        try:
            used_at = payload.get("usedAt")
            return cls(
                redemption_id=str(payload["id"]),
                reward_id=str(payload["rewardId"]),
                reward_name=str(payload.get("name") or ""),
                point_cost=int(payload.get("points") or 0),
                type=RewardType(payload["type"]),
                value=payload.get("value"),
                description=str(payload.get("description") or ""),
                redeemed_at=parse_timestamp(payload["redeemedAt"]),
                expires_at=parse_timestamp(payload["expiresAt"]),
                used=bool(payload.get("used", False)),
                used_at=parse_timestamp(used_at) if used_at else None,
            )
        except (KeyError, TypeError) as error:
            raise ValueError(f"Malformed redeemed reward payload: {payload!r}") from error


__all__ = [
    "REDEMPTION_VALIDITY",
    "REWARD_CATALOG",
    "RedeemedReward",
    "Reward",
    "RewardType",
    "get_reward",
]
