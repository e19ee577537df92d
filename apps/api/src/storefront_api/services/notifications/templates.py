"""User-facing loyalty notification copy."""

from __future__ import annotations

from storefront_api.domain.loyalty import Tier
from storefront_api.models.notification import NotificationSeverityEnum

from .backend import NotificationMessage

_SOURCE_LABELS = {
    "purchase": "your purchase",
    "review": "your review",
    "referral": "a referral",
}


def render_points_earned(points: int, source: str) -> NotificationMessage:
    label = _SOURCE_LABELS.get(source, source.replace("_", " "))
    return NotificationMessage(
        title="Points Earned!",
        message=f"You earned {points} points from {label}",
        severity=NotificationSeverityEnum.SUCCESS,
    )


def render_tier_upgrade(tier: Tier) -> NotificationMessage:
    return NotificationMessage(
        title="Tier Upgraded!",
        message=f"Congratulations! You've been upgraded to {tier.name} tier",
        severity=NotificationSeverityEnum.SUCCESS,
    )


def render_reward_redeemed(reward_name: str) -> NotificationMessage:
    return NotificationMessage(
        title="Reward Redeemed!",
        message=f"You've successfully redeemed {reward_name}",
        severity=NotificationSeverityEnum.SUCCESS,
    )


def render_insufficient_points(shortfall: int) -> NotificationMessage:
    return NotificationMessage(
        title="Insufficient Points",
        message=f"You need {shortfall} more points to redeem this reward",
        severity=NotificationSeverityEnum.ERROR,
    )


def render_loyalty_update_failed() -> NotificationMessage:
    return NotificationMessage(
        title="Loyalty Update Failed",
        message="We couldn't save your loyalty points right now. Please try again shortly.",
        severity=NotificationSeverityEnum.ERROR,
    )


__all__ = [
    "render_insufficient_points",
    "render_loyalty_update_failed",
    "render_points_earned",
    "render_reward_redeemed",
    "render_tier_upgrade",
]
