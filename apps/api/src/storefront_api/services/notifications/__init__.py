"""Notification service package."""

from .backend import (
    InboxNotificationSink,
    InMemoryNotificationSink,
    NotificationMessage,
    NotificationSink,
)
from .service import NotificationService
from .templates import (
    render_insufficient_points,
    render_loyalty_update_failed,
    render_points_earned,
    render_reward_redeemed,
    render_tier_upgrade,
)

__all__ = [
    "InboxNotificationSink",
    "InMemoryNotificationSink",
    "NotificationMessage",
    "NotificationService",
    "NotificationSink",
    "render_insufficient_points",
    "render_loyalty_update_failed",
    "render_points_earned",
    "render_reward_redeemed",
    "render_tier_upgrade",
]
