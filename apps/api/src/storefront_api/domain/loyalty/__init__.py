"""Loyalty domain: tiers, ledger, rewards and account snapshots."""

from .account import LoyaltyAccount, SnapshotIntegrityError  # noqa: F401
from .ledger import Ledger, LedgerEntry, LedgerEntryKind, LedgerSource  # noqa: F401
from .points import REFERRAL_POINTS, REVIEW_POINTS, calculate_earned_points  # noqa: F401
from .rewards import (  # noqa: F401
    REDEMPTION_VALIDITY,
    REWARD_CATALOG,
    RedeemedReward,
    Reward,
    RewardType,
    get_reward,
)
from .tiers import (  # noqa: F401
    DEFAULT_TIERS,
    Tier,
    get_tier,
    next_tier,
    points_to_next_tier,
    resolve_tier,
    validate_tier_table,
)
