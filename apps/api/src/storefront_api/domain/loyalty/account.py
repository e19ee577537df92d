"""Loyalty account value object and persisted snapshot codec."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from loguru import logger

from .ledger import Ledger
from .rewards import RedeemedReward
from .tiers import DEFAULT_TIERS, Tier, get_tier, resolve_tier


class SnapshotIntegrityError(ValueError):
    """Raised when a persisted snapshot violates the ledger invariants."""


@dataclass(frozen=True, slots=True)
class LoyaltyAccount:
    """Point balance, tier, ledger and redemptions for one owner.

    Instances are immutable; the account engine replaces them wholesale after
    each committed write. ``version`` is the stamp of the persisted snapshot
    the instance was read from or written as.
    """

    owner_id: str
    balance: int
    current_tier_id: str
    ledger: Ledger = Ledger()
    redemptions: Tuple[RedeemedReward, ...] = ()
    version: int = 0

    @classmethod
    def open(cls, owner_id: str, tiers: Sequence[Tier] = DEFAULT_TIERS) -> "LoyaltyAccount":
        """New account: zero balance, base tier, empty ledger."""

        return cls(owner_id=owner_id, balance=0, current_tier_id=resolve_tier(0, tiers).id)

    def current_tier(self, tiers: Sequence[Tier] = DEFAULT_TIERS) -> Tier:
        tier = get_tier(self.current_tier_id, tiers)
        if tier is None:
            return resolve_tier(self.balance, tiers)
        return tier

    def find_redemption(self, redemption_id: str) -> Optional[RedeemedReward]:
        return next(
            (item for item in self.redemptions if item.redemption_id == str(redemption_id)),
            None,
        )

    def replace_redemption(self, updated: RedeemedReward) -> "LoyaltyAccount":
        redemptions = tuple(
            updated if item.redemption_id == updated.redemption_id else item
            for item in self.redemptions
        )
        return replace(self, redemptions=redemptions)

    def check_invariants(self, tiers: Sequence[Tier] = DEFAULT_TIERS) -> None:
        """Raise ``SnapshotIntegrityError`` if balance, ledger and tier disagree."""

        if self.balance < 0:
            raise SnapshotIntegrityError(f"Negative balance for {self.owner_id}: {self.balance}")
        ledger_total = self.ledger.balance()
        if ledger_total != self.balance:
            raise SnapshotIntegrityError(
                f"Balance {self.balance} does not match ledger total {ledger_total} for {self.owner_id}"
            )
        expected_tier = resolve_tier(self.balance, tiers).id
        if expected_tier != self.current_tier_id:
            raise SnapshotIntegrityError(
                f"Tier {self.current_tier_id} does not match resolved tier {expected_tier} for {self.owner_id}"
            )

    def to_snapshot(self) -> Dict[str, Any]:
        """Persisted shape: ``{points, tierId, history, rewards}``."""

        return {
            "points": self.balance,
            "tierId": self.current_tier_id,
            "history": self.ledger.to_payload(),
            "rewards": [item.as_payload() for item in self.redemptions],
        }

    @classmethod
    def from_snapshot(
        cls,
        owner_id: str,
        payload: Mapping[str, Any],
        *,
        version: int,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
    ) -> "LoyaltyAccount":
        """Decode a persisted snapshot, re-deriving the tier from the balance."""

        balance = int(payload.get("points") or 0)
        ledger = Ledger.from_payload(payload.get("history"))
        redemptions = tuple(
            RedeemedReward.from_payload(item) for item in payload.get("rewards") or []
        )
        tier = resolve_tier(balance, tiers)
        stored_tier = payload.get("tierId")
        if stored_tier and stored_tier != tier.id:
            logger.warning(
                "Persisted loyalty tier differs from resolved tier",
                owner_id=owner_id,
                stored_tier=stored_tier,
                resolved_tier=tier.id,
            )

        account = cls(
            owner_id=owner_id,
            balance=balance,
            current_tier_id=tier.id,
            ledger=ledger,
            redemptions=redemptions,
            version=version,
        )
        account.check_invariants(tiers)
        return account


__all__ = ["LoyaltyAccount", "SnapshotIntegrityError"]
