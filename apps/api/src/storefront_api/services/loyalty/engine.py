"""Single-writer engine for loyalty balances, tiers and redemptions."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Sequence, Set, Tuple, Union

from loguru import logger

from storefront_api.core.settings import settings
from storefront_api.domain.loyalty import (
    DEFAULT_TIERS,
    LedgerEntry,
    LedgerEntryKind,
    LedgerSource,
    LoyaltyAccount,
    RedeemedReward,
    Reward,
    Tier,
    calculate_earned_points,
    next_tier,
    points_to_next_tier,
    resolve_tier,
    validate_tier_table,
)
from storefront_api.observability.loyalty import LoyaltyObservabilityStore, get_loyalty_store
from storefront_api.observability.tracing import get_tracer
from storefront_api.services.notifications import (
    NotificationMessage,
    NotificationSink,
    render_loyalty_update_failed,
    render_points_earned,
    render_tier_upgrade,
)

from .snapshot_store import SnapshotConflictError, SnapshotPersistenceError, SnapshotStore

tracer = get_tracer(__name__)

_EARNING_SOURCES = frozenset({LedgerSource.PURCHASE, LedgerSource.REVIEW, LedgerSource.REFERRAL})


class OperationOutcome(str, Enum):
    """Result codes for account engine operations."""

    COMMITTED = "committed"
    INVALID_POINTS = "invalid_points"
    INSUFFICIENT_POINTS = "insufficient_points"
    REDEMPTION_NOT_FOUND = "redemption_not_found"
    REDEMPTION_ALREADY_USED = "redemption_already_used"
    PERSISTENCE_FAILED = "persistence_failed"


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a mutating engine call.

    Rejections are ordinary results, not exceptions. ``account`` is the
    committed account on success and the unchanged account on rejection.
    """

    ok: bool
    outcome: OperationOutcome
    account: Optional[LoyaltyAccount] = None
    entries: Tuple[LedgerEntry, ...] = ()
    redemption: Optional[RedeemedReward] = None
    shortfall: int = 0
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True, slots=True)
class _Mutation:
    account: LoyaltyAccount
    entries: Tuple[LedgerEntry, ...]
    redemption: Optional[RedeemedReward] = None
    notifications: Tuple[NotificationMessage, ...] = ()
    tier_change: Optional[Tuple[Tier, Tier]] = None


@dataclass(slots=True)
class _OwnerLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


_Compute = Callable[[LoyaltyAccount], Union[_Mutation, OperationResult]]


class LoyaltyAccountEngine:
    """Owns every mutation of loyalty accounts.

    Each operation runs under a per-owner ``asyncio.Lock``: read the stored
    snapshot, compute the replacement account, write it with the version it
    was read at, and only then swap the cached account and emit
    notifications. A version conflict reloads and recomputes the whole
    operation.

    The store is read on every load; the bounded cache only keeps the decoded
    account for the version last seen, so other writers are always observed.
    """

    def __init__(
        self,
        store: SnapshotStore,
        notifier: NotificationSink | None = None,
        *,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
        max_retries: int | None = None,
        notifications_enabled: bool | None = None,
        observability: LoyaltyObservabilityStore | None = None,
        cache_size: int | None = None,
    ) -> None:
        validate_tier_table(tiers)
        self._store = store
        self._notifier = notifier
        self._tiers = tuple(tiers)
        self._max_retries = settings.loyalty_snapshot_max_retries if max_retries is None else max_retries
        self._notifications_enabled = (
            settings.loyalty_notifications_enabled if notifications_enabled is None else notifications_enabled
        )
        self._observability = observability or get_loyalty_store()
        self._cache_size = settings.loyalty_account_cache_size if cache_size is None else cache_size
        self._locks: Dict[str, _OwnerLock] = {}
        self._cache: "OrderedDict[str, LoyaltyAccount]" = OrderedDict()
        self._pending_notifications: Set[asyncio.Task[None]] = set()
        self._delivery_lock = asyncio.Lock()

    @property
    def tiers(self) -> Tuple[Tier, ...]:
        return self._tiers

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def earn(
        self,
        owner_id: str,
        points: int,
        source: LedgerSource | str,
        details: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        """Credit ``points`` and re-resolve the tier."""

        source = LedgerSource(source)
        if source not in _EARNING_SOURCES:
            raise ValueError(f"{source.value} is not an earning source")
        if not _is_positive_int(points):
            return self._reject_invalid("earn", owner_id, points)

        def compute(account: LoyaltyAccount) -> _Mutation:
            return self._earn_mutation(account, points, source, details)

        return await self._transact("earn", owner_id, compute)

    async def earn_purchase(
        self,
        owner_id: str,
        amount: Decimal | int | float | str,
        details: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        """Credit a purchase priced at the tier held before it, read under the owner lock."""

        if Decimal(str(amount)) < 0:
            raise ValueError("Purchase amount must be non-negative")

        def compute(account: LoyaltyAccount) -> Union[_Mutation, OperationResult]:
            tier = account.current_tier(self._tiers)
            points = calculate_earned_points(amount, tier)
            if points <= 0:
                return OperationResult(
                    ok=False,
                    outcome=OperationOutcome.INVALID_POINTS,
                    account=account,
                    message="Points must be a positive integer",
                )
            enriched = {**(details or {}), "amount": str(amount), "tier": tier.id}
            return self._earn_mutation(account, points, LedgerSource.PURCHASE, enriched)

        return await self._transact("earn", owner_id, compute)

    async def deduct(
        self,
        owner_id: str,
        points: int,
        reason: LedgerSource | str = LedgerSource.REWARD_REDEMPTION,
        details: Mapping[str, Any] | None = None,
        *,
        redemption: RedeemedReward | None = None,
    ) -> OperationResult:
        """Debit ``points``; overdrafts are rejected with the shortfall.

        When ``redemption`` is given it is appended to the account in the same
        write as the deduction.
        """

        reason = LedgerSource(reason)
        if not _is_positive_int(points):
            return self._reject_invalid("deduct", owner_id, points)

        def compute(account: LoyaltyAccount) -> Union[_Mutation, OperationResult]:
            if account.balance < points:
                shortfall = points - account.balance
                return OperationResult(
                    ok=False,
                    outcome=OperationOutcome.INSUFFICIENT_POINTS,
                    account=account,
                    shortfall=shortfall,
                    message=f"Insufficient points, need {shortfall} more",
                )
            redeemed = LedgerEntry.create(
                kind=LedgerEntryKind.REDEEMED,
                points_delta=-points,
                source=reason,
                details=details,
            )
            updated, entries, change = self._apply(account, redeemed)
            if redemption is not None:
                updated = replace(updated, redemptions=updated.redemptions + (redemption,))
            return _Mutation(account=updated, entries=entries, redemption=redemption, tier_change=change)

        return await self._transact("deduct", owner_id, compute)

    async def mark_reward_used(self, owner_id: str, redemption_id: str) -> OperationResult:
        """Flip a redeemed reward to used; a second call fails cleanly."""

        def compute(account: LoyaltyAccount) -> Union[_Mutation, OperationResult]:
            current = account.find_redemption(redemption_id)
            if current is None:
                return OperationResult(
                    ok=False,
                    outcome=OperationOutcome.REDEMPTION_NOT_FOUND,
                    account=account,
                    message=f"Redemption {redemption_id} not found",
                )
            if current.used:
                return OperationResult(
                    ok=False,
                    outcome=OperationOutcome.REDEMPTION_ALREADY_USED,
                    account=account,
                    redemption=current,
                    message=f"Redemption {redemption_id} already used",
                )
            used = current.mark_used()
            return _Mutation(account=account.replace_redemption(used), entries=(), redemption=used)

        return await self._transact("mark_reward_used", owner_id, compute)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account(self, owner_id: str) -> LoyaltyAccount:
        async with self._owner_lock(owner_id):
            return await self._load(owner_id)

    async def balance(self, owner_id: str) -> int:
        return (await self.get_account(owner_id)).balance

    async def current_tier(self, owner_id: str) -> Tier:
        return (await self.get_account(owner_id)).current_tier(self._tiers)

    async def next_tier(self, owner_id: str) -> Optional[Tier]:
        account = await self.get_account(owner_id)
        return next_tier(account.current_tier(self._tiers), self._tiers)

    async def points_to_next_tier(self, owner_id: str) -> int:
        account = await self.get_account(owner_id)
        return points_to_next_tier(account.balance, account.current_tier(self._tiers), self._tiers)

    async def history(self, owner_id: str, *, limit: int | None = None) -> list[LedgerEntry]:
        entries = (await self.get_account(owner_id)).ledger.newest_first()
        return entries[:limit] if limit is not None else entries

    async def redemptions(self, owner_id: str) -> list[RedeemedReward]:
        account = await self.get_account(owner_id)
        return sorted(account.redemptions, key=lambda item: item.redeemed_at, reverse=True)

    async def is_reward_available(self, owner_id: str, reward: Reward) -> bool:
        return (await self.balance(owner_id)) >= reward.point_cost

    def invalidate(self, owner_id: str | None = None) -> None:
        """Drop cached accounts so the next access reloads from the store."""

        if owner_id is None:
            self._cache.clear()
        else:
            self._cache.pop(owner_id, None)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(self, owner_id: str, *messages: NotificationMessage) -> None:
        """Schedule inbox delivery without waiting on it.

        Messages are published one at a time, in the order they were
        scheduled, across every call on this engine.
        """

        if not self._notifications_enabled or self._notifier is None or not messages:
            return
        task = asyncio.create_task(self._deliver(owner_id, messages))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def flush_notifications(self) -> None:
        """Wait for scheduled deliveries; used on shutdown and in tests."""

        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications))

    async def _deliver(self, owner_id: str, messages: Tuple[NotificationMessage, ...]) -> None:
        assert self._notifier is not None
        async with self._delivery_lock:
            for message in messages:
                try:
                    await self._notifier.publish(owner_id, message)
                except Exception:  # sink errors are logged, never raised
                    logger.exception("Loyalty notification delivery failed", owner_id=owner_id, title=message.title)
                    self._observability.record_notification(delivered=False)
                    continue
                self._observability.record_notification(delivered=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _owner_lock(self, owner_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(owner_id)
        if entry is None:
            entry = self._locks[owner_id] = _OwnerLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(owner_id, None)

    async def _load(self, owner_id: str) -> LoyaltyAccount:
        stored = await self._store.load(owner_id)
        version = stored.version if stored is not None else 0
        cached = self._cache.get(owner_id)
        if cached is not None and cached.version == version:
            self._cache.move_to_end(owner_id)
            return cached
        if stored is None:
            account = LoyaltyAccount.open(owner_id, self._tiers)
        else:
            account = LoyaltyAccount.from_snapshot(
                owner_id, stored.payload, version=stored.version, tiers=self._tiers
            )
        self._remember(owner_id, account)
        return account

    def _remember(self, owner_id: str, account: LoyaltyAccount) -> None:
        self._cache[owner_id] = account
        self._cache.move_to_end(owner_id)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def _earn_mutation(
        self,
        account: LoyaltyAccount,
        points: int,
        source: LedgerSource,
        details: Mapping[str, Any] | None,
    ) -> _Mutation:
        earned = LedgerEntry.create(
            kind=LedgerEntryKind.EARNED,
            points_delta=points,
            source=source,
            details=details,
        )
        updated, entries, change = self._apply(account, earned)
        notifications = [render_points_earned(points, source.value)]
        if change is not None:
            notifications.append(render_tier_upgrade(change[1]))
        return _Mutation(
            account=updated,
            entries=entries,
            notifications=tuple(notifications),
            tier_change=change,
        )

    def _apply(
        self, account: LoyaltyAccount, entry: LedgerEntry
    ) -> Tuple[LoyaltyAccount, Tuple[LedgerEntry, ...], Optional[Tuple[Tier, Tier]]]:
        before = account.current_tier(self._tiers)
        balance = account.balance + entry.points_delta
        after = resolve_tier(balance, self._tiers)
        entries: Tuple[LedgerEntry, ...] = (entry,)
        change: Optional[Tuple[Tier, Tier]] = None
        if after.id != before.id:
            upgrade = after.min_points > before.min_points
            marker = LedgerEntry.create(
                kind=LedgerEntryKind.TIER_CHANGE,
                points_delta=0,
                source=LedgerSource.TIER_UPGRADE if upgrade else LedgerSource.TIER_DOWNGRADE,
                details={"fromTier": before.id, "toTier": after.id},
                timestamp=entry.timestamp,
            )
            entries = entries + (marker,)
            change = (before, after)
        updated = replace(
            account,
            balance=balance,
            current_tier_id=after.id,
            ledger=account.ledger.append(*entries),
        )
        return updated, entries, change

    async def _transact(self, operation: str, owner_id: str, compute: _Compute) -> OperationResult:
        with tracer.start_as_current_span(f"loyalty.{operation}") as span:
            span.set_attribute("loyalty.owner_id", owner_id)
            result = await self._run_locked(operation, owner_id, compute)
            span.set_attribute("loyalty.outcome", result.outcome.value)
        self._observability.record_operation(operation, result.outcome.value)
        return result

    async def _run_locked(self, operation: str, owner_id: str, compute: _Compute) -> OperationResult:
        async with self._owner_lock(owner_id):
            for attempt in range(self._max_retries + 1):
                try:
                    current = await self._load(owner_id)
                except SnapshotPersistenceError:
                    logger.exception("Could not load loyalty account", owner_id=owner_id, operation=operation)
                    return self._persistence_failed(operation, owner_id)

                planned = compute(current)
                if isinstance(planned, OperationResult):
                    logger.info(
                        "Loyalty operation rejected",
                        owner_id=owner_id,
                        operation=operation,
                        outcome=planned.outcome.value,
                        balance=current.balance,
                        shortfall=planned.shortfall,
                    )
                    return planned

                try:
                    version = await self._store.save(
                        owner_id,
                        planned.account.to_snapshot(),
                        expected_version=current.version,
                    )
                except SnapshotConflictError:
                    self._cache.pop(owner_id, None)
                    self._observability.record_snapshot_conflict()
                    logger.warning(
                        "Loyalty snapshot conflict, reloading",
                        owner_id=owner_id,
                        operation=operation,
                        attempt=attempt + 1,
                        expected_version=current.version,
                    )
                    continue
                except SnapshotPersistenceError:
                    logger.exception("Loyalty snapshot write failed", owner_id=owner_id, operation=operation)
                    return self._persistence_failed(operation, owner_id)

                return self._commit(operation, owner_id, planned, version)

            logger.error(
                "Loyalty snapshot conflicts exhausted retries",
                owner_id=owner_id,
                operation=operation,
                retries=self._max_retries,
            )
            return self._persistence_failed(operation, owner_id)

    def _commit(self, operation: str, owner_id: str, planned: _Mutation, version: int) -> OperationResult:
        committed = replace(planned.account, version=version)
        self._remember(owner_id, committed)

        delta = sum(entry.points_delta for entry in planned.entries)
        logger.info(
            "Loyalty operation committed",
            owner_id=owner_id,
            operation=operation,
            points=delta,
            balance=committed.balance,
            tier=committed.current_tier_id,
            version=version,
        )
        if planned.tier_change is not None:
            before, after = planned.tier_change
            upgrade = after.min_points > before.min_points
            self._observability.record_tier_change(before.id, after.id, upgrade=upgrade)
            logger.info(
                "Loyalty tier upgraded" if upgrade else "Loyalty tier downgraded",
                owner_id=owner_id,
                from_tier=before.id,
                to_tier=after.id,
            )

        self.notify(owner_id, *planned.notifications)
        return OperationResult(
            ok=True,
            outcome=OperationOutcome.COMMITTED,
            account=committed,
            entries=planned.entries,
            redemption=planned.redemption,
        )

    def _persistence_failed(self, operation: str, owner_id: str) -> OperationResult:
        self._observability.record_persistence_failure()
        self.notify(owner_id, render_loyalty_update_failed())
        return OperationResult(
            ok=False,
            outcome=OperationOutcome.PERSISTENCE_FAILED,
            account=self._cache.get(owner_id),
            message=f"Loyalty {operation} could not be saved",
        )

    def _reject_invalid(self, operation: str, owner_id: str, points: Any) -> OperationResult:
        logger.info("Loyalty operation rejected", owner_id=owner_id, operation=operation, points=points)
        self._observability.record_operation(operation, OperationOutcome.INVALID_POINTS.value)
        return OperationResult(
            ok=False,
            outcome=OperationOutcome.INVALID_POINTS,
            message="Points must be a positive integer",
        )


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


__all__ = [
    "LoyaltyAccountEngine",
    "OperationOutcome",
    "OperationResult",
]
