import asyncio
from decimal import Decimal

import pytest

from storefront_api.domain.loyalty import (
    LedgerEntryKind,
    LedgerSource,
    RedeemedReward,
    Tier,
    calculate_earned_points,
    get_reward,
    resolve_tier,
)
from storefront_api.observability.loyalty import get_loyalty_store
from storefront_api.services.loyalty import (
    InMemorySnapshotStore,
    LoyaltyAccountEngine,
    LoyaltyEarningService,
    OperationOutcome,
    RedemptionOutcome,
    RedemptionService,
    SnapshotConflictError,
    SnapshotPersistenceError,
)
from storefront_api.services.notifications import InMemoryNotificationSink

OWNER = "member-1"

SCENARIO_TIERS = (
    Tier(id="bronze", name="Bronze", min_points=0, multiplier=Decimal("1")),
    Tier(id="silver", name="Silver", min_points=500, multiplier=Decimal("1.5")),
    Tier(id="gold", name="Gold", min_points=1000, multiplier=Decimal("2")),
)


class FailingSnapshotStore(InMemorySnapshotStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.save_calls = 0

    async def save(self, owner_id, payload, *, expected_version):
        self.save_calls += 1
        if self.fail_writes:
            raise SnapshotPersistenceError("identity provider unavailable")
        return await super().save(owner_id, payload, expected_version=expected_version)


class AlwaysConflictingStore(InMemorySnapshotStore):
    def __init__(self) -> None:
        super().__init__()
        self.save_calls = 0

    async def save(self, owner_id, payload, *, expected_version):
        self.save_calls += 1
        raise SnapshotConflictError(owner_id, expected_version)


class RacingSnapshotStore(InMemorySnapshotStore):
    """Runs one competing write just before the next save lands."""

    def __init__(self) -> None:
        super().__init__()
        self.interloper = None

    async def save(self, owner_id, payload, *, expected_version):
        interloper, self.interloper = self.interloper, None
        if interloper is not None:
            await interloper()
        return await super().save(owner_id, payload, expected_version=expected_version)


class SlowFirstSink(InMemoryNotificationSink):
    """Delays "Points Earned!" so overlapping deliveries would reorder the inbox."""

    def __init__(self) -> None:
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    async def publish(self, owner_id, message):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if message.title == "Points Earned!":
                await asyncio.sleep(0.01)
            await super().publish(owner_id, message)
        finally:
            self.in_flight -= 1


class LoadFailingStore(InMemorySnapshotStore):
    async def load(self, owner_id):
        raise SnapshotPersistenceError("profile database unreachable")


class BrokenSink:
    async def publish(self, owner_id, message):
        raise RuntimeError("inbox offline")


def _engine(store=None, sink=None, **kwargs) -> LoyaltyAccountEngine:
    return LoyaltyAccountEngine(
        store or InMemorySnapshotStore(),
        sink,
        tiers=kwargs.pop("tiers", SCENARIO_TIERS),
        notifications_enabled=True,
        **kwargs,
    )


async def _assert_consistent(engine: LoyaltyAccountEngine, owner_id: str = OWNER) -> None:
    account = await engine.get_account(owner_id)
    assert account.balance == account.ledger.balance()
    assert account.current_tier_id == resolve_tier(account.balance, engine.tiers).id
    assert account.balance >= 0


@pytest.mark.asyncio
async def test_tier_scenarios_for_earn_and_deduct() -> None:
    store = InMemorySnapshotStore()
    engine = _engine(store)
    bronze = SCENARIO_TIERS[0]

    first = await engine.earn(OWNER, calculate_earned_points(400, bronze), LedgerSource.PURCHASE, {"orderId": "A"})
    assert first.ok
    assert first.account.balance == 400
    assert first.account.current_tier_id == "bronze"
    assert len(first.account.ledger) == 1

    second = await engine.earn(OWNER, calculate_earned_points(100, bronze), "purchase", {"orderId": "B"})
    assert second.ok
    assert second.account.balance == 500
    assert second.account.current_tier_id == "silver"
    earned, marker = second.entries
    assert earned.kind == LedgerEntryKind.EARNED and earned.points_delta == 100
    assert marker.kind == LedgerEntryKind.TIER_CHANGE and marker.points_delta == 0
    assert marker.source == LedgerSource.TIER_UPGRADE
    assert dict(marker.details) == {"fromTier": "bronze", "toTier": "silver"}
    assert list(second.account.ledger)[-2:] == [earned, marker]

    third = await engine.deduct(OWNER, 300, LedgerSource.REWARD_REDEMPTION, {"rewardId": "2"})
    assert third.ok
    assert third.account.balance == 200
    assert third.account.current_tier_id == "bronze"
    redeemed, downgrade = third.entries
    assert redeemed.kind == LedgerEntryKind.REDEEMED and redeemed.points_delta == -300
    assert downgrade.source == LedgerSource.TIER_DOWNGRADE
    assert dict(downgrade.details) == {"fromTier": "silver", "toTier": "bronze"}

    stored = await store.load(OWNER)
    assert stored is not None and stored.version == 3
    assert stored.payload["points"] == 200
    assert stored.payload["tierId"] == "bronze"
    assert [item["type"] for item in stored.payload["history"]] == [
        "tier_change",
        "redeemed",
        "tier_change",
        "earned",
        "earned",
    ]
    await _assert_consistent(engine)


@pytest.mark.asyncio
async def test_gold_member_purchase_uses_double_multiplier() -> None:
    engine = _engine()
    await engine.earn(OWNER, 1000, LedgerSource.REFERRAL)
    earning = LoyaltyEarningService(engine)

    result = await earning.award_purchase(OWNER, "order-50", Decimal("50"))

    assert result.ok
    assert result.entries[0].points_delta == 100
    assert result.entries[0].details["tier"] == "gold"
    assert result.account.balance == 1100


@pytest.mark.asyncio
async def test_threshold_crossing_purchase_uses_tier_before_purchase() -> None:
    engine = _engine()
    earning = LoyaltyEarningService(engine)
    await earning.award_purchase(OWNER, "seed", Decimal("450"))

    result = await earning.award_purchase(OWNER, "crossing", Decimal("100"))

    assert result.entries[0].points_delta == 100
    assert result.account.balance == 550
    assert result.account.current_tier_id == "silver"


@pytest.mark.asyncio
@pytest.mark.parametrize("points", [0, -5])
async def test_non_positive_points_are_rejected_without_mutation(points: int) -> None:
    store = FailingSnapshotStore()
    engine = _engine(store)
    await engine.earn(OWNER, 120, LedgerSource.REVIEW)

    earn = await engine.earn(OWNER, points, LedgerSource.PURCHASE)
    deduct = await engine.deduct(OWNER, points)

    assert not earn and earn.outcome == OperationOutcome.INVALID_POINTS
    assert not deduct and deduct.outcome == OperationOutcome.INVALID_POINTS
    assert store.save_calls == 1
    account = await engine.get_account(OWNER)
    assert account.balance == 120
    assert len(account.ledger) == 1


@pytest.mark.asyncio
async def test_overdraft_is_rejected_with_shortfall() -> None:
    store = FailingSnapshotStore()
    engine = _engine(store)
    await engine.earn(OWNER, 150, LedgerSource.PURCHASE)

    result = await engine.deduct(OWNER, 200)

    assert not result.ok
    assert result.outcome == OperationOutcome.INSUFFICIENT_POINTS
    assert result.shortfall == 50
    assert result.account.balance == 150
    assert store.save_calls == 1
    assert len((await engine.get_account(OWNER)).ledger) == 1


@pytest.mark.asyncio
async def test_earn_rejects_non_earning_source() -> None:
    engine = _engine()
    with pytest.raises(ValueError):
        await engine.earn(OWNER, 10, LedgerSource.REWARD_REDEMPTION)


@pytest.mark.asyncio
async def test_mark_reward_used_is_single_shot() -> None:
    engine = _engine()
    await engine.earn(OWNER, 400, LedgerSource.PURCHASE)
    record = RedeemedReward.issue(get_reward("1"))
    redeemed = await engine.deduct(OWNER, 200, redemption=record)
    assert redeemed.ok and redeemed.redemption == record

    first = await engine.mark_reward_used(OWNER, record.redemption_id)
    second = await engine.mark_reward_used(OWNER, record.redemption_id)
    missing = await engine.mark_reward_used(OWNER, "nope")

    assert first.ok and first.redemption.used
    assert second.outcome == OperationOutcome.REDEMPTION_ALREADY_USED
    assert second.redemption.used_at == first.redemption.used_at
    assert missing.outcome == OperationOutcome.REDEMPTION_NOT_FOUND
    stored = (await engine.get_account(OWNER)).find_redemption(record.redemption_id)
    assert stored.used and stored.used_at == first.redemption.used_at


@pytest.mark.asyncio
async def test_persistence_failure_leaves_state_untouched() -> None:
    store = FailingSnapshotStore()
    sink = InMemoryNotificationSink()
    engine = _engine(store, sink)
    await engine.earn(OWNER, 300, LedgerSource.PURCHASE)
    before = await engine.get_account(OWNER)

    store.fail_writes = True
    result = await engine.earn(OWNER, 300, LedgerSource.PURCHASE)
    await engine.flush_notifications()

    assert not result.ok
    assert result.outcome == OperationOutcome.PERSISTENCE_FAILED
    assert await engine.get_account(OWNER) is before
    stored = await store.load(OWNER)
    assert stored.payload["points"] == 300 and stored.version == 1
    assert sink.titles_for(OWNER)[-1] == "Loyalty Update Failed"
    assert get_loyalty_store().snapshot().persistence["failures"] == 1


@pytest.mark.asyncio
async def test_conflicting_writer_triggers_reload_and_retry() -> None:
    store = RacingSnapshotStore()
    engine_a = _engine(store)
    engine_b = _engine(store)

    await engine_a.earn(OWNER, 100, LedgerSource.PURCHASE)

    async def competing_write():
        await engine_b.earn(OWNER, 50, LedgerSource.REVIEW)

    store.interloper = competing_write
    result = await engine_a.earn(OWNER, 200, LedgerSource.REFERRAL)

    assert result.ok
    assert result.account.balance == 350
    assert result.account.version == 3
    assert [entry.points_delta for entry in result.account.ledger] == [100, 50, 200]
    assert get_loyalty_store().snapshot().persistence["conflicts"] == 1


@pytest.mark.asyncio
async def test_exhausted_conflict_retries_fail_the_operation() -> None:
    store = AlwaysConflictingStore()
    engine = _engine(store, max_retries=2)

    result = await engine.earn(OWNER, 10, LedgerSource.PURCHASE)

    assert result.outcome == OperationOutcome.PERSISTENCE_FAILED
    assert store.save_calls == 3
    assert (await engine.get_account(OWNER)).balance == 0


@pytest.mark.asyncio
async def test_concurrent_operations_on_one_account_are_serialized() -> None:
    engine = _engine(tiers=SCENARIO_TIERS)

    results = await asyncio.gather(
        *[engine.earn(OWNER, 25, LedgerSource.PURCHASE, {"n": index}) for index in range(40)]
    )

    assert all(result.ok for result in results)
    account = await engine.get_account(OWNER)
    assert account.balance == 1000
    assert account.version == 40
    assert account.current_tier_id == "gold"
    markers = [entry for entry in account.ledger if entry.kind == LedgerEntryKind.TIER_CHANGE]
    assert [dict(marker.details)["toTier"] for marker in markers] == ["silver", "gold"]
    await _assert_consistent(engine)


@pytest.mark.asyncio
async def test_notifications_follow_commits() -> None:
    sink = InMemoryNotificationSink()
    engine = _engine(sink=sink)

    await engine.earn(OWNER, 400, LedgerSource.PURCHASE)
    await engine.earn(OWNER, 200, LedgerSource.REFERRAL)
    await engine.deduct(OWNER, 300)
    await engine.flush_notifications()

    assert sink.titles_for(OWNER) == ["Points Earned!", "Points Earned!", "Tier Upgraded!"]
    messages = [message.message for _, message in sink.sent_messages]
    assert messages[1] == "You earned 200 points from a referral"
    assert messages[2] == "Congratulations! You've been upgraded to Silver tier"


@pytest.mark.asyncio
async def test_notification_failure_does_not_change_outcome() -> None:
    engine = _engine(sink=BrokenSink())

    result = await engine.earn(OWNER, 600, LedgerSource.PURCHASE)
    await engine.flush_notifications()

    assert result.ok
    assert (await engine.balance(OWNER)) == 600
    assert get_loyalty_store().snapshot().notifications["failed"] == 2


@pytest.mark.asyncio
async def test_read_accessors() -> None:
    engine = _engine()
    await engine.earn(OWNER, 650, LedgerSource.PURCHASE)

    assert await engine.balance(OWNER) == 650
    assert (await engine.current_tier(OWNER)).id == "silver"
    assert (await engine.next_tier(OWNER)).id == "gold"
    assert await engine.points_to_next_tier(OWNER) == 350
    history = await engine.history(OWNER, limit=1)
    assert len(history) == 1 and history[0].kind == LedgerEntryKind.TIER_CHANGE
    assert await engine.is_reward_available(OWNER, get_reward("3"))
    assert not await engine.is_reward_available(OWNER, get_reward("4"))
    assert await engine.redemptions(OWNER) == []


@pytest.mark.asyncio
async def test_engine_reloads_persisted_account() -> None:
    store = InMemorySnapshotStore()
    await _engine(store).earn(OWNER, 1200, LedgerSource.PURCHASE)

    fresh = _engine(store)
    account = await fresh.get_account(OWNER)

    assert account.balance == 1200
    assert account.current_tier_id == "gold"
    assert account.version == 1


@pytest.mark.asyncio
async def test_engines_sharing_a_store_see_each_others_writes() -> None:
    store = InMemorySnapshotStore()
    engine_a = _engine(store)
    engine_b = _engine(store)

    await engine_a.earn(OWNER, 150, LedgerSource.PURCHASE)
    await engine_b.earn(OWNER, 350, LedgerSource.REFERRAL)

    redeemed = await RedemptionService(engine_a).redeem(OWNER, "1")

    assert redeemed.ok
    assert redeemed.outcome == RedemptionOutcome.COMMITTED
    assert redeemed.account.balance == 300
    assert redeemed.account.version == 3
    assert get_loyalty_store().snapshot().persistence["conflicts"] == 0

    overdraft = await engine_a.deduct(OWNER, 400)
    assert overdraft.outcome == OperationOutcome.INSUFFICIENT_POINTS
    assert overdraft.shortfall == 100

    record = RedeemedReward.issue(get_reward("2"))
    assert (await engine_b.deduct(OWNER, 300, redemption=record)).ok
    used = await engine_a.mark_reward_used(OWNER, record.redemption_id)
    assert used.ok and used.redemption.used
    await _assert_consistent(engine_b)


@pytest.mark.asyncio
async def test_idle_owner_locks_are_released_and_cache_is_bounded() -> None:
    store = InMemorySnapshotStore()
    engine = _engine(store, cache_size=2)

    for owner in ("member-a", "member-b", "member-c"):
        await engine.earn(owner, 10, LedgerSource.REVIEW)
    await asyncio.gather(*[engine.earn("member-a", 5, LedgerSource.REVIEW) for _ in range(5)])

    assert engine._locks == {}
    assert list(engine._cache) == ["member-c", "member-a"]
    assert (await engine.get_account("member-b")).balance == 10
    assert list(engine._cache) == ["member-a", "member-b"]


@pytest.mark.asyncio
async def test_failed_load_becomes_persistence_failure() -> None:
    sink = InMemoryNotificationSink()
    engine = _engine(LoadFailingStore(), sink)

    redeemed = await RedemptionService(engine).redeem(OWNER, "1")
    purchase = await LoyaltyEarningService(engine).award_purchase(OWNER, "order-9", Decimal("25"))
    await engine.flush_notifications()

    assert redeemed.outcome == RedemptionOutcome.PERSISTENCE_FAILED
    assert purchase.outcome == OperationOutcome.PERSISTENCE_FAILED
    assert sink.titles_for(OWNER) == ["Loyalty Update Failed", "Loyalty Update Failed"]
    assert engine._locks == {}
    assert get_loyalty_store().snapshot().persistence["failures"] == 2


@pytest.mark.asyncio
async def test_mixed_sequence_keeps_balance_and_tier_consistent() -> None:
    engine = _engine()
    steps = [
        ("earn", 300),
        ("deduct", 100),
        ("earn", 400),
        ("deduct", 900),
        ("earn", 450),
        ("deduct", 50),
        ("earn", 0),
        ("deduct", 1000),
        ("earn", 25),
    ]
    expected = 0

    for operation, points in steps:
        if operation == "earn":
            result = await engine.earn(OWNER, points, LedgerSource.PURCHASE)
            if result.ok:
                expected += points
        else:
            result = await engine.deduct(OWNER, points)
            if result.ok:
                expected -= points
        assert (await engine.balance(OWNER)) == expected
        await _assert_consistent(engine)

    assert expected == 25


@pytest.mark.asyncio
async def test_notifications_are_delivered_one_at_a_time_in_commit_order() -> None:
    sink = SlowFirstSink()
    engine = _engine(sink=sink)

    await engine.earn(OWNER, 1200, LedgerSource.PURCHASE)
    await engine.earn("member-2", 30, LedgerSource.REVIEW)
    await engine.flush_notifications()

    assert [(owner_id, message.title) for owner_id, message in sink.sent_messages] == [
        (OWNER, "Points Earned!"),
        (OWNER, "Tier Upgraded!"),
        ("member-2", "Points Earned!"),
    ]
    assert sink.max_in_flight == 1
