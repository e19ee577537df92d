from uuid import UUID, uuid4

import pytest
from sqlalchemy import select

from storefront_api.domain.loyalty import LedgerSource
from storefront_api.models.customer_profile import CustomerProfile
from storefront_api.models.user import User
from storefront_api.services.loyalty import (
    LoyaltyAccountEngine,
    SnapshotConflictError,
    SnapshotPersistenceError,
    SqlAlchemySnapshotStore,
)


async def _create_user(session_factory, email: str) -> str:
    async with session_factory() as session:
        user = User(email=email)
        session.add(user)
        await session.commit()
        return str(user.id)


@pytest.mark.asyncio
async def test_first_save_creates_profile(session_factory) -> None:
    owner_id = await _create_user(session_factory, "first-save@example.com")
    store = SqlAlchemySnapshotStore(session_factory)

    assert await store.load(owner_id) is None
    version = await store.save(owner_id, {"points": 0, "tierId": "bronze", "history": [], "rewards": []}, expected_version=0)

    assert version == 1
    stored = await store.load(owner_id)
    assert stored.version == 1
    assert stored.payload["tierId"] == "bronze"

    async with session_factory() as session:
        profile = (await session.execute(select(CustomerProfile))).scalar_one()
        assert str(profile.user_id) == owner_id
        assert profile.loyalty_version == 1
        assert profile.loyalty_updated_at is not None


@pytest.mark.asyncio
async def test_save_updates_existing_profile_snapshot(session_factory) -> None:
    owner_id = await _create_user(session_factory, "existing@example.com")
    async with session_factory() as session:
        session.add(CustomerProfile(user_id=UUID(owner_id), first_name="Ada"))
        await session.commit()

    store = SqlAlchemySnapshotStore(session_factory)
    assert await store.load(owner_id) is None

    version = await store.save(owner_id, {"points": 0, "tierId": "bronze", "history": [], "rewards": []}, expected_version=0)

    assert version == 1
    async with session_factory() as session:
        profile = (await session.execute(select(CustomerProfile))).scalar_one()
        assert profile.first_name == "Ada"
        assert profile.loyalty_snapshot["tierId"] == "bronze"


@pytest.mark.asyncio
async def test_stale_version_is_rejected(session_factory) -> None:
    owner_id = await _create_user(session_factory, "stale@example.com")
    store = SqlAlchemySnapshotStore(session_factory)
    payload = {"points": 0, "tierId": "bronze", "history": [], "rewards": []}
    await store.save(owner_id, payload, expected_version=0)
    await store.save(owner_id, payload, expected_version=1)

    with pytest.raises(SnapshotConflictError):
        await store.save(owner_id, payload, expected_version=1)
    with pytest.raises(SnapshotConflictError):
        await store.save(owner_id, payload, expected_version=0)

    assert (await store.load(owner_id)).version == 2


@pytest.mark.asyncio
async def test_invalid_owner_identifier_is_a_persistence_error(session_factory) -> None:
    store = SqlAlchemySnapshotStore(session_factory)
    with pytest.raises(SnapshotPersistenceError):
        await store.load("not-a-uuid")


@pytest.mark.asyncio
async def test_engine_round_trips_through_database(session_factory) -> None:
    owner_id = await _create_user(session_factory, "engine@example.com")
    store = SqlAlchemySnapshotStore(session_factory)
    engine = LoyaltyAccountEngine(store, None)

    await engine.earn(owner_id, 520, LedgerSource.PURCHASE, {"orderId": str(uuid4())})
    await engine.deduct(owner_id, 100)

    reloaded = await LoyaltyAccountEngine(store, None).get_account(owner_id)
    assert reloaded.balance == 420
    assert reloaded.current_tier_id == "bronze"
    assert reloaded.version == 2
    assert [entry.points_delta for entry in reloaded.ledger] == [520, 0, -100, 0]


def test_customer_profile_holds_only_names_and_loyalty_snapshot() -> None:
    assert set(CustomerProfile.__table__.columns.keys()) == {
        "id",
        "user_id",
        "first_name",
        "last_name",
        "loyalty_snapshot",
        "loyalty_version",
        "loyalty_updated_at",
        "created_at",
        "updated_at",
    }
