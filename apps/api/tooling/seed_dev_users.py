"""Seed development members and starting loyalty balances into the API database."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront_api.core.settings import settings
from storefront_api.domain.loyalty import LedgerSource
from storefront_api.models.user import User
from storefront_api.services.loyalty import LoyaltyAccountEngine, SqlAlchemySnapshotStore


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str
    starting_points: int


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_SHORTCUT_CUSTOMER_EMAIL", "bronze@storefront.dev").lower(),
        "display_name": "Bronze Member",
        "role": "customer",
        "starting_points": 0,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_SILVER_EMAIL", "silver@storefront.dev").lower(),
        "display_name": "Silver Member",
        "role": "customer",
        "starting_points": 650,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_GOLD_EMAIL", "gold@storefront.dev").lower(),
        "display_name": "Gold Member",
        "role": "customer",
        "starting_points": 1800,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_ADMIN_EMAIL", "admin@storefront.dev").lower(),
        "display_name": "Admin QA",
        "role": "admin",
        "starting_points": 0,
    },
]


async def seed_users(session: AsyncSession) -> dict[str, str]:
    """Create or refresh the shortcut users; returns email -> user id."""

    seeded: dict[str, str] = {}
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.display_name = user["display_name"]
            record.role = user["role"]
            record.is_email_verified = True
        else:
            record = User(
                email=user["email"],
                display_name=user["display_name"],
                role=user["role"],
                is_email_verified=True,
            )
            session.add(record)
        await session.flush()
        seeded[user["email"]] = str(record.id)
    await session.commit()
    return seeded


async def seed_balances(engine: LoyaltyAccountEngine, seeded: dict[str, str]) -> None:
    """Top members up to their starting balance; reruns only add the difference."""

    for user in DEV_USERS:
        owner_id = seeded[user["email"]]
        missing = user["starting_points"] - await engine.balance(owner_id)
        if missing <= 0:
            continue
        result = await engine.earn(owner_id, missing, LedgerSource.PURCHASE, {"orderId": "dev-seed"})
        if not result:
            raise RuntimeError(f"Could not seed balance for {user['email']}: {result.message}")


async def main() -> None:
    db_engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            seeded = await seed_users(session)
        loyalty = LoyaltyAccountEngine(SqlAlchemySnapshotStore(session_factory), None)
        await seed_balances(loyalty, seeded)
        print("Development members ready ✅")
    finally:
        await db_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
