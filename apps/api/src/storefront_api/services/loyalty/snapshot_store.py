"""Persistence of loyalty snapshots on the customer profile.

Writes are compare-and-swap on ``loyalty_version``: a save names the version
it was computed from and fails with ``SnapshotConflictError`` when another
writer committed first.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.models.customer_profile import CustomerProfile


class SnapshotPersistenceError(RuntimeError):
    """The identity provider could not read or write a loyalty snapshot."""


class SnapshotConflictError(SnapshotPersistenceError):
    """The stored snapshot changed since it was read."""

    def __init__(self, owner_id: str, expected_version: int) -> None:
        super().__init__(f"Loyalty snapshot for {owner_id} moved past version {expected_version}")
        self.owner_id = owner_id
        self.expected_version = expected_version


@dataclass(frozen=True, slots=True)
class StoredSnapshot:
    payload: Mapping[str, Any]
    version: int


class SnapshotStore(Protocol):
    """Identity-provider contract used by the account engine."""

    async def load(self, owner_id: str) -> Optional[StoredSnapshot]:
        ...

    async def save(self, owner_id: str, payload: Mapping[str, Any], *, expected_version: int) -> int:
        ...


class InMemorySnapshotStore:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, StoredSnapshot] = {}

    async def load(self, owner_id: str) -> Optional[StoredSnapshot]:
        stored = self._snapshots.get(owner_id)
        if stored is None:
            return None
        return StoredSnapshot(payload=copy.deepcopy(dict(stored.payload)), version=stored.version)

    async def save(self, owner_id: str, payload: Mapping[str, Any], *, expected_version: int) -> int:
        current = self._snapshots.get(owner_id)
        current_version = current.version if current else 0
        if current_version != expected_version:
            raise SnapshotConflictError(owner_id, expected_version)
        new_version = expected_version + 1
        self._snapshots[owner_id] = StoredSnapshot(
            payload=copy.deepcopy(dict(payload)),
            version=new_version,
        )
        return new_version


class SqlAlchemySnapshotStore:
    """Stores snapshots in ``customer_profiles.loyalty_snapshot``."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, owner_id: str) -> Optional[StoredSnapshot]:
        user_id = _parse_owner_id(owner_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CustomerProfile.loyalty_snapshot, CustomerProfile.loyalty_version).where(
                        CustomerProfile.user_id == user_id
                    )
                )
                row = result.one_or_none()
        except SQLAlchemyError as error:
            logger.exception("Failed to load loyalty snapshot", owner_id=owner_id)
            raise SnapshotPersistenceError(f"Could not load loyalty snapshot for {owner_id}") from error

        if row is None or row.loyalty_snapshot is None:
            return None
        return StoredSnapshot(payload=dict(row.loyalty_snapshot), version=int(row.loyalty_version or 0))

    async def save(self, owner_id: str, payload: Mapping[str, Any], *, expected_version: int) -> int:
        user_id = _parse_owner_id(owner_id)
        new_version = expected_version + 1
        now = datetime.now(timezone.utc)
        document = copy.deepcopy(dict(payload))

        async with self._session_factory() as session:
            try:
                stmt = (
                    update(CustomerProfile)
                    .where(
                        CustomerProfile.user_id == user_id,
                        CustomerProfile.loyalty_version == expected_version,
                    )
                    .values(
                        loyalty_snapshot=document,
                        loyalty_version=new_version,
                        loyalty_updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    exists = await session.execute(
                        select(CustomerProfile.id).where(CustomerProfile.user_id == user_id)
                    )
                    if exists.scalar_one_or_none() is not None or expected_version != 0:
                        await session.rollback()
                        raise SnapshotConflictError(owner_id, expected_version)
                    session.add(
                        CustomerProfile(
                            user_id=user_id,
                            loyalty_snapshot=document,
                            loyalty_version=new_version,
                            loyalty_updated_at=now,
                        )
                    )
                await session.commit()
            except IntegrityError as error:
                await session.rollback()
                created = await session.execute(
                    select(CustomerProfile.id).where(CustomerProfile.user_id == user_id)
                )
                if created.scalar_one_or_none() is not None:
                    # concurrent first write created the profile
                    raise SnapshotConflictError(owner_id, expected_version) from error
                logger.error("Loyalty snapshot owner has no user record", owner_id=owner_id)
                raise SnapshotPersistenceError(f"No user record for loyalty owner {owner_id}") from error
            except SQLAlchemyError as error:
                await session.rollback()
                logger.exception("Failed to persist loyalty snapshot", owner_id=owner_id)
                raise SnapshotPersistenceError(
                    f"Could not persist loyalty snapshot for {owner_id}"
                ) from error

        return new_version


def _parse_owner_id(owner_id: str) -> UUID:
    try:
        return UUID(str(owner_id))
    except ValueError as error:
        raise SnapshotPersistenceError(f"Invalid loyalty owner identifier {owner_id!r}") from error


__all__ = [
    "InMemorySnapshotStore",
    "SnapshotConflictError",
    "SnapshotPersistenceError",
    "SnapshotStore",
    "SqlAlchemySnapshotStore",
    "StoredSnapshot",
]
