"""Inbox queries for storefront customers."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.models.notification import Notification


class NotificationService:
    """Read and acknowledge inbox notifications."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_inbox(
        self,
        user_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """Return the newest notifications for a user."""

        bounded_limit = max(1, min(limit, 200))
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(bounded_limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def count_unread(self, user_id: UUID) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification | None:
        """Mark a notification read; returns ``None`` if it does not belong to the user."""

        stmt = select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
        result = await self._db.execute(stmt)
        notification = result.scalar_one_or_none()
        if notification is None:
            return None

        if notification.read_at is None:
            notification.read_at = datetime.now(timezone.utc)
            await self._db.commit()
            logger.debug("Marked notification read", notification_id=str(notification_id))
        return notification
