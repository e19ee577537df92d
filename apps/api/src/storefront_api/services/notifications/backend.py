"""Notification sinks for user-facing inbox messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.models.notification import Notification, NotificationSeverityEnum


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    """Fire-and-forget message pushed to a customer's inbox."""

    title: str
    message: str
    severity: NotificationSeverityEnum = NotificationSeverityEnum.INFO
    category: str = "loyalty"


class NotificationSink(Protocol):
    """Protocol for inbox delivery."""

    async def publish(self, owner_id: str, message: NotificationMessage) -> None:
        ...


@dataclass
class InMemoryNotificationSink:
    """Stores published messages for inspection in tests and local runs."""

    sent_messages: List[tuple[str, NotificationMessage]] = field(default_factory=list)

    async def publish(self, owner_id: str, message: NotificationMessage) -> None:
        self.sent_messages.append((owner_id, message))

    def titles_for(self, owner_id: str) -> list[str]:
        return [message.title for recipient, message in self.sent_messages if recipient == owner_id]


class InboxNotificationSink:
    """Persists messages to the ``notifications`` inbox table."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def publish(self, owner_id: str, message: NotificationMessage) -> None:
        try:
            user_id = UUID(str(owner_id))
        except ValueError:
            logger.warning("Skipping inbox notification for non-UUID owner", owner_id=owner_id)
            return

        async with self._session_factory() as session:
            session.add(
                Notification(
                    user_id=user_id,
                    category=message.category,
                    title=message.title,
                    message=message.message,
                    severity=message.severity,
                )
            )
            try:
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise
        logger.debug("Stored inbox notification", owner_id=owner_id, title=message.title)


__all__ = [
    "InMemoryNotificationSink",
    "InboxNotificationSink",
    "NotificationMessage",
    "NotificationSink",
]
