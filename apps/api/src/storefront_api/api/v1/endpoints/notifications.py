from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_api.api.dependencies.session import require_member_owner
from storefront_api.db.session import get_session
from storefront_api.models.notification import NotificationSeverityEnum
from storefront_api.models.user import User
from storefront_api.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: UUID
    category: str
    title: str
    message: str
    severity: NotificationSeverityEnum
    read_at: datetime | None = Field(default=None, description="When the customer acknowledged the message")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationInboxResponse(BaseModel):
    unread: int = Field(..., description="Unread notifications for the user")
    items: list[NotificationResponse]


@router.get(
    "/{user_id}",
    response_model=NotificationInboxResponse,
    status_code=status.HTTP_200_OK,
)
async def list_notifications(
    user_id: UUID,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    _: User = Depends(require_member_owner),
    session: AsyncSession = Depends(get_session),
) -> NotificationInboxResponse:
    """Newest inbox messages for a customer."""

    service = NotificationService(session)
    items = await service.list_inbox(user_id, unread_only=unread_only, limit=limit)
    unread = await service.count_unread(user_id)
    return NotificationInboxResponse(
        unread=unread,
        items=[NotificationResponse.model_validate(item) for item in items],
    )


@router.post(
    "/{user_id}/{notification_id}/read",
    response_model=NotificationResponse,
    status_code=status.HTTP_200_OK,
)
async def mark_notification_read(
    user_id: UUID,
    notification_id: UUID,
    _: User = Depends(require_member_owner),
    session: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    service = NotificationService(session)
    notification = await service.mark_read(user_id, notification_id)
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return NotificationResponse.model_validate(notification)
