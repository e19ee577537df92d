from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from storefront_api.db.base import Base


class NotificationSeverityEnum(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(Base):
    """Inbox message shown to a storefront customer."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String, nullable=False, default="loyalty", server_default="loyalty")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    severity = Column(
        SqlEnum(
            NotificationSeverityEnum,
            name="notification_severity_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=NotificationSeverityEnum.INFO,
        server_default=NotificationSeverityEnum.INFO.value,
    )
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
