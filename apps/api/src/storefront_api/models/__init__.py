"""SQLAlchemy models package."""

from .customer_profile import CustomerProfile  # noqa: F401
from .notification import Notification, NotificationSeverityEnum  # noqa: F401
from .user import User, UserRoleEnum, UserStatusEnum  # noqa: F401
