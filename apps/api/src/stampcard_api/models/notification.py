from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, JSON, String, Text, func

from stampcard_api.db.base import Base


class NotificationCategoryEnum(str, Enum):
    LOYALTY_REWARD_GENERATED = "loyalty_reward_generated"


class Notification(Base):
    """Inbox entry picked up by the push delivery service."""

    __tablename__ = "notifications"

    notification_id = Column(String(64), primary_key=True, default=lambda: uuid4().hex)
    user_id = Column(String(128), nullable=False, index=True)
    category = Column(
        SqlEnum(
            NotificationCategoryEnum,
            name="notification_category_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    data = Column(JSON, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False, server_default="false")
    is_sent = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
