"""SQLAlchemy models package."""

from .loyalty import (  # noqa: F401
    LoyaltyConfig,
    LoyaltyCustomerSummary,
    LoyaltyReward,
    LoyaltyStamp,
    RewardStatus,
    StampStatus,
)
from .notification import Notification, NotificationCategoryEnum  # noqa: F401
from .salon import Barber, QueueTicket, QueueTicketStatus, SalonService  # noqa: F401
