"""SQLAlchemy models package."""

from .user import LoyaltyChannelEnum, User, UserRoleEnum  # noqa: F401
from .hotel import Hotel, HotelGroup  # noqa: F401
from .loyalty import (  # noqa: F401
    LoyaltyLedgerEntry,
    LoyaltyLedgerEntryType,
    LoyaltyMember,
    LoyaltyProgram,
    LoyaltyRedemption,
    LoyaltyReward,
    LoyaltyRewardCategory,
    LoyaltyTierChange,
)
from .booking import Booking, BookingStatusEnum, CurrencyEnum, PaymentStatusEnum  # noqa: F401
from .booking_status_event import (  # noqa: F401
    BookingActorTypeEnum,
    BookingEventTypeEnum,
    BookingStatusEvent,
)
from .notification import NotificationPreference  # noqa: F401
