from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, String, func
from sqlalchemy.dialects.postgresql import UUID

from hotelmarket_api.db.base import Base


class UserRoleEnum(str, Enum):
    GUEST = "guest"
    HOTEL_ADMIN = "hotel_admin"
    ADMIN = "admin"


class LoyaltyChannelEnum(str, Enum):
    """Guest acquisition channel used to segment loyalty rules."""

    DIRECT = "Direct"
    TRAVEL_AGENCY = "Travel Agency"
    CORPORATE = "Corporate"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    phone_number = Column(String(32), nullable=True)
    role = Column(String(length=16), nullable=False, default=UserRoleEnum.GUEST.value, server_default=UserRoleEnum.GUEST.value)
    loyalty_channel = Column(SqlEnum(LoyaltyChannelEnum, name="loyalty_channel_enum"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
