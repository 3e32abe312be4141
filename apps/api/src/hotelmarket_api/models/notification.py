from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, func, true, false
from sqlalchemy.dialects.postgresql import UUID

from hotelmarket_api.db.base import Base


class NotificationPreference(Base):
    """Per-guest notification delivery preferences."""

    __tablename__ = "notification_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    booking_updates = Column(Boolean, nullable=False, default=True, server_default=true())
    loyalty_updates = Column(Boolean, nullable=False, default=True, server_default=true())
    sms_enabled = Column(Boolean, nullable=False, default=False, server_default=false())
    marketing_messages = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
