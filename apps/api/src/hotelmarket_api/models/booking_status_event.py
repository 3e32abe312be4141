"""Booking status history audit log models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, String, Text, false
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from hotelmarket_api.db.base import Base


class BookingEventTypeEnum(str, Enum):
    """Supported booking timeline event categories."""

    STATE_CHANGE = "state_change"
    MODIFICATION = "modification"
    PAYMENT = "payment"
    NOTE = "note"


class BookingActorTypeEnum(str, Enum):
    """Identity of the actor emitting the booking event."""

    SYSTEM = "system"
    OPERATOR = "operator"
    ADMIN = "admin"
    GUEST = "guest"
    PROVIDER = "provider"
    PAYMENT = "payment"


class BookingStatusEvent(Base):
    """Audit entry for every booking status change, modification and payment outcome."""

    __tablename__ = "booking_status_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    booking_id = Column(UUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(
        SqlEnum(BookingEventTypeEnum, name="booking_event_type_enum"),
        nullable=False,
    )
    actor_type = Column(
        SqlEnum(BookingActorTypeEnum, name="booking_actor_type_enum"),
        nullable=True,
    )
    actor_id = Column(String(255), nullable=True)
    actor_label = Column(String(255), nullable=True)
    from_status = Column(String(64), nullable=True)
    to_status = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)
    automatic = Column(Boolean, nullable=False, default=False, server_default=false())
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    booking = relationship("Booking", back_populates="status_events")
