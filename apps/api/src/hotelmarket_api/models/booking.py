"""Service booking aggregate with its persisted pricing breakdown."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from hotelmarket_api.db.base import Base


class BookingStatusEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in-progress"
    PICKUP_SCHEDULED = "pickup-scheduled"
    PICKED_UP = "picked-up"
    IN_SERVICE = "in-service"
    DELIVERY_SCHEDULED = "delivery-scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially-refunded"


class CurrencyEnum(str, Enum):
    EGP = "EGP"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"


class Booking(Base):
    """Guest booking of an in-hotel service."""

    __tablename__ = "bookings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    booking_number = Column(String(16), nullable=False, unique=True, index=True)
    guest_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    hotel_id = Column(UUID(as_uuid=True), ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    service_type = Column(String(64), nullable=False)
    service_name = Column(String, nullable=True)
    status = Column(
        SqlEnum(BookingStatusEnum, name="booking_status_enum"),
        nullable=False,
        default=BookingStatusEnum.PENDING,
    )
    payment_status = Column(
        SqlEnum(PaymentStatusEnum, name="booking_payment_status_enum"),
        nullable=False,
        default=PaymentStatusEnum.PENDING,
    )
    currency = Column(SqlEnum(CurrencyEnum, name="currency_enum"), nullable=False, default=CurrencyEnum.EGP)

    base_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    options_total = Column(Numeric(12, 2), nullable=False, default=0)
    add_ons_total = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_charge = Column(Numeric(12, 2), nullable=False, default=0)
    subtotal = Column(Numeric(12, 2), nullable=False)
    markup_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    markup_amount = Column(Numeric(12, 2), nullable=False, default=0)
    loyalty_discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    loyalty_discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    provider_earnings = Column(Numeric(12, 2), nullable=False)
    hotel_earnings = Column(Numeric(12, 2), nullable=False)

    nights = Column(Integer, nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    loyalty_points_awarded = Column(Integer, nullable=False, default=0)
    scheduled_for = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    hotel = relationship("Hotel")
    guest = relationship("User")
    status_events = relationship(
        "BookingStatusEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingStatusEvent.created_at",
    )
