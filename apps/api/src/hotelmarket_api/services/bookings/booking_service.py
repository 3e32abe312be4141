"""Booking quotes and booking creation."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.core.settings import settings
from hotelmarket_api.models.booking import Booking, BookingStatusEnum, CurrencyEnum, PaymentStatusEnum
from hotelmarket_api.models.booking_status_event import (
    BookingActorTypeEnum,
    BookingEventTypeEnum,
    BookingStatusEvent,
)
from hotelmarket_api.models.hotel import Hotel
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService
from hotelmarket_api.services.pricing import PricingBreakdown, PricingError, PricingInputs, compute_breakdown

from .pricing import apply_breakdown


BOOKING_NUMBER_PREFIX = "BK"
_BOOKING_NUMBER_ATTEMPTS = 10


class HotelNotFoundError(LookupError):
    """Raised when quoting or booking against an unknown or inactive hotel."""


@dataclass(slots=True)
class BookingQuoteRequest:
    hotel_id: UUID
    service_type: str
    base_price: Decimal
    guest_id: UUID | None = None
    service_name: str | None = None
    quantity: int = 1
    options_total: Decimal = Decimal("0")
    add_ons_total: Decimal = Decimal("0")
    delivery_charge: Decimal = Decimal("0")
    nights: int = 0
    currency: str | None = None
    scheduled_for: datetime | None = None
    notes: str | None = None


@dataclass(slots=True)
class BookingQuote:
    hotel_id: UUID
    guest_id: UUID | None
    breakdown: PricingBreakdown


def generate_booking_number(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"{BOOKING_NUMBER_PREFIX}{moment:%y%m%d}{secrets.randbelow(10000):04d}"


class BookingService:
    """Price bookings with the guest's current tier and persist the accepted breakdown."""

    def __init__(self, db_session: AsyncSession, *, member_service: LoyaltyMemberService | None = None) -> None:
        self._db = db_session
        self._members = member_service or LoyaltyMemberService(db_session)

    async def quote(self, request: BookingQuoteRequest) -> BookingQuote:
        hotel = await self._db.get(Hotel, request.hotel_id)
        if hotel is None or not hotel.is_active:
            raise HotelNotFoundError(f"Hotel {request.hotel_id} not found")

        currency = (request.currency or hotel.currency or settings.default_currency).upper()
        if currency not in CurrencyEnum.__members__:
            raise PricingError(f"Unsupported currency: {currency}")

        discount = await self._members.current_discount(request.guest_id, hotel.id)
        breakdown = compute_breakdown(
            PricingInputs(
                base_price=Decimal(request.base_price),
                quantity=request.quantity,
                options_total=Decimal(request.options_total),
                add_ons_total=Decimal(request.add_ons_total),
                delivery_charge=Decimal(request.delivery_charge),
                markup_percentage=Decimal(hotel.markup_percentage),
                tax_rate=Decimal(hotel.tax_rate),
                loyalty_discount_percentage=discount,
                currency=currency,
            )
        )
        return BookingQuote(hotel_id=hotel.id, guest_id=request.guest_id, breakdown=breakdown)

    async def create_booking(self, request: BookingQuoteRequest) -> Booking:
        """Quote and persist a pending booking with its first history entry."""

        quote = await self.quote(request)
        booking = Booking(
            booking_number=await self._next_booking_number(),
            guest_id=request.guest_id,
            hotel_id=quote.hotel_id,
            service_type=request.service_type,
            service_name=request.service_name,
            status=BookingStatusEnum.PENDING,
            payment_status=PaymentStatusEnum.PENDING,
            nights=request.nights,
            scheduled_for=request.scheduled_for,
            notes=request.notes,
        )
        apply_breakdown(booking, quote.breakdown)
        self._db.add(booking)
        await self._db.flush()

        self._db.add(
            BookingStatusEvent(
                booking_id=booking.id,
                event_type=BookingEventTypeEnum.STATE_CHANGE,
                actor_type=BookingActorTypeEnum.SYSTEM,
                from_status=None,
                to_status=BookingStatusEnum.PENDING.value,
                automatic=True,
                metadata_json={"total_amount": str(quote.breakdown.total_amount)},
            )
        )
        await self._db.commit()
        logger.info(
            "Booking created",
            booking_id=str(booking.id),
            booking_number=booking.booking_number,
            hotel_id=str(booking.hotel_id),
            total_amount=str(booking.total_amount),
            loyalty_discount_percentage=str(booking.loyalty_discount_percentage),
        )
        return booking

    async def get_booking(self, booking_id: UUID) -> Booking | None:
        return await self._db.get(Booking, booking_id)

    async def _next_booking_number(self) -> str:
        for _ in range(_BOOKING_NUMBER_ATTEMPTS):
            candidate = generate_booking_number()
            stmt = select(Booking.id).where(Booking.booking_number == candidate)
            if (await self._db.execute(stmt)).first() is None:
                return candidate
        raise RuntimeError("Unable to allocate a unique booking number")


__all__ = [
    "BookingQuote",
    "BookingQuoteRequest",
    "BookingService",
    "HotelNotFoundError",
    "generate_booking_number",
]
