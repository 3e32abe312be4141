"""Booking quote, lifecycle and payment outcome endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.api.dependencies.security import require_admin_api_key
from hotelmarket_api.db.session import get_session
from hotelmarket_api.models.booking import Booking, BookingStatusEnum
from hotelmarket_api.models.booking_status_event import BookingActorTypeEnum, BookingStatusEvent
from hotelmarket_api.services.bookings.booking_service import (
    BookingQuoteRequest,
    BookingService,
    HotelNotFoundError,
)
from hotelmarket_api.services.bookings.settlement import BookingSettlementService, PaymentOutcome
from hotelmarket_api.services.bookings.state_machine import (
    BookingLifecycle,
    BookingModification,
    BookingNotFoundError,
    BookingNotModifiableError,
    InvalidBookingTransitionError,
)
from hotelmarket_api.services.pricing import PricingBreakdown, PricingError


router = APIRouter(prefix="/bookings", tags=["bookings"])


class BookingQuoteCreate(BaseModel):
    """Request model for quoting or creating a booking."""

    hotel_id: UUID
    service_type: str = Field(..., min_length=1, description="Service category, e.g. laundry")
    base_price: Decimal = Field(..., ge=0, description="Provider price per unit")
    guest_id: Optional[UUID] = Field(None, description="Guest placing the booking; drives the tier discount")
    service_name: Optional[str] = None
    quantity: int = Field(1, ge=1)
    options_total: Decimal = Field(Decimal("0"), ge=0)
    add_ons_total: Decimal = Field(Decimal("0"), ge=0)
    delivery_charge: Decimal = Field(Decimal("0"), ge=0)
    nights: int = Field(0, ge=0)
    currency: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    notes: Optional[str] = None

    def to_request(self) -> BookingQuoteRequest:
        return BookingQuoteRequest(
            hotel_id=self.hotel_id,
            service_type=self.service_type.lower(),
            base_price=self.base_price,
            guest_id=self.guest_id,
            service_name=self.service_name,
            quantity=self.quantity,
            options_total=self.options_total,
            add_ons_total=self.add_ons_total,
            delivery_charge=self.delivery_charge,
            nights=self.nights,
            currency=self.currency,
            scheduled_for=self.scheduled_for,
            notes=self.notes,
        )


class PricingResponse(BaseModel):
    base_price: float
    quantity: int
    options_total: float
    add_ons_total: float
    delivery_charge: float
    subtotal: float
    markup_percentage: float
    markup_amount: float
    loyalty_discount_percentage: float
    loyalty_discount_amount: float
    tax_rate: float
    tax_amount: float
    total_amount: float
    provider_earnings: float
    hotel_earnings: float
    currency: str


class BookingResponse(BaseModel):
    id: str
    booking_number: str
    hotel_id: str
    guest_id: Optional[str]
    service_type: str
    service_name: Optional[str]
    status: str
    payment_status: str
    pricing: PricingResponse
    nights: int
    amount_paid: Optional[float]
    paid_at: Optional[datetime]
    loyalty_points_awarded: int
    scheduled_for: Optional[datetime]
    notes: Optional[str]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]


class BookingStatusUpdate(BaseModel):
    status: str = Field(..., description="Target booking status")
    actor_type: Optional[BookingActorTypeEnum] = BookingActorTypeEnum.OPERATOR
    actor_id: Optional[str] = None
    actor_label: Optional[str] = None
    notes: Optional[str] = None


class BookingCancelRequest(BaseModel):
    actor_type: Optional[BookingActorTypeEnum] = BookingActorTypeEnum.GUEST
    actor_id: Optional[str] = None
    notes: Optional[str] = None


class BookingModifyRequest(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)
    options_total: Optional[Decimal] = Field(None, ge=0)
    add_ons_total: Optional[Decimal] = Field(None, ge=0)
    delivery_charge: Optional[Decimal] = Field(None, ge=0)
    scheduled_for: Optional[datetime] = None
    notes: Optional[str] = None
    actor_id: Optional[str] = None


class BookingEventResponse(BaseModel):
    id: str
    event_type: str
    actor_type: Optional[str]
    actor_id: Optional[str]
    actor_label: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]
    notes: Optional[str]
    automatic: bool
    metadata: Dict[str, Any]
    created_at: datetime


class PaymentOutcomeRequest(BaseModel):
    booking_id: UUID
    succeeded: bool
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentOutcomeResponse(BaseModel):
    booking: BookingResponse
    completed: bool
    points_awarded: int


def _pricing_to_response(source: Booking | PricingBreakdown) -> PricingResponse:
    currency = source.currency
    return PricingResponse(
        base_price=float(source.base_price),
        quantity=source.quantity,
        options_total=float(source.options_total),
        add_ons_total=float(source.add_ons_total),
        delivery_charge=float(source.delivery_charge),
        subtotal=float(source.subtotal),
        markup_percentage=float(source.markup_percentage),
        markup_amount=float(source.markup_amount),
        loyalty_discount_percentage=float(source.loyalty_discount_percentage),
        loyalty_discount_amount=float(source.loyalty_discount_amount),
        tax_rate=float(source.tax_rate),
        tax_amount=float(source.tax_amount),
        total_amount=float(source.total_amount),
        provider_earnings=float(source.provider_earnings),
        hotel_earnings=float(source.hotel_earnings),
        currency=currency.value if hasattr(currency, "value") else str(currency),
    )


def _booking_to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=str(booking.id),
        booking_number=booking.booking_number,
        hotel_id=str(booking.hotel_id),
        guest_id=str(booking.guest_id) if booking.guest_id else None,
        service_type=booking.service_type,
        service_name=booking.service_name,
        status=booking.status.value,
        payment_status=booking.payment_status.value,
        pricing=_pricing_to_response(booking),
        nights=booking.nights or 0,
        amount_paid=float(booking.amount_paid) if booking.amount_paid is not None else None,
        paid_at=booking.paid_at,
        loyalty_points_awarded=booking.loyalty_points_awarded or 0,
        scheduled_for=booking.scheduled_for,
        notes=booking.notes,
        completed_at=booking.completed_at,
        cancelled_at=booking.cancelled_at,
    )


def _event_to_response(event: BookingStatusEvent) -> BookingEventResponse:
    return BookingEventResponse(
        id=str(event.id),
        event_type=event.event_type.value,
        actor_type=event.actor_type.value if event.actor_type else None,
        actor_id=event.actor_id,
        actor_label=event.actor_label,
        from_status=event.from_status,
        to_status=event.to_status,
        notes=event.notes,
        automatic=bool(event.automatic),
        metadata=event.metadata_json or {},
        created_at=event.created_at,
    )


def _transition_conflict(exc: InvalidBookingTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": str(exc),
            "current_status": exc.current_status.value,
            "requested_status": exc.requested_status.value,
        },
    )


@router.post("/quote", response_model=PricingResponse)
async def quote_booking(request: BookingQuoteCreate, db: AsyncSession = Depends(get_session)) -> PricingResponse:
    """Price a booking for the guest's current tier without persisting it."""

    try:
        quote = await BookingService(db).quote(request.to_request())
    except HotelNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Hotel not found") from exc
    except PricingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _pricing_to_response(quote.breakdown)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(request: BookingQuoteCreate, db: AsyncSession = Depends(get_session)) -> BookingResponse:
    try:
        booking = await BookingService(db).create_booking(request.to_request())
    except HotelNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Hotel not found") from exc
    except PricingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _booking_to_response(booking)


@router.post(
    "/payment-outcomes",
    response_model=PaymentOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def record_payment_outcome(
    request: PaymentOutcomeRequest,
    db: AsyncSession = Depends(get_session),
) -> PaymentOutcomeResponse:
    """Consume a payment result: completes paid bookings and awards loyalty points."""

    service = BookingSettlementService(db)
    try:
        result = await service.apply_payment_outcome(
            PaymentOutcome(
                booking_id=request.booking_id,
                succeeded=request.succeeded,
                amount_paid=request.amount_paid,
                currency=request.currency,
                paid_at=request.paid_at,
                reference=request.reference,
                failure_reason=request.failure_reason,
            )
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Booking not found") from exc
    except InvalidBookingTransitionError as exc:
        raise _transition_conflict(exc) from exc
    return PaymentOutcomeResponse(
        booking=_booking_to_response(result.booking),
        completed=result.completed,
        points_awarded=result.points_awarded,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: UUID, db: AsyncSession = Depends(get_session)) -> BookingResponse:
    booking = await BookingService(db).get_booking(booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return _booking_to_response(booking)


@router.post("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    status_update: BookingStatusUpdate,
    db: AsyncSession = Depends(get_session),
) -> BookingResponse:
    try:
        target = BookingStatusEnum(status_update.status.lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status_update.status}") from exc

    lifecycle = BookingLifecycle(db)
    try:
        descriptor = await lifecycle.transition(
            booking_id=booking_id,
            target_status=target,
            actor_type=status_update.actor_type,
            actor_id=status_update.actor_id,
            actor_label=status_update.actor_label,
            notes=status_update.notes,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Booking not found") from exc
    except InvalidBookingTransitionError as exc:
        raise _transition_conflict(exc) from exc

    logger.info("Booking status updated via API", booking_id=str(booking_id), status=target.value)
    return _booking_to_response(descriptor.booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    request: BookingCancelRequest,
    db: AsyncSession = Depends(get_session),
) -> BookingResponse:
    try:
        descriptor = await BookingLifecycle(db).cancel(
            booking_id=booking_id,
            actor_type=request.actor_type,
            actor_id=request.actor_id,
            notes=request.notes,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Booking not found") from exc
    except InvalidBookingTransitionError as exc:
        raise _transition_conflict(exc) from exc
    return _booking_to_response(descriptor.booking)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def modify_booking(
    booking_id: UUID,
    request: BookingModifyRequest,
    db: AsyncSession = Depends(get_session),
) -> BookingResponse:
    try:
        descriptor = await BookingLifecycle(db).modify(
            booking_id=booking_id,
            changes=BookingModification(
                quantity=request.quantity,
                options_total=request.options_total,
                add_ons_total=request.add_ons_total,
                delivery_charge=request.delivery_charge,
                scheduled_for=request.scheduled_for,
                notes=request.notes,
            ),
            actor_type=BookingActorTypeEnum.GUEST,
            actor_id=request.actor_id,
        )
    except BookingNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Booking not found") from exc
    except BookingNotModifiableError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "current_status": exc.current_status.value},
        ) from exc
    except PricingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _booking_to_response(descriptor.booking)


@router.get("/{booking_id}/history", response_model=List[BookingEventResponse])
async def get_booking_history(booking_id: UUID, db: AsyncSession = Depends(get_session)) -> List[BookingEventResponse]:
    if await db.get(Booking, booking_id) is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    events = await BookingLifecycle(db).list_events(booking_id)
    return [_event_to_response(event) for event in events]
