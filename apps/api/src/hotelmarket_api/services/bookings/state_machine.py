"""Booking state machine orchestration and audit logging."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.models.booking import Booking, BookingStatusEnum
from hotelmarket_api.models.booking_status_event import (
    BookingActorTypeEnum,
    BookingEventTypeEnum,
    BookingStatusEvent,
)
from hotelmarket_api.services.pricing import compute_breakdown

from .pricing import apply_breakdown, stored_inputs


HAPPY_PATH: tuple[BookingStatusEnum, ...] = (
    BookingStatusEnum.PENDING,
    BookingStatusEnum.CONFIRMED,
    BookingStatusEnum.ASSIGNED,
    BookingStatusEnum.IN_PROGRESS,
    BookingStatusEnum.PICKUP_SCHEDULED,
    BookingStatusEnum.PICKED_UP,
    BookingStatusEnum.IN_SERVICE,
    BookingStatusEnum.DELIVERY_SCHEDULED,
    BookingStatusEnum.COMPLETED,
)
TERMINAL_STATUSES = frozenset(
    {
        BookingStatusEnum.COMPLETED,
        BookingStatusEnum.CANCELLED,
        BookingStatusEnum.REFUNDED,
        BookingStatusEnum.DISPUTED,
    }
)
CANCELLABLE_STATUSES = frozenset(
    {BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED, BookingStatusEnum.ASSIGNED}
)
MODIFIABLE_STATUSES = frozenset({BookingStatusEnum.PENDING, BookingStatusEnum.CONFIRMED})


class BookingStateError(RuntimeError):
    """Base exception for booking state machine failures."""


class InvalidBookingTransitionError(BookingStateError):
    """Raised when a state transition violates the configured state machine."""

    def __init__(self, current_status: BookingStatusEnum, requested_status: BookingStatusEnum) -> None:
        message = f"Cannot transition booking from {current_status.value} to {requested_status.value}"
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class BookingNotModifiableError(BookingStateError):
    def __init__(self, current_status: BookingStatusEnum) -> None:
        super().__init__(f"Booking in status {current_status.value} can no longer be modified")
        self.current_status = current_status


class BookingNotFoundError(BookingStateError):
    """Raised when attempting to mutate a missing booking."""


def _build_transitions() -> dict[BookingStatusEnum, frozenset[BookingStatusEnum]]:
    transitions: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = {}
    for index, status in enumerate(HAPPY_PATH[:-1]):
        allowed = set(HAPPY_PATH[index + 1 :])
        allowed |= {BookingStatusEnum.REFUNDED, BookingStatusEnum.DISPUTED}
        if status in CANCELLABLE_STATUSES:
            allowed.add(BookingStatusEnum.CANCELLED)
        transitions[status] = frozenset(allowed)
    for status in TERMINAL_STATUSES:
        transitions[status] = frozenset()
    return transitions


def can_transition(current: BookingStatusEnum, target: BookingStatusEnum) -> bool:
    return target in BookingLifecycle._ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(slots=True)
class BookingModification:
    """Guest-editable fields; ``None`` keeps the stored value."""

    quantity: int | None = None
    options_total: Decimal | None = None
    add_ons_total: Decimal | None = None
    delivery_charge: Decimal | None = None
    scheduled_for: datetime | None = None
    notes: str | None = None


@dataclass(slots=True)
class BookingEventDescriptor:
    event: BookingStatusEvent
    booking: Booking


class BookingLifecycle:
    """Guarded booking status transitions with an append-only history.

    The happy path only moves forward (steps may be skipped); cancelled,
    refunded and disputed are alternate terminals, and cancellation is only
    possible before work has started.
    """

    _ALLOWED_TRANSITIONS: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = _build_transitions()

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def transition(
        self,
        *,
        booking_id: UUID,
        target_status: BookingStatusEnum,
        actor_type: BookingActorTypeEnum | None = None,
        actor_id: str | None = None,
        actor_label: str | None = None,
        notes: str | None = None,
        automatic: bool = False,
        metadata: dict | None = None,
    ) -> BookingEventDescriptor:
        booking = await self._get_booking(booking_id)
        current_status = booking.status
        if not can_transition(current_status, target_status):
            raise InvalidBookingTransitionError(current_status, target_status)

        now = datetime.now(timezone.utc)
        booking.status = target_status
        if target_status == BookingStatusEnum.COMPLETED:
            booking.completed_at = now
        elif target_status == BookingStatusEnum.CANCELLED:
            booking.cancelled_at = now

        event = BookingStatusEvent(
            booking_id=booking.id,
            event_type=BookingEventTypeEnum.STATE_CHANGE,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_label=actor_label,
            notes=notes,
            automatic=automatic,
            metadata_json=metadata or {},
            from_status=current_status.value,
            to_status=target_status.value,
            created_at=now,
        )
        self._session.add(event)
        await self._session.commit()
        logger.info(
            "Booking status transitioned",
            booking_id=str(booking.id),
            from_status=current_status.value,
            to_status=target_status.value,
            automatic=automatic,
            actor_type=actor_type.value if actor_type else None,
        )
        return BookingEventDescriptor(event=event, booking=booking)

    async def cancel(
        self,
        *,
        booking_id: UUID,
        actor_type: BookingActorTypeEnum | None = None,
        actor_id: str | None = None,
        actor_label: str | None = None,
        notes: str | None = None,
    ) -> BookingEventDescriptor:
        return await self.transition(
            booking_id=booking_id,
            target_status=BookingStatusEnum.CANCELLED,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_label=actor_label,
            notes=notes,
        )

    async def complete(
        self,
        *,
        booking_id: UUID,
        actor_type: BookingActorTypeEnum | None = None,
        actor_id: str | None = None,
        actor_label: str | None = None,
        notes: str | None = None,
        automatic: bool = False,
        metadata: dict | None = None,
    ) -> BookingEventDescriptor:
        return await self.transition(
            booking_id=booking_id,
            target_status=BookingStatusEnum.COMPLETED,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_label=actor_label,
            notes=notes,
            automatic=automatic,
            metadata=metadata,
        )

    async def modify(
        self,
        *,
        booking_id: UUID,
        changes: BookingModification,
        actor_type: BookingActorTypeEnum | None = None,
        actor_id: str | None = None,
        actor_label: str | None = None,
    ) -> BookingEventDescriptor:
        """Apply guest edits and re-price with the rates captured at booking time."""

        booking = await self._get_booking(booking_id)
        if booking.status not in MODIFIABLE_STATUSES:
            raise BookingNotModifiableError(booking.status)

        inputs = stored_inputs(booking)
        previous_total = Decimal(booking.total_amount)
        updated_inputs = replace(
            inputs,
            quantity=changes.quantity if changes.quantity is not None else inputs.quantity,
            options_total=changes.options_total if changes.options_total is not None else inputs.options_total,
            add_ons_total=changes.add_ons_total if changes.add_ons_total is not None else inputs.add_ons_total,
            delivery_charge=(
                changes.delivery_charge if changes.delivery_charge is not None else inputs.delivery_charge
            ),
        )
        breakdown = compute_breakdown(updated_inputs)
        apply_breakdown(booking, breakdown)
        if changes.scheduled_for is not None:
            booking.scheduled_for = changes.scheduled_for
        if changes.notes is not None:
            booking.notes = changes.notes

        event = BookingStatusEvent(
            booking_id=booking.id,
            event_type=BookingEventTypeEnum.MODIFICATION,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_label=actor_label,
            from_status=booking.status.value,
            to_status=booking.status.value,
            notes=changes.notes,
            metadata_json={
                "previous_total": str(previous_total),
                "total_amount": str(breakdown.total_amount),
            },
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(event)
        await self._session.commit()
        logger.info(
            "Booking modified",
            booking_id=str(booking.id),
            previous_total=str(previous_total),
            total_amount=str(breakdown.total_amount),
        )
        return BookingEventDescriptor(event=event, booking=booking)

    async def record_event(
        self,
        *,
        booking_id: UUID,
        event_type: BookingEventTypeEnum,
        actor_type: BookingActorTypeEnum | None = None,
        actor_id: str | None = None,
        actor_label: str | None = None,
        notes: str | None = None,
        automatic: bool = False,
        metadata: dict | None = None,
    ) -> BookingEventDescriptor:
        """Insert a non-state-change audit entry (payment outcome, note)."""

        booking = await self._get_booking(booking_id)
        event = BookingStatusEvent(
            booking_id=booking.id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_label=actor_label,
            from_status=booking.status.value,
            to_status=booking.status.value,
            notes=notes,
            automatic=automatic,
            metadata_json=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(event)
        await self._session.commit()
        logger.info(
            "Booking timeline event recorded",
            booking_id=str(booking.id),
            event_type=event_type.value,
            actor_type=actor_type.value if actor_type else None,
        )
        return BookingEventDescriptor(event=event, booking=booking)

    async def list_events(self, booking_id: UUID) -> list[BookingStatusEvent]:
        """Return the booking history, oldest first."""

        stmt = (
            select(BookingStatusEvent)
            .where(BookingStatusEvent.booking_id == booking_id)
            .order_by(BookingStatusEvent.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def _get_booking(self, booking_id: UUID) -> Booking:
        stmt = select(Booking).where(Booking.id == booking_id)
        result = await self._session.execute(stmt)
        booking = result.scalar_one_or_none()
        if not booking:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking


__all__ = [
    "BookingLifecycle",
    "BookingModification",
    "BookingNotFoundError",
    "BookingNotModifiableError",
    "BookingStateError",
    "InvalidBookingTransitionError",
    "can_transition",
]
