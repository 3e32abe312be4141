"""Payment outcome handling: completion of paid bookings and loyalty awarding."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.models.booking import Booking, BookingStatusEnum, PaymentStatusEnum
from hotelmarket_api.models.booking_status_event import BookingActorTypeEnum, BookingEventTypeEnum
from hotelmarket_api.services.loyalty.member_service import LedgerOutcome, LoyaltyMemberService

from .state_machine import BookingLifecycle, BookingNotFoundError, TERMINAL_STATUSES


@dataclass(slots=True)
class PaymentOutcome:
    """Result reported by the payment collaborator for one booking."""

    booking_id: UUID
    succeeded: bool
    amount_paid: Decimal | None = None
    currency: str | None = None
    paid_at: datetime | None = None
    reference: str | None = None
    failure_reason: str | None = None


@dataclass(slots=True)
class SettlementResult:
    booking: Booking
    completed: bool = False
    points_awarded: int = 0
    loyalty: list[LedgerOutcome] = field(default_factory=list)


class BookingSettlementService:
    """Apply payment outcomes to bookings.

    A successful payment completes the booking (automatically, on behalf of the
    payment system) and then credits spend and night points. Loyalty failures
    are logged and never undo the payment or the completion.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        lifecycle: BookingLifecycle | None = None,
        member_service: LoyaltyMemberService | None = None,
    ) -> None:
        self._db = db_session
        self._lifecycle = lifecycle or BookingLifecycle(db_session)
        self._members = member_service or LoyaltyMemberService(db_session)

    async def apply_payment_outcome(self, outcome: PaymentOutcome) -> SettlementResult:
        booking = await self._db.get(Booking, outcome.booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {outcome.booking_id} not found")

        if not outcome.succeeded:
            booking.payment_status = PaymentStatusEnum.FAILED
            await self._lifecycle.record_event(
                booking_id=booking.id,
                event_type=BookingEventTypeEnum.PAYMENT,
                actor_type=BookingActorTypeEnum.PAYMENT,
                notes=outcome.failure_reason,
                automatic=True,
                metadata={"succeeded": False, "reference": outcome.reference},
            )
            logger.warning(
                "Booking payment failed",
                booking_id=str(booking.id),
                reason=outcome.failure_reason,
            )
            return SettlementResult(booking=booking)

        paid_at = outcome.paid_at or datetime.now(timezone.utc)
        booking.payment_status = PaymentStatusEnum.COMPLETED
        booking.amount_paid = outcome.amount_paid if outcome.amount_paid is not None else booking.total_amount
        booking.paid_at = paid_at
        await self._lifecycle.record_event(
            booking_id=booking.id,
            event_type=BookingEventTypeEnum.PAYMENT,
            actor_type=BookingActorTypeEnum.PAYMENT,
            automatic=True,
            metadata={
                "succeeded": True,
                "amount_paid": str(booking.amount_paid),
                "currency": outcome.currency or booking.currency.value,
                "reference": outcome.reference,
            },
        )

        if booking.status in TERMINAL_STATUSES and booking.status != BookingStatusEnum.COMPLETED:
            logger.warning(
                "Payment received for closed booking; loyalty not awarded",
                booking_id=str(booking.id),
                status=booking.status.value,
            )
            return SettlementResult(booking=booking)

        completed = False
        if booking.status != BookingStatusEnum.COMPLETED:
            await self._lifecycle.complete(
                booking_id=booking.id,
                actor_type=BookingActorTypeEnum.PAYMENT,
                notes="Completed on successful payment",
                automatic=True,
            )
            completed = True

        result = SettlementResult(booking=booking, completed=completed)
        result.loyalty = await self.award_loyalty(booking)
        result.points_awarded = sum(item.points for item in result.loyalty if item.applicable)
        return result

    async def award_loyalty(self, booking: Booking) -> list[LedgerOutcome]:
        """Credit spend and night points for a completed, paid booking. Safe to repeat."""

        if booking.guest_id is None:
            return []
        booking_id = booking.id
        guest_id = booking.guest_id
        hotel_id = booking.hotel_id
        booking_ref = str(booking_id)
        amount = Decimal(booking.amount_paid if booking.amount_paid is not None else booking.total_amount)
        service_type = booking.service_type
        nights = booking.nights or 0

        outcomes: list[LedgerOutcome] = []
        try:
            outcomes.append(
                await self._members.award_for_spend(
                    guest_id=guest_id,
                    hotel_id=hotel_id,
                    amount_spent=amount,
                    service_type=service_type,
                    booking_ref=booking_ref,
                )
            )
            if nights > 0:
                outcomes.append(
                    await self._members.award_for_nights(
                        guest_id=guest_id,
                        hotel_id=hotel_id,
                        nights=nights,
                        booking_ref=booking_ref,
                    )
                )
        except Exception:
            logger.exception("Loyalty award failed for booking", booking_id=booking_ref)
            await self._db.refresh(booking)
            return outcomes

        awarded = sum(item.points for item in outcomes if item.applicable)
        booking = await self._db.get(Booking, booking_id, populate_existing=True)
        if awarded and booking is not None:
            booking.loyalty_points_awarded = (booking.loyalty_points_awarded or 0) + awarded
            await self._db.commit()
        logger.info(
            "Booking loyalty awarded",
            booking_id=booking_ref,
            points=awarded,
            reasons=[item.reason for item in outcomes if not item.applicable],
        )
        return outcomes


__all__ = ["BookingSettlementService", "PaymentOutcome", "SettlementResult"]
