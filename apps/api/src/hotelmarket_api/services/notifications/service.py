"""Notification sink turning loyalty events into guest messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.core.settings import get_settings
from hotelmarket_api.models.hotel import Hotel
from hotelmarket_api.models.loyalty import LoyaltyProgram
from hotelmarket_api.models.notification import NotificationPreference
from hotelmarket_api.models.user import User
from hotelmarket_api.services.loyalty.events import (
    LoyaltyEvent,
    MemberEnrolled,
    PointsExpired,
    RewardRedeemed,
    TierChanged,
)

from .backend import EmailBackend, InMemoryEmailBackend, SMSBackend, SMTPEmailBackend
from .templates import (
    RenderedTemplate,
    render_member_enrolled,
    render_points_expired,
    render_reward_redeemed,
    render_tier_changed,
)


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    channel: str
    subject: str
    body_text: str
    event_type: str
    metadata: dict[str, Any]


@dataclass
class _GuestContact:
    email: str | None
    phone_number: str | None
    display_name: Optional[str]


@dataclass
class _PreferenceSnapshot:
    booking_updates: bool = True
    loyalty_updates: bool = True
    sms_enabled: bool = False


class NotificationService:
    """Coordinates notification delivery via pluggable backends."""

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[EmailBackend] = None,
        *,
        sms_backend: Optional[SMSBackend] = None,
    ) -> None:
        self._db = db_session
        self._backend = backend or self._build_default_backend()
        self._sms_backend = sms_backend
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def publish(self, event: LoyaltyEvent) -> None:
        """Loyalty event sink entry point."""

        if isinstance(event, TierChanged):
            await self.send_tier_changed(event)
        elif isinstance(event, PointsExpired):
            await self.send_points_expired(event)
        elif isinstance(event, RewardRedeemed):
            await self.send_reward_redeemed(event)
        elif isinstance(event, MemberEnrolled):
            await self.send_member_enrolled(event)

    async def send_member_enrolled(self, event: MemberEnrolled) -> None:
        await self._notify_guest(
            event.guest_id,
            event_type="loyalty_member_enrolled",
            metadata={"member_id": str(event.member_id), "tier": event.tier},
            render=lambda contact, hotel_name: render_member_enrolled(
                event, contact_name=contact.display_name, hotel_name=hotel_name
            ),
            hotel_id=event.hotel_id,
        )

    async def send_tier_changed(self, event: TierChanged) -> None:
        benefits = await self._tier_benefits(event.hotel_id, event.new_tier) if event.upgraded else []
        await self._notify_guest(
            event.guest_id,
            event_type="loyalty_tier_upgrade" if event.upgraded else "loyalty_tier_downgrade",
            metadata={
                "member_id": str(event.member_id),
                "old_tier": event.old_tier,
                "new_tier": event.new_tier,
            },
            render=lambda contact, hotel_name: render_tier_changed(
                event, contact_name=contact.display_name, hotel_name=hotel_name, benefits=benefits
            ),
            hotel_id=event.hotel_id,
        )

    async def send_points_expired(self, event: PointsExpired) -> None:
        await self._notify_guest(
            event.guest_id,
            event_type="loyalty_points_expired",
            metadata={"member_id": str(event.member_id), "amount": event.amount},
            render=lambda contact, hotel_name: render_points_expired(
                event, contact_name=contact.display_name, hotel_name=hotel_name
            ),
            hotel_id=event.hotel_id,
        )

    async def send_reward_redeemed(self, event: RewardRedeemed) -> None:
        await self._notify_guest(
            event.guest_id,
            event_type="loyalty_reward_redeemed",
            metadata={"member_id": str(event.member_id), "points": event.points, "reward": event.reward_ref},
            render=lambda contact, hotel_name: render_reward_redeemed(
                event, contact_name=contact.display_name, hotel_name=hotel_name
            ),
            hotel_id=event.hotel_id,
        )

    def _build_default_backend(self) -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )

    async def _notify_guest(self, guest_id: UUID, *, event_type: str, metadata: dict[str, Any], render, hotel_id: UUID) -> None:
        if self._backend is None and self._sms_backend is None:
            return

        contact = await self._resolve_contact(guest_id)
        if contact is None:
            return

        preferences = await self._get_preferences(guest_id)
        if not preferences.loyalty_updates:
            logger.info(
                "Skipping loyalty notification due to preferences",
                guest_id=str(guest_id),
                event_type=event_type,
            )
            return

        hotel = await self._db.get(Hotel, hotel_id)
        template: RenderedTemplate = render(contact, hotel.name if hotel else "our hotel")

        if self._backend is not None and contact.email:
            await self._backend.send_email(
                contact.email,
                template.subject,
                template.text_body,
                body_html=template.html_body,
            )
            self._record(contact.email, "email", template, event_type, metadata)

        if self._sms_backend is not None and preferences.sms_enabled and contact.phone_number:
            await self._sms_backend.send_sms(contact.phone_number, template.sms_body)
            self._record(contact.phone_number, "sms", template, event_type, metadata)

    def _record(
        self,
        recipient: str,
        channel: str,
        template: RenderedTemplate,
        event_type: str,
        metadata: dict[str, Any],
    ) -> None:
        self._events.append(
            NotificationEvent(
                recipient=recipient,
                channel=channel,
                subject=template.subject,
                body_text=template.text_body,
                event_type=event_type,
                metadata=metadata,
            )
        )

    async def _resolve_contact(self, user_id: UUID) -> Optional[_GuestContact]:
        user = await self._db.get(User, user_id)
        if user is None or not (user.email or user.phone_number):
            return None
        return _GuestContact(email=user.email, phone_number=user.phone_number, display_name=user.display_name)

    async def _get_preferences(self, user_id: UUID) -> _PreferenceSnapshot:
        stmt = select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        result = await self._db.execute(stmt)
        preference = result.scalar_one_or_none()
        if preference is None:
            return _PreferenceSnapshot()
        return _PreferenceSnapshot(
            booking_updates=preference.booking_updates,
            loyalty_updates=preference.loyalty_updates,
            sms_enabled=preference.sms_enabled,
        )

    async def _tier_benefits(self, hotel_id: UUID, tier_name: str) -> list[str]:
        stmt = select(LoyaltyProgram.tier_configuration).where(LoyaltyProgram.hotel_id == hotel_id)
        for configuration in (await self._db.execute(stmt)).scalars():
            for tier in configuration or []:
                if str(tier.get("name", "")).upper() == tier_name.upper():
                    return [str(benefit) for benefit in tier.get("benefits") or []]
        return []
