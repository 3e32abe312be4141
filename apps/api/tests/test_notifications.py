from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from hotelmarket_api.services.loyalty.events import PointsExpired, RewardRedeemed, TierChanged
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService
from hotelmarket_api.services.notifications import InMemoryEmailBackend, InMemorySMSBackend, NotificationService
from hotelmarket_api.services.notifications.templates import render_points_expired, render_reward_redeemed

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _tier_changed(guest_id, hotel_id, *, upgraded=True, old="BRONZE", new="SILVER"):
    return TierChanged(
        member_id=uuid4(),
        guest_id=guest_id,
        hotel_id=hotel_id,
        old_tier=old,
        new_tier=new,
        upgraded=upgraded,
        reason="Points threshold reached",
        occurred_at=NOW,
    )


@pytest.mark.asyncio
async def test_tier_upgrade_email_lists_new_benefits(session_factory, seed):
    hotel_id = await seed.hotel(name="Nile View")
    guest_id = await seed.guest(email="mona@example.com", display_name="Mona")
    await seed.program(hotel_id)
    backend = InMemoryEmailBackend()

    async with session_factory() as session:
        service = NotificationService(session, backend)
        await service.publish(_tier_changed(guest_id, hotel_id))

    assert len(backend.sent_messages) == 1
    message = backend.sent_messages[0]
    assert message["To"] == "mona@example.com"
    assert message["Subject"] == "You've reached SILVER status at Nile View"
    text = message.get_body(preferencelist=("plain",)).get_content()
    assert "Hi Mona," in text
    assert "- Priority customer service" in text
    assert service.sent_events[0].event_type == "loyalty_tier_upgrade"


@pytest.mark.asyncio
async def test_downgrade_uses_downgrade_template(session_factory, seed):
    hotel_id = await seed.hotel(name="Nile View")
    guest_id = await seed.guest()
    backend = InMemoryEmailBackend()

    async with session_factory() as session:
        service = NotificationService(session, backend)
        await service.publish(_tier_changed(guest_id, hotel_id, upgraded=False, old="GOLD", new="SILVER"))

    assert backend.sent_messages[0]["Subject"] == "Your Nile View loyalty tier is now SILVER"
    assert service.sent_events[0].event_type == "loyalty_tier_downgrade"


@pytest.mark.asyncio
async def test_sms_requires_opt_in(session_factory, seed):
    hotel_id = await seed.hotel()
    opted_in = await seed.guest(phone_number="+201000000001")
    opted_out = await seed.guest(phone_number="+201000000002")
    await seed.preferences(opted_in, sms_enabled=True)
    email_backend = InMemoryEmailBackend()
    sms_backend = InMemorySMSBackend()

    async with session_factory() as session:
        service = NotificationService(session, email_backend, sms_backend=sms_backend)
        for guest_id in (opted_in, opted_out):
            await service.publish(
                PointsExpired(member_id=uuid4(), guest_id=guest_id, hotel_id=hotel_id, amount=120, occurred_at=NOW)
            )

    assert len(email_backend.sent_messages) == 2
    assert [recipient for recipient, _ in sms_backend.sent_messages] == ["+201000000001"]
    assert "120 of your" in sms_backend.sent_messages[0][1]


@pytest.mark.asyncio
async def test_loyalty_opt_out_suppresses_messages(session_factory, seed):
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.preferences(guest_id, loyalty_updates=False)
    backend = InMemoryEmailBackend()

    async with session_factory() as session:
        service = NotificationService(session, backend)
        await service.publish(_tier_changed(guest_id, hotel_id))

    assert backend.sent_messages == []
    assert service.sent_events == []


@pytest.mark.asyncio
async def test_member_service_notifies_after_commit(session_factory, seed):
    hotel_id = await seed.hotel(name="Nile View")
    guest_id = await seed.guest(email="karim@example.com")
    await seed.program(hotel_id)
    backend = InMemoryEmailBackend()

    async with session_factory() as session:
        notifications = NotificationService(session, backend)
        await LoyaltyMemberService(session, event_sink=notifications).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("1200"), service_type=None
        )

    subjects = [message["Subject"] for message in backend.sent_messages]
    assert subjects == [
        "Welcome to the Nile View loyalty program",
        "You've reached SILVER status at Nile View",
    ]


def test_templates_render_amounts() -> None:
    expired = render_points_expired(
        PointsExpired(member_id=uuid4(), guest_id=uuid4(), hotel_id=uuid4(), amount=75, occurred_at=NOW),
        contact_name=None,
        hotel_name="Nile View",
    )
    redeemed = render_reward_redeemed(
        RewardRedeemed(
            member_id=uuid4(),
            guest_id=uuid4(),
            hotel_id=uuid4(),
            points=600,
            value=Decimal("6"),
            reward_ref="Spa voucher",
            occurred_at=NOW,
        ),
        contact_name="Mona",
        hotel_name="Nile View",
    )

    assert expired.subject == "75 loyalty points expired"
    assert expired.text_body.startswith("Hi there,")
    assert redeemed.subject == "Redemption confirmed: Spa voucher"
    assert "worth 6.00" in redeemed.text_body
    assert "<p>Hi Mona,</p>" in redeemed.html_body
