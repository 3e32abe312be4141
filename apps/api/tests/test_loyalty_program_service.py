from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from hotelmarket_api.models.loyalty import LoyaltyProgram, LoyaltyTierChange
from hotelmarket_api.models.user import LoyaltyChannelEnum
from hotelmarket_api.services.loyalty import ConfigInvalidError
from hotelmarket_api.services.loyalty.events import RecordingEventSink, TierChanged
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService
from hotelmarket_api.services.loyalty.program_service import LoyaltyProgramService


def _tiers(silver_floor: int = 1000):
    return [
        {"name": "Bronze", "min_points": 0, "max_points": silver_floor - 1, "discount_percentage": "5"},
        {"name": "Silver", "min_points": silver_floor, "max_points": 4999, "discount_percentage": "10"},
        {"name": "Gold", "min_points": 5000, "max_points": 999999, "discount_percentage": "15"},
    ]


def _services(session, sink=None):
    members = LoyaltyMemberService(session, event_sink=sink or RecordingEventSink())
    return LoyaltyProgramService(session, member_service=members), members


@pytest.mark.asyncio
async def test_new_program_starts_from_channel_defaults(session_factory, seed):
    hotel_id = await seed.hotel()

    async with session_factory() as session:
        programs, _ = _services(session)
        result = await programs.upsert_program(
            hotel_id, LoyaltyChannelEnum.CORPORATE, {"tier_configuration": _tiers(), "points_per_night": 80}
        )
        program = result.program

    assert result.created is True
    assert result.tiers_changed is True
    assert result.members_changed == 0
    assert program.channel is LoyaltyChannelEnum.CORPORATE
    assert program.points_per_night == 80
    assert Decimal(program.points_per_currency_unit) == Decimal("1.5")
    assert program.minimum_redemption == 1000
    assert program.service_multipliers["laundry"] == "1.5"
    assert [tier["name"] for tier in program.tier_configuration] == ["BRONZE", "SILVER", "GOLD"]


@pytest.mark.asyncio
async def test_invalid_payload_reports_every_error_and_writes_nothing(session_factory, seed):
    hotel_id = await seed.hotel()
    overlapping = _tiers()
    overlapping[1]["min_points"] = 900

    async with session_factory() as session:
        programs, _ = _services(session)
        with pytest.raises(ConfigInvalidError) as excinfo:
            await programs.upsert_program(
                hotel_id,
                None,
                {
                    "tier_configuration": overlapping,
                    "service_multipliers": {"karaoke": "2"},
                    "expiration_months": 0,
                },
            )

    assert "Overlap between Bronze (max: 999) and Silver (min: 900)" in excinfo.value.errors
    assert "Unknown service type: karaoke" in excinfo.value.errors
    assert "expirationMonths must be an integer of 1 or greater" in excinfo.value.errors

    async with session_factory() as session:
        assert (await session.execute(select(LoyaltyProgram))).scalars().all() == []


@pytest.mark.asyncio
async def test_missing_hotel_is_rejected(session_factory):
    async with session_factory() as session:
        programs, _ = _services(session)
        with pytest.raises(LookupError):
            await programs.upsert_program(uuid4(), None, {})


@pytest.mark.asyncio
async def test_partial_update_keeps_stored_values(session_factory, seed):
    hotel_id = await seed.hotel()
    await seed.program(hotel_id, maximum_redemption=5000, points_per_night=60)

    async with session_factory() as session:
        programs, _ = _services(session)
        result = await programs.upsert_program(
            hotel_id, None, {"minimum_redemption": 700, "maximum_redemption": None}
        )
        program = result.program

    assert result.created is False
    assert result.tiers_changed is False
    assert program.minimum_redemption == 700
    assert program.maximum_redemption is None
    assert program.points_per_night == 60
    assert program.service_multipliers == {"laundry": "1.2"}


@pytest.mark.asyncio
async def test_raising_a_threshold_recalculates_members(session_factory, seed):
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    other_guest = await seed.guest()
    await seed.program(hotel_id)
    sink = RecordingEventSink()

    async with session_factory() as session:
        members = LoyaltyMemberService(session, event_sink=sink)
        await members.award_for_spend(guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("1200"), service_type=None)
        await members.award_for_spend(guest_id=other_guest, hotel_id=hotel_id, amount_spent=Decimal("200"), service_type=None)

    async with session_factory() as session:
        programs, members = _services(session, sink)
        result = await programs.upsert_program(hotel_id, None, {"tier_configuration": _tiers(silver_floor=1500)})
        member = await members.get_member(guest_id, hotel_id)
        member_id = member.id
        current_tier = member.current_tier
        history = (
            await session.execute(
                select(LoyaltyTierChange)
                .where(LoyaltyTierChange.member_id == member_id)
                .order_by(LoyaltyTierChange.changed_at)
            )
        ).scalars().all()
        last_reason = history[-1].reason

    assert result.tiers_changed is True
    assert result.members_changed == 1
    assert current_tier == "BRONZE"
    assert last_reason == "Tier threshold changed by admin"
    downgrades = [event for event in sink.of_type(TierChanged) if not event.upgraded]
    assert len(downgrades) == 1
    assert downgrades[0].member_id == member_id


@pytest.mark.asyncio
async def test_channel_program_only_recalculates_its_channel(session_factory, seed):
    hotel_id = await seed.hotel()
    direct_guest = await seed.guest(channel=LoyaltyChannelEnum.DIRECT)
    walk_in_guest = await seed.guest()
    await seed.program(hotel_id)
    await seed.program(hotel_id, channel=LoyaltyChannelEnum.DIRECT)

    async with session_factory() as session:
        members = LoyaltyMemberService(session, event_sink=RecordingEventSink())
        await members.award_for_spend(guest_id=direct_guest, hotel_id=hotel_id, amount_spent=Decimal("600"), service_type=None)
        await members.award_for_spend(guest_id=walk_in_guest, hotel_id=hotel_id, amount_spent=Decimal("1200"), service_type=None)

    async with session_factory() as session:
        programs, members = _services(session)
        result = await programs.upsert_program(
            hotel_id, LoyaltyChannelEnum.DIRECT, {"tier_configuration": _tiers(silver_floor=1500)}
        )
        direct_tier = (await members.get_member(direct_guest, hotel_id)).current_tier
        walk_in_tier = (await members.get_member(walk_in_guest, hotel_id)).current_tier

    assert result.members_changed == 1
    assert direct_tier == "BRONZE"
    assert walk_in_tier == "SILVER"
