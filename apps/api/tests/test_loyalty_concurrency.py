import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from hotelmarket_api.models.loyalty import LoyaltyMember
from hotelmarket_api.observability.loyalty import get_loyalty_store
from hotelmarket_api.services.loyalty import InsufficientPointsError, LedgerConflictError
from hotelmarket_api.services.loyalty.events import MemberEnrolled, RecordingEventSink
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService


@pytest.mark.asyncio
async def test_concurrent_awards_are_all_applied(file_session_factory, file_seed):
    hotel_id = await file_seed.hotel()
    guest_id = await file_seed.guest()
    await file_seed.program(hotel_id)
    sink = RecordingEventSink()

    async def award():
        async with file_session_factory() as session:
            return await LoyaltyMemberService(session, event_sink=sink).award_for_spend(
                guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("100"), service_type=None
            )

    outcomes = await asyncio.gather(*(award() for _ in range(10)))

    assert sum(outcome.enrolled for outcome in outcomes) == 1
    assert max(outcome.total_points for outcome in outcomes) == 1000

    async with file_session_factory() as session:
        member = (
            await session.execute(select(LoyaltyMember).where(LoyaltyMember.guest_id == guest_id))
        ).scalar_one()
        assert member.total_points == 1000
        assert member.available_points == 1000
        assert member.current_tier == "SILVER"

    assert len(sink.of_type(MemberEnrolled)) == 1


@pytest.mark.asyncio
async def test_concurrent_redemptions_never_overdraw(file_session_factory, file_seed):
    hotel_id = await file_seed.hotel()
    guest_id = await file_seed.guest()
    await file_seed.program(hotel_id)

    async with file_session_factory() as session:
        await LoyaltyMemberService(session, event_sink=RecordingEventSink()).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("1000"), service_type=None
        )

    async def redeem():
        async with file_session_factory() as session:
            return await LoyaltyMemberService(session, event_sink=RecordingEventSink()).redeem(
                guest_id=guest_id, hotel_id=hotel_id, points=500, reward_ref="cash"
            )

    results = await asyncio.gather(*(redeem() for _ in range(3)), return_exceptions=True)

    failures = [result for result in results if isinstance(result, Exception)]
    successes = [result for result in results if not isinstance(result, Exception)]
    assert len(successes) == 2
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientPointsError)
    assert sorted(outcome.available_points for outcome in successes) == [0, 500]


@pytest.mark.asyncio
async def test_member_version_guards_against_lost_updates(file_session_factory, file_seed):
    hotel_id = await file_seed.hotel()
    guest_id = await file_seed.guest()
    await file_seed.program(hotel_id)

    async with file_session_factory() as session:
        await LoyaltyMemberService(session, event_sink=RecordingEventSink()).enroll(guest_id=guest_id, hotel_id=hotel_id)

    stmt = select(LoyaltyMember).where(LoyaltyMember.guest_id == guest_id)
    async with file_session_factory() as stale_session, file_session_factory() as fresh_session:
        stale = (await stale_session.execute(stmt)).scalar_one()
        fresh = (await fresh_session.execute(stmt)).scalar_one()

        fresh.total_points = 10
        fresh.available_points = 10
        await fresh_session.commit()

        stale.total_points = 99
        with pytest.raises(StaleDataError):
            await stale_session.flush()
        await stale_session.rollback()


@pytest.mark.asyncio
async def test_conflicting_commit_is_retried(session_factory, seed, monkeypatch):
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)

    async with session_factory() as session:
        original_commit = session.commit
        calls = 0

        async def flaky_commit():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise StaleDataError("simulated concurrent update")
            await original_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)
        outcome = await LoyaltyMemberService(session, event_sink=RecordingEventSink()).award_for_spend(
            guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("75"), service_type=None
        )

    assert calls == 2
    assert outcome.points == 75
    assert outcome.enrolled is True
    assert get_loyalty_store().snapshot().ledger["conflicts_retried"] == 1

    async with session_factory() as session:
        member = await LoyaltyMemberService(session, event_sink=RecordingEventSink()).get_member(guest_id, hotel_id)
        assert member.total_points == 75
        assert len(member.ledger_entries) == 1


@pytest.mark.asyncio
async def test_persistent_conflict_surfaces_after_max_attempts(session_factory, seed, monkeypatch):
    hotel_id = await seed.hotel()
    guest_id = await seed.guest()
    await seed.program(hotel_id)
    sink = RecordingEventSink()

    async with session_factory() as session:
        async def always_stale():
            raise StaleDataError("simulated concurrent update")

        monkeypatch.setattr(session, "commit", always_stale)
        service = LoyaltyMemberService(session, event_sink=sink, max_attempts=2)
        with pytest.raises(LedgerConflictError):
            await service.award_for_spend(
                guest_id=guest_id, hotel_id=hotel_id, amount_spent=Decimal("75"), service_type=None
            )

    assert sink.events == []
    assert get_loyalty_store().snapshot().ledger["conflicts_retried"] == 2
