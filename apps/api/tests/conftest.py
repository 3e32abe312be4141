import sys
from pathlib import Path


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from decimal import Decimal  # noqa: E402
from typing import Any  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from hotelmarket_api.app import create_app  # noqa: E402
from hotelmarket_api.db.base import Base  # noqa: E402
from hotelmarket_api.db.session import get_session  # noqa: E402
from hotelmarket_api.models import (  # noqa: E402
    Hotel,
    HotelGroup,
    LoyaltyProgram,
    LoyaltyReward,
    LoyaltyRewardCategory,
    NotificationPreference,
    User,
)
from hotelmarket_api.models.user import LoyaltyChannelEnum  # noqa: E402
from hotelmarket_api.observability.loyalty import get_loyalty_store  # noqa: E402
from hotelmarket_api.observability.scheduler import get_job_scheduler_store  # noqa: E402
from hotelmarket_api.services.loyalty.program import channel_defaults  # noqa: E402


class Seeder:
    """Insert reference rows in their own committed sessions and hand back plain ids."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory
        self._counter = 0

    async def _add(self, instance: Any) -> UUID:
        async with self._session_factory() as session:
            session.add(instance)
            await session.commit()
            return instance.id

    async def group(self, name: str = "Red Sea Resorts") -> UUID:
        return await self._add(HotelGroup(name=name))

    async def hotel(
        self,
        *,
        name: str = "Nile View",
        markup_percentage: str = "20",
        tax_rate: str = "14",
        currency: str = "EGP",
        group_id: UUID | None = None,
    ) -> UUID:
        return await self._add(
            Hotel(
                name=name,
                markup_percentage=Decimal(markup_percentage),
                tax_rate=Decimal(tax_rate),
                currency=currency,
                hotel_group_id=group_id,
                is_active=True,
            )
        )

    async def guest(
        self,
        *,
        email: str | None = None,
        channel: LoyaltyChannelEnum | None = None,
        display_name: str = "Mona",
        phone_number: str | None = None,
    ) -> UUID:
        self._counter += 1
        return await self._add(
            User(
                email=email or f"guest{self._counter}@example.com",
                display_name=display_name,
                phone_number=phone_number,
                loyalty_channel=channel,
            )
        )

    async def program(
        self,
        hotel_id: UUID,
        *,
        channel: LoyaltyChannelEnum | None = None,
        **overrides: Any,
    ) -> UUID:
        values = channel_defaults(channel)
        values.update({"service_multipliers": {"laundry": "1.2"}} if channel is None else {})
        values.update(overrides)
        values["points_per_currency_unit"] = Decimal(str(values["points_per_currency_unit"]))
        return await self._add(LoyaltyProgram(hotel_id=hotel_id, channel=channel, **values))

    async def reward(self, hotel_id: UUID, **overrides: Any) -> UUID:
        values: dict[str, Any] = {
            "name": "Spa voucher",
            "category": LoyaltyRewardCategory.VOUCHER,
            "points_cost": 600,
            "value": Decimal("25"),
            "validity_days": 30,
            "times_redeemed": 0,
            "is_active": True,
        }
        values.update(overrides)
        return await self._add(LoyaltyReward(hotel_id=hotel_id, **values))

    async def preferences(self, user_id: UUID, **flags: bool) -> UUID:
        return await self._add(NotificationPreference(user_id=user_id, **flags))


@pytest.fixture(autouse=True)
def reset_observability_stores():
    get_loyalty_store().reset()
    get_job_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database where every session gets its own connection."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", future=True, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def file_seed(file_session_factory) -> Seeder:
    return Seeder(file_session_factory)


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
