"""Loyalty program administration: validated upserts and tier recalculation sweeps."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.core.settings import settings
from hotelmarket_api.models.hotel import Hotel
from hotelmarket_api.models.loyalty import LoyaltyProgram
from hotelmarket_api.models.user import LoyaltyChannelEnum

from .member_service import LoyaltyMemberService
from .program import channel_defaults, ensure_valid_program_settings
from .tiers import TierTable


PROGRAM_FIELDS = (
    "is_active",
    "tier_configuration",
    "points_per_currency_unit",
    "points_per_night",
    "service_multipliers",
    "redemption_ratio",
    "minimum_redemption",
    "maximum_redemption",
    "expiration_months",
)


@dataclass(slots=True)
class ProgramUpsertResult:
    program: LoyaltyProgram
    created: bool
    tiers_changed: bool
    members_changed: int


class LoyaltyProgramService:
    def __init__(self, db_session: AsyncSession, *, member_service: LoyaltyMemberService | None = None) -> None:
        self._db = db_session
        self._members = member_service or LoyaltyMemberService(db_session)

    async def get_program(self, hotel_id: UUID, channel: LoyaltyChannelEnum | None) -> LoyaltyProgram | None:
        stmt = select(LoyaltyProgram).where(LoyaltyProgram.hotel_id == hotel_id)
        if channel is None:
            stmt = stmt.where(LoyaltyProgram.channel.is_(None))
        else:
            stmt = stmt.where(LoyaltyProgram.channel == channel)
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def upsert_program(
        self,
        hotel_id: UUID,
        channel: LoyaltyChannelEnum | None,
        payload: Mapping[str, Any],
    ) -> ProgramUpsertResult:
        """Create or update a program.

        Missing fields fall back to the stored values, or to the channel defaults for
        a new program. Every validation failure is reported at once via
        ``ConfigInvalidError`` and nothing is written. Replacing the tier table
        re-resolves every governed member, one serialized operation per member.
        """

        hotel = await self._db.get(Hotel, hotel_id)
        if hotel is None:
            raise LookupError(f"Hotel {hotel_id} not found")

        program = await self.get_program(hotel_id, channel)
        created = program is None
        base = channel_defaults(channel) if created else {name: getattr(program, name) for name in PROGRAM_FIELDS}
        merged = dict(base)
        merged.update({key: value for key, value in payload.items() if key in PROGRAM_FIELDS and value is not None})
        if "maximum_redemption" in payload:
            merged["maximum_redemption"] = payload["maximum_redemption"]
        ensure_valid_program_settings(merged, service_types=settings.loyalty_service_types)

        tiers = TierTable.parse(merged["tier_configuration"]).as_payload()
        previous_tiers = None if created else TierTable.parse(program.tier_configuration or []).as_payload()
        tiers_changed = created or tiers != previous_tiers

        if created:
            program = LoyaltyProgram(hotel_id=hotel_id, channel=channel)
            self._db.add(program)
        program.is_active = bool(merged["is_active"])
        program.tier_configuration = tiers
        program.points_per_currency_unit = Decimal(str(merged["points_per_currency_unit"]))
        program.points_per_night = merged["points_per_night"]
        program.service_multipliers = {
            str(key).lower(): str(value) for key, value in (merged["service_multipliers"] or {}).items()
        }
        program.redemption_ratio = merged["redemption_ratio"]
        program.minimum_redemption = merged["minimum_redemption"]
        program.maximum_redemption = merged["maximum_redemption"]
        program.expiration_months = merged["expiration_months"]
        await self._db.commit()
        program_id = program.id

        logger.info(
            "Loyalty program saved",
            program_id=str(program_id),
            hotel_id=str(hotel_id),
            channel=channel.value if channel else None,
            created=created,
            tiers_changed=tiers_changed,
        )

        members_changed = 0
        if tiers_changed:
            members_changed = await self._members.recalculate_tiers(program_id)
        program = await self._db.get(LoyaltyProgram, program_id, populate_existing=True)
        return ProgramUpsertResult(
            program=program,
            created=created,
            tiers_changed=tiers_changed,
            members_changed=members_changed,
        )


__all__ = ["LoyaltyProgramService", "ProgramUpsertResult", "PROGRAM_FIELDS"]
