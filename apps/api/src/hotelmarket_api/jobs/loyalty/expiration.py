"""Sweep that expires loyalty points past their expiry date."""

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.core.settings import settings
from hotelmarket_api.services.loyalty.member_service import LoyaltyMemberService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def _open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def run_points_expiration(
    *,
    session_factory: SessionFactory,
    as_of: dt.datetime | None = None,
    batch_size: int | None = None,
) -> Dict[str, Any]:
    """Expire due points for every active member, one ledger key at a time.

    Members are fetched in batches of ``batch_size``. A member whose expiry is
    skipped (for example because its program was deactivated) is not retried
    within the same sweep.
    """

    cutoff = as_of or dt.datetime.now(dt.timezone.utc)
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=dt.timezone.utc)
    limit = max(1, batch_size or settings.loyalty_expiration_batch_size)

    session = await _open_session(session_factory)
    visited: set[tuple[UUID, UUID]] = set()
    members_expired = 0
    points_expired = 0
    tier_changes = 0
    skipped = 0

    async with session as managed_session:
        service = LoyaltyMemberService(managed_session)
        while True:
            batch = [
                key
                for key in await service.find_members_with_due_points(cutoff, limit=limit + len(visited))
                if key not in visited
            ]
            if not batch:
                break
            for guest_id, hotel_id in batch:
                visited.add((guest_id, hotel_id))
                outcome = await service.expire_due(guest_id=guest_id, hotel_id=hotel_id, as_of=cutoff)
                if not outcome.applicable:
                    skipped += 1
                    continue
                if outcome.points:
                    members_expired += 1
                    points_expired += outcome.points
                if outcome.tier_change is not None:
                    tier_changes += 1

    summary = {
        "as_of": cutoff.isoformat(),
        "members_processed": len(visited),
        "members_expired": members_expired,
        "points_expired": points_expired,
        "tier_changes": tier_changes,
        "skipped": skipped,
    }
    logger.bind(summary=summary).info("Loyalty points expiration sweep completed")
    return summary


__all__ = ["run_points_expiration"]
