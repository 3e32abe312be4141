"""Loyalty member orchestration: enrollment, earning, redemption, expiry and tier upkeep."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable
from uuid import UUID, uuid4

from loguru import logger
from opentelemetry import trace
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from hotelmarket_api.core.settings import settings
from hotelmarket_api.models.hotel import Hotel
from hotelmarket_api.models.loyalty import (
    LoyaltyLedgerEntry,
    LoyaltyLedgerEntryType,
    LoyaltyMember,
    LoyaltyProgram,
    LoyaltyRedemption,
    LoyaltyReward,
    LoyaltyTierChange,
)
from hotelmarket_api.models.user import LoyaltyChannelEnum, User
from hotelmarket_api.observability.loyalty import get_loyalty_store
from hotelmarket_api.services.notifications import NotificationService

from .errors import ConfigInvalidError, LedgerConflictError, RewardUnavailableError
from .events import LoyaltyEvent, LoyaltyEventSink, MemberEnrolled, PointsExpired, RewardRedeemed, TierChanged
from .ledger import LedgerEntry, PointsLedger, ensure_utc
from .locking import KeyedLockRegistry, get_ledger_locks
from .program import LoyaltyProgramConfig
from .rewards import check_reward_eligibility
from .tiers import TierProgress, classify_tier_change, resolve_tier, tier_progress


tracer = trace.get_tracer(__name__)

NO_ACTIVE_PROGRAM = "no_active_program"
NOT_ENROLLED = "not_enrolled"
MEMBER_INACTIVE = "member_inactive"
ALREADY_AWARDED = "already_awarded"
HOTEL_NOT_FOUND = "hotel_not_found"
GUEST_NOT_FOUND = "guest_not_found"

TIER_REASON_ENROLLED = "Enrolled"
TIER_REASON_THRESHOLD = "Points threshold reached"
TIER_REASON_EXPIRED = "Points expired"
TIER_REASON_ADJUSTMENT = "Admin adjustment"
TIER_REASON_TABLE_CHANGED = "Tier threshold changed by admin"
TIER_REASON_MANUAL = "Manual admin change"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RedemptionRecord:
    id: UUID
    points: int
    value: Decimal
    reward_ref: str
    reward_id: UUID | None
    redeemed_at: datetime
    valid_until: datetime | None = None


@dataclass(slots=True)
class LedgerOutcome:
    """Result of a member operation; ``applicable`` is false when loyalty does not apply."""

    applicable: bool
    reason: str | None = None
    member_id: UUID | None = None
    points: int = 0
    total_points: int = 0
    available_points: int = 0
    current_tier: str | None = None
    enrolled: bool = False
    tier_change: TierChanged | None = None
    redemption: RedemptionRecord | None = None

    @classmethod
    def not_applicable(cls, reason: str) -> "LedgerOutcome":
        return cls(applicable=False, reason=reason)


@dataclass(slots=True)
class MemberSnapshot:
    member_id: UUID
    guest_id: UUID
    hotel_id: UUID
    hotel_group_id: UUID | None
    current_tier: str
    discount_percentage: Decimal
    total_points: int
    available_points: int
    lifetime_points_earned: int
    lifetime_points_redeemed: int
    lifetime_points_expired: int
    lifetime_spending: Decimal
    total_nights_stayed: int
    progress: TierProgress
    is_active: bool
    join_date: datetime
    last_activity_at: datetime | None
    tier_history: list[dict[str, Any]]


@dataclass(slots=True)
class _LedgerScope:
    hotel_id: UUID
    hotel_group_id: UUID | None
    scope_id: UUID


@dataclass
class _MutationContext:
    member: LoyaltyMember
    ledger: PointsLedger
    program: LoyaltyProgram
    config: LoyaltyProgramConfig
    scope: _LedgerScope
    now: datetime
    tier_reason: str = TIER_REASON_THRESHOLD
    forced_tier: str | None = None
    allow_downgrade: bool = True
    events: list[LoyaltyEvent] = field(default_factory=list)
    rows: list[Any] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=lambda: defaultdict(int))


Operation = Callable[[_MutationContext], Awaitable[LedgerOutcome]]


class LoyaltyMemberService:
    """Serialized read-modify-write operations on a member's points ledger.

    Each operation runs under a per-(guest, scope) lock and commits once. The
    member row carries an optimistic version so writers in other processes are
    detected; conflicts are rolled back and retried transparently. Events are
    handed to the sink only after the commit succeeds.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        event_sink: LoyaltyEventSink | None = None,
        locks: KeyedLockRegistry | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._event_sink = event_sink or NotificationService(db_session)
        self._locks = locks or get_ledger_locks()
        self._max_attempts = max(1, max_attempts or settings.loyalty_ledger_max_attempts)
        self._observability = get_loyalty_store()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def resolve_program(
        self,
        hotel_id: UUID,
        channel: LoyaltyChannelEnum | None,
    ) -> LoyaltyProgram | None:
        """Program for the guest's channel at a hotel, falling back to the hotel-wide one."""

        stmt = (
            select(LoyaltyProgram)
            .where(LoyaltyProgram.hotel_id == hotel_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        programs = {program.channel: program for program in result.scalars()}
        if channel is not None and channel in programs:
            return programs[channel]
        return programs.get(None)

    async def get_member(self, guest_id: UUID, hotel_id: UUID) -> LoyaltyMember | None:
        hotel = await self._db.get(Hotel, hotel_id)
        if hotel is None:
            return None
        return await self._load_member(guest_id, hotel.loyalty_scope_id)

    async def get_member_snapshot(self, guest_id: UUID, hotel_id: UUID) -> MemberSnapshot | None:
        member = await self.get_member(guest_id, hotel_id)
        if member is None:
            return None
        guest = await self._db.get(User, guest_id)
        program = await self.resolve_program(hotel_id, guest.loyalty_channel if guest else None)
        config = LoyaltyProgramConfig.from_program(program) if program is not None else None

        stmt = (
            select(LoyaltyTierChange)
            .where(LoyaltyTierChange.member_id == member.id)
            .order_by(LoyaltyTierChange.changed_at)
        )
        history = [
            {
                "from_tier": change.from_tier,
                "to_tier": change.to_tier,
                "upgraded": change.upgraded,
                "reason": change.reason,
                "changed_at": ensure_utc(change.changed_at),
            }
            for change in (await self._db.execute(stmt)).scalars()
        ]
        ledger = self._ledger_for(member)
        progress = (
            tier_progress(member.total_points, config.tiers, member.current_tier)
            if config is not None
            else TierProgress(member.points_to_next_tier, member.next_tier, Decimal(member.progress_percentage))
        )
        return MemberSnapshot(
            member_id=member.id,
            guest_id=member.guest_id,
            hotel_id=member.hotel_id,
            hotel_group_id=member.hotel_group_id,
            current_tier=member.current_tier,
            discount_percentage=self._tier_discount(member, config),
            total_points=member.total_points,
            available_points=member.available_points,
            lifetime_points_earned=ledger.lifetime_earned,
            lifetime_points_redeemed=ledger.lifetime_redeemed,
            lifetime_points_expired=ledger.lifetime_expired,
            lifetime_spending=Decimal(member.lifetime_spending),
            total_nights_stayed=member.total_nights_stayed,
            progress=progress,
            is_active=member.is_active,
            join_date=ensure_utc(member.join_date),
            last_activity_at=ensure_utc(member.last_activity_at),
            tier_history=history,
        )

    async def list_ledger(self, guest_id: UUID, hotel_id: UUID) -> list[LedgerEntry]:
        member = await self.get_member(guest_id, hotel_id)
        if member is None:
            return []
        return list(reversed(self._ledger_for(member).entries))

    async def current_discount(self, guest_id: UUID | None, hotel_id: UUID) -> Decimal:
        """Tier discount percentage a guest is entitled to when booking at a hotel."""

        if guest_id is None:
            return Decimal("0")
        guest = await self._db.get(User, guest_id)
        if guest is None:
            return Decimal("0")
        program = await self.resolve_program(hotel_id, guest.loyalty_channel)
        if program is None or not program.is_active:
            return Decimal("0")
        member = await self.get_member(guest_id, hotel_id)
        if member is None:
            return Decimal("0")
        return self._tier_discount(member, LoyaltyProgramConfig.from_program(program))

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------
    async def enroll(self, *, guest_id: UUID, hotel_id: UUID) -> LedgerOutcome:
        async def _noop(ctx: _MutationContext) -> LedgerOutcome:
            return LedgerOutcome(applicable=True)

        return await self._mutate(guest_id=guest_id, hotel_id=hotel_id, operation="enroll", enroll=True, apply=_noop)

    async def award_for_spend(
        self,
        *,
        guest_id: UUID,
        hotel_id: UUID,
        amount_spent: Decimal,
        service_type: str | None,
        booking_ref: str | None = None,
    ) -> LedgerOutcome:
        amount = Decimal(str(amount_spent))
        if amount < 0:
            raise ValueError("amount_spent must be zero or greater")

        async def _award(ctx: _MutationContext) -> LedgerOutcome:
            if booking_ref and ctx.ledger.has_booking_credit(booking_ref):
                return LedgerOutcome.not_applicable(ALREADY_AWARDED)
            ctx.allow_downgrade = False
            points = ctx.config.points_for_spend(amount, service_type)
            ctx.ledger.credit(
                LoyaltyLedgerEntryType.EARNED,
                points,
                occurred_at=ctx.now,
                expires_at=ctx.config.expiry_for(ctx.now),
                source_booking_ref=booking_ref,
                note=f"{service_type or 'service'} spend of {amount}",
            )
            ctx.member.lifetime_spending = Decimal(ctx.member.lifetime_spending or 0) + amount
            ctx.stats["total_points_issued"] += points
            ctx.stats["total_revenue_from_members"] += amount
            return LedgerOutcome(applicable=True, points=points)

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="award_for_spend", enroll=True, apply=_award
        )

    async def award_for_nights(
        self,
        *,
        guest_id: UUID,
        hotel_id: UUID,
        nights: int,
        booking_ref: str | None = None,
    ) -> LedgerOutcome:
        if nights < 0:
            raise ValueError("nights must be zero or greater")

        async def _award(ctx: _MutationContext) -> LedgerOutcome:
            if booking_ref and ctx.ledger.has_booking_credit(booking_ref, LoyaltyLedgerEntryType.NIGHTS):
                return LedgerOutcome.not_applicable(ALREADY_AWARDED)
            ctx.allow_downgrade = False
            points = ctx.config.points_for_nights(nights)
            ctx.ledger.credit(
                LoyaltyLedgerEntryType.NIGHTS,
                points,
                occurred_at=ctx.now,
                expires_at=ctx.config.expiry_for(ctx.now),
                source_booking_ref=booking_ref,
                note=f"{nights} night(s) stayed",
            )
            ctx.member.total_nights_stayed = (ctx.member.total_nights_stayed or 0) + nights
            ctx.stats["total_points_issued"] += points
            return LedgerOutcome(applicable=True, points=points)

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="award_for_nights", enroll=True, apply=_award
        )

    async def redeem(
        self,
        *,
        guest_id: UUID,
        hotel_id: UUID,
        points: int,
        reward_ref: str,
    ) -> LedgerOutcome:
        """Exchange points for their monetary value. Raises ``InsufficientPointsError``."""

        if points <= 0:
            raise ValueError("points must be positive")

        async def _redeem(ctx: _MutationContext) -> LedgerOutcome:
            ctx.config.redemption.check(points, ctx.ledger.available_points)
            return self._record_redemption(ctx, points=points, reward_ref=reward_ref)

        return await self._mutate(guest_id=guest_id, hotel_id=hotel_id, operation="redeem", enroll=False, apply=_redeem)

    async def redeem_reward(self, *, guest_id: UUID, hotel_id: UUID, reward_id: UUID) -> LedgerOutcome:
        """Redeem a catalog reward. Raises ``RewardUnavailableError`` or ``InsufficientPointsError``."""

        async def _redeem(ctx: _MutationContext) -> LedgerOutcome:
            reward = await self._db.get(LoyaltyReward, reward_id, populate_existing=True)
            if reward is None or reward.hotel_id != ctx.scope.hotel_id:
                raise RewardUnavailableError("Reward not found")
            eligibility = check_reward_eligibility(
                reward,
                available_points=ctx.ledger.available_points,
                current_tier=ctx.member.current_tier,
                tiers=ctx.config.tiers,
                now=ctx.now,
            )
            if not eligibility.eligible:
                raise RewardUnavailableError(eligibility.reason or "Reward unavailable", points_needed=eligibility.points_needed)
            ctx.config.redemption.check(reward.points_cost, ctx.ledger.available_points)

            claimed = await self._db.execute(
                update(LoyaltyReward)
                .where(
                    LoyaltyReward.id == reward.id,
                    or_(
                        LoyaltyReward.usage_limit.is_(None),
                        LoyaltyReward.times_redeemed < LoyaltyReward.usage_limit,
                    ),
                )
                .values(times_redeemed=LoyaltyReward.times_redeemed + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise RewardUnavailableError("Reward usage limit reached")

            return self._record_redemption(
                ctx,
                points=reward.points_cost,
                reward_ref=reward.name,
                reward_id=reward.id,
                valid_until=ctx.now + timedelta(days=reward.validity_days or 0),
            )

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="redeem_reward", enroll=False, apply=_redeem
        )

    async def adjust(self, *, guest_id: UUID, hotel_id: UUID, delta: int, reason: str) -> LedgerOutcome:
        """Administrative credit or debit; never drives the available balance below zero."""

        async def _adjust(ctx: _MutationContext) -> LedgerOutcome:
            ctx.ledger.adjust(delta, occurred_at=ctx.now, note=reason)
            ctx.tier_reason = TIER_REASON_ADJUSTMENT
            if delta > 0:
                ctx.stats["total_points_issued"] += delta
            return LedgerOutcome(applicable=True, points=delta)

        return await self._mutate(guest_id=guest_id, hotel_id=hotel_id, operation="adjust", enroll=False, apply=_adjust)

    async def expire_due(self, *, guest_id: UUID, hotel_id: UUID, as_of: datetime | None = None) -> LedgerOutcome:
        cutoff = ensure_utc(as_of) if as_of is not None else None

        async def _expire(ctx: _MutationContext) -> LedgerOutcome:
            result = ctx.ledger.expire_due(cutoff or ctx.now)
            ctx.tier_reason = TIER_REASON_EXPIRED
            if result.expired_points:
                ctx.stats["total_points_expired"] += result.expired_points
                ctx.events.append(
                    PointsExpired(
                        member_id=ctx.member.id,
                        guest_id=ctx.member.guest_id,
                        hotel_id=ctx.scope.hotel_id,
                        amount=result.expired_points,
                        occurred_at=ctx.now,
                    )
                )
            return LedgerOutcome(applicable=True, points=result.expired_points)

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="expire_due", enroll=False, apply=_expire
        )

    async def override_tier(self, *, guest_id: UUID, hotel_id: UUID, tier_name: str) -> LedgerOutcome:
        """Pin a member to a named tier. Awards keep it as a floor; adjustments and expiry re-resolve it."""

        async def _override(ctx: _MutationContext) -> LedgerOutcome:
            tier = ctx.config.tiers.get(tier_name)
            if tier is None:
                raise ConfigInvalidError([f"Unknown tier: {tier_name}"])
            ctx.forced_tier = tier.name
            ctx.tier_reason = TIER_REASON_MANUAL
            return LedgerOutcome(applicable=True)

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="override_tier", enroll=False, apply=_override
        )

    async def recalculate_member(self, *, guest_id: UUID, hotel_id: UUID) -> LedgerOutcome:
        async def _recalculate(ctx: _MutationContext) -> LedgerOutcome:
            ctx.tier_reason = TIER_REASON_TABLE_CHANGED
            return LedgerOutcome(applicable=True)

        return await self._mutate(
            guest_id=guest_id, hotel_id=hotel_id, operation="recalculate", enroll=False, apply=_recalculate
        )

    async def deactivate_member(self, *, guest_id: UUID, hotel_id: UUID) -> LedgerOutcome:
        """Stop earning, redemption and tier discounts for a member; the ledger is kept."""

        return await self._set_member_active(guest_id=guest_id, hotel_id=hotel_id, active=False)

    async def reactivate_member(self, *, guest_id: UUID, hotel_id: UUID) -> LedgerOutcome:
        return await self._set_member_active(guest_id=guest_id, hotel_id=hotel_id, active=True)

    async def list_members(
        self,
        hotel_id: UUID,
        *,
        tier: str | None = None,
        min_points: int | None = None,
        max_points: int | None = None,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LoyaltyMember]:
        """Members sharing the hotel's loyalty pool, highest point totals first."""

        hotel = await self._db.get(Hotel, hotel_id)
        if hotel is None:
            return []
        stmt = select(LoyaltyMember).where(LoyaltyMember.scope_id == hotel.loyalty_scope_id)
        if tier:
            stmt = stmt.where(LoyaltyMember.current_tier == tier.upper())
        if min_points is not None:
            stmt = stmt.where(LoyaltyMember.total_points >= min_points)
        if max_points is not None:
            stmt = stmt.where(LoyaltyMember.total_points <= max_points)
        if is_active is not None:
            stmt = stmt.where(LoyaltyMember.is_active.is_(is_active))
        stmt = stmt.order_by(LoyaltyMember.total_points.desc(), LoyaltyMember.join_date)
        stmt = stmt.offset(offset).limit(limit)
        return list((await self._db.execute(stmt)).scalars())

    async def recalculate_tiers(self, program_id: UUID) -> int:
        """Re-resolve every member governed by a program; returns how many changed tier."""

        program = await self._db.get(LoyaltyProgram, program_id)
        if program is None:
            return 0
        hotel = await self._db.get(Hotel, program.hotel_id)
        if hotel is None:
            return 0
        hotel_id = hotel.id

        stmt = (
            select(LoyaltyMember.guest_id)
            .join(User, User.id == LoyaltyMember.guest_id)
            .where(
                LoyaltyMember.scope_id == hotel.loyalty_scope_id,
                LoyaltyMember.is_active.is_(True),
            )
        )
        if program.channel is not None:
            stmt = stmt.where(User.loyalty_channel == program.channel)
        guest_ids = list((await self._db.execute(stmt)).scalars())

        changed = 0
        for guest_id in guest_ids:
            outcome = await self.recalculate_member(guest_id=guest_id, hotel_id=hotel_id)
            if outcome.tier_change is not None:
                changed += 1

        logger.info(
            "Loyalty tier recalculation finished",
            program_id=str(program_id),
            members=len(guest_ids),
            changed=changed,
        )
        return changed

    async def find_members_with_due_points(self, as_of: datetime, *, limit: int) -> list[tuple[UUID, UUID]]:
        due_entries = select(LoyaltyLedgerEntry.member_id).where(
            and_(
                LoyaltyLedgerEntry.entry_type.in_([LoyaltyLedgerEntryType.EARNED, LoyaltyLedgerEntryType.NIGHTS]),
                LoyaltyLedgerEntry.is_expired.is_(False),
                LoyaltyLedgerEntry.expires_at < as_of,
            )
        )
        stmt = (
            select(LoyaltyMember.guest_id, LoyaltyMember.hotel_id)
            .where(LoyaltyMember.is_active.is_(True), LoyaltyMember.id.in_(due_entries))
            .order_by(LoyaltyMember.last_activity_at)
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return [(row.guest_id, row.hotel_id) for row in result]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _set_member_active(self, *, guest_id: UUID, hotel_id: UUID, active: bool) -> LedgerOutcome:
        operation = "reactivate" if active else "deactivate"

        async def _toggle(ctx: _MutationContext) -> LedgerOutcome:
            if ctx.member.is_active != active:
                ctx.member.is_active = active
                logger.info(
                    f"Loyalty member {operation}d",
                    member_id=str(ctx.member.id),
                    guest_id=str(ctx.member.guest_id),
                    scope_id=str(ctx.scope.scope_id),
                )
            return LedgerOutcome(applicable=True)

        return await self._mutate(
            guest_id=guest_id,
            hotel_id=hotel_id,
            operation=operation,
            enroll=False,
            apply=_toggle,
            include_inactive=True,
        )

    async def _mutate(
        self,
        *,
        guest_id: UUID,
        hotel_id: UUID,
        operation: str,
        enroll: bool,
        apply: Operation,
        include_inactive: bool = False,
    ) -> LedgerOutcome:
        hotel = await self._db.get(Hotel, hotel_id)
        if hotel is None:
            self._observability.record_operation(operation, applicable=False)
            return LedgerOutcome.not_applicable(HOTEL_NOT_FOUND)
        scope = _LedgerScope(hotel_id=hotel.id, hotel_group_id=hotel.hotel_group_id, scope_id=hotel.loyalty_scope_id)

        async with self._locks.hold((guest_id, scope.scope_id)):
            with tracer.start_as_current_span(
                f"loyalty.{operation}",
                attributes={"loyalty.guest_id": str(guest_id), "loyalty.scope_id": str(scope.scope_id)},
            ):
                outcome, events = await self._run_with_retry(
                    guest_id=guest_id,
                    scope=scope,
                    operation=operation,
                    enroll=enroll,
                    apply=apply,
                    include_inactive=include_inactive,
                )

        self._record_metrics(operation, outcome)
        await self._dispatch(events)
        return outcome

    async def _run_with_retry(
        self,
        *,
        guest_id: UUID,
        scope: _LedgerScope,
        operation: str,
        enroll: bool,
        apply: Operation,
        include_inactive: bool,
    ) -> tuple[LedgerOutcome, list[LoyaltyEvent]]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                outcome, events = await self._attempt(
                    guest_id=guest_id,
                    scope=scope,
                    enroll=enroll,
                    apply=apply,
                    include_inactive=include_inactive,
                )
                await self._db.commit()
            except (StaleDataError, IntegrityError) as exc:
                await self._db.rollback()
                self._observability.record_ledger_conflict()
                logger.warning(
                    "Loyalty ledger write conflict",
                    operation=operation,
                    guest_id=str(guest_id),
                    scope_id=str(scope.scope_id),
                    attempt=attempt,
                    error=str(exc),
                )
                if attempt >= self._max_attempts:
                    raise LedgerConflictError(
                        f"Ledger for guest {guest_id} changed concurrently {attempt} times"
                    ) from exc
                continue
            except Exception:
                await self._db.rollback()
                raise
            return outcome, events
        raise LedgerConflictError(f"Ledger for guest {guest_id} could not be updated")

    async def _attempt(
        self,
        *,
        guest_id: UUID,
        scope: _LedgerScope,
        enroll: bool,
        apply: Operation,
        include_inactive: bool,
    ) -> tuple[LedgerOutcome, list[LoyaltyEvent]]:
        guest = await self._db.get(User, guest_id, populate_existing=True)
        if guest is None:
            return LedgerOutcome.not_applicable(GUEST_NOT_FOUND), []

        program = await self.resolve_program(scope.hotel_id, guest.loyalty_channel)
        if program is None or not program.is_active:
            logger.debug(
                "Loyalty operation skipped: no active program",
                guest_id=str(guest_id),
                hotel_id=str(scope.hotel_id),
            )
            return LedgerOutcome.not_applicable(NO_ACTIVE_PROGRAM), []
        config = LoyaltyProgramConfig.from_program(program)
        now = _utcnow()

        member = await self._load_member(guest_id, scope.scope_id)
        events: list[LoyaltyEvent] = []
        enrolled = False
        if member is None:
            if not enroll:
                return LedgerOutcome.not_applicable(NOT_ENROLLED), []
            member = self._new_member(guest_id, scope, program, config, now)
            enrolled = True
            events.append(
                MemberEnrolled(
                    member_id=member.id,
                    guest_id=guest_id,
                    hotel_id=scope.hotel_id,
                    tier=member.current_tier,
                    occurred_at=now,
                )
            )
        elif not member.is_active and not include_inactive:
            return LedgerOutcome.not_applicable(MEMBER_INACTIVE), []

        ctx = _MutationContext(
            member=member,
            ledger=self._ledger_for(member),
            program=program,
            config=config,
            scope=scope,
            now=now,
            events=events,
        )
        if enrolled:
            ctx.stats["total_members"] += 1

        known_entries = {entry.id: entry.is_expired for entry in ctx.ledger.entries}
        outcome = await apply(ctx)
        if not outcome.applicable:
            return outcome, []

        self._persist_ledger(ctx, known_entries)
        outcome.tier_change = self._refresh_tier(ctx)
        member.last_activity_at = now
        for row in ctx.rows:
            self._db.add(row)
        await self._bump_program_stats(program.id, ctx.stats)
        await self._db.flush()

        outcome.member_id = member.id
        outcome.total_points = member.total_points
        outcome.available_points = member.available_points
        outcome.current_tier = member.current_tier
        outcome.enrolled = enrolled
        return outcome, ctx.events

    async def _load_member(self, guest_id: UUID, scope_id: UUID) -> LoyaltyMember | None:
        stmt = (
            select(LoyaltyMember)
            .where(LoyaltyMember.guest_id == guest_id, LoyaltyMember.scope_id == scope_id)
            .options(selectinload(LoyaltyMember.ledger_entries))
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _new_member(
        self,
        guest_id: UUID,
        scope: _LedgerScope,
        program: LoyaltyProgram,
        config: LoyaltyProgramConfig,
        now: datetime,
    ) -> LoyaltyMember:
        tier = resolve_tier(0, config.tiers)
        progress = tier_progress(0, config.tiers, tier.name)
        member = LoyaltyMember(
            id=uuid4(),
            guest_id=guest_id,
            hotel_id=scope.hotel_id,
            hotel_group_id=scope.hotel_group_id,
            scope_id=scope.scope_id,
            program_id=program.id,
            current_tier=tier.name,
            total_points=0,
            available_points=0,
            lifetime_spending=Decimal("0"),
            total_nights_stayed=0,
            points_to_next_tier=progress.points_to_next_tier,
            next_tier=progress.next_tier,
            progress_percentage=progress.progress_percentage,
            is_active=True,
            join_date=now,
            last_activity_at=now,
        )
        self._db.add(member)
        self._db.add(
            LoyaltyTierChange(
                member_id=member.id,
                from_tier=None,
                to_tier=tier.name,
                upgraded=None,
                reason=TIER_REASON_ENROLLED,
                changed_at=now,
            )
        )
        logger.info(
            "Loyalty member enrolled",
            member_id=str(member.id),
            guest_id=str(guest_id),
            scope_id=str(scope.scope_id),
            tier=tier.name,
        )
        return member

    @staticmethod
    def _ledger_for(member: LoyaltyMember) -> PointsLedger:
        entries = [
            LedgerEntry(
                entry_type=row.entry_type,
                points=row.points,
                occurred_at=ensure_utc(row.occurred_at),
                expires_at=ensure_utc(row.expires_at),
                source_booking_ref=row.source_booking_ref,
                note=row.note,
                is_expired=row.is_expired,
                id=row.id,
            )
            for row in member.ledger_entries
        ]
        entries.sort(key=lambda entry: entry.occurred_at)
        return PointsLedger(
            entries=entries,
            total_points=member.total_points or 0,
            available_points=member.available_points or 0,
        )

    def _persist_ledger(self, ctx: _MutationContext, known_entries: dict[UUID, bool]) -> None:
        member = ctx.member
        newly_expired = {
            entry.id for entry in ctx.ledger.entries if entry.is_expired and known_entries.get(entry.id) is False
        }
        if newly_expired:
            for row in member.ledger_entries:
                if row.id in newly_expired:
                    row.is_expired = True

        for entry in ctx.ledger.entries:
            if entry.id in known_entries:
                continue
            self._db.add(
                LoyaltyLedgerEntry(
                    id=entry.id,
                    member_id=member.id,
                    entry_type=entry.entry_type,
                    points=entry.points,
                    occurred_at=entry.occurred_at,
                    expires_at=entry.expires_at,
                    source_booking_ref=entry.source_booking_ref,
                    note=entry.note,
                    is_expired=entry.is_expired,
                )
            )

        member.total_points = ctx.ledger.total_points
        member.available_points = ctx.ledger.available_points

    def _refresh_tier(self, ctx: _MutationContext) -> TierChanged | None:
        member = ctx.member
        tiers = ctx.config.tiers
        target = ctx.forced_tier or resolve_tier(member.total_points, tiers).name
        if (
            not ctx.allow_downgrade
            and tiers.rank(member.current_tier) is not None
            and classify_tier_change(member.current_tier, target, tiers) is False
        ):
            # Earning keeps a manually raised tier as a floor.
            target = member.current_tier
        change: TierChanged | None = None

        if target != member.current_tier:
            upgraded = classify_tier_change(member.current_tier, target, tiers)
            ctx.rows.append(
                LoyaltyTierChange(
                    member_id=member.id,
                    from_tier=member.current_tier,
                    to_tier=target,
                    upgraded=upgraded,
                    reason=ctx.tier_reason,
                    changed_at=ctx.now,
                )
            )
            change = TierChanged(
                member_id=member.id,
                guest_id=member.guest_id,
                hotel_id=ctx.scope.hotel_id,
                old_tier=member.current_tier,
                new_tier=target,
                upgraded=bool(upgraded),
                reason=ctx.tier_reason,
                occurred_at=ctx.now,
            )
            ctx.events.append(change)
            member.current_tier = target

        progress = tier_progress(member.total_points, tiers, member.current_tier)
        member.points_to_next_tier = progress.points_to_next_tier
        member.next_tier = progress.next_tier
        member.progress_percentage = progress.progress_percentage
        return change

    def _record_redemption(
        self,
        ctx: _MutationContext,
        *,
        points: int,
        reward_ref: str,
        reward_id: UUID | None = None,
        valid_until: datetime | None = None,
    ) -> LedgerOutcome:
        ctx.ledger.redeem(points, occurred_at=ctx.now, note=f"Redeemed for {reward_ref}")
        value = ctx.config.redemption.monetary_value(points)
        record = RedemptionRecord(
            id=uuid4(),
            points=points,
            value=value,
            reward_ref=reward_ref,
            reward_id=reward_id,
            redeemed_at=ctx.now,
            valid_until=valid_until,
        )
        ctx.rows.append(
            LoyaltyRedemption(
                id=record.id,
                member_id=ctx.member.id,
                reward_id=reward_id,
                reward_ref=reward_ref,
                points=points,
                value=value,
                valid_until=valid_until,
                redeemed_at=ctx.now,
            )
        )
        ctx.stats["total_points_redeemed"] += points
        ctx.events.append(
            RewardRedeemed(
                member_id=ctx.member.id,
                guest_id=ctx.member.guest_id,
                hotel_id=ctx.scope.hotel_id,
                points=points,
                value=value,
                reward_ref=reward_ref,
                occurred_at=ctx.now,
            )
        )
        return LedgerOutcome(applicable=True, points=points, redemption=record)

    async def _bump_program_stats(self, program_id: UUID, increments: dict[str, Any]) -> None:
        values = {
            name: getattr(LoyaltyProgram, name) + amount
            for name, amount in increments.items()
            if amount
        }
        if not values:
            return
        await self._db.execute(
            update(LoyaltyProgram)
            .where(LoyaltyProgram.id == program_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _tier_discount(member: LoyaltyMember, config: LoyaltyProgramConfig | None) -> Decimal:
        if config is None or not member.is_active:
            return Decimal("0")
        tier = config.tiers.get(member.current_tier)
        return tier.discount_percentage if tier is not None else Decimal("0")

    def _record_metrics(self, operation: str, outcome: LedgerOutcome) -> None:
        self._observability.record_operation(operation, applicable=outcome.applicable)
        if not outcome.applicable:
            return
        movement = {
            "award_for_spend": "awarded",
            "award_for_nights": "awarded",
            "redeem": "redeemed",
            "redeem_reward": "redeemed",
            "expire_due": "expired",
            "adjust": "adjusted",
        }.get(operation)
        if movement and outcome.points:
            self._observability.record_points(movement, outcome.points)
        if outcome.tier_change is not None:
            self._observability.record_tier_change(upgraded=outcome.tier_change.upgraded)
        logger.info(
            "Loyalty ledger updated",
            operation=operation,
            member_id=str(outcome.member_id),
            points=outcome.points,
            total_points=outcome.total_points,
            available_points=outcome.available_points,
            tier=outcome.current_tier,
        )

    async def _dispatch(self, events: list[LoyaltyEvent]) -> None:
        for event in events:
            event_type = type(event).__name__
            try:
                await self._event_sink.publish(event)
            except Exception:
                self._observability.record_notification(event_type, delivered=False)
                logger.exception(
                    "Loyalty event delivery failed",
                    event_type=event_type,
                    member_id=str(event.member_id),
                )
            else:
                self._observability.record_notification(event_type, delivered=True)


__all__ = [
    "LedgerOutcome",
    "LoyaltyMemberService",
    "MemberSnapshot",
    "RedemptionRecord",
]
