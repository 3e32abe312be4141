"""Loyalty program administration and member ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hotelmarket_api.api.dependencies.security import require_admin_api_key
from hotelmarket_api.db.session import get_session
from hotelmarket_api.models.hotel import Hotel
from hotelmarket_api.models.loyalty import LoyaltyProgram, LoyaltyReward, LoyaltyRewardCategory
from hotelmarket_api.models.user import LoyaltyChannelEnum
from hotelmarket_api.services.loyalty import ConfigInvalidError, InsufficientPointsError, RewardUnavailableError
from hotelmarket_api.services.loyalty.member_service import LedgerOutcome, LoyaltyMemberService
from hotelmarket_api.services.loyalty.program_service import LoyaltyProgramService
from hotelmarket_api.services.pricing import PricingError, preview_discounted_price


router = APIRouter(prefix="/loyalty", tags=["loyalty"])

_NULLABLE_REWARD_FIELDS = {"description", "value", "required_tier", "usage_limit", "available_from", "available_until"}


class TierPayload(BaseModel):
    name: str
    min_points: int
    max_points: int
    discount_percentage: Decimal
    benefits: List[str] = Field(default_factory=list)
    color: Optional[str] = None


class ProgramUpsertRequest(BaseModel):
    """Partial program definition; omitted fields keep their stored or default values."""

    is_active: Optional[bool] = None
    tiers: Optional[List[TierPayload]] = None
    points_per_currency_unit: Optional[Decimal] = None
    points_per_night: Optional[int] = None
    service_multipliers: Optional[Dict[str, Decimal]] = None
    redemption_ratio: Optional[int] = None
    minimum_redemption: Optional[int] = None
    maximum_redemption: Optional[int] = None
    expiration_months: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(exclude_unset=True, exclude={"tiers"})
        if self.tiers is not None:
            payload["tier_configuration"] = [
                {**tier.model_dump(), "discount_percentage": str(tier.discount_percentage)} for tier in self.tiers
            ]
        if "service_multipliers" in payload and payload["service_multipliers"] is not None:
            payload["service_multipliers"] = {key: str(value) for key, value in payload["service_multipliers"].items()}
        return payload


class ProgramStatistics(BaseModel):
    total_members: int
    total_points_issued: int
    total_points_redeemed: int
    total_points_expired: int
    total_revenue_from_members: float


class ProgramResponse(BaseModel):
    id: str
    hotel_id: str
    channel: Optional[str]
    is_active: bool
    tiers: List[Dict[str, Any]]
    points_per_currency_unit: float
    points_per_night: int
    service_multipliers: Dict[str, float]
    redemption_ratio: int
    minimum_redemption: int
    maximum_redemption: Optional[int]
    expiration_months: int
    statistics: ProgramStatistics
    created: Optional[bool] = None
    members_recalculated: Optional[int] = None


class TierHistoryResponse(BaseModel):
    from_tier: Optional[str]
    to_tier: str
    upgraded: Optional[bool]
    reason: str
    changed_at: datetime


class MemberResponse(BaseModel):
    member_id: str
    guest_id: str
    hotel_id: str
    hotel_group_id: Optional[str]
    current_tier: str
    discount_percentage: float
    total_points: int
    available_points: int
    lifetime_points_earned: int
    lifetime_points_redeemed: int
    lifetime_points_expired: int
    lifetime_spending: float
    total_nights_stayed: int
    points_to_next_tier: int
    next_tier: Optional[str]
    progress_percentage: float
    is_active: bool
    join_date: datetime
    last_activity_at: Optional[datetime]
    tier_history: List[TierHistoryResponse]


class MemberSummaryResponse(BaseModel):
    member_id: str
    guest_id: str
    current_tier: str
    total_points: int
    available_points: int
    lifetime_spending: float
    total_nights_stayed: int
    is_active: bool
    join_date: datetime
    last_activity_at: Optional[datetime]


class LedgerEntryResponse(BaseModel):
    id: str
    entry_type: str
    points: int
    occurred_at: datetime
    expires_at: Optional[datetime]
    source_booking_ref: Optional[str]
    note: Optional[str]
    is_expired: bool


class RedemptionRequest(BaseModel):
    points: Optional[int] = Field(default=None, gt=0, description="Points to exchange for their cash value")
    reward_ref: Optional[str] = Field(default=None, description="Free-form reference for a cash redemption")
    reward_id: Optional[UUID] = Field(default=None, description="Catalog reward to redeem instead of raw points")

    @model_validator(mode="after")
    def _require_target(self) -> "RedemptionRequest":
        if self.reward_id is None and self.points is None:
            raise ValueError("Either points or reward_id is required")
        return self


class AdjustmentRequest(BaseModel):
    delta: int = Field(..., description="Signed point adjustment")
    reason: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _non_zero(self) -> "AdjustmentRequest":
        if self.delta == 0:
            raise ValueError("delta must be non-zero")
        return self


class NightsRequest(BaseModel):
    nights: int = Field(..., ge=0)
    booking_ref: Optional[str] = None


class TierOverrideRequest(BaseModel):
    tier: str = Field(..., min_length=1)


class LedgerOutcomeResponse(BaseModel):
    applicable: bool
    reason: Optional[str]
    points: int
    total_points: int
    available_points: int
    current_tier: Optional[str]
    enrolled: bool
    tier_changed: bool
    redemption_value: Optional[float] = None
    redemption_valid_until: Optional[datetime] = None


class RewardCreateRequest(BaseModel):
    name: str
    category: LoyaltyRewardCategory
    points_cost: int = Field(..., gt=0)
    description: Optional[str] = None
    value: Optional[Decimal] = Field(default=None, ge=0)
    required_tier: Optional[str] = None
    validity_days: int = Field(30, ge=0)
    usage_limit: Optional[int] = Field(default=None, gt=0)
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None


class RewardUpdateRequest(BaseModel):
    """Partial reward update; omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[LoyaltyRewardCategory] = None
    points_cost: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = None
    value: Optional[Decimal] = Field(default=None, ge=0)
    required_tier: Optional[str] = None
    validity_days: Optional[int] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, gt=0)
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class RewardResponse(BaseModel):
    id: str
    name: str
    category: str
    points_cost: int
    value: Optional[float]
    required_tier: Optional[str]
    is_active: bool
    usage_limit: Optional[int]
    times_redeemed: int


class PricePreviewResponse(BaseModel):
    base_price: float
    markup_amount: float
    price_with_markup: float
    loyalty_discount_percentage: float
    loyalty_discount_amount: float
    final_price: float


def _program_to_response(program: LoyaltyProgram, **extra: Any) -> ProgramResponse:
    return ProgramResponse(
        id=str(program.id),
        hotel_id=str(program.hotel_id),
        channel=program.channel.value if program.channel else None,
        is_active=program.is_active,
        tiers=list(program.tier_configuration or []),
        points_per_currency_unit=float(program.points_per_currency_unit),
        points_per_night=program.points_per_night,
        service_multipliers={key: float(value) for key, value in (program.service_multipliers or {}).items()},
        redemption_ratio=program.redemption_ratio,
        minimum_redemption=program.minimum_redemption,
        maximum_redemption=program.maximum_redemption,
        expiration_months=program.expiration_months,
        statistics=ProgramStatistics(
            total_members=program.total_members or 0,
            total_points_issued=program.total_points_issued or 0,
            total_points_redeemed=program.total_points_redeemed or 0,
            total_points_expired=program.total_points_expired or 0,
            total_revenue_from_members=float(program.total_revenue_from_members or 0),
        ),
        **extra,
    )


def _outcome_to_response(outcome: LedgerOutcome) -> LedgerOutcomeResponse:
    redemption = outcome.redemption
    return LedgerOutcomeResponse(
        applicable=outcome.applicable,
        reason=outcome.reason,
        points=outcome.points,
        total_points=outcome.total_points,
        available_points=outcome.available_points,
        current_tier=outcome.current_tier,
        enrolled=outcome.enrolled,
        tier_changed=outcome.tier_change is not None,
        redemption_value=float(redemption.value) if redemption else None,
        redemption_valid_until=redemption.valid_until if redemption else None,
    )


def _require_applicable(outcome: LedgerOutcome) -> LedgerOutcomeResponse:
    if not outcome.applicable:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"reason": outcome.reason})
    return _outcome_to_response(outcome)


def _config_error(exc: ConfigInvalidError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail={"errors": exc.errors})


@router.put(
    "/hotels/{hotel_id}/program",
    response_model=ProgramResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def upsert_program(
    hotel_id: UUID,
    request: ProgramUpsertRequest,
    channel: Optional[LoyaltyChannelEnum] = Query(None, description="Guest channel; omit for the hotel-wide program"),
    db: AsyncSession = Depends(get_session),
) -> ProgramResponse:
    """Create or update a program. Invalid rules are rejected with every violation listed."""

    service = LoyaltyProgramService(db)
    try:
        result = await service.upsert_program(hotel_id, channel, request.to_payload())
    except ConfigInvalidError as exc:
        raise _config_error(exc) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Hotel not found") from exc
    return _program_to_response(result.program, created=result.created, members_recalculated=result.members_changed)


@router.get("/hotels/{hotel_id}/program", response_model=ProgramResponse)
async def get_program(
    hotel_id: UUID,
    channel: Optional[LoyaltyChannelEnum] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> ProgramResponse:
    program = await LoyaltyProgramService(db).get_program(hotel_id, channel)
    if program is None:
        raise HTTPException(status_code=404, detail="Loyalty program not found")
    return _program_to_response(program)


@router.get(
    "/hotels/{hotel_id}/members",
    response_model=List[MemberSummaryResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_members(
    hotel_id: UUID,
    tier: Optional[str] = Query(None),
    min_points: Optional[int] = Query(None, ge=0),
    max_points: Optional[int] = Query(None, ge=0),
    is_active: Optional[bool] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_session),
) -> List[MemberSummaryResponse]:
    if await db.get(Hotel, hotel_id) is None:
        raise HTTPException(status_code=404, detail="Hotel not found")
    members = await LoyaltyMemberService(db).list_members(
        hotel_id,
        tier=tier,
        min_points=min_points,
        max_points=max_points,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return [
        MemberSummaryResponse(
            member_id=str(member.id),
            guest_id=str(member.guest_id),
            current_tier=member.current_tier,
            total_points=member.total_points,
            available_points=member.available_points,
            lifetime_spending=float(member.lifetime_spending or 0),
            total_nights_stayed=member.total_nights_stayed or 0,
            is_active=member.is_active,
            join_date=member.join_date,
            last_activity_at=member.last_activity_at,
        )
        for member in members
    ]


@router.get("/hotels/{hotel_id}/members/{guest_id}", response_model=MemberResponse)
async def get_member(hotel_id: UUID, guest_id: UUID, db: AsyncSession = Depends(get_session)) -> MemberResponse:
    snapshot = await LoyaltyMemberService(db).get_member_snapshot(guest_id, hotel_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Loyalty member not found")
    return MemberResponse(
        member_id=str(snapshot.member_id),
        guest_id=str(snapshot.guest_id),
        hotel_id=str(snapshot.hotel_id),
        hotel_group_id=str(snapshot.hotel_group_id) if snapshot.hotel_group_id else None,
        current_tier=snapshot.current_tier,
        discount_percentage=float(snapshot.discount_percentage),
        total_points=snapshot.total_points,
        available_points=snapshot.available_points,
        lifetime_points_earned=snapshot.lifetime_points_earned,
        lifetime_points_redeemed=snapshot.lifetime_points_redeemed,
        lifetime_points_expired=snapshot.lifetime_points_expired,
        lifetime_spending=float(snapshot.lifetime_spending),
        total_nights_stayed=snapshot.total_nights_stayed,
        points_to_next_tier=snapshot.progress.points_to_next_tier,
        next_tier=snapshot.progress.next_tier,
        progress_percentage=float(snapshot.progress.progress_percentage),
        is_active=snapshot.is_active,
        join_date=snapshot.join_date,
        last_activity_at=snapshot.last_activity_at,
        tier_history=[TierHistoryResponse(**item) for item in snapshot.tier_history],
    )


@router.get("/hotels/{hotel_id}/members/{guest_id}/ledger", response_model=List[LedgerEntryResponse])
async def list_member_ledger(
    hotel_id: UUID,
    guest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[LedgerEntryResponse]:
    """Ledger entries, newest first."""

    entries = await LoyaltyMemberService(db).list_ledger(guest_id, hotel_id)
    return [
        LedgerEntryResponse(
            id=str(entry.id),
            entry_type=entry.entry_type.value,
            points=entry.points,
            occurred_at=entry.occurred_at,
            expires_at=entry.expires_at,
            source_booking_ref=entry.source_booking_ref,
            note=entry.note,
            is_expired=entry.is_expired,
        )
        for entry in entries
    ]


@router.post("/hotels/{hotel_id}/members/{guest_id}/redemptions", response_model=LedgerOutcomeResponse)
async def redeem_points(
    hotel_id: UUID,
    guest_id: UUID,
    request: RedemptionRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    service = LoyaltyMemberService(db)
    try:
        if request.reward_id is not None:
            outcome = await service.redeem_reward(guest_id=guest_id, hotel_id=hotel_id, reward_id=request.reward_id)
        else:
            outcome = await service.redeem(
                guest_id=guest_id,
                hotel_id=hotel_id,
                points=request.points,
                reward_ref=request.reward_ref or "Points redemption",
            )
    except InsufficientPointsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": exc.reason.value, "message": str(exc), "available_points": exc.available},
        ) from exc
    except RewardUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": exc.reason, "points_needed": exc.points_needed},
        ) from exc
    return _require_applicable(outcome)


@router.post(
    "/hotels/{hotel_id}/members/{guest_id}/adjustments",
    response_model=LedgerOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def adjust_points(
    hotel_id: UUID,
    guest_id: UUID,
    request: AdjustmentRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    try:
        outcome = await LoyaltyMemberService(db).adjust(
            guest_id=guest_id, hotel_id=hotel_id, delta=request.delta, reason=request.reason
        )
    except InsufficientPointsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": exc.reason.value, "message": str(exc), "available_points": exc.available},
        ) from exc
    return _require_applicable(outcome)


@router.post(
    "/hotels/{hotel_id}/members/{guest_id}/nights",
    response_model=LedgerOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def award_nights(
    hotel_id: UUID,
    guest_id: UUID,
    request: NightsRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    outcome = await LoyaltyMemberService(db).award_for_nights(
        guest_id=guest_id, hotel_id=hotel_id, nights=request.nights, booking_ref=request.booking_ref
    )
    return _outcome_to_response(outcome)


@router.post(
    "/hotels/{hotel_id}/members/{guest_id}/tier-override",
    response_model=LedgerOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def override_tier(
    hotel_id: UUID,
    guest_id: UUID,
    request: TierOverrideRequest,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    try:
        outcome = await LoyaltyMemberService(db).override_tier(
            guest_id=guest_id, hotel_id=hotel_id, tier_name=request.tier
        )
    except ConfigInvalidError as exc:
        raise _config_error(exc) from exc
    return _require_applicable(outcome)


@router.post(
    "/hotels/{hotel_id}/members/{guest_id}/deactivate",
    response_model=LedgerOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def deactivate_member(
    hotel_id: UUID,
    guest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    outcome = await LoyaltyMemberService(db).deactivate_member(guest_id=guest_id, hotel_id=hotel_id)
    return _require_applicable(outcome)


@router.post(
    "/hotels/{hotel_id}/members/{guest_id}/reactivate",
    response_model=LedgerOutcomeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def reactivate_member(
    hotel_id: UUID,
    guest_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> LedgerOutcomeResponse:
    outcome = await LoyaltyMemberService(db).reactivate_member(guest_id=guest_id, hotel_id=hotel_id)
    return _require_applicable(outcome)


@router.get("/hotels/{hotel_id}/rewards", response_model=List[RewardResponse])
async def list_rewards(hotel_id: UUID, db: AsyncSession = Depends(get_session)) -> List[RewardResponse]:
    stmt = (
        select(LoyaltyReward)
        .where(LoyaltyReward.hotel_id == hotel_id, LoyaltyReward.is_active.is_(True))
        .order_by(LoyaltyReward.points_cost)
    )
    rewards = (await db.execute(stmt)).scalars().all()
    return [_reward_to_response(reward) for reward in rewards]


@router.post(
    "/hotels/{hotel_id}/rewards",
    response_model=RewardResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_reward(
    hotel_id: UUID,
    request: RewardCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    if await db.get(Hotel, hotel_id) is None:
        raise HTTPException(status_code=404, detail="Hotel not found")
    reward = LoyaltyReward(
        hotel_id=hotel_id,
        name=request.name,
        description=request.description,
        category=request.category,
        points_cost=request.points_cost,
        value=request.value,
        required_tier=request.required_tier.upper() if request.required_tier else None,
        validity_days=request.validity_days,
        usage_limit=request.usage_limit,
        available_from=request.available_from,
        available_until=request.available_until,
        times_redeemed=0,
        is_active=True,
    )
    db.add(reward)
    await db.commit()
    return _reward_to_response(reward)


@router.patch(
    "/hotels/{hotel_id}/rewards/{reward_id}",
    response_model=RewardResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_reward(
    hotel_id: UUID,
    reward_id: UUID,
    request: RewardUpdateRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    reward = await _get_reward(db, hotel_id, reward_id)
    changes = {
        name: value
        for name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or name in _NULLABLE_REWARD_FIELDS
    }
    if changes.get("required_tier"):
        changes["required_tier"] = changes["required_tier"].upper()
    for field_name, value in changes.items():
        setattr(reward, field_name, value)
    await db.commit()
    logger.info("Loyalty reward updated", reward_id=str(reward_id), fields=sorted(changes))
    return _reward_to_response(reward)


@router.delete(
    "/hotels/{hotel_id}/rewards/{reward_id}",
    response_model=RewardResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def delete_reward(hotel_id: UUID, reward_id: UUID, db: AsyncSession = Depends(get_session)) -> RewardResponse:
    """Withdraw a reward from the catalog. Past redemptions keep referencing it."""

    reward = await _get_reward(db, hotel_id, reward_id)
    reward.is_active = False
    await db.commit()
    logger.info("Loyalty reward deactivated", reward_id=str(reward_id))
    return _reward_to_response(reward)


@router.get("/hotels/{hotel_id}/price-preview", response_model=PricePreviewResponse)
async def price_preview(
    hotel_id: UUID,
    base_price: Decimal = Query(..., ge=0),
    guest_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_session),
) -> PricePreviewResponse:
    """Per-unit guest price with the hotel markup and the guest's tier discount, before tax."""

    hotel = await db.get(Hotel, hotel_id)
    if hotel is None:
        raise HTTPException(status_code=404, detail="Hotel not found")
    discount = await LoyaltyMemberService(db).current_discount(guest_id, hotel_id)
    try:
        preview = preview_discounted_price(base_price, Decimal(hotel.markup_percentage), discount)
    except PricingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PricePreviewResponse(
        base_price=float(preview.base_price),
        markup_amount=float(preview.markup_amount),
        price_with_markup=float(preview.price_with_markup),
        loyalty_discount_percentage=float(preview.loyalty_discount_percentage),
        loyalty_discount_amount=float(preview.loyalty_discount_amount),
        final_price=float(preview.final_price),
    )


async def _get_reward(db: AsyncSession, hotel_id: UUID, reward_id: UUID) -> LoyaltyReward:
    reward = await db.get(LoyaltyReward, reward_id)
    if reward is None or reward.hotel_id != hotel_id:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


def _reward_to_response(reward: LoyaltyReward) -> RewardResponse:
    return RewardResponse(
        id=str(reward.id),
        name=reward.name,
        category=reward.category.value,
        points_cost=reward.points_cost,
        value=float(reward.value) if reward.value is not None else None,
        required_tier=reward.required_tier,
        is_active=reward.is_active,
        usage_limit=reward.usage_limit,
        times_redeemed=reward.times_redeemed or 0,
    )
