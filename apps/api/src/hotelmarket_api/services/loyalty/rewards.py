"""Reward catalog eligibility rules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from hotelmarket_api.models.loyalty import LoyaltyReward

from .ledger import ensure_utc
from .tiers import TierTable


@dataclass(frozen=True, slots=True)
class RewardEligibility:
    eligible: bool
    reason: str | None = None
    points_needed: int | None = None


def reward_availability(reward: LoyaltyReward, *, now: datetime) -> RewardEligibility:
    """Catalog-level availability, independent of any member."""

    if not reward.is_active:
        return RewardEligibility(False, "Reward is currently inactive")
    available_from = ensure_utc(reward.available_from)
    available_until = ensure_utc(reward.available_until)
    if available_from is not None and now < available_from:
        return RewardEligibility(False, "Reward not yet available")
    if available_until is not None and now > available_until:
        return RewardEligibility(False, "Reward has expired")
    if reward.usage_limit is not None and (reward.times_redeemed or 0) >= reward.usage_limit:
        return RewardEligibility(False, "Reward usage limit reached")
    return RewardEligibility(True)


def check_reward_eligibility(
    reward: LoyaltyReward,
    *,
    available_points: int,
    current_tier: str | None,
    tiers: TierTable,
    now: datetime,
) -> RewardEligibility:
    availability = reward_availability(reward, now=now)
    if not availability.eligible:
        return availability

    if available_points < reward.points_cost:
        return RewardEligibility(
            False,
            "Insufficient points",
            points_needed=reward.points_cost - available_points,
        )

    if reward.required_tier:
        required_rank = tiers.rank(reward.required_tier)
        member_rank = tiers.rank(current_tier)
        if required_rank is not None and (member_rank is None or member_rank < required_rank):
            return RewardEligibility(False, f"Requires {reward.required_tier.upper()} tier or higher")

    return RewardEligibility(True)


__all__ = ["RewardEligibility", "check_reward_eligibility", "reward_availability"]
