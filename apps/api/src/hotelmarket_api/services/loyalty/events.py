"""Domain events emitted after a ledger mutation commits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, Union
from uuid import UUID


@dataclass(frozen=True, slots=True)
class MemberEnrolled:
    member_id: UUID
    guest_id: UUID
    hotel_id: UUID
    tier: str
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class TierChanged:
    member_id: UUID
    guest_id: UUID
    hotel_id: UUID
    old_tier: str | None
    new_tier: str
    upgraded: bool
    reason: str
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class PointsExpired:
    member_id: UUID
    guest_id: UUID
    hotel_id: UUID
    amount: int
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class RewardRedeemed:
    member_id: UUID
    guest_id: UUID
    hotel_id: UUID
    points: int
    value: Decimal
    reward_ref: str
    occurred_at: datetime


LoyaltyEvent = Union[MemberEnrolled, TierChanged, PointsExpired, RewardRedeemed]


class LoyaltyEventSink(Protocol):
    """Consumer of loyalty events (notifications, analytics)."""

    async def publish(self, event: LoyaltyEvent) -> None:
        ...


class RecordingEventSink:
    """Sink that keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[LoyaltyEvent] = []

    async def publish(self, event: LoyaltyEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[LoyaltyEvent]:
        return [event for event in self.events if isinstance(event, event_type)]


__all__ = [
    "LoyaltyEvent",
    "LoyaltyEventSink",
    "MemberEnrolled",
    "PointsExpired",
    "RecordingEventSink",
    "RewardRedeemed",
    "TierChanged",
]
