"""Loyalty program, membership and ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from hotelmarket_api.db.base import Base
from hotelmarket_api.models.user import LoyaltyChannelEnum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoyaltyLedgerEntryType(str, Enum):
    """Point-affecting ledger entry kinds."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    NIGHTS = "nights"
    ADJUST = "adjust"


class LoyaltyRewardCategory(str, Enum):
    DISCOUNT = "discount"
    UPGRADE = "upgrade"
    AMENITY = "amenity"
    SERVICE = "service"
    VOUCHER = "voucher"
    EXPERIENCE = "experience"


class LoyaltyProgram(Base):
    """Per hotel (and optionally per channel) loyalty rule set and tier table."""

    __tablename__ = "loyalty_programs"
    __table_args__ = (
        UniqueConstraint("hotel_id", "channel", name="uq_loyalty_programs_hotel_channel"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    hotel_id = Column(UUID(as_uuid=True), ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(SqlEnum(LoyaltyChannelEnum, name="loyalty_channel_enum"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    tier_configuration = Column(JSON, nullable=False, default=list)
    points_per_currency_unit = Column(Numeric(10, 4), nullable=False, default=1)
    points_per_night = Column(Integer, nullable=False, default=50)
    service_multipliers = Column(JSON, nullable=False, default=dict)
    redemption_ratio = Column(Integer, nullable=False, default=100)
    minimum_redemption = Column(Integer, nullable=False, default=500)
    maximum_redemption = Column(Integer, nullable=True)
    expiration_months = Column(Integer, nullable=False, default=12)
    total_members = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_issued = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_points_expired = Column(Integer, nullable=False, default=0, server_default="0")
    total_revenue_from_members = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    hotel = relationship("Hotel")


class LoyaltyMember(Base):
    """Ledger holder for one guest within a hotel, or within a hotel group pool."""

    __tablename__ = "loyalty_members"
    __table_args__ = (
        UniqueConstraint("guest_id", "scope_id", name="uq_loyalty_members_guest_scope"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    guest_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    hotel_id = Column(UUID(as_uuid=True), ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False)
    hotel_group_id = Column(UUID(as_uuid=True), ForeignKey("hotel_groups.id", ondelete="SET NULL"), nullable=True)
    scope_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    program_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_programs.id", ondelete="SET NULL"), nullable=True)
    current_tier = Column(String(64), nullable=False)
    total_points = Column(Integer, nullable=False, default=0)
    available_points = Column(Integer, nullable=False, default=0)
    lifetime_spending = Column(Numeric(14, 2), nullable=False, default=0)
    total_nights_stayed = Column(Integer, nullable=False, default=0)
    points_to_next_tier = Column(Integer, nullable=False, default=0)
    next_tier = Column(String(64), nullable=True)
    progress_percentage = Column(Numeric(5, 1), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    join_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    guest = relationship("User")
    program = relationship("LoyaltyProgram")
    ledger_entries = relationship(
        "LoyaltyLedgerEntry",
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="LoyaltyLedgerEntry.occurred_at",
    )
    tier_changes = relationship(
        "LoyaltyTierChange",
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="LoyaltyTierChange.changed_at",
    )
    redemptions = relationship(
        "LoyaltyRedemption", back_populates="member", cascade="all, delete-orphan"
    )


class LoyaltyLedgerEntry(Base):
    """Immutable point movement; expiry only flips ``is_expired``."""

    __tablename__ = "loyalty_ledger_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True)
    entry_type = Column(SqlEnum(LoyaltyLedgerEntryType, name="loyalty_ledger_entry_type"), nullable=False)
    points = Column(Integer, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    source_booking_ref = Column(String(64), nullable=True, index=True)
    note = Column(Text, nullable=True)
    is_expired = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    member = relationship("LoyaltyMember", back_populates="ledger_entries")


class LoyaltyTierChange(Base):
    """Append-only tier history."""

    __tablename__ = "loyalty_tier_changes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True)
    from_tier = Column(String(64), nullable=True)
    to_tier = Column(String(64), nullable=False)
    upgraded = Column(Boolean, nullable=True)
    reason = Column(String(128), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    member = relationship("LoyaltyMember", back_populates="tier_changes")


class LoyaltyReward(Base):
    """Catalog reward a member can exchange points for."""

    __tablename__ = "loyalty_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    hotel_id = Column(UUID(as_uuid=True), ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(SqlEnum(LoyaltyRewardCategory, name="loyalty_reward_category"), nullable=False)
    points_cost = Column(Integer, nullable=False)
    value = Column(Numeric(12, 2), nullable=True)
    required_tier = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    validity_days = Column(Integer, nullable=False, default=30)
    usage_limit = Column(Integer, nullable=True)
    times_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    available_from = Column(DateTime(timezone=True), nullable=True)
    available_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class LoyaltyRedemption(Base):
    """Completed exchange of points for monetary value or a catalog reward."""

    __tablename__ = "loyalty_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id", ondelete="SET NULL"), nullable=True)
    reward_ref = Column(String(128), nullable=False)
    points = Column(Integer, nullable=False)
    value = Column(Numeric(12, 2), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    member = relationship("LoyaltyMember", back_populates="redemptions")
    reward = relationship("LoyaltyReward")
