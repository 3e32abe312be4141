"""Create hotels, loyalty ledger and booking tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = sa.dialects.postgresql.UUID(as_uuid=True)
CHANNELS = ("DIRECT", "TRAVEL_AGENCY", "CORPORATE")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True, index=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="guest"),
        sa.Column("loyalty_channel", sa.Enum(*CHANNELS, name="loyalty_channel_enum"), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "hotel_groups",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "hotels",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("hotel_group_id", UUID, sa.ForeignKey("hotel_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("markup_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EGP"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False, unique=True),
        sa.Column("booking_updates", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("loyalty_updates", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("marketing_messages", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_notification_preferences_user_id_users",
            ondelete="CASCADE",
        ),
    )

    op.create_table(
        "loyalty_programs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("hotel_id", UUID, sa.ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column(
            "channel",
            sa.dialects.postgresql.ENUM(*CHANNELS, name="loyalty_channel_enum", create_type=False),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("tier_configuration", sa.JSON(), nullable=False),
        sa.Column("points_per_currency_unit", sa.Numeric(10, 4), nullable=False),
        sa.Column("points_per_night", sa.Integer(), nullable=False),
        sa.Column("service_multipliers", sa.JSON(), nullable=False),
        sa.Column("redemption_ratio", sa.Integer(), nullable=False),
        sa.Column("minimum_redemption", sa.Integer(), nullable=False),
        sa.Column("maximum_redemption", sa.Integer(), nullable=True),
        sa.Column("expiration_months", sa.Integer(), nullable=False),
        sa.Column("total_members", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_issued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points_expired", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue_from_members", sa.Numeric(14, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("hotel_id", "channel", name="uq_loyalty_programs_hotel_channel"),
    )

    op.create_table(
        "loyalty_members",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("guest_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("hotel_id", UUID, sa.ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hotel_group_id", UUID, sa.ForeignKey("hotel_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("scope_id", UUID, nullable=False, index=True),
        sa.Column("program_id", UUID, sa.ForeignKey("loyalty_programs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("current_tier", sa.String(64), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False),
        sa.Column("available_points", sa.Integer(), nullable=False),
        sa.Column("lifetime_spending", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_nights_stayed", sa.Integer(), nullable=False),
        sa.Column("points_to_next_tier", sa.Integer(), nullable=False),
        sa.Column("next_tier", sa.String(64), nullable=True),
        sa.Column("progress_percentage", sa.Numeric(5, 1), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("join_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("guest_id", "scope_id", name="uq_loyalty_members_guest_scope"),
    )

    op.create_table(
        "loyalty_ledger_entries",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "member_id", UUID, sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column(
            "entry_type",
            sa.Enum("EARNED", "REDEEMED", "EXPIRED", "NIGHTS", "ADJUST", name="loyalty_ledger_entry_type"),
            nullable=False,
        ),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_booking_ref", sa.String(64), nullable=True, index=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "loyalty_tier_changes",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "member_id", UUID, sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("from_tier", sa.String(64), nullable=True),
        sa.Column("to_tier", sa.String(64), nullable=False),
        sa.Column("upgraded", sa.Boolean(), nullable=True),
        sa.Column("reason", sa.String(128), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("hotel_id", UUID, sa.ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "category",
            sa.Enum(
                "DISCOUNT", "UPGRADE", "AMENITY", "SERVICE", "VOUCHER", "EXPERIENCE", name="loyalty_reward_category"
            ),
            nullable=False,
        ),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=True),
        sa.Column("required_tier", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("validity_days", sa.Integer(), nullable=False),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("times_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("available_until", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "loyalty_redemptions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column(
            "member_id", UUID, sa.ForeignKey("loyalty_members.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("reward_id", UUID, sa.ForeignKey("loyalty_rewards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reward_ref", sa.String(128), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("booking_number", sa.String(16), nullable=False, unique=True, index=True),
        sa.Column("guest_id", UUID, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("hotel_id", UUID, sa.ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("service_type", sa.String(64), nullable=False),
        sa.Column("service_name", sa.String(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "CONFIRMED",
                "ASSIGNED",
                "IN_PROGRESS",
                "PICKUP_SCHEDULED",
                "PICKED_UP",
                "IN_SERVICE",
                "DELIVERY_SCHEDULED",
                "COMPLETED",
                "CANCELLED",
                "REFUNDED",
                "DISPUTED",
                name="booking_status_enum",
            ),
            nullable=False,
        ),
        sa.Column(
            "payment_status",
            sa.Enum(
                "PENDING",
                "PROCESSING",
                "COMPLETED",
                "FAILED",
                "REFUNDED",
                "PARTIALLY_REFUNDED",
                name="booking_payment_status_enum",
            ),
            nullable=False,
        ),
        sa.Column("currency", sa.Enum("EGP", "USD", "EUR", "GBP", "CAD", "AUD", name="currency_enum"), nullable=False),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("options_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("add_ons_total", sa.Numeric(12, 2), nullable=False),
        sa.Column("delivery_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("markup_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("markup_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("loyalty_discount_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("loyalty_discount_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("provider_earnings", sa.Numeric(12, 2), nullable=False),
        sa.Column("hotel_earnings", sa.Numeric(12, 2), nullable=False),
        sa.Column("nights", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("loyalty_points_awarded", sa.Integer(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "booking_status_events",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("booking_id", UUID, sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column(
            "event_type",
            sa.Enum("STATE_CHANGE", "MODIFICATION", "PAYMENT", "NOTE", name="booking_event_type_enum"),
            nullable=False,
        ),
        sa.Column(
            "actor_type",
            sa.Enum("SYSTEM", "OPERATOR", "ADMIN", "GUEST", "PROVIDER", "PAYMENT", name="booking_actor_type_enum"),
            nullable=True,
        ),
        sa.Column("actor_id", sa.String(255), nullable=True),
        sa.Column("actor_label", sa.String(255), nullable=True),
        sa.Column("from_status", sa.String(64), nullable=True),
        sa.Column("to_status", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("automatic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("booking_status_events")
    op.drop_table("bookings")
    op.drop_table("loyalty_redemptions")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_tier_changes")
    op.drop_table("loyalty_ledger_entries")
    op.drop_table("loyalty_members")
    op.drop_table("loyalty_programs")
    op.drop_table("notification_preferences")
    op.drop_table("hotels")
    op.drop_table("hotel_groups")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_name in (
        "booking_actor_type_enum",
        "booking_event_type_enum",
        "currency_enum",
        "booking_payment_status_enum",
        "booking_status_enum",
        "loyalty_reward_category",
        "loyalty_ledger_entry_type",
        "loyalty_channel_enum",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
