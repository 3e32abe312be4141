from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hotelmarket_api.models.loyalty import LoyaltyLedgerEntryType
from hotelmarket_api.models.user import LoyaltyChannelEnum
from hotelmarket_api.services.loyalty import (
    ConfigInvalidError,
    InsufficientPointsError,
    InsufficientPointsReason,
    LoyaltyProgramConfig,
    PointsLedger,
    RedemptionRules,
    TierTable,
)
from hotelmarket_api.services.loyalty.program import (
    add_months,
    channel_defaults,
    ensure_valid_program_settings,
    validate_program_settings,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_credit_updates_both_balances() -> None:
    ledger = PointsLedger()

    entry = ledger.credit(
        LoyaltyLedgerEntryType.EARNED,
        120,
        occurred_at=NOW,
        expires_at=add_months(NOW, 12),
        source_booking_ref="booking-1",
    )

    assert entry is not None
    assert ledger.total_points == 120
    assert ledger.available_points == 120
    assert ledger.has_booking_credit("booking-1")
    assert not ledger.has_booking_credit("booking-1", LoyaltyLedgerEntryType.NIGHTS)
    assert ledger.is_consistent()


def test_zero_credit_is_a_no_op() -> None:
    ledger = PointsLedger()

    assert ledger.credit(LoyaltyLedgerEntryType.EARNED, 0, occurred_at=NOW, expires_at=None) is None
    assert ledger.entries == []


def test_credit_rejects_debit_entry_types() -> None:
    with pytest.raises(ValueError):
        PointsLedger().credit(LoyaltyLedgerEntryType.REDEEMED, 10, occurred_at=NOW, expires_at=None)


def test_redeem_keeps_tier_basis() -> None:
    ledger = PointsLedger()
    ledger.credit(LoyaltyLedgerEntryType.EARNED, 800, occurred_at=NOW, expires_at=None)

    ledger.redeem(500, occurred_at=NOW)

    assert ledger.available_points == 300
    assert ledger.total_points == 800
    assert ledger.lifetime_redeemed == 500
    assert ledger.is_consistent()


def test_redeem_more_than_available_fails_without_side_effects() -> None:
    ledger = PointsLedger()
    ledger.credit(LoyaltyLedgerEntryType.EARNED, 100, occurred_at=NOW, expires_at=None)

    with pytest.raises(InsufficientPointsError) as excinfo:
        ledger.redeem(101, occurred_at=NOW)

    assert excinfo.value.reason is InsufficientPointsReason.INSUFFICIENT_BALANCE
    assert ledger.available_points == 100
    assert len(ledger.entries) == 1


def test_negative_adjustment_cannot_go_below_zero() -> None:
    ledger = PointsLedger()
    ledger.credit(LoyaltyLedgerEntryType.EARNED, 50, occurred_at=NOW, expires_at=None)

    with pytest.raises(InsufficientPointsError) as excinfo:
        ledger.adjust(-60, occurred_at=NOW, note="goodwill reversal")
    assert excinfo.value.reason is InsufficientPointsReason.ADJUSTMENT_BELOW_ZERO

    ledger.adjust(-50, occurred_at=NOW, note="goodwill reversal")
    assert ledger.available_points == 0
    assert ledger.total_points == 0
    assert ledger.is_consistent()


def test_zero_adjustment_is_rejected() -> None:
    with pytest.raises(ValueError):
        PointsLedger().adjust(0, occurred_at=NOW, note="nothing")


def test_expiration_debits_what_is_still_available() -> None:
    ledger = PointsLedger()
    ledger.credit(LoyaltyLedgerEntryType.EARNED, 300, occurred_at=NOW, expires_at=NOW + timedelta(days=30))
    ledger.credit(LoyaltyLedgerEntryType.NIGHTS, 200, occurred_at=NOW, expires_at=NOW + timedelta(days=400))
    ledger.redeem(250, occurred_at=NOW)

    result = ledger.expire_due(NOW + timedelta(days=60))

    assert result.gross_points == 300
    assert result.expired_points == 250
    assert ledger.total_points == 200
    assert ledger.available_points == 0
    assert ledger.entries[-1].entry_type is LoyaltyLedgerEntryType.EXPIRED
    assert ledger.entries[-1].points == 250
    assert ledger.is_consistent()


def test_expiration_is_idempotent() -> None:
    ledger = PointsLedger()
    ledger.credit(LoyaltyLedgerEntryType.EARNED, 100, occurred_at=NOW, expires_at=NOW + timedelta(days=1))
    as_of = NOW + timedelta(days=2)

    first = ledger.expire_due(as_of)
    second = ledger.expire_due(as_of)

    assert first.expired_points == 100
    assert second.expired_points == 0
    assert second.entries == []


def test_expiration_accepts_naive_timestamps_as_utc() -> None:
    ledger = PointsLedger()
    ledger.credit(
        LoyaltyLedgerEntryType.EARNED,
        40,
        occurred_at=NOW,
        expires_at=(NOW + timedelta(days=1)).replace(tzinfo=None),
    )

    assert ledger.expire_due(NOW + timedelta(days=2)).expired_points == 40


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2025, 11, 15), 3) == datetime(2026, 2, 15)


def test_redemption_rules_report_first_broken_rule() -> None:
    rules = RedemptionRules(ratio=100, minimum=500, maximum=1000)

    with pytest.raises(InsufficientPointsError) as below:
        rules.check(499, available=10_000)
    assert below.value.reason is InsufficientPointsReason.BELOW_MINIMUM
    assert below.value.limit == 500

    with pytest.raises(InsufficientPointsError) as balance:
        rules.check(1500, available=700)
    assert balance.value.reason is InsufficientPointsReason.INSUFFICIENT_BALANCE

    with pytest.raises(InsufficientPointsError) as above:
        rules.check(1001, available=10_000)
    assert above.value.reason is InsufficientPointsReason.ABOVE_MAXIMUM

    rules.check(500, available=500)
    rules.check(1000, available=1000)
    assert rules.monetary_value(550) == Decimal("5.50")


def test_points_for_spend_applies_multiplier_and_floors() -> None:
    config = LoyaltyProgramConfig(
        tiers=TierTable.default(),
        points_per_currency_unit=Decimal("1"),
        service_multipliers={"laundry": Decimal("1.2")},
    )

    assert config.points_for_spend(Decimal("50"), "laundry") == 60
    assert config.points_for_spend(Decimal("50"), "LAUNDRY") == 60
    assert config.points_for_spend(Decimal("49.99"), "dining") == 49
    assert config.points_for_nights(3) == 150
    assert config.expiry_for(NOW) == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_channel_defaults_are_valid_and_independent() -> None:
    for channel in (None, *LoyaltyChannelEnum):
        ensure_valid_program_settings(channel_defaults(channel))

    corporate = channel_defaults(LoyaltyChannelEnum.CORPORATE)
    corporate["service_multipliers"]["laundry"] = "9"

    assert channel_defaults(LoyaltyChannelEnum.CORPORATE)["service_multipliers"]["laundry"] == "1.5"
    assert corporate["minimum_redemption"] == 1000


def test_program_settings_validation_collects_errors() -> None:
    values = channel_defaults(None)
    values.update(
        {
            "points_per_night": -1,
            "redemption_ratio": 0,
            "minimum_redemption": 800,
            "maximum_redemption": 700,
            "service_multipliers": {"laundry": "-1", "spaceflight": "2"},
        }
    )

    errors = validate_program_settings(values, service_types=["laundry", "dining"])

    assert "pointsPerNight must be an integer of 0 or greater" in errors
    assert "pointsToMoneyRatio must be an integer of 1 or greater" in errors
    assert "maximumRedemption must not be lower than minimumRedemption" in errors
    assert "Multiplier for laundry must be a number of 0 or greater" in errors
    assert "Unknown service type: spaceflight" in errors

    with pytest.raises(ConfigInvalidError):
        ensure_valid_program_settings(values)
