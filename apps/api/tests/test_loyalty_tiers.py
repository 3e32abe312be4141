from decimal import Decimal

import pytest

from hotelmarket_api.services.loyalty import ConfigInvalidError
from hotelmarket_api.services.loyalty.tiers import (
    TierTable,
    classify_tier_change,
    resolve_tier,
    tier_progress,
    validate_tier_table,
)


def _tier(name, min_points, max_points, discount="5"):
    return {
        "name": name,
        "min_points": min_points,
        "max_points": max_points,
        "discount_percentage": discount,
    }


def test_default_table_resolves_boundaries() -> None:
    table = TierTable.default()

    assert resolve_tier(0, table).name == "BRONZE"
    assert resolve_tier(999, table).name == "BRONZE"
    assert resolve_tier(1000, table).name == "SILVER"
    assert resolve_tier(2999, table).name == "SILVER"
    assert resolve_tier(3000, table).name == "GOLD"
    assert resolve_tier(6000, table).name == "PLATINUM"


def test_points_above_every_range_keep_the_top_tier() -> None:
    table = TierTable.default()

    assert resolve_tier(5_000_000, table).name == "PLATINUM"


def test_points_in_a_gap_keep_the_highest_tier_reached() -> None:
    table = TierTable.parse([_tier("basic", 0, 99), _tier("plus", 200, 499), _tier("max", 500, 1000)])

    assert resolve_tier(150, table).name == "BASIC"
    assert resolve_tier(499, table).name == "PLUS"


def test_points_below_every_minimum_fall_back_to_lowest_tier() -> None:
    table = TierTable.parse([_tier("member", 100, 999), _tier("elite", 1000, 5000)])

    assert resolve_tier(10, table).name == "MEMBER"


def test_validation_collects_every_violation() -> None:
    errors = validate_tier_table(
        [
            _tier("gold", 500, 100),
            _tier("silver", -5, 200, discount="120"),
            {"name": "", "min_points": 1, "max_points": 2, "discount_percentage": "1"},
            _tier("Gold", 300, 400),
        ]
    )

    assert "Duplicate tier name: Gold" in errors
    assert "Tier gold: minPoints must be less than maxPoints" in errors
    assert "Tier silver: minPoints must be 0 or greater" in errors
    assert "Tier silver: discountPercentage must be between 0 and 100" in errors
    assert "Tier #3: name is required" in errors
    assert len(errors) == 5


def test_validation_rejects_empty_table() -> None:
    assert validate_tier_table([]) == ["At least one tier must be configured"]


def test_shared_boundary_counts_as_overlap() -> None:
    errors = validate_tier_table([_tier("bronze", 0, 1000), _tier("silver", 1000, 2000)])

    assert errors == ["Overlap between bronze (max: 1000) and silver (min: 1000)"]


def test_overlap_is_detected_regardless_of_input_order() -> None:
    errors = validate_tier_table([_tier("silver", 500, 2000), _tier("bronze", 0, 600)])

    assert errors == ["Overlap between bronze (max: 600) and silver (min: 500)"]


def test_parse_raises_with_all_errors_and_normalises_names() -> None:
    with pytest.raises(ConfigInvalidError) as excinfo:
        TierTable.parse([_tier("a", 10, 5), _tier("b", 3, 2)])
    assert len(excinfo.value.errors) == 2

    table = TierTable.parse([_tier("silver", 1000, 1999, "10"), _tier("bronze", 0, 999)])
    assert [tier.name for tier in table] == ["BRONZE", "SILVER"]
    assert table.get("silver").discount_percentage == Decimal("10")


def test_classify_tier_change() -> None:
    table = TierTable.default()

    assert classify_tier_change("BRONZE", "SILVER", table) is True
    assert classify_tier_change("GOLD", "SILVER", table) is False
    assert classify_tier_change("GOLD", "GOLD", table) is None
    assert classify_tier_change("LEGACY", "GOLD", table) is True


def test_tier_progress_between_tiers() -> None:
    table = TierTable.default()

    progress = tier_progress(500, table, "BRONZE")

    assert progress.next_tier == "SILVER"
    assert progress.points_to_next_tier == 500
    assert progress.progress_percentage == Decimal("50.0")


def test_tier_progress_rounds_to_one_decimal() -> None:
    table = TierTable.default()

    progress = tier_progress(1333, table, "SILVER")

    assert progress.progress_percentage == Decimal("16.7")
    assert progress.points_to_next_tier == 1667


def test_tier_progress_at_top_tier_is_complete() -> None:
    progress = tier_progress(7000, TierTable.default(), "PLATINUM")

    assert progress.next_tier is None
    assert progress.points_to_next_tier == 0
    assert progress.progress_percentage == Decimal("100")
