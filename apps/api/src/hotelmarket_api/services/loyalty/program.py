"""Loyalty program configuration aggregate and per-channel defaults."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Sequence

from hotelmarket_api.models.loyalty import LoyaltyProgram
from hotelmarket_api.models.user import LoyaltyChannelEnum

from .errors import ConfigInvalidError, InsufficientPointsError, InsufficientPointsReason
from .tiers import TierTable, validate_tier_table


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month length."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass(frozen=True, slots=True)
class RedemptionRules:
    ratio: int = 100
    minimum: int = 500
    maximum: int | None = None

    def check(self, points: int, available: int) -> None:
        """Raise ``InsufficientPointsError`` naming the first rule the request breaks."""

        if points < self.minimum:
            raise InsufficientPointsError(
                InsufficientPointsReason.BELOW_MINIMUM,
                requested=points,
                available=available,
                limit=self.minimum,
            )
        if points > available:
            raise InsufficientPointsError(
                InsufficientPointsReason.INSUFFICIENT_BALANCE,
                requested=points,
                available=available,
            )
        if self.maximum is not None and points > self.maximum:
            raise InsufficientPointsError(
                InsufficientPointsReason.ABOVE_MAXIMUM,
                requested=points,
                available=available,
                limit=self.maximum,
            )

    def monetary_value(self, points: int) -> Decimal:
        return (Decimal(points) / Decimal(self.ratio)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class LoyaltyProgramConfig:
    """Rules a member ledger is evaluated against."""

    tiers: TierTable
    points_per_currency_unit: Decimal = Decimal("1")
    points_per_night: int = 50
    service_multipliers: Mapping[str, Decimal] = field(default_factory=dict)
    redemption: RedemptionRules = field(default_factory=RedemptionRules)
    expiration_months: int = 12
    is_active: bool = True

    def multiplier(self, service_type: str | None) -> Decimal:
        if not service_type:
            return Decimal("1")
        return self.service_multipliers.get(service_type.lower(), Decimal("1"))

    def points_for_spend(self, amount_spent: Decimal, service_type: str | None) -> int:
        raw = Decimal(amount_spent) * self.points_per_currency_unit * self.multiplier(service_type)
        return max(0, int(raw.to_integral_value(rounding=ROUND_DOWN)))

    def points_for_nights(self, nights: int) -> int:
        return max(0, nights * self.points_per_night)

    def expiry_for(self, occurred_at: datetime) -> datetime:
        return add_months(occurred_at, self.expiration_months)

    @classmethod
    def from_program(cls, program: LoyaltyProgram) -> "LoyaltyProgramConfig":
        return cls(
            tiers=TierTable.parse(program.tier_configuration or []),
            points_per_currency_unit=Decimal(str(program.points_per_currency_unit)),
            points_per_night=int(program.points_per_night),
            service_multipliers={
                str(key).lower(): Decimal(str(value)) for key, value in (program.service_multipliers or {}).items()
            },
            redemption=RedemptionRules(
                ratio=int(program.redemption_ratio),
                minimum=int(program.minimum_redemption),
                maximum=program.maximum_redemption,
            ),
            expiration_months=int(program.expiration_months),
            is_active=bool(program.is_active),
        )


_CHANNEL_DEFAULTS: dict[LoyaltyChannelEnum | None, dict[str, Any]] = {
    None: {
        "points_per_currency_unit": "1",
        "points_per_night": 50,
        "service_multipliers": {},
        "redemption_ratio": 100,
        "minimum_redemption": 500,
        "maximum_redemption": None,
    },
    LoyaltyChannelEnum.TRAVEL_AGENCY: {
        "points_per_currency_unit": "1",
        "points_per_night": 50,
        "service_multipliers": {
            "laundry": "1.2",
            "transportation": "1.5",
            "tourism": "2.0",
            "travel": "2.0",
            "housekeeping": "1.0",
        },
        "redemption_ratio": 100,
        "minimum_redemption": 500,
        "maximum_redemption": 10000,
    },
    LoyaltyChannelEnum.CORPORATE: {
        "points_per_currency_unit": "1.5",
        "points_per_night": 75,
        "service_multipliers": {
            "laundry": "1.5",
            "transportation": "2.0",
            "tourism": "1.2",
            "travel": "1.2",
            "housekeeping": "1.3",
        },
        "redemption_ratio": 100,
        "minimum_redemption": 1000,
        "maximum_redemption": 20000,
    },
    LoyaltyChannelEnum.DIRECT: {
        "points_per_currency_unit": "2",
        "points_per_night": 100,
        "service_multipliers": {
            "laundry": "1.5",
            "transportation": "1.5",
            "tourism": "1.5",
            "travel": "1.5",
            "housekeeping": "1.5",
        },
        "redemption_ratio": 100,
        "minimum_redemption": 500,
        "maximum_redemption": None,
    },
}


def channel_defaults(channel: LoyaltyChannelEnum | None) -> dict[str, Any]:
    """Column values a brand-new program for ``channel`` starts from."""

    defaults = dict(_CHANNEL_DEFAULTS[channel])
    defaults["service_multipliers"] = dict(defaults["service_multipliers"])
    defaults["expiration_months"] = 12
    defaults["tier_configuration"] = TierTable.default().as_payload()
    defaults["is_active"] = True
    return defaults


def validate_program_settings(
    values: Mapping[str, Any],
    *,
    service_types: Sequence[str] | None = None,
) -> list[str]:
    """Validate merged program column values, tier table included.

    When ``service_types`` is given, multipliers may only name those types.
    """

    errors = list(validate_tier_table(values.get("tier_configuration") or []))

    try:
        ppc = Decimal(str(values.get("points_per_currency_unit")))
    except ArithmeticError:
        ppc = None
    if ppc is None or not ppc.is_finite() or ppc < 0:
        errors.append("pointsPerCurrencyUnit must be a number of 0 or greater")

    ppn = values.get("points_per_night")
    if not isinstance(ppn, int) or ppn < 0:
        errors.append("pointsPerNight must be an integer of 0 or greater")

    for service_type, multiplier in (values.get("service_multipliers") or {}).items():
        if service_types is not None and str(service_type).lower() not in service_types:
            errors.append(f"Unknown service type: {service_type}")
            continue
        try:
            parsed = Decimal(str(multiplier))
        except ArithmeticError:
            parsed = None
        if parsed is None or not parsed.is_finite() or parsed < 0:
            errors.append(f"Multiplier for {service_type} must be a number of 0 or greater")

    ratio = values.get("redemption_ratio")
    if not isinstance(ratio, int) or ratio < 1:
        errors.append("pointsToMoneyRatio must be an integer of 1 or greater")

    minimum = values.get("minimum_redemption")
    maximum = values.get("maximum_redemption")
    if not isinstance(minimum, int) or minimum < 0:
        errors.append("minimumRedemption must be an integer of 0 or greater")
    if maximum is not None:
        if not isinstance(maximum, int) or maximum < 1:
            errors.append("maximumRedemption must be a positive integer or null")
        elif isinstance(minimum, int) and maximum < minimum:
            errors.append("maximumRedemption must not be lower than minimumRedemption")

    months = values.get("expiration_months")
    if not isinstance(months, int) or months < 1:
        errors.append("expirationMonths must be an integer of 1 or greater")

    return errors


def ensure_valid_program_settings(values: Mapping[str, Any], *, service_types: Sequence[str] | None = None) -> None:
    errors = validate_program_settings(values, service_types=service_types)
    if errors:
        raise ConfigInvalidError(errors)


__all__ = [
    "LoyaltyProgramConfig",
    "RedemptionRules",
    "add_months",
    "channel_defaults",
    "ensure_valid_program_settings",
    "validate_program_settings",
]
