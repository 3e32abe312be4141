"""Booking price computation.

Every monetary step is rounded half-up to cents as soon as it is computed, so a
stored breakdown can be reproduced exactly from its stored inputs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class PricingError(ValueError):
    """Raised for pricing inputs that cannot produce a meaningful quote."""


def round_money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _percentage_of(amount: Decimal, percentage: Decimal) -> Decimal:
    return round_money(amount * percentage / HUNDRED)


@dataclass(frozen=True, slots=True)
class PricingInputs:
    base_price: Decimal
    quantity: int = 1
    options_total: Decimal = Decimal("0")
    add_ons_total: Decimal = Decimal("0")
    delivery_charge: Decimal = Decimal("0")
    markup_percentage: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    loyalty_discount_percentage: Decimal = Decimal("0")
    currency: str = "EGP"


@dataclass(frozen=True, slots=True)
class PricingBreakdown:
    base_price: Decimal
    quantity: int
    options_total: Decimal
    add_ons_total: Decimal
    delivery_charge: Decimal
    subtotal: Decimal
    markup_percentage: Decimal
    markup_amount: Decimal
    loyalty_discount_percentage: Decimal
    loyalty_discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    provider_earnings: Decimal
    hotel_earnings: Decimal
    currency: str

    def inputs(self) -> PricingInputs:
        return PricingInputs(
            base_price=self.base_price,
            quantity=self.quantity,
            options_total=self.options_total,
            add_ons_total=self.add_ons_total,
            delivery_charge=self.delivery_charge,
            markup_percentage=self.markup_percentage,
            tax_rate=self.tax_rate,
            loyalty_discount_percentage=self.loyalty_discount_percentage,
            currency=self.currency,
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DiscountedPreview:
    base_price: Decimal
    markup_amount: Decimal
    price_with_markup: Decimal
    loyalty_discount_percentage: Decimal
    loyalty_discount_amount: Decimal
    final_price: Decimal


def _validate(inputs: PricingInputs) -> None:
    problems: list[str] = []
    for name in ("base_price", "options_total", "add_ons_total", "delivery_charge"):
        if Decimal(getattr(inputs, name)) < 0:
            problems.append(f"{name} must not be negative")
    if inputs.quantity < 1:
        problems.append("quantity must be at least 1")
    if Decimal(inputs.markup_percentage) < 0:
        problems.append("markup_percentage must not be negative")
    if Decimal(inputs.tax_rate) < 0:
        problems.append("tax_rate must not be negative")
    if not Decimal("0") <= Decimal(inputs.loyalty_discount_percentage) <= HUNDRED:
        problems.append("loyalty_discount_percentage must be between 0 and 100")
    if problems:
        raise PricingError("; ".join(problems))


def compute_breakdown(inputs: PricingInputs) -> PricingBreakdown:
    """Authoritative breakdown: subtotal, markup, loyalty discount, tax, total.

    The discount applies to the marked-up price and is reported on its own line.
    Earnings are split before the discount: the provider receives the subtotal
    and the hotel receives the markup.
    """

    _validate(inputs)
    base_price = round_money(inputs.base_price)
    options_total = round_money(inputs.options_total)
    add_ons_total = round_money(inputs.add_ons_total)
    delivery_charge = round_money(inputs.delivery_charge)
    markup_percentage = Decimal(inputs.markup_percentage)
    tax_rate = Decimal(inputs.tax_rate)
    discount_percentage = Decimal(inputs.loyalty_discount_percentage)

    subtotal = round_money(base_price * inputs.quantity + options_total + add_ons_total + delivery_charge)
    markup_amount = _percentage_of(subtotal, markup_percentage)
    discount_amount = _percentage_of(subtotal + markup_amount, discount_percentage)
    taxable = subtotal + markup_amount - discount_amount
    tax_amount = _percentage_of(taxable, tax_rate)
    total_amount = round_money(taxable + tax_amount)

    return PricingBreakdown(
        base_price=base_price,
        quantity=inputs.quantity,
        options_total=options_total,
        add_ons_total=add_ons_total,
        delivery_charge=delivery_charge,
        subtotal=subtotal,
        markup_percentage=markup_percentage,
        markup_amount=markup_amount,
        loyalty_discount_percentage=discount_percentage,
        loyalty_discount_amount=discount_amount,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total_amount=total_amount,
        provider_earnings=subtotal,
        hotel_earnings=markup_amount,
        currency=inputs.currency,
    )


def preview_discounted_price(
    base_price: Decimal,
    markup_percentage: Decimal,
    loyalty_discount_percentage: Decimal = Decimal("0"),
) -> DiscountedPreview:
    """Guest-facing per-unit price with markup and tier discount, before tax."""

    breakdown = compute_breakdown(
        PricingInputs(
            base_price=base_price,
            markup_percentage=markup_percentage,
            loyalty_discount_percentage=loyalty_discount_percentage,
        )
    )
    return DiscountedPreview(
        base_price=breakdown.base_price,
        markup_amount=breakdown.markup_amount,
        price_with_markup=breakdown.subtotal + breakdown.markup_amount,
        loyalty_discount_percentage=breakdown.loyalty_discount_percentage,
        loyalty_discount_amount=breakdown.loyalty_discount_amount,
        final_price=breakdown.total_amount,
    )


__all__ = [
    "DiscountedPreview",
    "PricingBreakdown",
    "PricingError",
    "PricingInputs",
    "compute_breakdown",
    "preview_discounted_price",
    "round_money",
]
