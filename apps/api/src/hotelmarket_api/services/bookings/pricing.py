"""Mapping between booking rows and pricing engine values."""

from __future__ import annotations

from decimal import Decimal

from hotelmarket_api.models.booking import Booking, CurrencyEnum
from hotelmarket_api.services.pricing import PricingBreakdown, PricingInputs


def stored_inputs(booking: Booking) -> PricingInputs:
    """Pricing inputs persisted on a booking; recomputing them reproduces its totals."""

    currency = booking.currency.value if isinstance(booking.currency, CurrencyEnum) else str(booking.currency)
    return PricingInputs(
        base_price=Decimal(booking.base_price),
        quantity=booking.quantity,
        options_total=Decimal(booking.options_total),
        add_ons_total=Decimal(booking.add_ons_total),
        delivery_charge=Decimal(booking.delivery_charge),
        markup_percentage=Decimal(booking.markup_percentage),
        tax_rate=Decimal(booking.tax_rate),
        loyalty_discount_percentage=Decimal(booking.loyalty_discount_percentage),
        currency=currency,
    )


def apply_breakdown(booking: Booking, breakdown: PricingBreakdown) -> None:
    booking.base_price = breakdown.base_price
    booking.quantity = breakdown.quantity
    booking.options_total = breakdown.options_total
    booking.add_ons_total = breakdown.add_ons_total
    booking.delivery_charge = breakdown.delivery_charge
    booking.subtotal = breakdown.subtotal
    booking.markup_percentage = breakdown.markup_percentage
    booking.markup_amount = breakdown.markup_amount
    booking.loyalty_discount_percentage = breakdown.loyalty_discount_percentage
    booking.loyalty_discount_amount = breakdown.loyalty_discount_amount
    booking.tax_rate = breakdown.tax_rate
    booking.tax_amount = breakdown.tax_amount
    booking.total_amount = breakdown.total_amount
    booking.provider_earnings = breakdown.provider_earnings
    booking.hotel_earnings = breakdown.hotel_earnings
    booking.currency = CurrencyEnum(breakdown.currency)


__all__ = ["apply_breakdown", "stored_inputs"]
