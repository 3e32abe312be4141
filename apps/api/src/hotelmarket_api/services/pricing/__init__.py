"""Booking pricing engine."""

from .engine import (  # noqa: F401
    DiscountedPreview,
    PricingBreakdown,
    PricingError,
    PricingInputs,
    compute_breakdown,
    preview_discounted_price,
    round_money,
)
