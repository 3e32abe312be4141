"""Loyalty error taxonomy."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class ConfigInvalidError(ValueError):
    """Raised when a tier table or program rule set fails validation.

    Every violation is collected so administrators can fix them in one pass.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid loyalty configuration")


class InsufficientPointsReason(str, Enum):
    BELOW_MINIMUM = "below_minimum"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ABOVE_MAXIMUM = "above_maximum"
    ADJUSTMENT_BELOW_ZERO = "adjustment_below_zero"


_REASON_MESSAGES = {
    InsufficientPointsReason.BELOW_MINIMUM: "Minimum redemption is {limit} points",
    InsufficientPointsReason.INSUFFICIENT_BALANCE: "Insufficient points: {available} available, {requested} requested",
    InsufficientPointsReason.ABOVE_MAXIMUM: "Maximum redemption is {limit} points",
    InsufficientPointsReason.ADJUSTMENT_BELOW_ZERO: "Adjustment would leave {available} available points below zero",
}


class InsufficientPointsError(ValueError):
    """Raised when a redemption or debit cannot be honoured."""

    def __init__(
        self,
        reason: InsufficientPointsReason,
        *,
        requested: int,
        available: int,
        limit: int | None = None,
    ) -> None:
        self.reason = reason
        self.requested = requested
        self.available = available
        self.limit = limit
        message = _REASON_MESSAGES[reason].format(requested=requested, available=available, limit=limit)
        super().__init__(message)


class RewardUnavailableError(ValueError):
    """Raised when a catalog reward cannot be redeemed by a member."""

    def __init__(self, reason: str, *, points_needed: int | None = None) -> None:
        self.reason = reason
        self.points_needed = points_needed
        super().__init__(reason)


class LedgerConflictError(RuntimeError):
    """Concurrent write detected on a member ledger; retried by the member service."""


__all__ = [
    "ConfigInvalidError",
    "InsufficientPointsError",
    "InsufficientPointsReason",
    "LedgerConflictError",
    "RewardUnavailableError",
]
