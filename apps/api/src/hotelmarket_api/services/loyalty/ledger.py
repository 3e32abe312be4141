"""In-memory points ledger aggregate for a single member."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4

from hotelmarket_api.models.loyalty import LoyaltyLedgerEntryType

from .errors import InsufficientPointsError, InsufficientPointsReason


EXPIRING_ENTRY_TYPES = frozenset({LoyaltyLedgerEntryType.EARNED, LoyaltyLedgerEntryType.NIGHTS})
LIFETIME_CREDIT_TYPES = frozenset(
    {LoyaltyLedgerEntryType.EARNED, LoyaltyLedgerEntryType.NIGHTS, LoyaltyLedgerEntryType.ADJUST}
)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on read)."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class LedgerEntry:
    """One point movement. Only ``is_expired`` may change after creation."""

    entry_type: LoyaltyLedgerEntryType
    points: int
    occurred_at: datetime
    expires_at: datetime | None = None
    source_booking_ref: str | None = None
    note: str | None = None
    is_expired: bool = False
    id: UUID = field(default_factory=uuid4)


@dataclass(slots=True)
class ExpirationResult:
    expired_points: int
    gross_points: int
    entries: list[LedgerEntry]


@dataclass
class PointsLedger:
    """Ledger entries plus the balances derived from them.

    ``total_points`` is the tier basis: it grows with every credit, shrinks only on
    negative adjustments and expiry. ``available_points`` is the redeemable balance.
    REDEEMED and EXPIRED entries store positive magnitudes; ADJUST entries are signed.
    """

    entries: list[LedgerEntry] = field(default_factory=list)
    total_points: int = 0
    available_points: int = 0

    def _sum(self, *entry_types: LoyaltyLedgerEntryType) -> int:
        return sum(entry.points for entry in self.entries if entry.entry_type in entry_types)

    @property
    def lifetime_earned(self) -> int:
        return self._sum(*LIFETIME_CREDIT_TYPES)

    @property
    def lifetime_redeemed(self) -> int:
        return self._sum(LoyaltyLedgerEntryType.REDEEMED)

    @property
    def lifetime_expired(self) -> int:
        return self._sum(LoyaltyLedgerEntryType.EXPIRED)

    def is_consistent(self) -> bool:
        return (
            self.available_points == self.lifetime_earned - self.lifetime_redeemed - self.lifetime_expired
            and 0 <= self.available_points <= self.total_points
        )

    def has_booking_credit(
        self,
        booking_ref: str,
        entry_type: LoyaltyLedgerEntryType = LoyaltyLedgerEntryType.EARNED,
    ) -> bool:
        return any(
            entry.source_booking_ref == booking_ref and entry.entry_type == entry_type
            for entry in self.entries
        )

    def credit(
        self,
        entry_type: LoyaltyLedgerEntryType,
        points: int,
        *,
        occurred_at: datetime,
        expires_at: datetime | None,
        source_booking_ref: str | None = None,
        note: str | None = None,
    ) -> LedgerEntry | None:
        """Record earned points. Non-positive amounts leave the ledger untouched."""

        if entry_type not in EXPIRING_ENTRY_TYPES:
            raise ValueError(f"{entry_type.value} is not a crediting entry type")
        if points <= 0:
            return None
        entry = LedgerEntry(
            entry_type=entry_type,
            points=points,
            occurred_at=occurred_at,
            expires_at=expires_at,
            source_booking_ref=source_booking_ref,
            note=note,
        )
        self.entries.append(entry)
        self.total_points += points
        self.available_points += points
        return entry

    def redeem(self, points: int, *, occurred_at: datetime, note: str | None = None) -> LedgerEntry:
        if points <= 0:
            raise ValueError("Redemption points must be positive")
        if points > self.available_points:
            raise InsufficientPointsError(
                InsufficientPointsReason.INSUFFICIENT_BALANCE,
                requested=points,
                available=self.available_points,
            )
        entry = LedgerEntry(
            entry_type=LoyaltyLedgerEntryType.REDEEMED,
            points=points,
            occurred_at=occurred_at,
            note=note,
        )
        self.entries.append(entry)
        self.available_points -= points
        return entry

    def adjust(self, delta: int, *, occurred_at: datetime, note: str) -> LedgerEntry:
        if delta == 0:
            raise ValueError("Adjustment delta must be non-zero")
        if self.available_points + delta < 0:
            raise InsufficientPointsError(
                InsufficientPointsReason.ADJUSTMENT_BELOW_ZERO,
                requested=-delta,
                available=self.available_points,
            )
        entry = LedgerEntry(
            entry_type=LoyaltyLedgerEntryType.ADJUST,
            points=delta,
            occurred_at=occurred_at,
            note=note,
        )
        self.entries.append(entry)
        self.total_points += delta
        self.available_points += delta
        return entry

    def expire_due(self, as_of: datetime) -> ExpirationResult:
        """Flag credits whose ``expires_at`` is before ``as_of`` and debit them.

        The tier basis drops by the gross expired amount. The redeemable balance
        drops by the same amount clamped at zero, and the EXPIRED entry records
        what was actually removed from it.
        """

        due = [
            entry
            for entry in self.entries
            if entry.entry_type in EXPIRING_ENTRY_TYPES
            and not entry.is_expired
            and entry.expires_at is not None
            and ensure_utc(entry.expires_at) < as_of
        ]
        if not due:
            return ExpirationResult(expired_points=0, gross_points=0, entries=[])

        gross = 0
        for entry in due:
            entry.is_expired = True
            gross += entry.points

        removed = min(gross, self.available_points)
        self.total_points = max(0, self.total_points - gross)
        self.available_points -= removed
        if removed > 0:
            self.entries.append(
                LedgerEntry(
                    entry_type=LoyaltyLedgerEntryType.EXPIRED,
                    points=removed,
                    occurred_at=as_of,
                    note=f"Expired {gross} points from {len(due)} ledger entries",
                )
            )
        return ExpirationResult(expired_points=removed, gross_points=gross, entries=due)


__all__ = [
    "ExpirationResult",
    "LedgerEntry",
    "PointsLedger",
    "ensure_utc",
]
