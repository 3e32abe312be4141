"""Tier tables: validation, resolution and progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterator, Mapping, Sequence

from .errors import ConfigInvalidError


@dataclass(frozen=True, slots=True)
class Tier:
    """Named loyalty level bound to an inclusive point range."""

    name: str
    min_points: int
    max_points: int
    discount_percentage: Decimal
    benefits: tuple[str, ...] = ()
    color: str | None = None

    def contains(self, points: int) -> bool:
        return self.min_points <= points <= self.max_points

    def as_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "min_points": self.min_points,
            "max_points": self.max_points,
            "discount_percentage": str(self.discount_percentage),
            "benefits": list(self.benefits),
            "color": self.color,
        }


@dataclass(frozen=True, slots=True)
class TierProgress:
    points_to_next_tier: int
    next_tier: str | None
    progress_percentage: Decimal


DEFAULT_TIERS: tuple[Tier, ...] = (
    Tier("BRONZE", 0, 999, Decimal("5"), ("Basic member benefits", "Birthday special offer"), "#CD7F32"),
    Tier("SILVER", 1000, 2999, Decimal("10"), ("Priority customer service", "Extended checkout"), "#C0C0C0"),
    Tier("GOLD", 3000, 5999, Decimal("15"), ("Free room upgrade when available", "Late checkout"), "#FFD700"),
    Tier("PLATINUM", 6000, 999999, Decimal("20"), ("Guaranteed room upgrade", "VIP concierge service"), "#E5E4E2"),
)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def validate_tier_table(tiers: Sequence[Mapping[str, Any]]) -> list[str]:
    """Return every problem with a raw tier table; an empty list means valid.

    Checks run in order: non-empty, unique names, per-tier field sanity, then
    overlap between neighbours sorted by ``min_points``.
    """

    if not tiers:
        return ["At least one tier must be configured"]

    errors: list[str] = []
    seen: set[str] = set()
    for payload in tiers:
        name = payload.get("name")
        if isinstance(name, str) and name.strip():
            key = name.strip().upper()
            if key in seen:
                errors.append(f"Duplicate tier name: {name}")
            seen.add(key)

    sane: list[tuple[str, int, int]] = []
    for index, payload in enumerate(tiers, start=1):
        name = payload.get("name")
        label = name if isinstance(name, str) and name.strip() else f"#{index}"
        problems_before = len(errors)

        if not (isinstance(name, str) and name.strip()):
            errors.append(f"Tier {label}: name is required")

        min_points = payload.get("min_points")
        max_points = payload.get("max_points")
        if not _is_integer(min_points):
            errors.append(f"Tier {label}: minPoints is required and must be an integer")
        elif min_points < 0:
            errors.append(f"Tier {label}: minPoints must be 0 or greater")
        if not _is_integer(max_points):
            errors.append(f"Tier {label}: maxPoints is required and must be an integer")
        elif max_points < 0:
            errors.append(f"Tier {label}: maxPoints must be 0 or greater")
        if _is_integer(min_points) and _is_integer(max_points) and min_points >= max_points:
            errors.append(f"Tier {label}: minPoints must be less than maxPoints")

        discount = _as_decimal(payload.get("discount_percentage"))
        if discount is None:
            errors.append(f"Tier {label}: discountPercentage is required")
        elif discount < 0 or discount > 100:
            errors.append(f"Tier {label}: discountPercentage must be between 0 and 100")

        if len(errors) == problems_before:
            sane.append((label, min_points, max_points))

    ordered = sorted(sane, key=lambda item: item[1])
    for previous, current in zip(ordered, ordered[1:]):
        # Ranges are inclusive on both ends, so a shared boundary is an overlap.
        if current[1] <= previous[2]:
            errors.append(
                f"Overlap between {previous[0]} (max: {previous[2]}) and {current[0]} (min: {current[1]})"
            )

    return errors


@dataclass(frozen=True, slots=True)
class TierTable:
    """Validated tiers kept in ascending ``min_points`` order."""

    tiers: tuple[Tier, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, payload: Sequence[Mapping[str, Any]]) -> "TierTable":
        errors = validate_tier_table(payload)
        if errors:
            raise ConfigInvalidError(errors)
        tiers = [
            Tier(
                name=str(item["name"]).strip().upper(),
                min_points=int(item["min_points"]),
                max_points=int(item["max_points"]),
                discount_percentage=Decimal(str(item["discount_percentage"])),
                benefits=tuple(str(benefit) for benefit in item.get("benefits") or ()),
                color=item.get("color"),
            )
            for item in payload
        ]
        return cls(tuple(sorted(tiers, key=lambda tier: tier.min_points)))

    @classmethod
    def default(cls) -> "TierTable":
        return cls(DEFAULT_TIERS)

    def __iter__(self) -> Iterator[Tier]:
        return iter(self.tiers)

    def __len__(self) -> int:
        return len(self.tiers)

    @property
    def lowest(self) -> Tier:
        return self.tiers[0]

    @property
    def highest(self) -> Tier:
        return self.tiers[-1]

    def descending(self) -> tuple[Tier, ...]:
        return tuple(reversed(self.tiers))

    def get(self, name: str | None) -> Tier | None:
        if not name:
            return None
        key = name.upper()
        for tier in self.tiers:
            if tier.name == key:
                return tier
        return None

    def rank(self, name: str | None) -> int | None:
        tier = self.get(name)
        return None if tier is None else self.tiers.index(tier)

    def as_payload(self) -> list[dict[str, Any]]:
        return [tier.as_payload() for tier in self.tiers]


def resolve_tier(points: int, table: TierTable) -> Tier:
    """Resolve the tier for a cumulative point total. Never returns ``None``."""

    ordered = table.descending()
    for tier in ordered:
        if tier.contains(points):
            return tier

    # Between two ranges or above the top range: keep the highest tier reached
    # so that earning can never resolve to a lower tier.
    for tier in ordered:
        if tier.min_points <= points:
            return tier

    return fallback_tier(table)


def fallback_tier(table: TierTable) -> Tier:
    """Tier used when no range can hold the points at all (below every minimum)."""

    return table.lowest


def classify_tier_change(previous: str | None, current: str, table: TierTable) -> bool | None:
    """Return ``True`` for an upgrade, ``False`` for a downgrade, ``None`` when unchanged.

    A previous tier missing from the table (renamed by an admin) counts as an
    upgrade unless the member landed on the lowest tier.
    """

    if previous is not None and previous.upper() == current.upper():
        return None
    previous_rank = table.rank(previous)
    current_rank = table.rank(current)
    if current_rank is None:
        return None
    if previous_rank is None:
        return current_rank > 0
    return current_rank > previous_rank


def tier_progress(points: int, table: TierTable, current_tier: str | None) -> TierProgress:
    """Linear progress from the current tier's floor towards the next tier's floor."""

    rank = table.rank(current_tier)
    if rank is None:
        return TierProgress(points_to_next_tier=0, next_tier=None, progress_percentage=Decimal("0"))
    if rank == len(table) - 1:
        return TierProgress(points_to_next_tier=0, next_tier=None, progress_percentage=Decimal("100"))

    current = table.tiers[rank]
    upcoming = table.tiers[rank + 1]
    span = upcoming.min_points - current.min_points
    raw = Decimal(points - current.min_points) / Decimal(span) * 100 if span > 0 else Decimal("100")
    clamped = min(max(raw, Decimal("0")), Decimal("100"))
    return TierProgress(
        points_to_next_tier=max(0, upcoming.min_points - points),
        next_tier=upcoming.name,
        progress_percentage=clamped.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
    )


__all__ = [
    "DEFAULT_TIERS",
    "Tier",
    "TierProgress",
    "TierTable",
    "classify_tier_change",
    "fallback_tier",
    "resolve_tier",
    "tier_progress",
    "validate_tier_table",
]
