from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    points: Dict[str, int]
    operations: Dict[str, int]
    tier_changes: Dict[str, int]
    ledger: Dict[str, int]
    notifications: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "points": dict(self.points),
            "operations": dict(self.operations),
            "tier_changes": dict(self.tier_changes),
            "ledger": dict(self.ledger),
            "notifications": dict(self.notifications),
        }


class LoyaltyObservabilityStore:
    """Collect loyalty ledger telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._points: Dict[str, int] = defaultdict(int)
        self._operations: Dict[str, int] = defaultdict(int)
        self._tier_changes: Dict[str, int] = defaultdict(int)
        self._ledger: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)

    def record_points(self, movement: str, points: int) -> None:
        with self._lock:
            self._points[movement] += points

    def record_operation(self, operation: str, *, applicable: bool = True) -> None:
        with self._lock:
            self._operations[operation] += 1
            if not applicable:
                self._operations["not_applicable"] += 1

    def record_tier_change(self, *, upgraded: bool) -> None:
        with self._lock:
            self._tier_changes["upgrades" if upgraded else "downgrades"] += 1

    def record_ledger_conflict(self) -> None:
        with self._lock:
            self._ledger["conflicts_retried"] += 1

    def record_notification(self, event_type: str, *, delivered: bool) -> None:
        with self._lock:
            key = "delivered" if delivered else "failed"
            self._notifications[key] += 1
            self._notifications[f"{event_type}:{key}"] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                points=dict(self._points),
                operations=dict(self._operations),
                tier_changes=dict(self._tier_changes),
                ledger=dict(self._ledger),
                notifications=dict(self._notifications),
            )

    def reset(self) -> None:
        with self._lock:
            self._points.clear()
            self._operations.clear()
            self._tier_changes.clear()
            self._ledger.clear()
            self._notifications.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
