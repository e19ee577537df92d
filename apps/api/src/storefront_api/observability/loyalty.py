from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    operations: Dict[str, Dict[str, int]]
    tier_changes: Dict[str, int]
    persistence: Dict[str, int]
    notifications: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "operations": {key: dict(value) for key, value in self.operations.items()},
            "tier_changes": dict(self.tier_changes),
            "persistence": dict(self.persistence),
            "notifications": dict(self.notifications),
        }


class LoyaltyObservabilityStore:
    """Collect loyalty engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._operations: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._tier_changes: Dict[str, int] = defaultdict(int)
        self._persistence: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)

    def record_operation(self, operation: str, outcome: str) -> None:
        with self._lock:
            self._operations[operation][outcome] += 1

    def record_tier_change(self, from_tier: str, to_tier: str, *, upgrade: bool) -> None:
        with self._lock:
            self._tier_changes["upgrades" if upgrade else "downgrades"] += 1
            self._tier_changes[f"{from_tier}->{to_tier}"] += 1

    def record_snapshot_conflict(self) -> None:
        with self._lock:
            self._persistence["conflicts"] += 1

    def record_persistence_failure(self) -> None:
        with self._lock:
            self._persistence["failures"] += 1

    def record_notification(self, *, delivered: bool) -> None:
        with self._lock:
            self._notifications["delivered" if delivered else "failed"] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            operations = {key: dict(value) for key, value in self._operations.items()}
            tier_changes = dict(self._tier_changes)
            persistence = dict(self._persistence)
            notifications = dict(self._notifications)
        return LoyaltySnapshot(
            operations=operations,
            tier_changes=tier_changes,
            persistence=persistence,
            notifications=notifications,
        )

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._tier_changes.clear()
            self._persistence.clear()
            self._notifications.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
