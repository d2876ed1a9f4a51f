from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    stamps: Dict[str, int]
    rewards: Dict[str, int]
    redemptions: Dict[str, int]
    expirations: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "stamps": dict(self.stamps),
            "rewards": dict(self.rewards),
            "redemptions": dict(self.redemptions),
            "expirations": dict(self.expirations),
        }


class LoyaltyObservabilityStore:
    """Collect stamp card pipeline telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._stamps: Dict[str, int] = defaultdict(int)
        self._rewards: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._expirations: Dict[str, int] = defaultdict(int)

    def record_trigger_outcome(self, status: str, reason: str | None = None) -> None:
        with self._lock:
            self._stamps[status] += 1
            if reason:
                self._stamps[f"skipped:{reason}"] += 1

    def record_reward_event(self, event: str) -> None:
        with self._lock:
            self._rewards[event] += 1

    def record_redemption(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_expiration(self, ledger: str, expired: int, *, limit_reached: bool = False) -> None:
        with self._lock:
            self._expirations[f"{ledger}:runs"] += 1
            self._expirations[f"{ledger}:expired"] += expired
            if limit_reached:
                self._expirations[f"{ledger}:limit_reached"] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                stamps=dict(self._stamps),
                rewards=dict(self._rewards),
                redemptions=dict(self._redemptions),
                expirations=dict(self._expirations),
            )

    def reset(self) -> None:
        with self._lock:
            self._stamps.clear()
            self._rewards.clear()
            self._redemptions.clear()
            self._expirations.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
