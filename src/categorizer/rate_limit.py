"""
Free-tier usage tracking.

The constrained provider is shared by everyone on a free key, so every remote
call is checked against rolling per-minute, per-hour and per-day budgets plus
a short cooldown between calls. A refused call never reaches the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import structlog

from common.store import KeyValueStore
from common.utils import now_ms

log = structlog.get_logger(__name__)

USAGE_STORE_KEY = "free_tier_usage"

_MINUTE_MS = 60_000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


@dataclass(frozen=True)
class UsageLimits:
    per_minute: int = 10
    per_hour: int = 100
    per_day: int = 500
    cooldown_ms: int = 2000


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class UsageStats:
    last_hour: int
    last_day: int
    remaining_today: int


class UsageTracker:
    """
    Rolling request counters for the free tier.

    When a store is given, request timestamps survive across processes so the
    daily budget is honoured by repeated CLI runs.
    """

    def __init__(
        self,
        limits: UsageLimits | None = None,
        clock: Callable[[], int] = now_ms,
        store: KeyValueStore | None = None,
    ):
        self.limits = limits or UsageLimits()
        self._clock = clock
        self._store = store
        self._requests: list[int] = []
        self._last_request = 0
        if store is not None:
            self._load()

    def _load(self) -> None:
        try:
            raw = self._store.get(USAGE_STORE_KEY)
        except Exception as e:
            log.warning("Usage history load failed", error=str(e))
            return
        if isinstance(raw, list):
            self._requests = sorted(int(t) for t in raw if isinstance(t, (int, float)))
            self._last_request = self._requests[-1] if self._requests else 0

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.set({USAGE_STORE_KEY: self._requests})
        except Exception as e:
            log.warning("Usage history save failed", error=str(e))

    def _prune(self, now: int) -> None:
        self._requests = [t for t in self._requests if t > now - _DAY_MS]

    def can_make_request(self) -> UsageDecision:
        now = self._clock()
        if now - self._last_request < self.limits.cooldown_ms:
            return UsageDecision(False, "Please wait a moment between requests")

        self._prune(now)
        last_minute = sum(1 for t in self._requests if t > now - _MINUTE_MS)
        last_hour = sum(1 for t in self._requests if t > now - _HOUR_MS)

        if last_minute >= self.limits.per_minute:
            return UsageDecision(False, "Too many requests this minute")
        if last_hour >= self.limits.per_hour:
            return UsageDecision(False, "Hourly limit reached")
        if len(self._requests) >= self.limits.per_day:
            return UsageDecision(False, "Daily free tier limit reached")
        return UsageDecision(True)

    def record_request(self) -> None:
        now = self._clock()
        self._requests.append(now)
        self._last_request = now
        self._persist()

    def get_usage_stats(self) -> UsageStats:
        now = self._clock()
        self._prune(now)
        last_hour = sum(1 for t in self._requests if t > now - _HOUR_MS)
        return UsageStats(
            last_hour=last_hour,
            last_day=len(self._requests),
            remaining_today=max(0, self.limits.per_day - len(self._requests)),
        )
