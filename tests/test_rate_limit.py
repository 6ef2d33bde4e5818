from unittest.mock import MagicMock

from categorizer.rate_limit import USAGE_STORE_KEY, UsageLimits, UsageTracker
from common.store import InMemoryStore

START = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def test_cooldown_between_requests():
    clock = FakeClock()
    tracker = UsageTracker(clock=clock)

    assert tracker.can_make_request().allowed
    tracker.record_request()

    clock.advance(1000)
    decision = tracker.can_make_request()
    assert not decision.allowed
    assert "wait" in decision.reason

    clock.advance(1100)
    assert tracker.can_make_request().allowed


def test_per_minute_limit():
    clock = FakeClock()
    tracker = UsageTracker(UsageLimits(per_minute=2, cooldown_ms=0), clock=clock)

    tracker.record_request()
    clock.advance(10)
    tracker.record_request()
    clock.advance(10)

    decision = tracker.can_make_request()
    assert not decision.allowed
    assert decision.reason == "Too many requests this minute"

    clock.advance(60_000)
    assert tracker.can_make_request().allowed


def test_daily_limit_and_stats():
    clock = FakeClock()
    tracker = UsageTracker(
        UsageLimits(per_minute=100, per_hour=100, per_day=3, cooldown_ms=0), clock=clock
    )
    for _ in range(3):
        tracker.record_request()
        clock.advance(2 * 60 * 60 * 1000)

    decision = tracker.can_make_request()
    assert not decision.allowed
    assert decision.reason == "Daily free tier limit reached"

    stats = tracker.get_usage_stats()
    assert stats.last_hour == 0
    assert stats.last_day == 3
    assert stats.remaining_today == 0


def test_usage_history_persists_in_store():
    clock = FakeClock()
    store = InMemoryStore()
    UsageTracker(clock=clock, store=store).record_request()

    clock.advance(500)
    restored = UsageTracker(clock=clock, store=store)

    assert store.get(USAGE_STORE_KEY) == [START]
    assert restored.get_usage_stats().last_day == 1
    assert not restored.can_make_request().allowed


def test_store_failures_do_not_break_tracking():
    store = MagicMock()
    store.get.side_effect = OSError("boom")
    store.set.side_effect = OSError("boom")
    tracker = UsageTracker(clock=FakeClock(), store=store)

    tracker.record_request()

    assert tracker.get_usage_stats().last_day == 1
