from unittest.mock import MagicMock

import pytest

from categorizer.cache import (
    CACHE_STORE_KEY,
    QUEUE_STORE_KEY,
    CacheEntry,
    CacheStore,
    LowConfidenceQueue,
    is_valid,
    should_recategorize,
    ttl_for_confidence,
)
from common.store import InMemoryStore

HOUR = 60 * 60 * 1000
NOW = 1_700_000_000_000


@pytest.mark.parametrize(
    "confidence, ttl",
    [
        (0.95, 24 * HOUR),
        (0.9, 24 * HOUR),
        (0.85, 12 * HOUR),
        (0.7, 6 * HOUR),
        (0.6, 3 * HOUR),
        (0.5, HOUR),
        (0.2, HOUR // 2),
        (None, HOUR),
    ],
)
def test_ttl_for_confidence(confidence, ttl):
    assert ttl_for_confidence(confidence) == ttl


def test_ttl_is_monotone_in_confidence():
    ttls = [ttl_for_confidence(c / 100) for c in range(0, 101)]

    assert ttls == sorted(ttls)


def test_is_valid():
    fresh = CacheEntry("News", 0.9, NOW - 23 * HOUR)
    stale = CacheEntry("News", 0.55, NOW - 2 * HOUR)

    assert is_valid(fresh, NOW)
    assert not is_valid(stale, NOW)
    assert not is_valid(None, NOW)
    assert not is_valid(CacheEntry("", 0.9, NOW), NOW)
    assert not is_valid(CacheEntry("News", 0.9, None), NOW)


def test_should_recategorize():
    assert should_recategorize(None, NOW)
    assert should_recategorize(CacheEntry("News", 0.65, NOW), NOW)
    assert should_recategorize(CacheEntry("News", 0.9, NOW, needs_review=True), NOW)
    assert not should_recategorize(CacheEntry("News", 0.9, NOW), NOW)


def test_cache_entry_wire_format():
    entry = CacheEntry("Development", 0.9, NOW, needs_review=True, source="domain_pre_filter")

    data = entry.to_dict()

    assert data == {
        "category": "Development",
        "confidence": 0.9,
        "ts": NOW,
        "needsReview": True,
        "corrected": False,
        "source": "domain_pre_filter",
    }
    assert CacheEntry.from_dict(data) == entry
    assert CacheEntry.from_dict("garbage") is None


def test_cache_store_loads_once_and_saves_whole_blob():
    store = InMemoryStore({CACHE_STORE_KEY: {"k1": {"category": "News", "confidence": 0.9, "ts": NOW}}})
    cache = CacheStore(store, now=lambda: NOW)

    cache.load()
    assert cache.get("k1").category == "News"

    cache.put("k2", CacheEntry("Work", 0.7, NOW))
    assert cache.dirty
    assert cache.save() is True
    assert not cache.dirty

    assert set(store.get(CACHE_STORE_KEY)) == {"k1", "k2"}


def test_cache_store_tolerates_store_failures():
    store = MagicMock()
    store.get.side_effect = OSError("disk gone")
    store.set.side_effect = OSError("disk gone")
    cache = CacheStore(store, now=lambda: NOW)

    cache.load()
    cache.put("k", CacheEntry("News", 0.9, NOW))

    assert cache.get("k").category == "News"
    assert cache.save() is False


def test_cache_store_does_not_overwrite_after_failed_load():
    store = MagicMock()
    store.get.side_effect = OSError("transient read error")
    cache = CacheStore(store, now=lambda: NOW)

    cache.load()
    cache.put("k", CacheEntry("News", 0.9, NOW))

    assert cache.save() is False
    store.set.assert_not_called()

    cache.clear()
    store.set.assert_called_once_with({CACHE_STORE_KEY: {}})


def test_clear_selective_removes_expired_and_low_confidence():
    store = InMemoryStore(
        {
            CACHE_STORE_KEY: {
                "fresh": {"category": "News", "confidence": 0.9, "ts": NOW},
                "expired": {"category": "News", "confidence": 0.9, "ts": NOW - 25 * HOUR},
                "weak": {"category": "Work", "confidence": 0.55, "ts": NOW},
            }
        }
    )
    cache = CacheStore(store, now=lambda: NOW)

    assert cache.clear_selective() == 1
    assert set(store.get(CACHE_STORE_KEY)) == {"fresh", "weak"}

    assert cache.clear_selective(low_confidence_only=True) == 1
    assert set(store.get(CACHE_STORE_KEY)) == {"fresh"}


def test_clear_empties_the_persisted_cache():
    store = InMemoryStore({CACHE_STORE_KEY: {"k": {"category": "News", "confidence": 0.9, "ts": NOW}}})
    cache = CacheStore(store, now=lambda: NOW)

    cache.clear()

    assert store.get(CACHE_STORE_KEY) == {}
    assert len(cache) == 0


def test_low_confidence_queue_merges_and_bounds():
    store = InMemoryStore({QUEUE_STORE_KEY: [{"key": f"old{i}"} for i in range(3)]})
    queue = LowConfidenceQueue(store, limit=4)

    queue.extend([{"key": "new1"}, {"key": "new2"}])
    assert queue.save() is True

    assert [item["key"] for item in store.get(QUEUE_STORE_KEY)] == ["old1", "old2", "new1", "new2"]
    assert queue.pending == []


def test_low_confidence_queue_save_failure_is_reported():
    store = MagicMock()
    store.get.return_value = []
    store.set.side_effect = OSError("read-only")
    queue = LowConfidenceQueue(store)

    queue.extend([{"key": "k"}])

    assert queue.save() is False
    assert queue.pending == [{"key": "k"}]
