"""
Category Cache
==============

Previously resolved assignments are kept in the persistent store under a
single key and reused while they are fresh. Freshness depends on confidence:
confident answers live for a day, shaky ones for half an hour.

The whole cache blob is read once per run (`CacheStore.load`) and written
once at the end (`CacheStore.save`). A broken store never aborts a run; the
cache then behaves as an in-memory map for the rest of it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

import structlog

from common.store import KeyValueStore
from common.utils import now_ms

log = structlog.get_logger(__name__)

CACHE_STORE_KEY = "category_cache"
QUEUE_STORE_KEY = "low_confidence_queue"

LOW_CONFIDENCE_THRESHOLD = 0.6
RECATEGORIZE_THRESHOLD = 0.7
DEFAULT_TTL_CONFIDENCE = 0.5

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS

# (minimum confidence, ttl) from the most to the least confident tier.
TTL_TIERS = (
    (0.9, 24 * _HOUR_MS),
    (0.8, 12 * _HOUR_MS),
    (0.7, 6 * _HOUR_MS),
    (0.6, 3 * _HOUR_MS),
    (0.5, 1 * _HOUR_MS),
)
MIN_TTL_MS = 30 * _MINUTE_MS


@dataclass(frozen=True)
class CacheEntry:
    category: str
    confidence: float | None
    timestamp: int | None
    needs_review: bool = False
    corrected: bool = False
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "category": self.category,
            "confidence": self.confidence,
            "ts": self.timestamp,
            "needsReview": self.needs_review,
            "corrected": self.corrected,
        }
        if self.source:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "CacheEntry | None":
        if not isinstance(data, Mapping):
            return None
        confidence = data.get("confidence")
        timestamp = data.get("ts")
        return cls(
            category=str(data.get("category") or ""),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else None,
            needs_review=bool(data.get("needsReview", False)),
            corrected=bool(data.get("corrected", False)),
            source=data.get("source") or None,
        )


def ttl_for_confidence(confidence: float | None) -> int:
    """Lifetime of a cache entry in milliseconds."""
    if confidence is None:
        confidence = DEFAULT_TTL_CONFIDENCE
    for threshold, ttl in TTL_TIERS:
        if confidence >= threshold:
            return ttl
    return MIN_TTL_MS


def is_valid(entry: CacheEntry | None, now: int) -> bool:
    if entry is None or not entry.category or not entry.timestamp:
        return False
    return now - entry.timestamp <= ttl_for_confidence(entry.confidence)


def should_recategorize(entry: CacheEntry | None, now: int) -> bool:
    """True when a cached answer is missing, stale, weak or flagged."""
    if not is_valid(entry, now):
        return True
    if (entry.confidence or 0) < RECATEGORIZE_THRESHOLD:
        return True
    return entry.needs_review


class CacheStore:
    """In-memory view of the persisted category cache."""

    def __init__(self, store: KeyValueStore, now: Callable[[], int] = now_ms):
        self._store = store
        self._now = now
        self._entries: dict[str, CacheEntry] = {}
        self._loaded = False
        self._load_failed = False
        self._dirty = False

    def load(self) -> None:
        self._loaded = True
        try:
            raw = self._store.get(CACHE_STORE_KEY)
        except Exception as e:
            log.warning("Cache load failed; starting empty", error=str(e))
            self._entries = {}
            self._load_failed = True
            return
        self._load_failed = False
        entries = {}
        if isinstance(raw, Mapping):
            for key, value in raw.items():
                entry = CacheEntry.from_dict(value)
                if entry is not None:
                    entries[str(key)] = entry
        self._entries = entries
        log.debug("Cache loaded", entries=len(entries))

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get(self, key: str) -> CacheEntry | None:
        self._ensure_loaded()
        return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        self._ensure_loaded()
        self._entries[key] = entry
        self._dirty = True

    @property
    def dirty(self) -> bool:
        """True when entries changed since the last successful save."""
        return self._dirty

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._entries)

    def save(self) -> bool:
        """
        Persist the whole cache; returns False when the store failed.

        Nothing is written after a failed load; the persisted entries are
        left untouched.
        """
        self._ensure_loaded()
        if self._load_failed:
            log.warning("Cache save skipped after failed load", entries=len(self._entries))
            return False
        payload = {key: entry.to_dict() for key, entry in self._entries.items()}
        try:
            self._store.set({CACHE_STORE_KEY: payload})
        except Exception as e:
            log.warning("Cache save failed", error=str(e), entries=len(payload))
            return False
        self._dirty = False
        return True

    def clear(self) -> None:
        self._entries = {}
        self._loaded = True
        self._load_failed = False
        self._dirty = True
        self.save()
        log.info("Cache cleared")

    def clear_selective(self, low_confidence_only: bool = False) -> int:
        """
        Drop expired entries and, optionally, every entry below 0.6 confidence.

        Returns the number of removed entries. The result is persisted.
        """
        self._ensure_loaded()
        now = self._now()
        removed = 0
        for key, entry in list(self._entries.items()):
            low = low_confidence_only and (entry.confidence or 0) < LOW_CONFIDENCE_THRESHOLD
            if low or not is_valid(entry, now):
                del self._entries[key]
                removed += 1
        self._dirty = self._dirty or removed > 0
        self.save()
        log.info("Cache selectively cleared", removed=removed, remaining=len(self._entries))
        return removed


class LowConfidenceQueue:
    """
    Bounded review log of weak remote answers.

    Items are ``{"key", "ts", "meta": {"title", "url", "domain"}}``; only the
    newest ``limit`` items survive a save.
    """

    def __init__(self, store: KeyValueStore, limit: int = 500):
        self._store = store
        self.limit = limit
        self._pending: list[dict] = []

    @property
    def pending(self) -> list[dict]:
        return list(self._pending)

    def extend(self, items: Iterable[dict]) -> None:
        self._pending.extend(items)

    def save(self) -> bool:
        try:
            existing = self._store.get(QUEUE_STORE_KEY) or []
            if not isinstance(existing, list):
                existing = []
            merged = (existing + self._pending)[-self.limit :]
            self._store.set({QUEUE_STORE_KEY: merged})
        except Exception as e:
            log.warning("Low-confidence queue save failed", error=str(e))
            return False
        log.debug("Low-confidence queue saved", added=len(self._pending), size=len(merged))
        self._pending = []
        return True
