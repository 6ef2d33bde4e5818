"""
Persistent Key/Value Store
==========================

The categorizer persists two opaque blobs between runs: the category cache and
the low-confidence review queue. Both are read and written wholesale, so the
store only needs a tiny contract:

- ``get(key)`` returns the stored value or ``None``
- ``set(mapping)`` writes every key of ``mapping`` and returns ``True``

`JsonFileStore` keeps everything in one JSON document on disk.
`InMemoryStore` is used when persistence is disabled and in tests.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Mapping, Protocol

import structlog

log = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, mapping: Mapping[str, Any]) -> bool: ...


class InMemoryStore:
    """Dict-backed store. Values are JSON round-tripped to mimic persistence."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = {}
        if initial:
            self.set(initial)

    def get(self, key: str) -> Any:
        if key not in self._data:
            return None
        return json.loads(self._data[key])

    def set(self, mapping: Mapping[str, Any]) -> bool:
        for key, value in mapping.items():
            self._data[key] = json.dumps(value)
        return True


class JsonFileStore:
    """
    Store every key in a single JSON document.

    Writes go to a temporary sibling file which then replaces the original,
    so readers never see a half-written document.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.path} does not contain a JSON object")
        return data

    def get(self, key: str) -> Any:
        with self._lock:
            return self._read_document().get(key)

    def set(self, mapping: Mapping[str, Any]) -> bool:
        with self._lock:
            document = self._read_document()
            document.update(mapping)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as f:
                f.write(json.dumps(document, ensure_ascii=False))
                f.flush()
                os.fsync(f.fileno())
            tmp_path.replace(self.path)
        log.debug("Store written", path=str(self.path), keys=sorted(mapping))
        return True


def open_store(path: str) -> KeyValueStore:
    """Return a file-backed store for ``path`` or an in-memory one when empty."""
    if not path:
        log.info("No store path configured; cache is kept in memory only")
        return InMemoryStore()
    return JsonFileStore(path)
