"""
Tab Categorizer CLI
===================

Reads a JSON array of browser tabs (``id``, ``title``, ``url``) from a file
or stdin, categorizes them and prints ``{"groups": ..., "used_remote": ...}``
on stdout. Logs go to stderr.

Maintenance flags clear the cache or report free-tier usage instead of
categorizing.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from typing import Any, Sequence

import structlog

from common.config import Settings
from common.logging_config import configure_logging
from common.store import open_store

from .cache import CacheStore, LowConfidenceQueue
from .consolidate import consolidate_categories
from .pipeline import CategorizationPipeline
from .provider import build_classifier
from .taxonomy import Taxonomy

log = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tab-categorizer",
        description="Categorize browser tabs with an LLM and deterministic fallbacks.",
    )
    parser.add_argument(
        "tabs_json",
        nargs="?",
        help="Path to a JSON array of tabs. Reads stdin when omitted or '-'.",
    )
    parser.add_argument(
        "--smart",
        action="store_true",
        help="Only re-run tabs whose cached category is stale, weak or flagged.",
    )
    maintenance = parser.add_mutually_exclusive_group()
    maintenance.add_argument("--clear-cache", action="store_true", help="Drop every cached category.")
    maintenance.add_argument(
        "--clear-expired",
        action="store_true",
        help="Drop expired cache entries (see --low-confidence).",
    )
    parser.add_argument(
        "--low-confidence",
        action="store_true",
        help="With --clear-expired, also drop entries below 0.6 confidence.",
    )
    parser.add_argument("--usage", action="store_true", help="Print free-tier usage and exit.")
    return parser


def _read_tabs(path: str | None) -> list[dict[str, Any]]:
    if path is None or path == "-":
        raw = sys.stdin.read()
    else:
        with open(path, encoding="utf-8") as f:
            raw = f.read()
    data = json.loads(raw or "[]")
    if not isinstance(data, list) or not all(isinstance(t, dict) for t in data):
        raise ValueError("Tabs input must be a JSON array of objects")
    return data


def _emit(payload: dict) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    sys.stdout.flush()


async def _categorize(pipeline: CategorizationPipeline, tabs: list[dict], smart: bool):
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Windows event loops have no signal handler support.
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    try:
        if smart:
            return await pipeline.smart_recategorize(tabs, cancel=cancel)
        return await pipeline.run(tabs, cancel=cancel)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``tab-categorizer`` command."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
        configure_logging(settings)
    except ValueError as e:
        log.error("Configuration error", error=str(e))
        return 1

    taxonomy = Taxonomy.default(custom=settings.CUSTOM_CATEGORIES)
    store = open_store(settings.STORE_PATH)
    cache = CacheStore(store)

    if args.clear_cache:
        removed = len(cache)
        cache.clear()
        _emit({"removed": removed, "remaining": 0})
        return 0
    if args.clear_expired:
        removed = cache.clear_selective(low_confidence_only=args.low_confidence)
        _emit({"removed": removed, "remaining": len(cache)})
        return 0

    classifier, profile = build_classifier(settings, taxonomy, store=store)

    if args.usage:
        tracker = profile.usage_tracker
        if tracker is None:
            _emit({"provider": settings.LLM_PROVIDER, "tracked": False})
        else:
            stats = tracker.get_usage_stats()
            _emit(
                {
                    "provider": settings.LLM_PROVIDER,
                    "tracked": True,
                    "last_hour": stats.last_hour,
                    "last_day": stats.last_day,
                    "remaining_today": stats.remaining_today,
                }
            )
        return 0

    try:
        tabs = _read_tabs(args.tabs_json)
    except (OSError, ValueError) as e:
        log.error("Invalid tabs input", error=str(e))
        return 1

    pipeline = CategorizationPipeline(
        classifier,
        cache,
        taxonomy,
        profile,
        settings,
        low_confidence_queue=LowConfidenceQueue(store, settings.LOW_CONFIDENCE_QUEUE_LIMIT),
    )
    result = asyncio.run(_categorize(pipeline, tabs, args.smart))

    payload: dict[str, Any] = {
        "groups": consolidate_categories(result.groups, taxonomy),
        "used_remote": result.used_remote,
    }
    if args.smart:
        payload["recategorized"] = result.recategorized
    _emit(payload)
    return 0


if __name__ == "__main__":
    sys.exit(main())
