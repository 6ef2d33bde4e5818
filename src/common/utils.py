"""
Utilities
=========

This module provides utility functions that are used across the application
but do not belong to a more specific domain like the classifier or the
pipeline.

Currently, it contains an `async_retry` decorator for handling transient
errors with exponential backoff and jitter, plus a small clock helper.
"""

from __future__ import annotations

import asyncio
import random
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Type, TypeVar

import structlog

log = structlog.get_logger(__name__)
T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def async_retry(
    retryable_exceptions: tuple[Type[Exception], ...],
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    A decorator that retries a coroutine method on specific exceptions.

    The decorated method's instance must expose ``settings.MAX_RETRIES`` and
    ``settings.MAX_RETRY_BACKOFF_SECONDS``.

    Args:
        retryable_exceptions: A tuple of exception types that should trigger a retry.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(self, *args, **kwargs) -> T:
            settings: Any = self.settings
            if settings.MAX_RETRIES < 1:
                raise ValueError("MAX_RETRIES must be >= 1")
            for attempt in range(1, settings.MAX_RETRIES + 1):
                try:
                    return await func(self, *args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == settings.MAX_RETRIES:
                        log.warning(
                            "Call failed after all attempts",
                            func=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    log.warning(
                        "Call failed; retrying",
                        func=func.__name__,
                        error=str(e),
                        attempt=attempt,
                        max_retries=settings.MAX_RETRIES,
                    )
                    await _sleep_backoff(attempt, settings)
            # This part should be unreachable if MAX_RETRIES > 0
            raise RuntimeError("Retry loop exited unexpectedly.")

        return wrapper

    return decorator


async def _sleep_backoff(attempt: int, settings: Any) -> None:
    """Sleep for a short duration with exponential backoff and jitter."""
    delay = (2**attempt) * random.uniform(0.8, 1.2)
    delay = min(delay, float(settings.MAX_RETRY_BACKOFF_SECONDS))
    log.info(
        "Sleeping before retry",
        delay_seconds=round(delay, 1),
        attempt=attempt,
        max_retries=settings.MAX_RETRIES,
    )
    await asyncio.sleep(delay)
