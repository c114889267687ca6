"""Exponential backoff retry for async operations.

Shared by progress writes (serialization failures and deadlocks)
and the single-agent LLM streaming path (transient transport errors).
"""

from __future__ import annotations

import asyncio
import random

from collections.abc import Awaitable, Callable
from typing import TypeVar

from utils.logger import logger

T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    factor: float = 2.0,
    jitter: bool = True,
) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
    delay = base_delay * (factor**attempt)
    if jitter:
        delay += random.uniform(0, 0.5)
    return min(delay, max_delay)


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    max_delay: float,
    retryable_exceptions: tuple[type[BaseException], ...],
    factor: float = 2.0,
    jitter: bool = True,
    operation: str = "operation",
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Await ``func()`` until it succeeds, retrying only on ``retryable_exceptions``.

    Non-retryable exceptions propagate immediately. The last retryable
    exception propagates once ``max_attempts`` is reached.
    """
    for attempt in range(max_attempts):
        try:
            return await func()
        except retryable_exceptions as e:  # noqa: PERF203
            if attempt + 1 >= max_attempts:
                logger.error(f"{operation} failed after {max_attempts} attempts: {e}")
                raise

            delay = backoff_delay(attempt, base_delay, max_delay, factor=factor, jitter=jitter)
            logger.warning(
                f"{operation} failed (attempt {attempt + 1}/{max_attempts}), retrying in {delay:.2f}s: {e}"
            )
            if on_retry is not None:
                on_retry(attempt + 1, e)
            await asyncio.sleep(delay)

    raise RuntimeError("Retry loop exited unexpectedly")
