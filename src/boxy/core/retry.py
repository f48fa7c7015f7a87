"""Bounded exponential-backoff retry for async operations."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from boxy.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

MAX_BACKOFF_EXPONENT = 5


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Delay to wait after failed ``attempt`` (1-based).

    The multiplier doubles per attempt and is capped at 2**5.
    """
    return base_delay * (2 ** min(attempt - 1, MAX_BACKOFF_EXPONENT))


async def retry_with_backoff(
    max_attempts: int,
    base_delay: float,
    operation: Callable[[], Awaitable[T]],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    ``operation`` is called afresh on every attempt. The last error is
    re-raised unchanged once attempts are exhausted. Cancellation is never
    retried.

    Args:
        max_attempts: Total number of attempts, at least 1.
        base_delay: Delay in seconds after the first failure.
        operation: Zero-argument callable returning an awaitable.
        retry_on: Exception types that trigger another attempt; anything
            else propagates immediately.

    Returns:
        The operation's result.

    Example:
        await retry_with_backoff(3, 1.0, lambda: adapter.upgrade("jq"))

    Note:
        - Delays: 1s, 2s, 4s ... capped at 32x base_delay.
        - Every Exception is retried by default, including permanent
          failures such as a missing package.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_attempts:
                if max_attempts > 1:
                    log.error(
                        "retry_exhausted",
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                raise

            delay = backoff_delay(base_delay, attempt)
            log.warning(
                "retry_attempt",
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=delay,
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)
            attempt += 1
