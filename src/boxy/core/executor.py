"""Per-resource serialisation of mutating manager calls."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from boxy.core.config import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_BASE_DELAY
from boxy.core.logging import get_logger
from boxy.core.retry import retry_with_backoff

log = get_logger(__name__)

T = TypeVar("T")


class ResourceExecutor:
    """Runs at most one operation per resource key at a time.

    Operations on different keys run concurrently. Every call is retried
    with ``retry_with_backoff`` while the key's lock is held, so a retry
    never interleaves with another caller's operation on the same key.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    async def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is not None:
            return lock
        async with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = asyncio.Lock()
            return lock

    def is_busy(self, key: str) -> bool:
        """Whether an operation currently holds the lock for ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    async def execute(self, key: str, operation_factory: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation_factory()`` under the lock for ``key``.

        Args:
            key: Resource key, normally a scope-qualified manager name.
            operation_factory: Called once per attempt to build the awaitable.

        Returns:
            The operation's result.
        """
        lock = await self._lock_for(key)

        if lock.locked():
            log.debug("executor_waiting", key=key)
        wait_start = time.perf_counter()

        async with lock:
            waited_ms = int((time.perf_counter() - wait_start) * 1000)
            log.debug("executor_acquired", key=key, waited_ms=waited_ms)
            return await retry_with_backoff(
                self.max_attempts, self.base_delay, operation_factory
            )
