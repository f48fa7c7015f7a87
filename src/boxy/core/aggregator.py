"""Fan one logical request out to several managers with bounded concurrency."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterable, TypeVar

from boxy.core.config import AVAILABILITY_TIMEOUT, DEFAULT_CONCURRENCY
from boxy.core.errors import BoxyError, CommandTimeoutError, ManagerUnavailableError, SystemError
from boxy.core.logging import get_logger
from boxy.core.models import ManagerResult
from boxy.core.scope import GLOBAL, Scope
from boxy.managers.base import ManagerFactory, PackageManager

log = get_logger(__name__)

T = TypeVar("T")


class Aggregator:
    """Runs the same operation against many managers, isolating failures.

    At most ``concurrency`` managers are queried at once. One slow or broken
    manager never prevents the others' results from being returned.
    """

    def __init__(
        self,
        factory: ManagerFactory,
        concurrency: int = DEFAULT_CONCURRENCY,
        availability_timeout: float = AVAILABILITY_TIMEOUT,
    ) -> None:
        self._factory = factory
        self.concurrency = concurrency
        self.availability_timeout = availability_timeout

    async def _is_available(self, adapter: PackageManager) -> bool:
        try:
            return await asyncio.wait_for(adapter.check_available(), self.availability_timeout)
        except asyncio.TimeoutError:
            log.debug("availability_timeout", manager=adapter.name, timeout=self.availability_timeout)
            return False
        except Exception as e:
            log.debug("availability_check_failed", manager=adapter.name, error=str(e))
            return False

    async def _query(
        self,
        name: str,
        operation: Callable[[PackageManager], Awaitable[T]],
        semaphore: asyncio.Semaphore,
        timeout: float,
        scope: Scope,
        check_available: bool,
    ) -> ManagerResult[T]:
        async with semaphore:
            try:
                adapter = self._factory(name, scope)
            except BoxyError as e:
                return ManagerResult(manager=name, error=e, available=False)

            if check_available and not await self._is_available(adapter):
                return ManagerResult(
                    manager=name,
                    error=ManagerUnavailableError(name=name, reason="not installed or not responding"),
                    available=False,
                )

            try:
                value = await asyncio.wait_for(operation(adapter), timeout)
            except asyncio.TimeoutError:
                log.warning("aggregate_manager_timeout", manager=name, timeout=timeout)
                error: BoxyError = CommandTimeoutError(
                    command=f"{name} query", timeout=timeout, context={"manager": name}
                )
            except BoxyError as e:
                log.warning("aggregate_manager_failed", manager=name, error=str(e))
                error = e
            except Exception as e:
                log.error("aggregate_manager_crashed", manager=name, error=str(e), exc_info=True)
                error = SystemError(
                    str(e), context={"manager": name, "error_type": type(e).__name__}
                )
            else:
                return ManagerResult(manager=name, value=value)

            return ManagerResult(manager=name, error=error)

    async def aggregate(
        self,
        manager_names: Iterable[str],
        operation: Callable[[PackageManager], Awaitable[T]],
        *,
        timeout: float,
        scope: Scope = GLOBAL,
        check_available: bool = True,
        strict: bool = False,
    ) -> list[ManagerResult[T]]:
        """Run ``operation`` against every named manager.

        Args:
            manager_names: Managers to query.
            operation: Called with each manager's adapter.
            timeout: Time box in seconds for each manager's call.
            scope: Scope the adapters are built for.
            check_available: Probe each manager first and skip those that
                are missing or do not answer in time.
            strict: Re-raise the first failure, in input order, once every
                manager has settled.

        Returns:
            One result per manager, in input order.
        """
        names = list(manager_names)
        semaphore = asyncio.Semaphore(self.concurrency)
        start = time.perf_counter()

        results = await asyncio.gather(
            *(
                self._query(name, operation, semaphore, timeout, scope, check_available)
                for name in names
            )
        )

        failed = [r.manager for r in results if not r.ok]
        log.info(
            "aggregate_complete",
            managers=len(names),
            failed=failed,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

        if strict:
            for result in results:
                if result.error is not None:
                    raise result.error

        return list(results)
