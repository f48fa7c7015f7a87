"""Repository module: the operation surface shared by every front end."""

from __future__ import annotations

import asyncio
import time
from typing import Iterable, List, Optional

from boxy.core.aggregator import Aggregator
from boxy.core.cache import Cache
from boxy.core.config import OUTDATED_LOOKUP_TIMEOUT, Settings
from boxy.core.errors import (
    BoxyError,
    CacheError,
    DeserializationError,
    ManagerNotFoundError,
    PackageNotFoundError,
    SerializationError,
    UnsupportedOperationError,
)
from boxy.core.executor import ResourceExecutor
from boxy.core.jobs import JobStore
from boxy.core.logging import configure_logging, get_logger
from boxy.core.models import (
    Capability,
    ManagerStatus,
    Operation,
    Package,
    annotate_outdated,
    decode_packages,
)
from boxy.core.scope import GLOBAL, Scope
from boxy.managers.base import ManagerFactory, PackageManager
from boxy.managers.registry import MANAGER_NAMES, create_manager

log = get_logger(__name__)


def _sort(pkgs: List[Package]) -> List[Package]:
    pkgs.sort(key=lambda p: (p.manager, p.name.lower()))
    return pkgs


class Repository:
    """Package operations across every registered manager.

    Reads go through the Aggregator and the listing cache; mutations are
    submitted to the JobStore and identified by job id.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        factory: ManagerFactory = create_manager,
        manager_names: Iterable[str] = MANAGER_NAMES,
        use_cache: bool = True,
    ) -> None:
        self.settings = settings or Settings.from_env()
        # no-op when a front end configured logging first
        configure_logging(log_file=self.settings.log_file)
        self.factory = factory
        self.manager_names = tuple(manager_names)
        self.use_cache = use_cache
        self.cache = Cache(self.settings.cache_dir, ttl=self.settings.cache_ttl)
        self.executor = ResourceExecutor(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_base_delay,
        )
        self.aggregator = Aggregator(
            factory,
            concurrency=self.settings.concurrency,
            availability_timeout=self.settings.availability_timeout,
        )
        self.jobs = JobStore(
            factory,
            self.cache,
            self.executor,
            heartbeat_interval=self.settings.heartbeat_interval,
            command_timeout=self.settings.command_timeout,
        )

    ## Helpers ##

    def _names(self, manager: Optional[str], scope: Scope = GLOBAL) -> List[str]:
        """Managers an operation applies to.

        An explicit manager must be registered. Without one, local scope
        narrows the set to managers that support it.

        Raises:
            ManagerNotFoundError: If ``manager`` is not registered.
        """
        if manager is not None:
            if manager not in self.manager_names:
                raise ManagerNotFoundError(name=manager)
            return [manager]
        if scope.is_global:
            return list(self.manager_names)
        return [n for n in self.manager_names if self.factory(n, GLOBAL).supports_scope]

    def _capable(self, manager: Optional[str], capability: Capability, operation: str) -> List[str]:
        names = self._names(manager)
        capable = [n for n in names if self.factory(n, GLOBAL).supports(capability)]
        if manager is not None and not capable:
            raise UnsupportedOperationError(manager=manager, operation=operation)
        return capable

    async def _installed(self, adapter: PackageManager, refresh: bool = False) -> List[Package]:
        """Installed packages, from the cache when fresh.

        A corrupt or unreadable cache entry is treated as a miss.
        """
        key = adapter.cache_key
        if self.use_cache and not refresh:
            try:
                cached = self.cache.get(key, decode=decode_packages)
            except (DeserializationError, CacheError) as e:
                log.warning("cache_entry_discarded", key=key, error=str(e))
                cached = None
            if cached is not None:
                return cached

        pkgs = await adapter.list_installed()

        if self.use_cache:
            try:
                self.cache.set(key, [p.to_dict() for p in pkgs])
            except (SerializationError, CacheError) as e:
                log.warning("cache_store_failed", key=key, error=str(e))

        return pkgs

    async def _annotate(self, adapter: PackageManager, pkgs: List[Package]) -> List[Package]:
        try:
            outdated = await asyncio.wait_for(adapter.check_outdated(), OUTDATED_LOOKUP_TIMEOUT)
        except (BoxyError, asyncio.TimeoutError) as e:
            log.warning("outdated_lookup_failed", manager=adapter.name, error=str(e))
            return pkgs
        return annotate_outdated(pkgs, outdated)

    ## Reads ##

    async def scan(self, available_only: bool = False, refresh: bool = False) -> List[ManagerStatus]:
        """Availability and package counts for every registered manager.

        Args:
            available_only: Leave out managers that are not installed.
            refresh: Bypass the listing cache.

        Returns:
            One ManagerStatus per manager.
        """
        start = time.perf_counter()
        log.info("scan_start", managers=len(self.manager_names))

        async def op(adapter: PackageManager) -> List[Package]:
            return await self._annotate(adapter, await self._installed(adapter, refresh))

        results = await self.aggregator.aggregate(
            self.manager_names, op, timeout=self.settings.read_timeout
        )

        statuses = [
            ManagerStatus(
                name=r.manager,
                available=r.available,
                package_count=len(r.value or []),
                outdated_count=sum(1 for p in r.value or [] if p.outdated),
            )
            for r in results
            if r.available or not available_only
        ]

        log.info(
            "scan_complete",
            available=sum(1 for s in statuses if s.available),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

        return statuses

    async def list_packages(
        self,
        manager: Optional[str] = None,
        scope: Scope = GLOBAL,
        refresh: bool = False,
        annotate: bool = True,
    ) -> List[Package]:
        """Installed packages, optionally for one manager only.

        Failures are skipped when listing every manager and raised when a
        manager was named explicitly.

        Args:
            manager: Restrict to this manager.
            scope: Global or local scope.
            refresh: Bypass the listing cache.
            annotate: Mark outdated packages with their latest version.

        Returns:
            Packages sorted by manager and name.
        """
        start = time.perf_counter()
        names = self._names(manager, scope)
        log.info("fetch_packages_start", managers=names, scope=scope.label)

        async def op(adapter: PackageManager) -> List[Package]:
            pkgs = await self._installed(adapter, refresh)
            return await self._annotate(adapter, pkgs) if annotate else pkgs

        results = await self.aggregator.aggregate(
            names,
            op,
            timeout=self.settings.read_timeout,
            scope=scope,
            strict=manager is not None,
        )
        pkgs = _sort([p for r in results if r.ok for p in r.value or []])

        log.info(
            "fetch_packages_complete",
            count=len(pkgs),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

        return pkgs

    async def search(self, query: str, manager: Optional[str] = None) -> List[Package]:
        """Search the registries of every manager that supports searching.

        Raises:
            UnsupportedOperationError: If ``manager`` cannot search.
        """
        names = self._capable(manager, Capability.SEARCH_REMOTE, "search")
        log.info("search_start", query=query, managers=names)

        async def op(adapter: PackageManager) -> List[Package]:
            return await adapter.search(query)

        results = await self.aggregator.aggregate(
            names, op, timeout=self.settings.read_timeout, strict=manager is not None
        )
        return [p for r in results if r.ok for p in r.value or []]

    async def info(self, name: str, manager: Optional[str] = None) -> Package:
        """Details for one package.

        Without ``manager``, the first manager (in registry order) that
        knows the package answers.

        Raises:
            PackageNotFoundError: If no manager knows the package.
        """
        start = time.perf_counter()
        log.info("fetch_package_details_start", package=name, manager=manager)

        async def op(adapter: PackageManager) -> Package:
            return await adapter.get_info(name)

        results = await self.aggregator.aggregate(
            self._names(manager),
            op,
            timeout=self.settings.read_timeout,
            strict=manager is not None,
        )
        for result in results:
            if result.ok and result.value is not None:
                log.info(
                    "fetch_package_details_complete",
                    package=name,
                    manager=result.manager,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                )
                return result.value

        raise PackageNotFoundError(package=name, manager=manager)

    async def outdated(self, manager: Optional[str] = None, scope: Scope = GLOBAL) -> List[Package]:
        async def op(adapter: PackageManager) -> List[Package]:
            return await adapter.check_outdated()

        results = await self.aggregator.aggregate(
            self._names(manager, scope),
            op,
            timeout=self.settings.read_timeout,
            scope=scope,
            strict=manager is not None,
        )
        return _sort([p for r in results if r.ok for p in r.value or []])

    async def dependencies(self, name: str, manager: str) -> List[Package]:
        """Dependencies of ``name`` as reported by ``manager``.

        Raises:
            UnsupportedOperationError: If the manager cannot list dependencies.
        """
        self._capable(manager, Capability.QUERY_DEPENDENCIES, "dependencies")

        async def op(adapter: PackageManager) -> List[Package]:
            return await adapter.list_dependencies(name)

        results = await self.aggregator.aggregate(
            [manager], op, timeout=self.settings.read_timeout, strict=True
        )
        return results[0].value or []

    async def available_managers(self) -> List[str]:
        """Names of the managers installed on this machine."""

        async def op(adapter: PackageManager) -> bool:
            return True

        results = await self.aggregator.aggregate(
            self.manager_names, op, timeout=self.settings.read_timeout
        )
        return [r.manager for r in results if r.ok]

    async def refresh(self, manager: str, scope: Scope = GLOBAL) -> List[Package]:
        """Drop the cached listing for ``manager`` and list again."""
        self._names(manager)
        adapter = self.factory(manager, scope)
        self.cache.invalidate(adapter.cache_key)
        return await self.list_packages(manager, scope=scope, refresh=True, annotate=False)

    ## Mutations ##

    async def install(
        self,
        name: str,
        manager: str,
        version: Optional[str] = None,
        force: bool = False,
        scope: Scope = GLOBAL,
    ) -> str:
        self._names(manager)
        return await self.jobs.submit(
            manager, Operation.INSTALL, name, version=version, force=force, scope=scope
        )

    async def update(self, name: str, manager: str, scope: Scope = GLOBAL) -> str:
        self._names(manager)
        return await self.jobs.submit(manager, Operation.UPDATE, name, scope=scope)

    async def uninstall(
        self,
        name: str,
        manager: str,
        force: bool = False,
        scope: Scope = GLOBAL,
        clean_cache: bool = True,
    ) -> str:
        self._names(manager)
        return await self.jobs.submit(
            manager,
            Operation.UNINSTALL,
            name,
            force=force,
            scope=scope,
            clean_cache=clean_cache,
        )

    async def update_outdated(self, manager: str, scope: Scope = GLOBAL) -> str:
        """Submit a batch job upgrading everything ``manager`` reports outdated."""
        self._names(manager)
        return await self.jobs.submit_batch_update(manager, scope=scope)

    def clean_cache(self, older_than: float = 0) -> int:
        """Remove cached listings older than ``older_than`` seconds."""
        return self.cache.clean(older_than)
