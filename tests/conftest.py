"""
Shared pytest fixtures for the boxy test suite.

Provides fixtures for:
- Fake package managers driven by an in-memory backend
- A manager factory resolving names to those fakes
- Cache, JobStore and Repository instances with fast timings
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from boxy.core.cache import Cache
from boxy.core.config import Settings
from boxy.core.errors import (
    CommandFailedError,
    InvalidScopeError,
    ManagerNotFoundError,
    PackageNotFoundError,
)
from boxy.core.executor import ResourceExecutor
from boxy.core.jobs import JobStore
from boxy.core.logging import configure_logging
from boxy.core.models import Capability, Package
from boxy.core.repo import Repository
from boxy.core.scope import GLOBAL, Scope
from boxy.managers.base import PackageManager


@pytest.fixture(scope="session", autouse=True)
def _logging(tmp_path_factory: pytest.TempPathFactory) -> None:
    """Send structured logs to a temporary file for the whole session."""
    configure_logging(level="DEBUG", log_file=tmp_path_factory.mktemp("logs") / "boxy.log")


def pkg(name: str, version: str = "1.0.0", manager: str = "alpha", **kwargs: Any) -> Package:
    """Build a Package with test defaults."""
    return Package(name=name, version=version, manager=manager, **kwargs)


@dataclass
class FakeBackend:
    """In-memory state and behaviour switches behind one fake manager."""

    name: str
    installed: list[Package] = field(default_factory=list)
    outdated: list[Package] = field(default_factory=list)
    remote: list[Package] = field(default_factory=list)
    dependencies: list[Package] = field(default_factory=list)
    capabilities: frozenset = frozenset(Capability)
    supports_scope: bool = False
    available: bool = True
    availability_delay: float = 0.0
    list_delay: float = 0.0
    list_error: Exception | None = None
    outdated_error: Exception | None = None
    mutation_delay: float = 0.0
    ignore_cancel: bool = False
    mutation_failures: int = 0
    failing_targets: set[str] = field(default_factory=set)
    clean_error: Exception | None = None
    clean_delay: float = 0.0
    finished: list[str] = field(default_factory=list)
    calls: list[tuple] = field(default_factory=list)
    active: int = 0
    max_active: int = 0

    def track(self, *call: Any) -> None:
        self.calls.append(call)

    def count(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)


class FakeManager(PackageManager):
    """PackageManager whose behaviour comes from a FakeBackend."""

    def __init__(self, backend: FakeBackend, scope: Scope = GLOBAL) -> None:
        super().__init__(scope)
        self.backend = backend
        self.name = backend.name
        self.capabilities = backend.capabilities
        self.supports_scope = backend.supports_scope

    async def check_available(self) -> bool:
        if self.backend.availability_delay:
            await asyncio.sleep(self.backend.availability_delay)
        return self.backend.available

    async def list_installed(self) -> list[Package]:
        self.backend.track("list")
        self.backend.active += 1
        self.backend.max_active = max(self.backend.max_active, self.backend.active)
        try:
            if self.backend.list_delay:
                await asyncio.sleep(self.backend.list_delay)
            if self.backend.list_error is not None:
                raise self.backend.list_error
            return [Package(**p.to_dict()) for p in self.backend.installed]
        finally:
            self.backend.active -= 1

    async def search(self, query: str) -> list[Package]:
        self.backend.track("search", query)
        return [p for p in self.backend.remote if query in p.name]

    async def get_info(self, name: str) -> Package:
        for p in self.backend.installed + self.backend.remote:
            if p.name == name:
                return p
        raise PackageNotFoundError(package=name, manager=self.name)

    async def _mutate(self, *call: Any) -> None:
        self.backend.track(*call)
        self.backend.active += 1
        self.backend.max_active = max(self.backend.max_active, self.backend.active)
        try:
            if self.backend.mutation_delay:
                try:
                    await asyncio.sleep(self.backend.mutation_delay)
                except asyncio.CancelledError:
                    if not self.backend.ignore_cancel:
                        raise
            if self.backend.mutation_failures > 0:
                self.backend.mutation_failures -= 1
                raise CommandFailedError(manager=self.name, command=call[0], exit_code=1, error="boom")
            if call[1] in self.backend.failing_targets:
                raise CommandFailedError(
                    manager=self.name, command=f"{call[0]} {call[1]}", exit_code=1, error="boom"
                )
            self.backend.finished.append(call[1])
        finally:
            self.backend.active -= 1

    async def install(self, name: str, version: str | None = None, force: bool = False) -> None:
        await self._mutate("install", name, version, force)

    async def upgrade(self, name: str) -> None:
        await self._mutate("upgrade", name)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._mutate("uninstall", name, force)

    async def check_outdated(self) -> list[Package]:
        self.backend.track("outdated")
        if self.backend.outdated_error is not None:
            raise self.backend.outdated_error
        return [Package(**p.to_dict()) for p in self.backend.outdated]

    async def clean_cache(self) -> None:
        self.backend.track("clean_cache")
        self.backend.active += 1
        self.backend.max_active = max(self.backend.max_active, self.backend.active)
        try:
            if self.backend.clean_delay:
                await asyncio.sleep(self.backend.clean_delay)
            if self.backend.clean_error is not None:
                raise self.backend.clean_error
        finally:
            self.backend.active -= 1

    async def list_dependencies(self, name: str) -> list[Package]:
        return list(self.backend.dependencies)


class FakeFactory:
    """Manager factory over a dict of fake backends."""

    def __init__(self, backends: dict[str, FakeBackend]) -> None:
        self.backends = backends
        self.created = 0

    def __call__(self, name: str, scope: Scope = GLOBAL) -> FakeManager:
        backend = self.backends.get(name)
        if backend is None:
            raise ManagerNotFoundError(name=name)
        if not scope.is_global and not backend.supports_scope:
            raise InvalidScopeError(f"{name} does not support local scope")
        self.created += 1
        return FakeManager(backend, scope)


@pytest.fixture
def backends() -> dict[str, FakeBackend]:
    """Two managers: a scoped one with every capability and a plain one."""
    return {
        "alpha": FakeBackend(
            name="alpha",
            supports_scope=True,
            installed=[pkg("zlib"), pkg("Babel", "2.0.0")],
            remote=[pkg("left-pad", "1.3.0"), pkg("leftpad-cli", "0.1.0")],
        ),
        "beta": FakeBackend(
            name="beta",
            capabilities=frozenset({Capability.LIST_INSTALLED}),
            installed=[pkg("ripgrep", "14.1.0", manager="beta")],
        ),
    }


@pytest.fixture
def factory(backends: dict[str, FakeBackend]) -> FakeFactory:
    return FakeFactory(backends)


@pytest.fixture
def cache(tmp_path: Path) -> Cache:
    return Cache(tmp_path / "cache")


@pytest.fixture
def executor() -> ResourceExecutor:
    return ResourceExecutor(max_attempts=1, base_delay=0)


@pytest.fixture
def store(factory: FakeFactory, cache: Cache, executor: ResourceExecutor) -> JobStore:
    return JobStore(factory, cache, executor, heartbeat_interval=0.01, command_timeout=5)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with every delay shrunk for tests."""
    return Settings(
        cache_dir=tmp_path / "cache",
        log_dir=tmp_path / "logs",
        max_attempts=1,
        retry_base_delay=0,
        command_timeout=5,
        read_timeout=1,
        availability_timeout=0.5,
        heartbeat_interval=0.01,
    )


@pytest.fixture
def repo(settings: Settings, factory: FakeFactory, backends: dict[str, FakeBackend]) -> Repository:
    return Repository(settings=settings, factory=factory, manager_names=list(backends))
