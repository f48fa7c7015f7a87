"""Abstract interface every package manager adapter implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, ClassVar, List, Optional

from boxy.core.errors import UnsupportedOperationError
from boxy.core.models import Capability, Package
from boxy.core.scope import GLOBAL, Scope


class PackageManager(ABC):
    """Base class for package manager adapters.

    Adapters are cheap to construct; the engine builds a fresh one per
    attempt. They never touch the engine's cache themselves.
    """

    name: ClassVar[str]
    capabilities: ClassVar[frozenset[Capability]] = frozenset()
    supports_scope: ClassVar[bool] = False

    def __init__(self, scope: Scope = GLOBAL) -> None:
        self.scope = scope

    @property
    def cache_key(self) -> str:
        """Cache and resource key: the name, qualified by scope if scoped."""
        if not self.supports_scope:
            return self.name
        return self.scope.qualify(self.name)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def check_available(self) -> bool:
        """Whether the manager's executable is present and working."""

    @abstractmethod
    async def list_installed(self) -> List[Package]:
        """List installed packages."""

    @abstractmethod
    async def search(self, query: str) -> List[Package]:
        """Search the manager's registry."""

    @abstractmethod
    async def get_info(self, name: str) -> Package:
        """Get package details by name."""

    @abstractmethod
    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        """Install a package, optionally pinned to ``version``."""

    @abstractmethod
    async def upgrade(self, name: str) -> None:
        """Upgrade an installed package to its latest version."""

    @abstractmethod
    async def uninstall(self, name: str, force: bool = False) -> None:
        """Remove a package."""

    @abstractmethod
    async def check_outdated(self) -> List[Package]:
        """List installed packages that have a newer version."""

    async def clean_cache(self) -> None:
        """Clear the manager's own download cache."""
        raise UnsupportedOperationError(manager=self.name, operation="clean_cache")

    async def list_dependencies(self, name: str) -> List[Package]:
        """List the dependencies of ``name``."""
        raise UnsupportedOperationError(manager=self.name, operation="list_dependencies")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} key={self.cache_key!r}>"


ManagerFactory = Callable[[str, Scope], PackageManager]
