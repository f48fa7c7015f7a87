"""Adapter registry: maps manager names to adapter classes."""

from __future__ import annotations

from boxy.core.errors import InvalidScopeError, ManagerNotFoundError
from boxy.core.scope import GLOBAL, Scope
from boxy.managers.base import PackageManager
from boxy.managers.brew import BrewManager
from boxy.managers.bun import BunManager
from boxy.managers.cargo import CargoManager
from boxy.managers.mas import MasManager
from boxy.managers.npm import NpmManager
from boxy.managers.pip import PipManager
from boxy.managers.pipx import PipxManager
from boxy.managers.pnpm import PnpmManager
from boxy.managers.uv import UvManager
from boxy.managers.yarn import YarnManager

MANAGERS: dict[str, type[PackageManager]] = {
    cls.name: cls
    for cls in (
        BrewManager,
        MasManager,
        NpmManager,
        PnpmManager,
        YarnManager,
        BunManager,
        PipManager,
        PipxManager,
        UvManager,
        CargoManager,
    )
}

MANAGER_NAMES: tuple[str, ...] = tuple(MANAGERS)


def create_manager(name: str, scope: Scope = GLOBAL) -> PackageManager:
    """Build the adapter registered under ``name``.

    Managers without scope support always run globally; asking them for a
    local scope is rejected.

    Raises:
        ManagerNotFoundError: If no adapter has that name.
        InvalidScopeError: If local scope is requested for an unscoped manager.
    """
    cls = MANAGERS.get(name)
    if cls is None:
        raise ManagerNotFoundError(name=name)
    if not scope.is_global and not cls.supports_scope:
        raise InvalidScopeError(
            f"{name} does not support local scope", context={"manager": name}
        )
    return cls(scope)
