"""pipx adapter for isolated Python applications."""

from __future__ import annotations

from typing import Any, List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import BoxyError, PackageNotFoundError, ParseError, UnsupportedOperationError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked, run_json
from boxy.managers.base import PackageManager
from boxy.managers.pip import INDEX_HEADER, PIP

log = get_logger(__name__)


def parse_list(data: Any) -> List[Package]:
    """Parse ``pipx list --json``.

    Each venv carries its main package under
    ``metadata.main_package.package_version``.
    """
    if not isinstance(data, dict):
        raise ParseError("Unexpected pipx list output", context={"manager": "pipx"})

    pkgs: List[Package] = []
    for name, venv in sorted((data.get("venvs") or {}).items()):
        main = ((venv or {}).get("metadata") or {}).get("main_package") or {}
        pkgs.append(
            Package(
                name=main.get("package") or name,
                version=str(main.get("package_version") or ""),
                manager="pipx",
            )
        )
    return pkgs


class PipxManager(PackageManager):
    """pipx-managed applications."""

    name = "pipx"
    capabilities = frozenset({Capability.LIST_INSTALLED, Capability.VERSION_SELECTION})

    async def check_available(self) -> bool:
        return await probe("pipx", "--version")

    async def list_installed(self) -> List[Package]:
        data = await run_json("pipx", "pipx", "list", "--json", timeout=READ_TIMEOUT)
        return parse_list(data or {})

    async def search(self, query: str) -> List[Package]:
        raise UnsupportedOperationError(manager=self.name, operation="search")

    async def _latest(self, name: str) -> str | None:
        out = await run_checked("pipx", PIP, "index", "versions", name, timeout=READ_TIMEOUT)
        match = INDEX_HEADER.match(out.strip())
        return match["version"] if match else None

    async def get_info(self, name: str) -> Package:
        for pkg in await self.list_installed():
            if pkg.name == name:
                pkg.latest_version = await self._latest(name)
                return pkg
        raise PackageNotFoundError(package=name, manager="pipx")

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["pipx", "install", f"{name}=={version}" if version else name]
        if force:
            args.append("--force")
        await run_checked("pipx", *args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await run_checked("pipx", "pipx", "upgrade", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await run_checked("pipx", "pipx", "uninstall", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        """Compare each installed app against the index, one lookup per app.

        Lookups that fail are skipped rather than failing the whole check.
        """
        outdated: List[Package] = []
        for pkg in await self.list_installed():
            try:
                latest = await self._latest(pkg.name)
            except BoxyError as e:
                log.debug("pipx_latest_lookup_failed", package=pkg.name, error=str(e))
                continue
            if latest and latest != pkg.version:
                pkg.outdated = True
                pkg.latest_version = latest
                outdated.append(pkg)
        return outdated
