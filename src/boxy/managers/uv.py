"""uv adapter driving its pip-compatible interface."""

from __future__ import annotations

from typing import List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError, UnsupportedOperationError
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked, run_json
from boxy.managers.base import PackageManager
from boxy.managers.pip import parse_list, parse_show


class UvManager(PackageManager):
    """Packages in the environment ``uv pip`` resolves to.

    ``uv pip`` speaks pip's output formats, so the pip parsers are reused
    and only the manager name on each package differs.
    """

    name = "uv"
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("uv", "uv", "pip", *args, timeout=timeout)

    async def _list(self, *flags: str) -> List[Package]:
        data = await run_json("uv", "uv", "pip", "list", *flags, "--format=json", timeout=READ_TIMEOUT)
        pkgs = parse_list(data or [])
        for pkg in pkgs:
            pkg.manager = "uv"
        return pkgs

    async def check_available(self) -> bool:
        return await probe("uv", "--version")

    async def list_installed(self) -> List[Package]:
        return await self._list()

    async def search(self, query: str) -> List[Package]:
        raise UnsupportedOperationError(manager=self.name, operation="search")

    async def get_info(self, name: str) -> Package:
        try:
            out = await self._run("show", name)
        except CommandFailedError as e:
            raise PackageNotFoundError(package=name, manager="uv") from e

        fields = parse_show(out)
        if "Name" not in fields:
            raise PackageNotFoundError(package=name, manager="uv")

        return Package(
            name=fields["Name"],
            version=fields.get("Version", ""),
            manager="uv",
            installed_path=fields.get("Location") or None,
        )

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["install", f"{name}=={version}" if version else name]
        if force:
            args.append("--reinstall")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("install", "--upgrade", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._run("uninstall", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        return await self._list("--outdated")

    async def clean_cache(self) -> None:
        await run_checked("uv", "uv", "cache", "clean", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        requires = parse_show(await self._run("show", name)).get("Requires", "")
        return [
            Package(name=dep.strip(), version="", manager="uv")
            for dep in requires.split(",")
            if dep.strip()
        ]
