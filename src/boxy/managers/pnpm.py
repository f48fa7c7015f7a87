"""pnpm adapter with global and per-project scope."""

from __future__ import annotations

from typing import List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import loads_json, probe, run_capture, run_checked, run_json
from boxy.managers.base import PackageManager
from boxy.managers.npm import parse_list, parse_outdated, parse_search

log = get_logger(__name__)


class PnpmManager(PackageManager):
    """pnpm, either machine-wide (``-g``) or inside one project directory.

    pnpm reports installed and outdated packages in npm's JSON shapes, so
    the npm parsers are shared.
    """

    name = "pnpm"
    supports_scope = True
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.SEARCH_REMOTE,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    def _args(self, *args: str) -> list[str]:
        cmd = ["pnpm", *args]
        if self.scope.is_global:
            cmd.append("-g")
        return cmd

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("pnpm", *self._args(*args), timeout=timeout, cwd=self.scope.workdir)

    async def check_available(self) -> bool:
        return await probe("pnpm", "--version")

    async def list_installed(self) -> List[Package]:
        data = await run_json(
            "pnpm", *self._args("ls", "--json", "--depth=0"), timeout=READ_TIMEOUT, cwd=self.scope.workdir
        )
        pkgs = parse_list(data or [], manager="pnpm")
        log.info("pnpm_list_complete", scope=self.scope.label, count=len(pkgs))
        return pkgs

    async def search(self, query: str) -> List[Package]:
        data = await run_json("pnpm", "pnpm", "search", "--json", query, timeout=READ_TIMEOUT)
        return parse_search(data, manager="pnpm")

    async def get_info(self, name: str) -> Package:
        try:
            data = await run_json("pnpm", "pnpm", "view", name, "--json", timeout=READ_TIMEOUT)
        except CommandFailedError as e:
            if "404" in str(e.context.get("error", "")):
                raise PackageNotFoundError(package=name, manager="pnpm") from e
            raise
        if not isinstance(data, dict):
            raise PackageNotFoundError(package=name, manager="pnpm")

        license_ = data.get("license")
        return Package(
            name=data.get("name", name),
            version=str(data.get("version", "")),
            manager="pnpm",
            description=data.get("description"),
            homepage=data.get("homepage"),
            license=license_ if isinstance(license_, str) else None,
            latest_version=(data.get("dist-tags") or {}).get("latest"),
        )

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["add", f"{name}@{version}" if version else name]
        if force:
            args.append("--force")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("update", "--latest", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._run("remove", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        # exits 1 when something is outdated
        out, err, code = await run_capture(
            *self._args("outdated", "--format", "json"), timeout=READ_TIMEOUT, cwd=self.scope.workdir
        )
        if code not in (0, 1):
            raise CommandFailedError(manager="pnpm", command="pnpm outdated", exit_code=code, error=err)
        return parse_outdated(loads_json("pnpm", out, command="pnpm outdated"), manager="pnpm")

    async def clean_cache(self) -> None:
        await run_checked("pnpm", "pnpm", "store", "prune", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        data = await run_json("pnpm", "pnpm", "view", name, "dependencies", "--json", timeout=READ_TIMEOUT)
        if not isinstance(data, dict):
            return []
        return [
            Package(name=dep, version=str(spec), manager="pnpm")
            for dep, spec in sorted(data.items())
        ]
