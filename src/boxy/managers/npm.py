"""npm adapter with global and per-project scope."""

from __future__ import annotations

from typing import Any, List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError, ParseError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import loads_json, probe, run_capture, run_checked, run_json
from boxy.managers.base import PackageManager

log = get_logger(__name__)


def parse_list(data: Any, manager: str = "npm") -> List[Package]:
    """Parse ``npm ls --json --depth=0`` output.

    pnpm prints the same shape wrapped in a list, one entry per project.
    """
    if isinstance(data, list):
        return [pkg for item in data for pkg in parse_list(item, manager)]
    if not isinstance(data, dict):
        raise ParseError(f"Unexpected {manager} ls output", context={"manager": manager})

    deps = data.get("dependencies") or {}
    return [
        Package(
            name=name,
            version=str(dep.get("version", "")).lstrip("^~"),
            manager=manager,
            installed_path=dep.get("path"),
        )
        for name, dep in sorted(deps.items())
    ]


def _search_item(value: dict, manager: str) -> Package | None:
    item = value.get("package", value)
    name, version = item.get("name"), item.get("version")
    if not name or not version:
        return None
    links = item.get("links") or {}
    return Package(
        name=name,
        version=version,
        manager=manager,
        description=item.get("description"),
        homepage=links.get("homepage"),
    )


def parse_search(data: Any, manager: str = "npm") -> List[Package]:
    """Parse ``npm search --json``, which is a list or an object wrapper."""
    if isinstance(data, dict):
        data = data.get("objects") or data.get("results") or []
    if not isinstance(data, list):
        return []
    return [pkg for item in data if isinstance(item, dict) and (pkg := _search_item(item, manager))]


def parse_outdated(data: Any, manager: str = "npm") -> List[Package]:
    """Parse ``npm outdated --json``: ``{name: {current, wanted, latest}}``."""
    if not data:
        return []
    if not isinstance(data, dict):
        raise ParseError(f"Unexpected {manager} outdated output", context={"manager": manager})

    return [
        Package(
            name=name,
            version=str(info.get("current") or ""),
            manager=manager,
            outdated=True,
            latest_version=info.get("latest"),
        )
        for name, info in sorted(data.items())
    ]


class NpmManager(PackageManager):
    """npm, either machine-wide (``-g``) or inside one project directory."""

    name = "npm"
    supports_scope = True
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.SEARCH_REMOTE,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    def _args(self, *args: str) -> list[str]:
        cmd = ["npm", *args]
        if self.scope.is_global:
            cmd.append("-g")
        return cmd

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("npm", *self._args(*args), timeout=timeout, cwd=self.scope.workdir)

    async def check_available(self) -> bool:
        return await probe("npm", "--version")

    async def list_installed(self) -> List[Package]:
        # npm ls exits 1 on peer dependency problems but still prints the tree
        out, err, code = await run_capture(
            *self._args("ls", "--json", "--depth=0", "--long"),
            timeout=READ_TIMEOUT,
            cwd=self.scope.workdir,
        )
        if code not in (0, 1) or not out:
            raise CommandFailedError(manager="npm", command="npm ls", exit_code=code, error=err)
        pkgs = parse_list(loads_json("npm", out, command="npm ls"))
        log.info("npm_list_complete", scope=self.scope.label, count=len(pkgs))
        return pkgs

    async def search(self, query: str) -> List[Package]:
        data = await run_json("npm", "npm", "search", "--json", query, timeout=READ_TIMEOUT)
        return parse_search(data)

    async def get_info(self, name: str) -> Package:
        try:
            data = await run_json("npm", "npm", "view", name, "--json", timeout=READ_TIMEOUT)
        except CommandFailedError as e:
            if "E404" in str(e.context.get("error", "")):
                raise PackageNotFoundError(package=name, manager="npm") from e
            raise
        if isinstance(data, list):
            data = data[-1] if data else None
        if not isinstance(data, dict):
            raise PackageNotFoundError(package=name, manager="npm")

        license_ = data.get("license")
        return Package(
            name=data.get("name", name),
            version=str(data.get("version", "")),
            manager="npm",
            description=data.get("description"),
            homepage=data.get("homepage"),
            license=license_ if isinstance(license_, str) else None,
            latest_version=(data.get("dist-tags") or {}).get("latest"),
        )

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["install", f"{name}@{version}" if version else name]
        if force:
            args.append("--force")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("install", f"{name}@latest", timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        args = ["uninstall", name]
        if force:
            args.append("--force")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        # npm outdated exits 1 when something is outdated
        out, err, code = await run_capture(
            *self._args("outdated", "--json"), timeout=READ_TIMEOUT, cwd=self.scope.workdir
        )
        if code not in (0, 1):
            raise CommandFailedError(manager="npm", command="npm outdated", exit_code=code, error=err)
        return parse_outdated(loads_json("npm", out, command="npm outdated"))

    async def clean_cache(self) -> None:
        await run_checked("npm", "npm", "cache", "clean", "--force", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        data = await run_json("npm", "npm", "view", name, "dependencies", "--json", timeout=READ_TIMEOUT)
        if not isinstance(data, dict):
            return []
        return [
            Package(name=dep, version=str(spec), manager="npm")
            for dep, spec in sorted(data.items())
        ]

