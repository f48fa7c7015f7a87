"""Homebrew adapter covering both formulae and casks."""

from __future__ import annotations

import time
from typing import Any, List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError, ParseError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked, run_json
from boxy.managers.base import PackageManager

log = get_logger(__name__)

NOT_FOUND_MARKERS = ("No available formula", "No formulae or casks found", "No cask with this name")


def _license(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        names = [v for v in value if isinstance(v, str)]
        return ", ".join(names) or None
    return None


def _cask_version(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value or "")


def formula_to_package(f: dict) -> Package:
    """Convert one ``brew info --json=v2`` formula entry into a Package."""
    installed = f.get("installed") or []
    latest = (f.get("versions") or {}).get("stable") or (f.get("versions") or {}).get("head")
    version = installed[-1].get("version") if installed else None
    size = installed[-1].get("installed_size") if installed else None

    return Package(
        name=f.get("name", "?"),
        version=str(version or latest or ""),
        manager="brew",
        description=f.get("desc"),
        homepage=f.get("homepage"),
        license=_license(f.get("license")),
        installed_path=f.get("installed_path"),
        size=int(size) * 1024 if isinstance(size, int) else None,
        outdated=bool(f.get("outdated")),
        latest_version=latest,
    )


def cask_to_package(c: dict) -> Package:
    """Convert one ``brew info --json=v2`` cask entry into a Package."""
    name = c.get("token") or (c.get("name") or ["?"])[0]
    latest = _cask_version(c.get("version"))
    size = c.get("installed_size")

    return Package(
        name=name,
        version=str(c.get("installed") or latest),
        manager="brew",
        description=c.get("desc"),
        homepage=c.get("homepage"),
        size=int(size) * 1024 if isinstance(size, int) else None,
        outdated=bool(c.get("outdated")),
        latest_version=latest or None,
    )


def parse_outdated(data: Any) -> List[Package]:
    """Parse ``brew outdated --json=v2`` output."""
    if not isinstance(data, dict):
        raise ParseError("Unexpected brew outdated output", context={"manager": "brew"})

    pkgs: List[Package] = []
    for item in (data.get("formulae") or []) + (data.get("casks") or []):
        current = item.get("installed_versions") or []
        pkgs.append(
            Package(
                name=item["name"],
                version=str(current[-1] if current else ""),
                manager="brew",
                outdated=True,
                latest_version=item.get("current_version"),
            )
        )
    return pkgs


def parse_search(output: str) -> List[Package]:
    """Parse plain ``brew search`` output, skipping section headers."""
    return [
        Package(name=line.strip(), version="", manager="brew")
        for line in output.splitlines()
        if line.strip() and not line.startswith("==>")
    ]


class BrewManager(PackageManager):
    """Homebrew formulae and casks."""

    name = "brew"
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.SEARCH_REMOTE,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
    })

    async def check_available(self) -> bool:
        return await probe("brew", "--version")

    async def list_installed(self) -> List[Package]:
        """List installed Homebrew formulae and casks.

        Returns:
            A list of installed Package instances.
        """
        start = time.perf_counter()
        data = await run_json("brew", "brew", "info", "--json=v2", "--installed", timeout=READ_TIMEOUT)
        if not isinstance(data, dict):
            raise ParseError("Unexpected brew info output", context={"manager": "brew"})

        pkgs = [formula_to_package(f) for f in data.get("formulae", [])]
        pkgs += [cask_to_package(c) for c in data.get("casks", [])]

        log.info(
            "brew_list_complete",
            count=len(pkgs),
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        return pkgs

    async def search(self, query: str) -> List[Package]:
        out = await run_checked("brew", "brew", "search", query, timeout=READ_TIMEOUT)
        return parse_search(out)

    async def get_info(self, name: str) -> Package:
        """Get formula or cask info by name.

        Raises:
            PackageNotFoundError: If Homebrew knows no such formula or cask.
        """
        try:
            data = await run_json("brew", "brew", "info", "--json=v2", name, timeout=READ_TIMEOUT)
        except CommandFailedError as e:
            if any(m in str(e.context.get("error", "")) for m in NOT_FOUND_MARKERS):
                raise PackageNotFoundError(package=name, manager="brew") from e
            raise

        data = data or {}
        if formulae := data.get("formulae"):
            return formula_to_package(formulae[0])
        if casks := data.get("casks"):
            return cask_to_package(casks[0])

        log.error("brew_package_not_found", package=name)
        raise PackageNotFoundError(package=name, manager="brew")

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["brew", "install"]
        if force:
            args.append("--force")
        args.append(f"{name}@{version}" if version else name)
        await run_checked("brew", *args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await run_checked("brew", "brew", "upgrade", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        args = ["brew", "uninstall"]
        if force:
            args.append("--force")
        args.append(name)
        await run_checked("brew", *args, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        data = await run_json("brew", "brew", "outdated", "--json=v2", timeout=READ_TIMEOUT)
        return parse_outdated(data or {})

    async def clean_cache(self) -> None:
        await run_checked("brew", "brew", "cleanup", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        out = await run_checked("brew", "brew", "deps", name, timeout=READ_TIMEOUT)
        return [
            Package(name=line.strip(), version="", manager="brew")
            for line in out.splitlines()
            if line.strip()
        ]
