"""cargo adapter for binaries installed with ``cargo install``."""

from __future__ import annotations

import re
from typing import List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import BoxyError, PackageNotFoundError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked
from boxy.managers.base import PackageManager

log = get_logger(__name__)

_SEARCH_LINE = re.compile(r'^(?P<name>[\w\-]+)\s*=\s*"(?P<version>[^"]+)"\s*(?:#\s*(?P<desc>.*))?$')


def parse_install_list(output: str) -> List[Package]:
    """Parse ``cargo install --list``.

    Crate lines look like ``ripgrep v14.1.0:``; the indented lines under
    them name the installed binaries and are skipped.
    """
    pkgs: List[Package] = []
    for line in output.splitlines():
        if not line.strip() or line[0].isspace():
            continue
        parts = line.split()
        version = parts[1].rstrip(":").lstrip("v") if len(parts) > 1 else ""
        pkgs.append(
            Package(name=parts[0], version=version, manager="cargo", installed_path="~/.cargo/bin")
        )
    return pkgs


def parse_search(output: str) -> List[Package]:
    """Parse ``cargo search`` lines of the form ``name = "1.0"    # desc``."""
    pkgs: List[Package] = []
    for line in output.splitlines():
        match = _SEARCH_LINE.match(line.strip())
        if match:
            pkgs.append(
                Package(
                    name=match["name"],
                    version=match["version"],
                    manager="cargo",
                    description=(match["desc"] or "").strip() or None,
                    latest_version=match["version"],
                )
            )
    return pkgs


class CargoManager(PackageManager):
    """Rust binaries managed by cargo."""

    name = "cargo"
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.SEARCH_REMOTE,
        Capability.VERSION_SELECTION,
    })

    async def check_available(self) -> bool:
        return await probe("cargo", "--version")

    async def list_installed(self) -> List[Package]:
        out = await run_checked("cargo", "cargo", "install", "--list", timeout=READ_TIMEOUT)
        return parse_install_list(out)

    async def search(self, query: str) -> List[Package]:
        out = await run_checked("cargo", "cargo", "search", query, "--limit", "20", timeout=READ_TIMEOUT)
        return parse_search(out)

    async def get_info(self, name: str) -> Package:
        out = await run_checked("cargo", "cargo", "search", name, "--limit", "1", timeout=READ_TIMEOUT)
        for pkg in parse_search(out):
            if pkg.name == name:
                return pkg
        raise PackageNotFoundError(package=name, manager="cargo")

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["cargo", "install"]
        if version:
            args += ["--version", version]
        if force:
            args.append("--force")
        args.append(name)
        await run_checked("cargo", *args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await run_checked("cargo", "cargo", "install", "--force", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await run_checked("cargo", "cargo", "uninstall", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        """cargo has no outdated command; compare against ``cargo search``."""
        outdated: List[Package] = []
        for pkg in await self.list_installed():
            try:
                info = await self.get_info(pkg.name)
            except BoxyError as e:
                log.debug("cargo_latest_lookup_failed", package=pkg.name, error=str(e))
                continue
            if info.latest_version and info.latest_version != pkg.version:
                pkg.outdated = True
                pkg.latest_version = info.latest_version
                outdated.append(pkg)
        return outdated
