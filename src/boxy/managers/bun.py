"""bun adapter with global and per-project scope."""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import PackageNotFoundError, UnsupportedOperationError
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked
from boxy.managers.base import PackageManager
from boxy.managers.yarn import split_spec

_TREE_MARKERS = ("\u251c\u2500\u2500", "\u2514\u2500\u2500")


def global_dir() -> Path:
    """Where ``bun add -g`` installs, honouring ``BUN_INSTALL``."""
    root = os.environ.get("BUN_INSTALL") or Path.home() / ".bun"
    return Path(root) / "install" / "global"


def parse_list(output: str) -> List[Package]:
    """Parse the tree printed by ``bun pm ls``.

    The first line names the ``node_modules`` directory; every entry after
    it is a tree branch followed by ``typescript@5.4.5``.
    """
    pkgs: List[Package] = []
    for line in output.splitlines():
        for marker in _TREE_MARKERS:
            if marker in line:
                name, version = split_spec(line.split(marker, 1)[1].strip())
                pkgs.append(Package(name=name, version=version, manager="bun"))
                break
    return pkgs


def parse_outdated(output: str) -> List[Package]:
    """Parse the ``Package | Current | Update | Latest`` table of ``bun outdated``.

    Both ASCII pipes and box-drawing borders are accepted.
    """
    pkgs: List[Package] = []
    head: list[str] | None = None
    for line in output.splitlines():
        line = line.strip().replace("\u2502", "|")
        if not line.startswith("|"):
            continue
        cells = [c.strip() for c in line.strip("|").split("|")]
        if head is None:
            head = [c.lower() for c in cells]
            continue
        if set("".join(cells)) <= {"-", ":"}:
            continue
        row = dict(zip(head, cells))
        name = row.get("package", "")
        # dev dependencies carry a " (dev)" suffix
        name = name.split(" (", 1)[0]
        if name:
            pkgs.append(
                Package(
                    name=name,
                    version=row.get("current", ""),
                    manager="bun",
                    outdated=True,
                    latest_version=row.get("latest"),
                )
            )
    return pkgs


class BunManager(PackageManager):
    """bun's package manager, either global (``-g``) or per project."""

    name = "bun"
    supports_scope = True
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    def _args(self, *args: str) -> list[str]:
        cmd = ["bun", *args]
        if self.scope.is_global:
            cmd.append("-g")
        return cmd

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("bun", *self._args(*args), timeout=timeout, cwd=self.scope.workdir)

    async def check_available(self) -> bool:
        return await probe("bun", "--version")

    async def list_installed(self) -> List[Package]:
        return parse_list(await self._run("pm", "ls"))

    async def search(self, query: str) -> List[Package]:
        raise UnsupportedOperationError(manager=self.name, operation="search")

    async def get_info(self, name: str) -> Package:
        for pkg in await self.list_installed():
            if pkg.name == name:
                return pkg
        raise PackageNotFoundError(package=name, manager="bun")

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["add", f"{name}@{version}" if version else name]
        if force:
            args.append("--force")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("add", f"{name}@latest", timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._run("remove", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        cwd = global_dir() if self.scope.is_global else self.scope.workdir
        if cwd is not None and not cwd.exists():
            return []
        out = await run_checked("bun", "bun", "outdated", timeout=READ_TIMEOUT, cwd=cwd)
        return parse_outdated(out)

    async def clean_cache(self) -> None:
        await run_checked("bun", "bun", "pm", "cache", "rm", timeout=COMMAND_TIMEOUT)
