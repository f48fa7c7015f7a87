"""pip adapter for the user's Python environment."""

from __future__ import annotations

import re
from typing import Any, List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError, ParseError
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked, run_json
from boxy.managers.base import PackageManager

PIP = "pip3"

INDEX_HEADER = re.compile(r"^(?P<name>[A-Za-z0-9_.\-]+) \((?P<version>[^)]+)\)")


def parse_list(data: Any) -> List[Package]:
    """Parse ``pip list --format=json`` output."""
    if not isinstance(data, list):
        raise ParseError("Unexpected pip list output", context={"manager": "pip"})
    return [
        Package(
            name=item["name"],
            version=item.get("version", ""),
            manager="pip",
            outdated="latest_version" in item,
            latest_version=item.get("latest_version"),
        )
        for item in data
        if isinstance(item, dict) and "name" in item
    ]


def parse_show(output: str) -> dict[str, str]:
    """Parse ``pip show`` ``Key: value`` lines into a dict."""
    fields: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and not line.startswith(" "):
            fields[key.strip()] = value.strip()
    return fields


class PipManager(PackageManager):
    """pip for the interpreter found on PATH."""

    name = "pip"
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.SEARCH_REMOTE,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("pip", PIP, *args, timeout=timeout)

    async def check_available(self) -> bool:
        return await probe(PIP, "--version")

    async def list_installed(self) -> List[Package]:
        data = await run_json("pip", PIP, "list", "--format=json", timeout=READ_TIMEOUT)
        return parse_list(data or [])

    async def search(self, query: str) -> List[Package]:
        """Look ``query`` up on the index.

        ``pip search`` no longer works against PyPI, so this resolves the
        exact name with ``pip index versions`` and returns at most one hit.
        """
        try:
            out = await self._run("index", "versions", query)
        except CommandFailedError:
            return []

        match = INDEX_HEADER.match(out.strip())
        if not match:
            return []
        return [Package(name=match["name"], version=match["version"], manager="pip")]

    async def get_info(self, name: str) -> Package:
        try:
            out = await self._run("show", name)
        except CommandFailedError as e:
            raise PackageNotFoundError(package=name, manager="pip") from e

        fields = parse_show(out)
        if "Name" not in fields:
            raise PackageNotFoundError(package=name, manager="pip")

        return Package(
            name=fields["Name"],
            version=fields.get("Version", ""),
            manager="pip",
            description=fields.get("Summary") or None,
            homepage=fields.get("Home-page") or None,
            license=fields.get("License") or None,
            installed_path=fields.get("Location") or None,
        )

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        args = ["install", f"{name}=={version}" if version else name]
        if force:
            args.append("--force-reinstall")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("install", "--upgrade", name, timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        # -y always: a confirmation prompt would hang with no terminal attached
        await self._run("uninstall", "-y", name, timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        data = await run_json("pip", PIP, "list", "--outdated", "--format=json", timeout=READ_TIMEOUT)
        return parse_list(data or [])

    async def clean_cache(self) -> None:
        await self._run("cache", "purge", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        info = parse_show(await self._run("show", name))
        requires = info.get("Requires", "")
        return [
            Package(name=dep.strip(), version="", manager="pip")
            for dep in requires.split(",")
            if dep.strip()
        ]
