"""Yarn (classic) adapter with global and per-project scope."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterator, List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import CommandFailedError, PackageNotFoundError, UnsupportedOperationError
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_capture, run_checked
from boxy.managers.base import PackageManager

log = get_logger(__name__)

# global list reports packages as: "typescript@5.4.5" has binaries:
_GLOBAL_INFO = re.compile(r'^"(?P<spec>.+@[^@"]+)" has binaries')


def split_spec(spec: str) -> tuple[str, str]:
    """Split ``name@version``, keeping the ``@`` of scoped names."""
    name, sep, version = spec.rpartition("@")
    if not sep or not name:
        return spec, ""
    return name, version


def iter_events(output: str) -> Iterator[dict[str, Any]]:
    """Yield the JSON objects of yarn's line-delimited ``--json`` output."""
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            log.debug("yarn_unparsed_line", line=line[:200])
            continue
        if isinstance(event, dict):
            yield event


def parse_list(output: str) -> List[Package]:
    """Parse ``yarn list --json`` and ``yarn global list --json``."""
    pkgs: dict[str, Package] = {}
    for event in iter_events(output):
        data = event.get("data")
        specs: list[str] = []
        if event.get("type") == "tree" and isinstance(data, dict):
            specs = [t["name"] for t in data.get("trees") or [] if isinstance(t, dict) and "name" in t]
        elif event.get("type") == "info" and isinstance(data, str):
            match = _GLOBAL_INFO.match(data)
            if match:
                specs = [match["spec"]]
        for spec in specs:
            name, version = split_spec(spec)
            pkgs[name] = Package(name=name, version=version, manager="yarn")
    return sorted(pkgs.values(), key=lambda p: p.name.lower())


def parse_outdated(output: str) -> List[Package]:
    """Parse the ``table`` event of ``yarn outdated --json``."""
    pkgs: List[Package] = []
    for event in iter_events(output):
        data = event.get("data")
        if event.get("type") != "table" or not isinstance(data, dict):
            continue
        head = [str(h).lower() for h in data.get("head") or []]
        try:
            name_at, current_at, latest_at = (head.index(h) for h in ("package", "current", "latest"))
        except ValueError:
            continue
        for row in data.get("body") or []:
            pkgs.append(
                Package(
                    name=row[name_at],
                    version=row[current_at],
                    manager="yarn",
                    outdated=True,
                    latest_version=row[latest_at],
                )
            )
    return pkgs


class YarnManager(PackageManager):
    """Yarn classic, either ``yarn global`` or inside one project directory."""

    name = "yarn"
    supports_scope = True
    capabilities = frozenset({
        Capability.LIST_INSTALLED,
        Capability.QUERY_DEPENDENCIES,
        Capability.VERSION_SELECTION,
        Capability.BATCH_INSTALL,
    })

    def _args(self, *args: str) -> list[str]:
        if self.scope.is_global:
            return ["yarn", "global", *args]
        return ["yarn", *args]

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("yarn", *self._args(*args), timeout=timeout, cwd=self.scope.workdir)

    async def _info(self, name: str, *fields: str) -> Any:
        try:
            out = await run_checked("yarn", "yarn", "info", name, *fields, "--json", timeout=READ_TIMEOUT)
        except CommandFailedError as e:
            raise PackageNotFoundError(package=name, manager="yarn") from e
        for event in iter_events(out):
            if event.get("type") == "inspect":
                return event.get("data")
        raise PackageNotFoundError(package=name, manager="yarn")

    async def check_available(self) -> bool:
        return await probe("yarn", "--version")

    async def list_installed(self) -> List[Package]:
        out = await self._run("list", "--depth=0", "--json")
        return parse_list(out)

    async def search(self, query: str) -> List[Package]:
        raise UnsupportedOperationError(manager=self.name, operation="search")

    async def get_info(self, name: str) -> Package:
        data = await self._info(name)
        if not isinstance(data, dict):
            raise PackageNotFoundError(package=name, manager="yarn")
        license_ = data.get("license")
        return Package(
            name=data.get("name", name),
            version=str(data.get("version", "")),
            manager="yarn",
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
        await self._run("upgrade", name, "--latest", timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._run("remove", name, timeout=COMMAND_TIMEOUT)

    async def _outdated_cwd(self) -> Path | None:
        # yarn has no "global outdated"; run it inside the global directory
        if not self.scope.is_global:
            return self.scope.workdir
        out = await run_checked("yarn", "yarn", "global", "dir", timeout=READ_TIMEOUT)
        return Path(out.strip()) if out.strip() else None

    async def check_outdated(self) -> List[Package]:
        # exits 1 when something is outdated
        out, err, code = await run_capture(
            "yarn", "outdated", "--json", timeout=READ_TIMEOUT, cwd=await self._outdated_cwd()
        )
        if code not in (0, 1):
            raise CommandFailedError(manager="yarn", command="yarn outdated", exit_code=code, error=err)
        return parse_outdated(out)

    async def clean_cache(self) -> None:
        await run_checked("yarn", "yarn", "cache", "clean", timeout=COMMAND_TIMEOUT)

    async def list_dependencies(self, name: str) -> List[Package]:
        data = await self._info(name, "dependencies")
        if not isinstance(data, dict):
            return []
        return [
            Package(name=dep, version=str(spec), manager="yarn")
            for dep, spec in sorted(data.items())
        ]
