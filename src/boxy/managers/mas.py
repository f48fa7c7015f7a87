"""Mac App Store adapter through the ``mas`` command line tool."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from boxy.core.config import COMMAND_TIMEOUT, READ_TIMEOUT
from boxy.core.errors import PackageNotFoundError
from boxy.core.models import Capability, Package
from boxy.core.shell import probe, run_checked
from boxy.managers.base import PackageManager

# "497799835  Xcode  (15.3)" in list, search and outdated ("15.2 -> 15.3")
_APP_LINE = re.compile(r"^\s*(?P<id>\d+)\s+(?P<name>.+?)\s+\((?P<version>[^)]*)\)\s*$")

APPLICATIONS = "/Applications"


@dataclass
class App:
    """One App Store entry; ``mas`` addresses apps by numeric id."""

    id: str
    name: str
    version: str


def parse_apps(output: str) -> List[App]:
    """Parse ``mas list``, ``mas search`` and ``mas outdated`` lines."""
    apps: List[App] = []
    for line in output.splitlines():
        match = _APP_LINE.match(line)
        if match:
            apps.append(App(match["id"], match["name"].strip(), match["version"].strip()))
    return apps


def to_package(app: App, installed: bool = True) -> Package:
    """Convert an App, splitting ``current -> latest`` versions."""
    current, sep, latest = app.version.partition("->")
    return Package(
        name=app.name,
        version=current.strip(),
        manager="mas",
        installed_path=APPLICATIONS if installed else None,
        outdated=bool(sep),
        latest_version=latest.strip() if sep else None,
    )


class MasManager(PackageManager):
    """Mac App Store applications.

    Packages are named after the app; mutations resolve the name back to
    the store id first. A purely numeric name is taken as the id.
    """

    name = "mas"
    capabilities = frozenset({Capability.LIST_INSTALLED, Capability.SEARCH_REMOTE})

    async def _run(self, *args: str, timeout: float = READ_TIMEOUT) -> str:
        return await run_checked("mas", "mas", *args, timeout=timeout)

    async def _installed_apps(self) -> List[App]:
        return parse_apps(await self._run("list"))

    async def _app_id(self, name: str, installed: bool) -> str:
        if name.isdigit():
            return name
        apps = await self._installed_apps() if installed else parse_apps(await self._run("search", name))
        for app in apps:
            if app.name.lower() == name.lower():
                return app.id
        raise PackageNotFoundError(package=name, manager="mas")

    async def check_available(self) -> bool:
        return await probe("mas", "version")

    async def list_installed(self) -> List[Package]:
        return [to_package(app) for app in await self._installed_apps()]

    async def search(self, query: str) -> List[Package]:
        return [to_package(app, installed=False) for app in parse_apps(await self._run("search", query))]

    async def get_info(self, name: str) -> Package:
        for app in await self._installed_apps():
            if app.name.lower() == name.lower() or app.id == name:
                return to_package(app)
        for app in parse_apps(await self._run("search", name)):
            if app.name.lower() == name.lower():
                return to_package(app, installed=False)
        raise PackageNotFoundError(package=name, manager="mas")

    async def install(self, name: str, version: Optional[str] = None, force: bool = False) -> None:
        app_id = await self._app_id(name, installed=False)
        args = ["install", app_id]
        if force:
            args.append("--force")
        await self._run(*args, timeout=COMMAND_TIMEOUT)

    async def upgrade(self, name: str) -> None:
        await self._run("upgrade", await self._app_id(name, installed=True), timeout=COMMAND_TIMEOUT)

    async def uninstall(self, name: str, force: bool = False) -> None:
        await self._run("uninstall", await self._app_id(name, installed=True), timeout=COMMAND_TIMEOUT)

    async def check_outdated(self) -> List[Package]:
        return [to_package(app) for app in parse_apps(await self._run("outdated"))]
