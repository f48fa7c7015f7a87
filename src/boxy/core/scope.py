"""Execution scope for managers that install globally or per project."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from boxy.core.errors import InvalidScopeError


@dataclass(frozen=True)
class Scope:
    """Global (machine-wide) or local (tied to a working directory)."""

    is_global: bool = True
    workdir: Path | None = None

    @classmethod
    def local(cls, workdir: Path) -> Scope:
        return cls(is_global=False, workdir=workdir)

    @property
    def label(self) -> str:
        return "global" if self.is_global else "local"

    def qualify(self, name: str) -> str:
        """Qualify a manager name into a cache/resource key for this scope.

        Local keys carry a short digest of the working directory so the key
        stays bounded in length while distinct directories stay distinct.

        Args:
            name: The manager name.

        Returns:
            ``<name>-global``, ``<name>-local`` or ``<name>-local-<digest>``.
        """
        base = f"{name}-{self.label}"
        if self.workdir is None:
            return base
        digest = hashlib.sha256(str(self.workdir).encode("utf-8")).hexdigest()[:16]
        return f"{base}-{digest}"


GLOBAL = Scope()


def resolve_scope(
    scope: str | None = None,
    directory: str | None = None,
    global_flag: bool = False,
) -> Scope:
    """Turn CLI-style scope options into a Scope.

    Args:
        scope: ``"global"``, ``"local"`` or None.
        directory: Working directory, only valid with local scope. A leading
            ``~`` is expanded.
        global_flag: Shorthand for ``scope="global"``.

    Returns:
        The resolved Scope.

    Raises:
        InvalidScopeError: On an unknown scope, a directory without local
            scope, or a missing/nonexistent local directory.
    """
    value = scope.lower() if scope else None
    if global_flag:
        if value not in (None, "global"):
            raise InvalidScopeError("--global conflicts with --scope=local")
        value = "global"

    if directory is not None and value != "local":
        raise InvalidScopeError("--dir can only be used with --scope=local")

    if value is None or value == "global":
        return GLOBAL

    if value != "local":
        raise InvalidScopeError(
            f"Unsupported scope '{scope}'", context={"scope": scope}
        )

    raw = (directory or "").strip()
    if not raw:
        raise InvalidScopeError("Local scope needs a directory, pass --dir")

    path = Path(raw).expanduser()
    if not path.is_dir():
        raise InvalidScopeError(
            "Directory does not exist or is not accessible", context={"dir": raw}
        )

    return Scope.local(path.resolve())
