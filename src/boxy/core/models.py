"""Data models shared by the engine, the adapters and the CLI."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from boxy.core.errors import BoxyError, DeserializationError

T = TypeVar("T")


class Capability(Enum):
    """Operations an adapter advertises beyond the mandatory set."""

    LIST_INSTALLED = "ListInstalled"
    SEARCH_REMOTE = "SearchRemote"
    QUERY_DEPENDENCIES = "QueryDependencies"
    VERSION_SELECTION = "VersionSelection"
    BATCH_INSTALL = "BatchInstall"


class Operation(Enum):
    """Mutating operations tracked as jobs."""

    INSTALL = "Install"
    UPDATE = "Update"
    UNINSTALL = "Uninstall"


class JobStatus(Enum):
    """Job lifecycle states.

    Jobs are created RUNNING; SUCCEEDED, FAILED and CANCELED are terminal.
    """

    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELED = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass
class Package:
    """A package as reported by one manager."""

    name: str
    version: str
    manager: str
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    installed_path: str | None = None
    size: int | None = None
    outdated: bool = False
    latest_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Package:
        """Build a Package from its JSON representation.

        Args:
            data: A mapping as produced by ``to_dict``.

        Returns:
            A Package instance.

        Raises:
            DeserializationError: If required fields are missing.
        """
        if not isinstance(data, dict):
            raise DeserializationError(
                "Package payload is not an object", context={"type": type(data).__name__}
            )
        missing = [k for k in ("name", "version", "manager") if k not in data]
        if missing:
            raise DeserializationError(
                "Package payload is missing fields", context={"missing": ",".join(missing)}
            )
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def decode_packages(payload: Any) -> list[Package]:
    """Decode a cached package listing.

    Raises:
        DeserializationError: If the payload is not a list of packages.
    """
    if not isinstance(payload, list):
        raise DeserializationError(
            "Package listing is not a list", context={"type": type(payload).__name__}
        )
    return [Package.from_dict(item) for item in payload]


def annotate_outdated(packages: list[Package], outdated: list[Package]) -> list[Package]:
    """Mark installed packages as outdated using an outdated listing.

    Matching is by package name; the latest version is copied over.

    Args:
        packages: Installed packages, modified in place.
        outdated: Packages reported by ``check_outdated``.

    Returns:
        The same list, for chaining.
    """
    latest = {p.name: p.latest_version for p in outdated}
    for pkg in packages:
        if pkg.name in latest:
            pkg.outdated = True
            pkg.latest_version = latest[pkg.name]
    return packages


@dataclass
class ManagerStatus:
    """Availability summary for one manager."""

    name: str
    available: bool
    package_count: int = 0
    outdated_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ManagerResult(Generic[T]):
    """Outcome of one manager's share of an aggregated query."""

    manager: str
    value: T | None = None
    error: BoxyError | None = None
    available: bool = True

    @property
    def ok(self) -> bool:
        return self.error is None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A tracked mutating operation."""

    id: str
    manager: str
    operation: Operation
    target: str
    status: JobStatus = JobStatus.RUNNING
    progress: float = 0.0
    step: str | None = "started"
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    logs: list[str] = field(default_factory=list)
    error: str | None = None

    def snapshot(self) -> Job:
        """Return a copy safe to hand outside the store."""
        return Job(
            id=self.id,
            manager=self.manager,
            operation=self.operation,
            target=self.target,
            status=self.status,
            progress=self.progress,
            step=self.step,
            started_at=self.started_at,
            finished_at=self.finished_at,
            logs=list(self.logs),
            error=self.error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "manager": self.manager,
            "operation": self.operation.value,
            "target": self.target,
            "status": self.status.value,
            "progress": self.progress,
            "step": self.step,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "logs": list(self.logs),
            "error": self.error,
        }
