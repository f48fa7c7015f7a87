"""Renderers for displaying packages, managers and jobs in the CLI using Rich."""

from typing import Iterable

from rich import box
from rich.console import Console
from rich.table import Table

from boxy.core.models import Job, JobStatus, ManagerStatus, Package

console = Console()

JOB_STATUS_STYLES = {
    JobStatus.RUNNING: "cyan",
    JobStatus.SUCCEEDED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELED: "yellow",
}


def status_to_str(pkg: Package) -> str:
    """Human-readable, colour-coded package status."""
    if pkg.outdated:
        return "[red]Outdated[/red]"
    return "[green]Up-to-date[/green]"


def _size_mb(size: int | None) -> str:
    return f"{size / (1024 * 1024):.2f}" if size else ""


def package_table(pkgs: Iterable[Package], title: str | None = None) -> Table:
    """Create a Rich Table displaying package information.

    Args:
        pkgs: An iterable of Package instances to display.
        title: Optional table title.

    Returns:
        A Rich Table displaying package information.
    """
    table = Table(box=box.MINIMAL_HEAVY_HEAD, title=title)
    table.add_column("Manager", style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Installed")
    table.add_column("Latest")
    table.add_column("Status")
    table.add_column("Size (MB)", justify="right")

    for p in pkgs:
        table.add_row(
            p.manager,
            p.name,
            p.version,
            p.latest_version or "",
            status_to_str(p),
            _size_mb(p.size),
        )

    return table


def search_table(pkgs: Iterable[Package]) -> Table:
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Manager", style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Description", style="dim")

    for p in pkgs:
        table.add_row(p.manager, p.name, p.version, p.description or "")

    return table


def package_details(pkg: Package, deps: Iterable[Package] = ()) -> Table:
    """Display detailed information about a package.

    Args:
        pkg: The package to display information for.
        deps: Dependencies to list, if known.

    Returns:
        A Rich Table with one row per field.
    """
    t = Table(box=box.MINIMAL_HEAVY_HEAD)
    t.add_column("Field", style="bold")
    t.add_column("Value")
    t.add_row("Name", pkg.name)
    t.add_row("Manager", pkg.manager)
    t.add_row("Description", pkg.description or "")
    t.add_row("Version", pkg.version)
    t.add_row("Latest", pkg.latest_version or "")
    t.add_row("Status", status_to_str(pkg))
    if pkg.license:
        t.add_row("License", pkg.license)
    if pkg.homepage:
        t.add_row("Homepage", pkg.homepage)
    if pkg.size:
        t.add_row("Size (MB)", _size_mb(pkg.size))
    if pkg.installed_path:
        t.add_row("Path", pkg.installed_path)
    deps = list(deps)
    if deps:
        t.add_row("Depends on", ", ".join(d.name for d in deps))

    return t


def manager_table(statuses: Iterable[ManagerStatus]) -> Table:
    table = Table(box=box.MINIMAL_HEAVY_HEAD)
    table.add_column("Manager", style="bold")
    table.add_column("Available")
    table.add_column("Packages", justify="right")
    table.add_column("Outdated", justify="right")

    for s in statuses:
        table.add_row(
            s.name,
            "[green]yes[/green]" if s.available else "[dim]no[/dim]",
            str(s.package_count) if s.available else "",
            str(s.outdated_count) if s.available else "",
        )

    return table


def job_summary(job: Job) -> str:
    """One-line, colour-coded job outcome."""
    style = JOB_STATUS_STYLES[job.status]
    line = f"[{style}]{job.status.value}[/{style}] {job.operation.value.lower()} {job.target} ({job.manager})"
    if job.error:
        line += f"\n   {job.error}"
    return line
