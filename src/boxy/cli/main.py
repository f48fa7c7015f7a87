"""CLI entry point for the Boxy package manager aggregator."""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from boxy.cli.renderers import (
    console,
    job_summary,
    manager_table,
    package_details,
    package_table,
    search_table,
)
from boxy.core.config import Settings
from boxy.core.errors import (
    EXIT_ERROR,
    EXIT_USAGE,
    BoxyError,
    InvalidScopeError,
    ManagerNotFoundError,
    PackageNotFoundError,
    format_error_message,
    suggest_search,
)
from boxy.core.jobs import TASK_PROGRESS, JobEvent
from boxy.core.logging import configure_logging, get_logger, read_logs
from boxy.core.models import Job, JobStatus
from boxy.core.repo import Repository
from boxy.core.scope import GLOBAL, Scope, resolve_scope

log = get_logger(__name__)

app = typer.Typer(help="Boxy: one interface to every package manager on your machine.")
cache_app = typer.Typer(help="Manage Boxy's listing cache.")
app.add_typer(cache_app, name="cache")

USAGE_ERRORS = (InvalidScopeError, ManagerNotFoundError)


@dataclass
class State:
    """Options shared by every command."""

    settings: Settings
    json_output: bool = False
    verbose: bool = False
    scope: Scope = GLOBAL
    use_cache: bool = True

    def repo(self) -> Repository:
        return Repository(settings=self.settings, use_cache=self.use_cache)


def handle_error(error: Exception) -> int:
    """Handle errors and return appropriate exit codes.

    Args:
        error: The exception to handle.

    Returns:
        An integer exit code.
    """
    if isinstance(error, BoxyError):
        log.error(
            "cli_error",
            error_type=type(error).__name__,
            message=error.message,
            context=error.context,
        )
        console.print(f"\n{format_error_message(error)}\n", style="bold red")

        if isinstance(error, PackageNotFoundError):
            package = error.context.get("package", "")
            console.print(suggest_search(package), style="dim")

        if isinstance(error, USAGE_ERRORS):
            return EXIT_USAGE
        return EXIT_ERROR

    log.error("unexpected_error", error=str(error), exc_info=True)
    console.print(f"\n⚠️ Unexpected error occurred: {error}\n", style="bold red")
    return EXIT_ERROR


def emit_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _run(coro: Awaitable[Any]) -> Any:
    try:
        return asyncio.run(coro)
    except Exception as e:
        sys.exit(handle_error(e))


async def _follow(repo: Repository, job_id: str, show_progress: bool) -> Job:
    """Wait for a job, drawing a progress bar from its events.

    Interrupting the wait cancels the job.
    """
    try:
        if not show_progress:
            return await repo.jobs.wait(job_id)

        job = repo.jobs.get(job_id)
        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(
                f"{job.operation.value} {job.target} ({job.manager})", total=100
            )

            def on_event(event: JobEvent) -> None:
                if event.name == TASK_PROGRESS and event.payload["taskId"] == job_id:
                    progress.update(task, completed=event.payload["progress"])

            unsubscribe = repo.jobs.subscribe(on_event)
            try:
                return await repo.jobs.wait(job_id)
            finally:
                unsubscribe()
    except asyncio.CancelledError:
        await repo.jobs.cancel(job_id)
        raise


def _report_jobs(state: State, jobs: list[Job]) -> None:
    if state.json_output:
        emit_json([job.to_dict() for job in jobs])
    else:
        for job in jobs:
            console.print(job_summary(job))
            if state.verbose:
                for line in job.logs:
                    console.print(f"   {line}", style="dim")

    if any(job.status is not JobStatus.SUCCEEDED for job in jobs):
        sys.exit(EXIT_ERROR)


@app.callback()
def main(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Print machine-readable JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to the console"),
    scope: Optional[str] = typer.Option(None, "--scope", help="global | local"),
    directory: Optional[str] = typer.Option(
        None, "--dir", help="Project directory for --scope local"
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the listing cache"),
) -> None:
    """Options shared by every command."""
    settings = Settings.from_env()
    configure_logging(
        level="DEBUG" if verbose else "INFO",
        log_file=settings.log_file,
        enable_console=verbose,
    )

    try:
        resolved = resolve_scope(scope, directory)
    except BoxyError as e:
        sys.exit(handle_error(e))

    ctx.obj = State(
        settings=settings,
        json_output=json_output,
        verbose=verbose,
        scope=resolved,
        use_cache=not no_cache,
    )


@app.command()
def scan(
    ctx: typer.Context,
    available_only: bool = typer.Option(False, "--available-only", help="Hide missing managers"),
) -> None:
    """Show which package managers are available and what they hold."""
    state: State = ctx.obj
    statuses = _run(state.repo().scan(available_only=available_only))

    if state.json_output:
        emit_json([s.to_dict() for s in statuses])
    else:
        console.print(manager_table(statuses))


@app.command("list")
def list_packages(
    ctx: typer.Context,
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Only this manager"),
    outdated: bool = typer.Option(False, help="Only outdated"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by text"),
) -> None:
    """List installed packages.

    Args:
        manager: Restrict to one package manager.
        outdated: If true, only show outdated packages.
        search: Text to filter package names/descriptions.
    """
    state: State = ctx.obj
    pkgs = _run(state.repo().list_packages(manager, scope=state.scope))
    if outdated:
        pkgs = [p for p in pkgs if p.outdated]
    if search:
        q = search.lower()
        pkgs = [
            p for p in pkgs
            if q in p.name.lower() or (p.description and q in p.description.lower())
        ]

    if state.json_output:
        emit_json([p.to_dict() for p in pkgs])
    else:
        console.print(package_table(pkgs))


@app.command()
def info(
    ctx: typer.Context,
    name: str,
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Ask this manager only"),
    deps: bool = typer.Option(False, "--deps", help="Also list dependencies"),
) -> None:
    """Show detailed information about a package.

    Args:
        name: Name of the package.
        manager: Ask one package manager only.
        deps: Also list the package's dependencies.
    """
    state: State = ctx.obj
    repo = state.repo()

    async def fetch() -> tuple:
        pkg = await repo.info(name, manager)
        dependencies = await repo.dependencies(name, pkg.manager) if deps else []
        return pkg, dependencies

    pkg, dependencies = _run(fetch())

    if state.json_output:
        data = pkg.to_dict()
        if deps:
            data["dependencies"] = [d.to_dict() for d in dependencies]
        emit_json(data)
    else:
        console.print(package_details(pkg, dependencies))


@app.command()
def search(
    ctx: typer.Context,
    query: str,
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Search this manager only"),
) -> None:
    """Search package registries.

    Args:
        query: Search term.
        manager: Search one package manager only.
    """
    state: State = ctx.obj
    pkgs = _run(state.repo().search(query, manager))

    if state.json_output:
        emit_json([p.to_dict() for p in pkgs])
    else:
        console.print(search_table(pkgs))


@app.command()
def outdated(
    ctx: typer.Context,
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Only this manager"),
) -> None:
    """List packages with a newer version available."""
    state: State = ctx.obj
    pkgs = _run(state.repo().outdated(manager, scope=state.scope))

    if state.json_output:
        emit_json([p.to_dict() for p in pkgs])
    else:
        console.print(package_table(pkgs, title="Outdated packages"))


@app.command()
def install(
    ctx: typer.Context,
    name: str,
    manager: str = typer.Option(..., "--manager", "-m", help="Package manager to install with"),
    version: Optional[str] = typer.Option(None, "--version", help="Install this exact version"),
    force: bool = typer.Option(False, "--force", help="Reinstall or override conflicts"),
) -> None:
    """Install a package."""
    state: State = ctx.obj
    repo = state.repo()

    async def run() -> Job:
        job_id = await repo.install(name, manager, version=version, force=force, scope=state.scope)
        return await _follow(repo, job_id, not state.json_output)

    _report_jobs(state, [_run(run())])


@app.command()
def update(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Package to update, default all outdated"),
    manager: Optional[str] = typer.Option(None, "--manager", "-m", help="Package manager"),
) -> None:
    """Update one package, or every outdated package.

    Without a name, each available manager (or just ``--manager``) gets one
    batch job that upgrades everything it reports as outdated.
    """
    state: State = ctx.obj
    if name is not None and manager is None:
        console.print("\n❌ Updating a single package requires --manager\n", style="bold red")
        sys.exit(EXIT_USAGE)

    repo = state.repo()

    async def run() -> list[Job]:
        if name is not None:
            job_ids = [await repo.update(name, manager, scope=state.scope)]
        else:
            managers = [manager] if manager else await repo.available_managers()
            job_ids = [await repo.update_outdated(m, scope=state.scope) for m in managers]
        return [await _follow(repo, job_id, not state.json_output) for job_id in job_ids]

    _report_jobs(state, _run(run()))


@app.command()
def uninstall(
    ctx: typer.Context,
    name: str,
    manager: str = typer.Option(..., "--manager", "-m", help="Package manager to remove with"),
    force: bool = typer.Option(False, "--force", help="Remove even if other packages depend on it"),
    keep_cache: bool = typer.Option(
        False, "--keep-cache", help="Skip clearing the manager's download cache"
    ),
) -> None:
    """Uninstall a package."""
    state: State = ctx.obj
    repo = state.repo()

    async def run() -> Job:
        job_id = await repo.uninstall(
            name, manager, force=force, scope=state.scope, clean_cache=not keep_cache
        )
        return await _follow(repo, job_id, not state.json_output)

    _report_jobs(state, [_run(run())])


@cache_app.command("clean")
def cache_clean(
    ctx: typer.Context,
    older_than: float = typer.Option(
        0, "--older-than", help="Only remove entries older than this many seconds"
    ),
) -> None:
    """Remove cached package listings."""
    state: State = ctx.obj
    try:
        removed = state.repo().clean_cache(older_than)
    except BoxyError as e:
        sys.exit(handle_error(e))

    if state.json_output:
        emit_json({"removed": removed})
    else:
        console.print(f"Removed {removed} cache entr{'y' if removed == 1 else 'ies'}")


@app.command()
def logs(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", "-n", help="Number of lines to show"),
) -> None:
    """Show the newest lines of Boxy's log file."""
    state: State = ctx.obj
    lines = read_logs(limit, log_file=state.settings.log_file)

    if state.json_output:
        emit_json(lines)
        return
    if not lines:
        console.print("No log entries yet", style="dim")
    for line in lines:
        typer.echo(line)


if __name__ == "__main__":
    app()
