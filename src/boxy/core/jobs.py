"""Job lifecycle tracking for install, update and uninstall operations."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from boxy.core.cache import Cache
from boxy.core.config import COMMAND_TIMEOUT, HEARTBEAT_INTERVAL
from boxy.core.errors import (
    BoxyError,
    CommandTimeoutError,
    JobInUseError,
    JobNotFoundError,
    UnsupportedOperationError,
)
from boxy.core.executor import ResourceExecutor
from boxy.core.logging import get_logger
from boxy.core.models import Capability, Job, JobStatus, Operation, utcnow
from boxy.core.scope import GLOBAL, Scope
from boxy.managers.base import ManagerFactory, PackageManager

log = get_logger(__name__)

TASK_PROGRESS = "task-progress"
TASK_COMPLETE = "task-complete"

BATCH_TARGET = "outdated"

HEARTBEAT_STEP = 10.0
HEARTBEAT_CEILING = 90.0

_TERMINAL_STEPS = {
    JobStatus.SUCCEEDED: "completed",
    JobStatus.FAILED: "failed",
    JobStatus.CANCELED: "canceled",
}


@dataclass(frozen=True)
class JobEvent:
    """Notification pushed to job listeners."""

    name: str
    payload: dict[str, Any]


JobListener = Callable[[JobEvent], None]


@dataclass
class _Handle:
    key: str
    task: Optional[asyncio.Task] = None


class JobStore:
    """Owns every job of the process and the tasks running them.

    Jobs start ``Running`` and end in exactly one of ``Succeeded``,
    ``Failed`` or ``Canceled``. Progress is simulated by a heartbeat while
    the manager call runs and is always exactly 100 once a job is terminal.

    Example:
        store = JobStore(create_manager, cache, ResourceExecutor())
        job_id = await store.submit("npm", Operation.INSTALL, "typescript")
        job = await store.wait(job_id)
    """

    def __init__(
        self,
        factory: ManagerFactory,
        cache: Cache,
        executor: ResourceExecutor,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        command_timeout: float = COMMAND_TIMEOUT,
    ) -> None:
        self._factory = factory
        self._cache = cache
        self._executor = executor
        self.heartbeat_interval = heartbeat_interval
        self.command_timeout = command_timeout
        self._jobs: dict[str, Job] = {}
        self._handles: dict[str, _Handle] = {}
        self._listeners: list[JobListener] = []
        self._lock = asyncio.Lock()

    ## Events ##

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """Register ``listener`` for job events.

        Returns:
            A callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, name: str, payload: dict[str, Any]) -> None:
        event = JobEvent(name, payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log.error("job_listener_failed", event_name=name, error=str(e), exc_info=True)

    ## Submission ##

    async def submit(
        self,
        manager: str,
        operation: Operation,
        target: str,
        *,
        version: Optional[str] = None,
        force: bool = False,
        scope: Scope = GLOBAL,
        clean_cache: bool = True,
    ) -> str:
        """Start a job and return its id without waiting for it.

        Args:
            manager: Manager name.
            operation: Install, Update or Uninstall.
            target: Package name.
            version: Pinned version, install only.
            force: Pass the manager's force flag.
            scope: Global or local scope.
            clean_cache: Clear the manager's download cache after a
                successful uninstall.

        Returns:
            The new job id.

        Raises:
            ManagerNotFoundError: If the manager is unknown.
            InvalidScopeError: If the manager has no local scope.
            UnsupportedOperationError: If a version is pinned on a manager
                without version selection.
        """
        adapter = self._factory(manager, scope)
        if version and not adapter.supports(Capability.VERSION_SELECTION):
            raise UnsupportedOperationError(manager=manager, operation="install --version")

        call = self._call_for(manager, scope, operation, target, version, force)
        cleanup = operation is Operation.UNINSTALL and clean_cache
        return await self._start(
            adapter,
            operation,
            target,
            lambda job_id: self._run(job_id, adapter.cache_key, call, manager, scope, cleanup),
        )

    async def submit_batch_update(self, manager: str, scope: Scope = GLOBAL) -> str:
        """Start one Update job that upgrades every outdated package.

        Returns:
            The new job id.
        """
        adapter = self._factory(manager, scope)
        return await self._start(
            adapter,
            Operation.UPDATE,
            BATCH_TARGET,
            lambda job_id: self._run_batch(job_id, adapter.cache_key, manager, scope),
        )

    async def _start(
        self,
        adapter: PackageManager,
        operation: Operation,
        target: str,
        worker: Callable[[str], Awaitable[None]],
    ) -> str:
        job = Job(
            id=str(uuid.uuid4()),
            manager=adapter.name,
            operation=operation,
            target=target,
        )
        async with self._lock:
            self._jobs[job.id] = job
            handle = self._handles[job.id] = _Handle(key=adapter.cache_key)
            handle.task = asyncio.create_task(worker(job.id), name=f"job-{job.id}")

        log.info(
            "job_submitted",
            job_id=job.id,
            manager=job.manager,
            operation=operation.value,
            target=target,
            key=handle.key,
        )
        self._emit(TASK_PROGRESS, {"taskId": job.id, "progress": 0.0})
        return job.id

    def _call_for(
        self,
        manager: str,
        scope: Scope,
        operation: Operation,
        target: str,
        version: Optional[str],
        force: bool,
    ) -> Callable[[], Awaitable[None]]:
        command = f"{manager} {operation.value.lower()} {target}"

        async def call() -> None:
            # fresh adapter per attempt
            adapter = self._factory(manager, scope)
            if operation is Operation.INSTALL:
                coro = adapter.install(target, version=version, force=force)
            elif operation is Operation.UPDATE:
                coro = adapter.upgrade(target)
            else:
                coro = adapter.uninstall(target, force=force)
            await self._timed(coro, command)

        return call

    async def _timed(self, awaitable: Awaitable[Any], command: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.command_timeout)
        except asyncio.TimeoutError as e:
            raise CommandTimeoutError(command=command, timeout=self.command_timeout) from e

    ## Workers ##

    async def _run(
        self,
        job_id: str,
        key: str,
        call: Callable[[], Awaitable[None]],
        manager: str,
        scope: Scope,
        cleanup: bool,
    ) -> None:
        start = time.perf_counter()
        progress = 0.0
        logs: list[str] = []

        async def operation() -> None:
            await call()
            # runs under the resource lock and never raises
            if cleanup:
                logs.append(await self._clean_manager_cache(job_id, manager, scope))

        op = asyncio.ensure_future(self._executor.execute(key, operation))

        try:
            while True:
                done, _ = await asyncio.wait({op}, timeout=self.heartbeat_interval)
                if done:
                    break
                progress = min(progress + HEARTBEAT_STEP, HEARTBEAT_CEILING)
                await self._set_progress(job_id, progress)
            op.result()
        except asyncio.CancelledError:
            op.cancel()
            raise
        except Exception as e:
            log.error(
                "job_failed",
                job_id=job_id,
                key=key,
                error=str(e),
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
            await self._finish(job_id, JobStatus.FAILED, error=e)
            return

        log.info(
            "job_succeeded",
            job_id=job_id,
            key=key,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        await self._finish(job_id, JobStatus.SUCCEEDED, logs=logs)

    async def _clean_manager_cache(
        self, job_id: str, manager: str, scope: Scope
    ) -> str:
        """Clear the manager's download cache, recording but never raising failures."""
        try:
            adapter = self._factory(manager, scope)
            await self._timed(adapter.clean_cache(), f"{manager} clean cache")
        except Exception as e:
            log.warning("job_cache_cleanup_failed", job_id=job_id, manager=manager, error=str(e))
            return f"Cache cleanup failed: {e}"
        return "Cache cleaned"

    async def _run_batch(self, job_id: str, key: str, manager: str, scope: Scope) -> None:
        start = time.perf_counter()
        try:
            adapter = self._factory(manager, scope)
            outdated = await self._timed(adapter.check_outdated(), f"{manager} outdated")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("batch_update_check_failed", job_id=job_id, manager=manager, error=str(e))
            await self._finish(job_id, JobStatus.FAILED, error=e)
            return

        if not outdated:
            await self._finish(job_id, JobStatus.SUCCEEDED, logs=["No outdated packages"])
            return

        await self._set_progress(job_id, 10.0)
        total = len(outdated)
        for i, pkg in enumerate(outdated):
            call = self._call_for(manager, scope, Operation.UPDATE, pkg.name, None, False)
            try:
                await self._executor.execute(key, call)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._append_log(job_id, f"Failed to update {pkg.name}: {e}")
                log.error(
                    "batch_update_failed",
                    job_id=job_id,
                    manager=manager,
                    package=pkg.name,
                    error=str(e),
                )
                await self._finish(job_id, JobStatus.FAILED, error=e)
                return

            await self._append_log(job_id, f"Updated {pkg.name}")
            await self._set_progress(job_id, min(10 + (i + 1) / total * 80, HEARTBEAT_CEILING))

        log.info(
            "batch_update_complete",
            job_id=job_id,
            manager=manager,
            count=total,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        await self._finish(job_id, JobStatus.SUCCEEDED)

    ## State transitions ##

    async def _set_progress(self, job_id: str, progress: float) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal or progress <= job.progress:
                return
            job.progress = progress
            job.step = "running"
        self._emit(TASK_PROGRESS, {"taskId": job_id, "progress": progress})

    async def _append_log(self, job_id: str, line: str) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.logs.append(line)

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[BaseException] = None,
        logs: Optional[list[str]] = None,
    ) -> bool:
        """Apply a terminal state once; later calls for the same job are no-ops.

        The manager's cache entry is invalidated after the transition. A
        failed invalidation is recorded on the job and logged.

        Returns:
            Whether this call performed the transition.
        """
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return False

            job.status = status
            job.progress = 100.0
            job.step = _TERMINAL_STEPS[status]
            job.finished_at = utcnow()
            job.logs.extend(logs or [])
            if error is not None:
                job.error = str(error)
                job.logs.append(job.error)
            elif status is JobStatus.SUCCEEDED:
                job.logs.append("Completed")
            else:
                job.logs.append("Canceled")

            key = self._handles[job_id].key
            try:
                self._cache.invalidate(key)
            except BoxyError as e:
                log.warning("job_cache_invalidate_failed", job_id=job_id, key=key, error=str(e))
                job.logs.append(f"Cache invalidation failed: {e}")

            manager = job.manager

        log.info("job_finished", job_id=job_id, status=status.value, manager=manager)
        self._emit(TASK_PROGRESS, {"taskId": job_id, "progress": 100.0})
        self._emit(TASK_COMPLETE, {"id": job_id, "status": status.value, "manager": manager})
        return True

    ## Queries and control ##

    def _get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get(self, job_id: str) -> Job:
        """Snapshot of one job.

        Raises:
            JobNotFoundError: If the id is unknown.
        """
        return self._get(job_id).snapshot()

    def list(self) -> list[Job]:
        """Snapshots of all jobs, oldest first."""
        return sorted((j.snapshot() for j in self._jobs.values()), key=lambda j: j.started_at)

    def logs(self, job_id: str) -> list[str]:
        return list(self._get(job_id).logs)

    async def drain_logs(self, job_id: str) -> list[str]:
        """Return and clear the job's accumulated log lines."""
        async with self._lock:
            job = self._get(job_id)
            lines, job.logs = job.logs, []
        return lines

    async def wait(self, job_id: str) -> Job:
        """Wait until the job is terminal and return its snapshot."""
        self._get(job_id)
        handle = self._handles.get(job_id)
        if handle is not None and handle.task is not None:
            await asyncio.wait({handle.task})
        return self.get(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Cancel a running job.

        The job is marked ``Canceled`` before its task is cancelled, so a
        worker that completes in the meantime cannot overwrite the state.
        External side effects already made by the manager are not undone.

        Returns:
            False if the job was already terminal.

        Raises:
            JobNotFoundError: If the id is unknown.
        """
        self._get(job_id)
        if not await self._finish(job_id, JobStatus.CANCELED):
            return False

        handle = self._handles.get(job_id)
        if handle is not None and handle.task is not None:
            handle.task.cancel()
        log.info("job_canceled", job_id=job_id)
        return True

    async def delete(self, job_id: str) -> None:
        """Forget a terminal job.

        Raises:
            JobNotFoundError: If the id is unknown.
            JobInUseError: If the job is still running.
        """
        async with self._lock:
            job = self._get(job_id)
            if job.status is JobStatus.RUNNING:
                raise JobInUseError(job_id)
            del self._jobs[job_id]
            self._handles.pop(job_id, None)

    async def clear(self) -> int:
        """Forget every terminal job; running jobs are kept.

        Returns:
            The number of jobs removed.
        """
        async with self._lock:
            done = [job_id for job_id, job in self._jobs.items() if job.status.is_terminal]
            for job_id in done:
                del self._jobs[job_id]
                self._handles.pop(job_id, None)
        return len(done)
