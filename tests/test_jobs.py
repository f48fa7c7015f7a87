"""Tests for JobStore: lifecycle, progress, cancellation and batch updates."""

import asyncio

import pytest
from conftest import FakeBackend, FakeFactory, pkg

from boxy.core.cache import Cache
from boxy.core.errors import (
    CacheError,
    JobInUseError,
    JobNotFoundError,
    UnsupportedOperationError,
)
from boxy.core.executor import ResourceExecutor
from boxy.core.jobs import TASK_COMPLETE, TASK_PROGRESS, JobEvent, JobStore
from boxy.core.models import JobStatus, Operation
from boxy.core.scope import Scope


def recorder(store: JobStore) -> list[JobEvent]:
    events: list[JobEvent] = []
    store.subscribe(events.append)
    return events


def progress_of(events: list[JobEvent], job_id: str) -> list[float]:
    return [
        e.payload["progress"]
        for e in events
        if e.name == TASK_PROGRESS and e.payload["taskId"] == job_id
    ]


def completions(events: list[JobEvent], job_id: str) -> list[JobEvent]:
    return [e for e in events if e.name == TASK_COMPLETE and e.payload["id"] == job_id]


class TestLifecycle:
    """Submission through terminal state."""

    @pytest.mark.asyncio
    async def test_install_succeeds(self, store: JobStore, backends: dict[str, FakeBackend]) -> None:
        job_id = await store.submit("alpha", Operation.INSTALL, "jq", version="1.7", force=True)

        running = store.get(job_id)
        assert running.status is JobStatus.RUNNING
        assert running.progress == 0
        assert running.step == "started"

        job = await store.wait(job_id)
        assert job.status is JobStatus.SUCCEEDED
        assert job.progress == 100
        assert job.step == "completed"
        assert job.logs[-1] == "Completed"
        assert job.finished_at is not None
        assert ("install", "jq", "1.7", True) in backends["alpha"].calls

    @pytest.mark.asyncio
    async def test_update_and_uninstall_call_the_adapter(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        update_id = await store.submit("alpha", Operation.UPDATE, "jq")
        remove_id = await store.submit("beta", Operation.UNINSTALL, "rg", force=True)
        await store.wait(update_id)
        await store.wait(remove_id)

        assert ("upgrade", "jq") in backends["alpha"].calls
        assert ("uninstall", "rg", True) in backends["beta"].calls

    @pytest.mark.asyncio
    async def test_failure_records_error(self, store: JobStore, backends: dict[str, FakeBackend]) -> None:
        backends["alpha"].failing_targets.add("jq")
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        job = await store.wait(job_id)

        assert job.status is JobStatus.FAILED
        assert job.progress == 100
        assert job.step == "failed"
        assert "exit code 1" in job.error
        assert job.logs[-1] == job.error

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, factory: FakeFactory, cache: Cache, backends: dict[str, FakeBackend]
    ) -> None:
        store = JobStore(
            factory, cache, ResourceExecutor(max_attempts=3, base_delay=0), heartbeat_interval=0.01
        )
        backends["alpha"].mutation_failures = 2
        job = await store.wait(await store.submit("alpha", Operation.INSTALL, "jq"))

        assert job.status is JobStatus.SUCCEEDED
        assert backends["alpha"].count("install") == 3

    @pytest.mark.asyncio
    async def test_command_timeout_fails_job(
        self, factory: FakeFactory, cache: Cache, executor: ResourceExecutor,
        backends: dict[str, FakeBackend],
    ) -> None:
        store = JobStore(factory, cache, executor, heartbeat_interval=0.01, command_timeout=0.05)
        backends["alpha"].mutation_delay = 1.0
        job = await store.wait(await store.submit("alpha", Operation.INSTALL, "jq"))

        assert job.status is JobStatus.FAILED
        assert "timed out" in job.error

    @pytest.mark.asyncio
    async def test_pinned_version_needs_version_selection(self, store: JobStore) -> None:
        with pytest.raises(UnsupportedOperationError):
            await store.submit("beta", Operation.INSTALL, "rg", version="13.0.0")
        assert store.list() == []

    @pytest.mark.asyncio
    async def test_cache_invalidated_after_completion(
        self, store: JobStore, cache: Cache, backends: dict[str, FakeBackend]
    ) -> None:
        cache.set("beta", [])
        job = await store.wait(await store.submit("beta", Operation.INSTALL, "rg"))

        assert job.status is JobStatus.SUCCEEDED
        assert cache.get("beta") is None

    @pytest.mark.asyncio
    async def test_scoped_manager_uses_scoped_key(
        self, store: JobStore, cache: Cache, tmp_path
    ) -> None:
        scope = Scope.local(tmp_path)
        key = scope.qualify("alpha")
        cache.set(key, [])
        cache.set("alpha-global", [])

        await store.wait(await store.submit("alpha", Operation.INSTALL, "jq", scope=scope))

        assert cache.get(key) is None
        assert cache.get("alpha-global") == []

    @pytest.mark.asyncio
    async def test_cache_invalidation_failure_is_logged_not_raised(
        self, store: JobStore, cache: Cache, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(key: str) -> None:
            raise CacheError("disk on fire", key=key, operation="invalidate")

        monkeypatch.setattr(cache, "invalidate", broken)
        job = await store.wait(await store.submit("beta", Operation.INSTALL, "rg"))

        assert job.status is JobStatus.SUCCEEDED
        assert any("Cache invalidation failed" in line for line in job.logs)

    @pytest.mark.asyncio
    async def test_unknown_job(self, store: JobStore) -> None:
        with pytest.raises(JobNotFoundError):
            store.get("missing")
        with pytest.raises(JobNotFoundError):
            await store.cancel("missing")
        with pytest.raises(JobNotFoundError):
            await store.delete("missing")


class TestProgress:
    """Heartbeat progress and events."""

    @pytest.mark.asyncio
    async def test_heartbeat_progress_is_monotonic_and_capped(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].mutation_delay = 0.2
        events = recorder(store)

        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await store.wait(job_id)

        values = progress_of(events, job_id)
        assert values[0] == 0
        assert values[-1] == 100
        assert values == sorted(values)
        intermediate = values[1:-1]
        assert intermediate
        assert max(intermediate) <= 90
        assert all(v % 10 == 0 for v in intermediate)

    @pytest.mark.asyncio
    async def test_exactly_one_completion_event(self, store: JobStore) -> None:
        events = recorder(store)
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await store.wait(job_id)
        await store.cancel(job_id)

        done = completions(events, job_id)
        assert len(done) == 1
        assert done[0].payload == {"id": job_id, "status": "Succeeded", "manager": "alpha"}

    @pytest.mark.asyncio
    async def test_failing_listener_is_skipped(self, store: JobStore) -> None:
        def explode(event: JobEvent) -> None:
            raise RuntimeError("listener bug")

        store.subscribe(explode)
        events = recorder(store)
        job = await store.wait(await store.submit("alpha", Operation.INSTALL, "jq"))

        assert job.status is JobStatus.SUCCEEDED
        assert completions(events, job.id)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store: JobStore) -> None:
        events: list[JobEvent] = []
        unsubscribe = store.subscribe(events.append)
        unsubscribe()
        await store.wait(await store.submit("alpha", Operation.INSTALL, "jq"))
        assert events == []


class TestControl:
    """Cancel, delete, clear and log access."""

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, store: JobStore, backends: dict[str, FakeBackend]) -> None:
        backends["alpha"].mutation_delay = 5
        events = recorder(store)
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await asyncio.sleep(0.02)

        assert await store.cancel(job_id) is True
        job = await store.wait(job_id)

        assert job.status is JobStatus.CANCELED
        assert job.progress == 100
        assert job.step == "canceled"
        assert job.logs[-1] == "Canceled"
        assert await store.cancel(job_id) is False
        assert [e.payload["status"] for e in completions(events, job_id)] == ["Canceled"]

    @pytest.mark.asyncio
    async def test_cancel_wins_over_late_success(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].mutation_delay = 5
        backends["alpha"].ignore_cancel = True
        events = recorder(store)
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await asyncio.sleep(0.02)

        assert await store.cancel(job_id) is True
        await store.wait(job_id)
        for _ in range(100):
            if backends["alpha"].finished:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        assert backends["alpha"].finished == ["jq"]
        job = store.get(job_id)
        assert job.status is JobStatus.CANCELED
        assert job.progress == 100
        assert job.error is None
        assert [e.payload["status"] for e in completions(events, job_id)] == ["Canceled"]

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_is_noop(self, store: JobStore) -> None:
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await store.wait(job_id)

        assert await store.cancel(job_id) is False
        assert store.get(job_id).status is JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_cancel_releases_resource_for_next_job(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].mutation_delay = 5
        first = await store.submit("alpha", Operation.INSTALL, "jq")
        await asyncio.sleep(0.02)
        await store.cancel(first)

        backends["alpha"].mutation_delay = 0
        second = await store.wait(await store.submit("alpha", Operation.INSTALL, "fd"))
        assert second.status is JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_same_manager_jobs_are_serialised(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].mutation_delay = 0.03
        ids = [await store.submit("alpha", Operation.INSTALL, name) for name in ("a", "b", "c")]
        for job_id in ids:
            await store.wait(job_id)

        assert backends["alpha"].max_active == 1

    @pytest.mark.asyncio
    async def test_delete_rules(self, store: JobStore, backends: dict[str, FakeBackend]) -> None:
        backends["alpha"].mutation_delay = 5
        running = await store.submit("alpha", Operation.INSTALL, "jq")
        finished = await store.submit("beta", Operation.INSTALL, "rg")
        await store.wait(finished)

        with pytest.raises(JobInUseError):
            await store.delete(running)

        await store.delete(finished)
        with pytest.raises(JobNotFoundError):
            store.get(finished)

        await store.cancel(running)

    @pytest.mark.asyncio
    async def test_clear_keeps_running_jobs(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].mutation_delay = 5
        running = await store.submit("alpha", Operation.INSTALL, "jq")
        done = await store.submit("beta", Operation.INSTALL, "rg")
        await store.wait(done)

        assert await store.clear() == 1
        assert [j.id for j in store.list()] == [running]

        await store.cancel(running)

    @pytest.mark.asyncio
    async def test_drain_logs(self, store: JobStore) -> None:
        job_id = await store.submit("alpha", Operation.INSTALL, "jq")
        await store.wait(job_id)

        assert store.logs(job_id) == ["Completed"]
        assert await store.drain_logs(job_id) == ["Completed"]
        assert store.logs(job_id) == []


class TestUninstallCleanup:
    """Best-effort manager cache cleanup after uninstall."""

    @pytest.mark.asyncio
    async def test_cleanup_runs_after_uninstall(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        job = await store.wait(await store.submit("alpha", Operation.UNINSTALL, "jq"))

        assert job.status is JobStatus.SUCCEEDED
        assert backends["alpha"].count("clean_cache") == 1
        assert "Cache cleaned" in job.logs

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_swallowed(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].clean_error = RuntimeError("cache locked")
        job = await store.wait(await store.submit("alpha", Operation.UNINSTALL, "jq"))

        assert job.status is JobStatus.SUCCEEDED
        assert any("cache locked" in line for line in job.logs)
        assert job.error is None

    @pytest.mark.asyncio
    async def test_cleanup_can_be_skipped(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        await store.wait(
            await store.submit("alpha", Operation.UNINSTALL, "jq", clean_cache=False)
        )
        assert backends["alpha"].count("clean_cache") == 0

    @pytest.mark.asyncio
    async def test_no_cleanup_after_failed_uninstall(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].failing_targets.add("jq")
        job = await store.wait(await store.submit("alpha", Operation.UNINSTALL, "jq"))

        assert job.status is JobStatus.FAILED
        assert backends["alpha"].count("clean_cache") == 0

    @pytest.mark.asyncio
    async def test_cleanup_holds_resource_lock(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].clean_delay = 0.2
        uninstall = await store.submit("alpha", Operation.UNINSTALL, "zlib")
        await asyncio.sleep(0.08)
        install = await store.submit("alpha", Operation.INSTALL, "left-pad")

        assert (await store.wait(uninstall)).status is JobStatus.SUCCEEDED
        assert (await store.wait(install)).status is JobStatus.SUCCEEDED
        assert backends["alpha"].max_active == 1
        ops = [c[0] for c in backends["alpha"].calls]
        assert ops.index("clean_cache") < ops.index("install")

    @pytest.mark.asyncio
    async def test_failed_cleanup_does_not_repeat_uninstall(
        self, factory: FakeFactory, cache: Cache, backends: dict[str, FakeBackend]
    ) -> None:
        store = JobStore(factory, cache, ResourceExecutor(max_attempts=3, base_delay=0))
        backends["alpha"].clean_error = RuntimeError("cache locked")
        job = await store.wait(await store.submit("alpha", Operation.UNINSTALL, "zlib"))

        assert job.status is JobStatus.SUCCEEDED
        assert backends["alpha"].count("uninstall") == 1
        assert backends["alpha"].count("clean_cache") == 1


class TestBatchUpdate:
    """submit_batch_update over a manager's outdated packages."""

    @pytest.mark.asyncio
    async def test_nothing_outdated(self, store: JobStore) -> None:
        job = await store.wait(await store.submit_batch_update("alpha"))

        assert job.status is JobStatus.SUCCEEDED
        assert job.operation is Operation.UPDATE
        assert job.target == "outdated"
        assert "No outdated packages" in job.logs

    @pytest.mark.asyncio
    async def test_updates_each_package(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].outdated = [pkg("a"), pkg("b"), pkg("c")]
        events = recorder(store)
        job = await store.wait(await store.submit_batch_update("alpha"))

        assert job.status is JobStatus.SUCCEEDED
        assert [c[1] for c in backends["alpha"].calls if c[0] == "upgrade"] == ["a", "b", "c"]
        assert job.logs[:3] == ["Updated a", "Updated b", "Updated c"]

        values = progress_of(events, job.id)
        assert values[1] == 10
        assert values[2] == pytest.approx(10 + 80 / 3)
        assert values[-2] == 90
        assert values[-1] == 100

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].outdated = [pkg("a"), pkg("b"), pkg("c")]
        backends["alpha"].failing_targets.add("b")
        job = await store.wait(await store.submit_batch_update("alpha"))

        assert job.status is JobStatus.FAILED
        assert [c[1] for c in backends["alpha"].calls if c[0] == "upgrade"] == ["a", "b"]
        assert "Updated a" in job.logs
        assert any(line.startswith("Failed to update b") for line in job.logs)

    @pytest.mark.asyncio
    async def test_outdated_check_failure_fails_job(
        self, store: JobStore, backends: dict[str, FakeBackend]
    ) -> None:
        backends["alpha"].outdated_error = UnsupportedOperationError(manager="alpha")
        job = await store.wait(await store.submit_batch_update("alpha"))

        assert job.status is JobStatus.FAILED
        assert backends["alpha"].count("upgrade") == 0
