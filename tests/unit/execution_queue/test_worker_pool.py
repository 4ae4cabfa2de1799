"""Tests for WorkerPool concurrency, retries and graceful shutdown."""

import asyncio

import pytest

from common.errors import TransientExecutionError
from execution_queue.models import BackoffPolicy, JobKind, JobOptions, JobSpec, JobStatus
from execution_queue.queue import JobQueue
from execution_queue.worker import WorkerPool
from tests._support.fakes import FlakyOperation


def _spec(target="wf-1"):
    return JobSpec(kind=JobKind.WORKFLOW, target_id=target)


def _fast_options(attempts=3):
    return JobOptions(attempts=attempts, backoff=BackoffPolicy(delay_ms=0))


def _pool(queue, processor, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return WorkerPool(queue, processor, **kwargs)


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    """No more than ``concurrency`` jobs run at once and every job completes."""
    queue = JobQueue()
    running = {"now": 0, "peak": 0}

    async def processor(job):
        running["now"] += 1
        running["peak"] = max(running["peak"], running["now"])
        await asyncio.sleep(0.02)
        running["now"] -= 1
        return job.spec.target_id

    ids = [await queue.enqueue(_spec(f"wf-{i}"), _fast_options()) for i in range(6)]
    pool = _pool(queue, processor, concurrency=2)
    await pool.start()
    try:
        finished = [await queue.wait_until_finished(job_id, timeout=2) for job_id in ids]
    finally:
        await pool.stop()

    assert running["peak"] == 2
    assert [job.status for job in finished] == [JobStatus.COMPLETED] * 6
    assert [job.result for job in finished] == [f"wf-{i}" for i in range(6)]
    assert not pool.is_running


@pytest.mark.asyncio
async def test_failed_attempts_are_retried_until_success():
    """A processor that fails twice completes on the third attempt."""
    queue = JobQueue()
    flaky = FlakyOperation(2, TransientExecutionError("503"), result={"ok": True})
    job_id = await queue.enqueue(_spec(), _fast_options())
    pool = _pool(queue, flaky)

    await pool.start()
    try:
        job = await queue.wait_until_finished(job_id, timeout=2)
    finally:
        await pool.stop()

    assert job.status == JobStatus.COMPLETED
    assert job.attempts_made == 3
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_exhausted_job_lands_in_dead_set():
    """After the last attempt the job is failed and kept for inspection."""
    queue = JobQueue()
    flaky = FlakyOperation(10, TransientExecutionError("503"))
    job_id = await queue.enqueue(_spec(), _fast_options(attempts=2))
    pool = _pool(queue, flaky)

    await pool.start()
    try:
        job = await queue.wait_until_finished(job_id, timeout=2)
    finally:
        await pool.stop()

    assert job.status == JobStatus.FAILED
    assert flaky.calls == 2
    assert [dead.id for dead in await queue.dead_letters()] == [job_id]


@pytest.mark.asyncio
async def test_shutdown_waits_for_jobs_within_grace_period():
    """In-flight jobs that finish inside the grace period complete normally."""
    queue = JobQueue()
    started = asyncio.Event()

    async def processor(job):
        started.set()
        await asyncio.sleep(0.05)
        return "finished"

    job_id = await queue.enqueue(_spec(), _fast_options())
    pool = _pool(queue, processor, grace_period=2)
    await pool.start()
    await asyncio.wait_for(started.wait(), timeout=1)

    await pool.stop()

    job = await queue.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == "finished"


@pytest.mark.asyncio
async def test_shutdown_releases_jobs_past_grace_period():
    """Jobs still running after the grace period are cancelled and released, not completed."""
    queue = JobQueue()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def processor(job):
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "never"

    job_id = await queue.enqueue(_spec(), _fast_options())
    pool = _pool(queue, processor, grace_period=0.05)
    await pool.start()
    await asyncio.wait_for(started.wait(), timeout=1)

    await pool.stop()

    job = await queue.get(job_id)
    assert cancelled.is_set()
    assert job.status == JobStatus.WAITING
    assert job.attempts_made == 0
    assert pool.active_jobs == 0


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_start_twice_is_noop():
    """Starting a running pool and stopping twice are both safe."""
    queue = JobQueue()

    async def processor(job):
        return None

    pool = _pool(queue, processor, concurrency=2)
    await pool.start()
    tasks = list(pool.worker_tasks)
    await pool.start()
    assert pool.worker_tasks == tasks

    await pool.stop()
    await pool.stop()
    await asyncio.wait_for(pool.wait_stopped(), timeout=1)


@pytest.mark.asyncio
async def test_stall_monitor_requeues_expired_leases():
    """The monitor recovers jobs whose lease expired while a worker hung."""
    clock = {"now": 0.0}
    queue = JobQueue(lease_seconds=10, clock=lambda: clock["now"])
    job_id = await queue.enqueue(_spec(), _fast_options())
    await queue.claim()

    async def processor(job):
        return "recovered"

    clock["now"] = 11.0
    pool = _pool(queue, processor, stall_check_interval=0.01)
    await pool.start()
    try:
        job = await queue.wait_until_finished(job_id, timeout=2)
    finally:
        await pool.stop()

    assert job.status == JobStatus.COMPLETED
    assert job.stalled_count == 1
    assert job.result == "recovered"


@pytest.mark.asyncio
async def test_job_spans_recorded(in_memory_telemetry):
    """Each processed job runs inside a span named after its kind."""
    queue = JobQueue()
    job_id = await queue.enqueue(_spec(), _fast_options())

    async def processor(job):
        return None

    pool = _pool(queue, processor)
    await pool.start()
    try:
        await queue.wait_until_finished(job_id, timeout=2)
    finally:
        await pool.stop()

    assert in_memory_telemetry.spans_named("job.workflow")


@pytest.mark.asyncio
async def test_heartbeat_keeps_long_job_on_one_worker():
    """A job that outlives its lease keeps it through renewals and runs exactly once."""
    clock = {"now": 0.0}
    queue = JobQueue(lease_seconds=10, clock=lambda: clock["now"])
    job_id = await queue.enqueue(_spec(), _fast_options())
    calls = []

    async def processor(job):
        calls.append(job.id)
        clock["now"] += 11.0
        await asyncio.sleep(0.2)
        return "done"

    pool = _pool(
        queue, processor, concurrency=2, stall_check_interval=0.05, heartbeat_interval=0.005
    )
    await pool.start()
    try:
        job = await queue.wait_until_finished(job_id, timeout=2)
    finally:
        await pool.stop()

    assert calls == [job_id]
    assert job.status == JobStatus.COMPLETED
    assert job.stalled_count == 0


@pytest.mark.asyncio
async def test_stale_worker_result_is_dropped_after_lease_loss():
    """A worker whose job was reclaimed logs and keeps running instead of crashing."""
    clock = {"now": 0.0}
    queue = JobQueue(lease_seconds=10, clock=lambda: clock["now"])
    job_id = await queue.enqueue(_spec(), _fast_options())
    second_done = asyncio.Event()
    calls = []

    async def processor(job):
        calls.append(job.lock_token)
        if len(calls) == 1:
            clock["now"] = 11.0
            await second_done.wait()
            return "first"
        second_done.set()
        return "second"

    pool = _pool(
        queue, processor, concurrency=2, stall_check_interval=0.01, heartbeat_interval=60
    )
    await pool.start()
    try:
        job = await queue.wait_until_finished(job_id, timeout=2)
        await asyncio.sleep(0.05)
        workers_alive = all(not task.done() for task in pool.worker_tasks)
    finally:
        await pool.stop()

    assert len(calls) == 2
    assert calls[0] != calls[1]
    assert job.result == "second"
    assert (await queue.get(job_id)).result == "second"
    assert workers_alive
