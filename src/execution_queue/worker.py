"""Worker pool that drains a ``JobQueue`` with bounded concurrency."""

import asyncio
import logging
import signal
from typing import Any, Awaitable, Callable, List, Optional

from common.observability.events import log_event
from common.observability.metrics import runtime_metrics
from common.observability.telemetry import SpanType, telemetry
from execution_queue.models import QueuedJob
from execution_queue.queue import JobQueue

logger = logging.getLogger(__name__)

JobProcessor = Callable[[QueuedJob], Awaitable[Any]]


class WorkerPool:
    """Runs ``concurrency`` workers, each processing one job at a time.

    ``stop()`` stops claiming, gives in-flight jobs ``grace_period`` seconds to
    finish, then cancels them. Cancelled jobs are released back to waiting so
    another worker picks them up; they are never marked completed.

    While a job runs its lease is renewed every ``heartbeat_interval`` seconds
    (half the queue lease by default), so only hung workers are seen as stalled.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: JobProcessor,
        *,
        concurrency: int = 3,
        grace_period: float = 30.0,
        poll_interval: float = 0.5,
        stall_check_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self._queue = queue
        self._processor = processor
        self._concurrency = max(1, int(concurrency))
        self._grace_period = max(0.0, float(grace_period))
        self._poll_interval = max(0.01, float(poll_interval))
        self._stall_check_interval = stall_check_interval
        self._heartbeat_interval = max(
            0.001, float(heartbeat_interval or queue.lease_seconds / 2)
        )
        self.worker_tasks: List[asyncio.Task] = []
        self._monitor_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._stopped = asyncio.Event()
        self._active_jobs = 0

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self.worker_tasks)

    @property
    def active_jobs(self) -> int:
        return self._active_jobs

    async def start(self) -> None:
        """Start worker tasks (and the stall monitor when an interval is set)."""
        if self.is_running:
            logger.debug("Worker pool for %s already running", self._queue.name)
            return
        self._stopping = False
        self._stopped.clear()
        self.worker_tasks = [
            asyncio.create_task(self._worker(i)) for i in range(self._concurrency)
        ]
        if self._stall_check_interval:
            self._monitor_task = asyncio.create_task(self._monitor_stalled())
        logger.info(
            "Started %d workers for queue %s (grace period %.1fs)",
            self._concurrency,
            self._queue.name,
            self._grace_period,
        )

    async def stop(self) -> None:
        """Stop claiming jobs and shut down within the grace period."""
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True
        self._queue.wake()
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            await asyncio.gather(self._monitor_task, return_exceptions=True)
            self._monitor_task = None

        if self.worker_tasks:
            logger.info("Stopping workers for queue %s...", self._queue.name)
            _, pending = await asyncio.wait(self.worker_tasks, timeout=self._grace_period)
            if pending:
                log_event(
                    "worker_shutdown_forced",
                    level=logging.WARNING,
                    queue=self._queue.name,
                    unfinished_workers=len(pending),
                )
            for task in pending:
                task.cancel()
            await asyncio.gather(*self.worker_tasks, return_exceptions=True)
            self.worker_tasks = []
        logger.info("Workers for queue %s stopped", self._queue.name)
        self._stopped.set()

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Stop the pool on SIGTERM/SIGINT."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down workers", sig.name)
        asyncio.ensure_future(self.stop())

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def _worker(self, worker_id: int) -> None:
        while not self._stopping:
            try:
                job = await self._queue.claim()
            except Exception as e:
                logger.error(f"Worker {worker_id} failed to claim a job: {e}")
                await asyncio.sleep(self._poll_interval)
                continue
            if job is None:
                await self._queue.wait_for_work(self._poll_interval)
                continue
            await self._process(worker_id, job)

    async def _process(self, worker_id: int, job: QueuedJob) -> None:
        self._active_jobs += 1
        heartbeat = asyncio.create_task(self._heartbeat(job))
        try:
            with telemetry.start_span(
                f"job.{job.spec.kind.value}",
                span_type=SpanType.JOB,
                attributes={
                    "job.id": job.id,
                    "job.attempt": job.attempts_made,
                    "job.target_id": job.spec.target_id,
                    "worker.id": worker_id,
                },
            ):
                result = await self._processor(job)
        except asyncio.CancelledError:
            await self._queue.release(job.id, token=job.lock_token)
            raise
        except Exception as exc:
            await self._settle(job, self._queue.fail(job.id, exc, token=job.lock_token))
        else:
            await self._settle(job, self._queue.complete(job.id, result, token=job.lock_token))
        finally:
            heartbeat.cancel()
            self._active_jobs -= 1
            runtime_metrics.record_histogram(
                "queue.jobs.attempt",
                job.attempts_made,
                attributes={"queue": self._queue.name, "kind": job.spec.kind},
            )

    async def _heartbeat(self, job: QueuedJob) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                held = await self._queue.extend_lease(job.id, token=job.lock_token)
            except Exception as e:
                logger.error(f"Lease renewal for job {job.id} failed: {e}")
                continue
            if not held:
                logger.warning("Job %s lost its lease; another worker may own it", job.id)
                return

    async def _settle(self, job: QueuedJob, outcome) -> None:
        try:
            await outcome
        except KeyError:
            log_event(
                "job_lease_lost",
                level=logging.WARNING,
                queue=self._queue.name,
                job_id=job.id,
                attempt=job.attempts_made,
            )

    async def _monitor_stalled(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self._stall_check_interval)
            try:
                await self._queue.recover_stalled()
            except Exception as e:
                logger.error(f"Stall check for queue {self._queue.name} failed: {e}")
