"""In-process job queue with retries, a bounded dead set and stall recovery.

Jobs move ``waiting -> active -> completed | failed``. A failed attempt with
attempts left goes to ``delayed`` until its backoff elapses. Exhausted or
non-retryable jobs land in the dead set. Completed and dead jobs are kept in
bounded, oldest-first-evicted collections for inspection.
"""

import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from common.errors import ExecutionError, error_info_from_exception
from common.observability.events import log_event
from common.observability.metrics import runtime_metrics
from execution_queue.models import JobOptions, JobSpec, JobStatus, QueuedJob

logger = logging.getLogger(__name__)


class JobQueue:
    """Queue shared by producers (controllers) and consumers (worker pools)."""

    def __init__(
        self,
        name: str = "executions",
        *,
        remove_on_complete: int = 100,
        remove_on_fail: int = 50,
        lease_seconds: float = 300.0,
        max_stalled_count: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self._remove_on_complete = max(0, int(remove_on_complete))
        self._remove_on_fail = max(0, int(remove_on_fail))
        self._lease_seconds = float(lease_seconds)
        self._max_stalled_count = max(0, int(max_stalled_count))
        self._clock = clock
        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        # Waiting, delayed and active jobs, in enqueue order.
        self._pending: "OrderedDict[str, QueuedJob]" = OrderedDict()
        self._completed: "OrderedDict[str, QueuedJob]" = OrderedDict()
        self._dead: "OrderedDict[str, QueuedJob]" = OrderedDict()
        self._finished_events: Dict[str, asyncio.Event] = {}

    async def enqueue(self, spec: JobSpec, options: Optional[JobOptions] = None) -> str:
        """Add a job and return its id without waiting for it to run."""
        options = options or JobOptions()
        async with self._lock:
            if options.job_id and (
                options.job_id in self._pending
                or options.job_id in self._completed
                or options.job_id in self._dead
            ):
                return options.job_id
            now = self._clock()
            job = QueuedJob(
                id=options.job_id or str(uuid.uuid4()),
                spec=spec,
                options=options,
                created_at=now,
                available_at=now,
            )
            self._pending[job.id] = job
            self._finished_events[job.id] = asyncio.Event()
        self._wakeup.set()
        runtime_metrics.add_counter(
            "queue.jobs.enqueued", attributes={"queue": self.name, "kind": spec.kind}
        )
        log_event(
            "job_enqueued",
            queue=self.name,
            job_id=job.id,
            kind=spec.kind.value,
            target_id=spec.target_id,
            triggered_by=spec.triggered_by.value,
        )
        return job.id

    async def claim(self) -> Optional[QueuedJob]:
        """Hand the oldest available job to the caller, or None.

        The job becomes ACTIVE with a lease; no other caller can claim it until it
        is completed, failed, released or recovered as stalled.
        """
        async with self._lock:
            now = self._clock()
            for job in self._pending.values():
                if job.status == JobStatus.ACTIVE or job.available_at > now:
                    continue
                job.status = JobStatus.ACTIVE
                job.attempts_made += 1
                job.lease_expires_at = now + self._lease_seconds
                job.lock_token = uuid.uuid4().hex
                return job.model_copy(deep=True)
            self._wakeup.clear()
            return None

    @property
    def lease_seconds(self) -> float:
        return self._lease_seconds

    async def extend_lease(self, job_id: str, token: Optional[str] = None) -> bool:
        """Renew an active job's lease; False once the caller no longer holds it."""
        async with self._lock:
            job = self._pending.get(job_id)
            if not self._holds(job, token):
                return False
            job.lease_expires_at = self._clock() + self._lease_seconds
            return True

    async def complete(
        self, job_id: str, result: Any = None, token: Optional[str] = None
    ) -> QueuedJob:
        async with self._lock:
            job = self._take_active(job_id, token)
            job.status = JobStatus.COMPLETED
            job.result = result
            job.finished_at = self._clock()
            job.lease_expires_at = None
            job.lock_token = None
            self._retain(self._completed, job, self._remove_on_complete)
        runtime_metrics.add_counter("queue.jobs.completed", attributes={"queue": self.name})
        log_event("job_completed", queue=self.name, job_id=job_id, attempts=job.attempts_made)
        return job.model_copy(deep=True)

    async def fail(
        self, job_id: str, error: BaseException, token: Optional[str] = None
    ) -> QueuedJob:
        """Record a failed attempt.

        Retryable errors with attempts left schedule a retry after the job's
        backoff; anything else moves the job to the dead set.
        """
        info = error_info_from_exception(error)
        retryable = error.retryable if isinstance(error, ExecutionError) else True
        async with self._lock:
            job = self._take_active(job_id, token)
            job.failed_reason = info.message
            job.error_code = info.code.value
            job.lease_expires_at = None
            job.lock_token = None
            if retryable and job.attempts_made < job.options.attempts:
                delay = job.options.backoff.delay_seconds(job.attempts_made)
                job.status = JobStatus.DELAYED
                job.available_at = self._clock() + delay
                self._pending[job.id] = job
                dead = False
            else:
                self._bury(job)
                dead = True

        if dead:
            runtime_metrics.add_counter("queue.jobs.failed", attributes={"queue": self.name})
            log_event(
                "job_failed",
                level=logging.WARNING,
                queue=self.name,
                job_id=job_id,
                attempts=job.attempts_made,
                retryable=retryable,
                error=info.message,
            )
        else:
            runtime_metrics.add_counter("queue.jobs.retried", attributes={"queue": self.name})
            logger.info(
                "Job %s attempt %d/%d failed, retrying in %.2fs: %s",
                job_id,
                job.attempts_made,
                job.options.attempts,
                job.available_at - self._clock(),
                info.message,
            )
            self._wakeup.set()
        return job.model_copy(deep=True)

    async def release(self, job_id: str, token: Optional[str] = None) -> Optional[QueuedJob]:
        """Return an active job to waiting without consuming an attempt."""
        async with self._lock:
            job = self._pending.get(job_id)
            if not self._holds(job, token):
                return None
            job.status = JobStatus.WAITING
            job.attempts_made = max(0, job.attempts_made - 1)
            job.lease_expires_at = None
            job.lock_token = None
            job.available_at = self._clock()
        self._wakeup.set()
        logger.info("Released job %s back to waiting", job_id)
        return job.model_copy(deep=True)

    async def recover_stalled(self) -> List[str]:
        """Re-queue active jobs whose lease expired; fail those that stalled too often."""
        recovered: List[str] = []
        async with self._lock:
            now = self._clock()
            stalled = [
                job
                for job in self._pending.values()
                if job.status == JobStatus.ACTIVE
                and job.lease_expires_at is not None
                and job.lease_expires_at <= now
            ]
            for job in stalled:
                job.stalled_count += 1
                job.lease_expires_at = None
                job.lock_token = None
                if job.stalled_count > self._max_stalled_count:
                    job.failed_reason = "job stalled more than allowable limit"
                    del self._pending[job.id]
                    self._bury(job)
                    continue
                job.status = JobStatus.WAITING
                job.attempts_made = max(0, job.attempts_made - 1)
                job.available_at = now
                recovered.append(job.id)
        for job in stalled:
            log_event(
                "job_stalled",
                level=logging.WARNING,
                queue=self.name,
                job_id=job.id,
                stalled_count=job.stalled_count,
                requeued=job.id in recovered,
            )
        if recovered:
            self._wakeup.set()
        return recovered

    async def get(self, job_id: str) -> Optional[QueuedJob]:
        async with self._lock:
            job = (
                self._pending.get(job_id)
                or self._completed.get(job_id)
                or self._dead.get(job_id)
            )
            return job.model_copy(deep=True) if job is not None else None

    async def dead_letters(self) -> List[QueuedJob]:
        async with self._lock:
            return [job.model_copy(deep=True) for job in self._dead.values()]

    async def counts(self) -> Dict[str, int]:
        async with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for job in self._pending.values():
                counts[job.status.value] += 1
            counts[JobStatus.COMPLETED.value] = len(self._completed)
            counts[JobStatus.FAILED.value] = len(self._dead)
            return counts

    async def wait_for_work(self, timeout: float) -> None:
        """Block until a job may be available or ``timeout`` elapses."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def wake(self) -> None:
        self._wakeup.set()

    async def wait_until_finished(
        self, job_id: str, timeout: Optional[float] = None
    ) -> Optional[QueuedJob]:
        """Wait for the job to complete or die, then return it."""
        event = self._finished_events.get(job_id)
        if event is not None:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        return await self.get(job_id)

    @staticmethod
    def _holds(job: Optional[QueuedJob], token: Optional[str]) -> bool:
        # A token from an earlier claim no longer owns the job.
        if job is None or job.status != JobStatus.ACTIVE:
            return False
        return token is None or job.lock_token == token

    def _take_active(self, job_id: str, token: Optional[str] = None) -> QueuedJob:
        job = self._pending.get(job_id)
        if not self._holds(job, token):
            raise KeyError(f"Job '{job_id}' is not active in queue '{self.name}'")
        del self._pending[job_id]
        return job

    def _bury(self, job: QueuedJob) -> None:
        job.status = JobStatus.FAILED
        job.finished_at = self._clock()
        self._retain(self._dead, job, self._remove_on_fail)

    def _retain(self, bucket: "OrderedDict[str, QueuedJob]", job: QueuedJob, limit: int) -> None:
        event = self._finished_events.pop(job.id, None)
        if event is not None:
            event.set()
        bucket[job.id] = job
        while len(bucket) > limit:
            bucket.popitem(last=False)
