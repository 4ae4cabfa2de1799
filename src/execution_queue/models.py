"""Job models for the execution queue."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from common.utils.retry import backoff_delay


class JobStatus(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggerSource(str, Enum):
    """What started the execution."""

    MANUAL = "manual"
    WEBHOOK = "webhook"
    CRON = "cron"


class JobKind(str, Enum):
    WORKFLOW = "workflow"
    AGENT = "agent"
    RESUME = "resume"


class BackoffPolicy(BaseModel):
    """Exponential backoff: the n-th retry waits ``delay_ms * 2**(n-1)``."""

    type: str = "exponential"
    delay_ms: int = Field(default=2_000, ge=0)

    def delay_seconds(self, attempt: int) -> float:
        base = self.delay_ms / 1000.0
        if self.type == "fixed":
            return base
        return backoff_delay(attempt, base)


class JobOptions(BaseModel):
    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    # Caller-chosen id; enqueueing the same id twice returns the existing job.
    job_id: Optional[str] = None


class JobSpec(BaseModel):
    """What to run: a workflow, an agent or a resume of a paused execution."""

    kind: JobKind
    target_id: str
    user_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    triggered_by: TriggerSource = TriggerSource.MANUAL


class QueuedJob(BaseModel):
    id: str
    spec: JobSpec
    options: JobOptions = Field(default_factory=JobOptions)
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    stalled_count: int = 0
    created_at: float
    available_at: float
    lease_expires_at: Optional[float] = None
    lock_token: Optional[str] = None
    finished_at: Optional[float] = None
    result: Optional[Any] = None
    failed_reason: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)
