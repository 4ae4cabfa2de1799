"""Execution controller: the entry points triggers call to run, queue and resume work."""

import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent.models.result import ExecutionResult
from agent.models.termination import ExecutionStatus
from common.config.settings import RuntimeSettings
from common.errors import (
    ErrorCategory,
    ErrorCode,
    ExecutionError,
    ResumeStateError,
    category_for_code,
    is_retryable_category,
)
from common.interfaces.record_store import RecordStore
from common.observability.events import log_event
from execution_queue.models import (
    BackoffPolicy,
    JobKind,
    JobOptions,
    JobSpec,
    QueuedJob,
    TriggerSource,
)
from execution_queue.queue import JobQueue
from workflow.executor import WorkflowExecutor
from workflow.models import WorkflowRunResult, WorkflowStatus
from workflow.state import ExecutionStateStore, can_resume

logger = logging.getLogger(__name__)

AgentRunner = Callable[[JobSpec], Awaitable[ExecutionResult]]


class JobExecutionError(ExecutionError):
    """A queued execution finished unsuccessfully; carries the run's error code."""

    def __init__(self, message: str, code: ErrorCode, retryable: bool, details=None):
        self.code = code
        category = category_for_code(code)
        if retryable:
            category = ErrorCategory.TRANSIENT
        elif is_retryable_category(category):
            category = ErrorCategory.INTERNAL
        self.category = category
        super().__init__(message, details=details)


class ExecutionController:
    """Routes execution requests to the workflow executor, the agent runner or the queue.

    Synchronous calls run inline. Enqueue calls return a job id immediately;
    ``process_job`` is the processor the worker pool runs for each claimed job.
    """

    def __init__(
        self,
        executor: WorkflowExecutor,
        queue: JobQueue,
        store: RecordStore,
        *,
        agent_runner: Optional[AgentRunner] = None,
        settings: Optional[RuntimeSettings] = None,
    ):
        self._executor = executor
        self._queue = queue
        self._executions = ExecutionStateStore(store)
        self._agent_runner = agent_runner
        self._settings = settings or RuntimeSettings()

    def _job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self._settings.QUEUE_MAX_ATTEMPTS,
            backoff=BackoffPolicy(delay_ms=self._settings.QUEUE_BACKOFF_DELAY_MS),
        )

    async def execute_workflow_sync(
        self,
        workflow_id: str,
        initial_data: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
        conversation_context: Optional[Dict[str, Any]] = None,
        agent_memories: Optional[List[Dict[str, Any]]] = None,
        timeout_ms: Optional[int] = None,
    ) -> WorkflowRunResult:
        """Run a workflow in-request; used when an agent calls a workflow as a tool."""
        result = await self._executor.execute_sync(
            workflow_id,
            initial_data,
            user_id=user_id,
            conversation_context=conversation_context,
            agent_memories=agent_memories,
            timeout_ms=timeout_ms,
        )
        log_event(
            "workflow_sync_finished",
            workflow_id=workflow_id,
            success=result.success,
            status=result.status.value,
            error_code=result.error_code,
        )
        return result

    async def enqueue_workflow_execution(
        self,
        workflow_id: str,
        user_id: Optional[str] = None,
        initial_data: Optional[Dict[str, Any]] = None,
        triggered_by: TriggerSource = TriggerSource.MANUAL,
    ) -> str:
        spec = JobSpec(
            kind=JobKind.WORKFLOW,
            target_id=workflow_id,
            user_id=user_id,
            payload={"initial_data": dict(initial_data or {})},
            triggered_by=triggered_by,
        )
        return await self._queue.enqueue(spec, self._job_options())

    async def enqueue_agent_execution(
        self,
        agent_id: str,
        user_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        triggered_by: TriggerSource = TriggerSource.MANUAL,
    ) -> str:
        if self._agent_runner is None:
            raise ExecutionError("No agent runner is configured for queued agent executions")
        spec = JobSpec(
            kind=JobKind.AGENT,
            target_id=agent_id,
            user_id=user_id,
            payload=dict(payload or {}),
            triggered_by=triggered_by,
        )
        return await self._queue.enqueue(spec, self._job_options())

    async def resume_workflow(
        self, execution_id: str, merge_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowRunResult:
        """Resume a paused execution inline (e.g. from the transcript webhook)."""
        return await self._executor.resume(execution_id, merge_data or {})

    async def enqueue_resume(
        self,
        execution_id: str,
        merge_data: Optional[Dict[str, Any]] = None,
        triggered_by: TriggerSource = TriggerSource.WEBHOOK,
    ) -> str:
        """Queue a resume after checking the execution is paused.

        Raises:
            NotFoundError: unknown execution id.
            ResumeStateError: the execution is not paused.
        """
        record = await self._executions.load(execution_id)
        if not can_resume(record):
            raise ResumeStateError(
                f"Execution '{execution_id}' is {record.status.value}; only paused "
                "executions can be resumed",
                details={"execution_id": execution_id, "status": record.status.value},
            )
        spec = JobSpec(
            kind=JobKind.RESUME,
            target_id=execution_id,
            user_id=record.user_id,
            payload={"merge_data": dict(merge_data or {})},
            triggered_by=triggered_by,
        )
        return await self._queue.enqueue(spec, self._job_options())

    async def process_job(self, job: QueuedJob) -> Dict[str, Any]:
        """Run one claimed job; raising tells the queue the attempt failed."""
        spec = job.spec
        if spec.kind == JobKind.AGENT:
            return await self._process_agent(job)

        if spec.kind == JobKind.RESUME:
            result = await self._process_resume(job)
        else:
            # Same execution id on every attempt, so retries reuse recorded steps.
            result = await self._executor.execute_durable(
                spec.target_id,
                spec.payload.get("initial_data") or {},
                user_id=spec.user_id,
                execution_id=job.id,
            )

        if not result.success:
            raise JobExecutionError(
                result.error or "Workflow execution failed",
                ErrorCode(result.error_code or ErrorCode.INTERNAL_ERROR.value),
                result.retryable,
                details={"execution_id": result.execution_id, "node_id": result.failed_node_id},
            )
        return {
            "workflow_id": spec.target_id if spec.kind == JobKind.WORKFLOW else None,
            "execution_id": result.execution_id,
            "status": result.status.value,
            "result": result.output,
        }

    async def _process_resume(self, job: QueuedJob) -> WorkflowRunResult:
        execution_id = job.spec.target_id
        record = await self._executions.get(execution_id)
        if (
            job.attempts_made > 1
            and record is not None
            and record.status in (WorkflowStatus.FAILED, WorkflowStatus.RUNNING)
        ):
            # The merge was already applied by the first attempt.
            logger.info("Retrying resumed execution %s from its checkpoint", execution_id)
            return await self._executor.execute_durable(
                record.workflow_snapshot or record.workflow_id, execution_id=execution_id
            )
        return await self._executor.resume(execution_id, job.spec.payload.get("merge_data") or {})

    async def _process_agent(self, job: QueuedJob) -> Dict[str, Any]:
        result = await self._agent_runner(job.spec)
        if result.status != ExecutionStatus.COMPLETED:
            error = result.error
            raise JobExecutionError(
                error.message if error else f"Agent run ended with status {result.status.value}",
                error.code if error else ErrorCode.INTERNAL_ERROR,
                error.retryable if error else False,
                details={"agent_id": job.spec.target_id, "status": result.status.value},
            )
        return {
            "agent_id": job.spec.target_id,
            "status": result.status.value,
            "total_steps": result.total_steps,
            "usage": asdict(result.usage),
        }
