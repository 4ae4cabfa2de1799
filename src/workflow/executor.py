"""Workflow graph executor.

Runs a workflow's nodes in topological order, threading one context through the
registered node executors. Two modes share the same loop:

- sync: direct step runner, no publishing, no persistence, one wall-clock timeout.
- durable: steps are recorded and retried, node status is published, the context is
  checkpointed after every node, and a node may pause the run for a later resume.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from common.config.settings import RuntimeSettings
from common.errors import (
    ConfigurationError,
    ErrorCode,
    ExecutionError,
    NodeExecutionError,
    error_info_from_exception,
)
from common.interfaces.publish import PublishChannel
from common.interfaces.record_store import RecordStore
from common.observability.events import log_event
from common.observability.metrics import runtime_metrics
from common.observability.telemetry import SpanType, telemetry
from workflow.definitions import load_workflow, seed_context
from workflow.graph import is_node_active, topological_sort
from workflow.models import (
    EXECUTION_ID_KEY,
    PAUSE_KEY,
    SELECTED_BRANCH_KEY,
    ExecutionMode,
    ExecutionRecord,
    NodeStatus,
    NodeType,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowRunResult,
    WorkflowStatus,
    validate_context,
)
from workflow.publish import ChannelPublisher, NodePublisher, NullPublisher
from workflow.registry import ExecutorRegistry, NodeExecutionParams
from workflow.state import ExecutionStateStore
from workflow.steps import DirectStepRunner, DurableStepRunner, StepRunner

logger = logging.getLogger(__name__)

WorkflowRef = Union[str, WorkflowDefinition]


@dataclass
class _RunState:
    context: WorkflowContext
    completed: Set[str] = field(default_factory=set)
    skipped: Set[str] = field(default_factory=set)
    branches: Dict[str, str] = field(default_factory=dict)
    paused_at: Optional[str] = None


class WorkflowExecutor:
    """Executes workflow definitions against an ``ExecutorRegistry``."""

    def __init__(
        self,
        registry: ExecutorRegistry,
        store: Optional[RecordStore] = None,
        *,
        publish_channel: Optional[PublishChannel] = None,
        settings: Optional[RuntimeSettings] = None,
    ):
        self._registry = registry
        self._store = store
        self._publish_channel = publish_channel
        self._settings = settings or RuntimeSettings()
        self._executions = ExecutionStateStore(store) if store is not None else None

    def _require_store(self) -> ExecutionStateStore:
        if self._executions is None:
            raise ConfigurationError("Durable workflow execution requires a record store")
        return self._executions

    async def _resolve(self, workflow: WorkflowRef) -> WorkflowDefinition:
        if isinstance(workflow, WorkflowDefinition):
            return workflow
        if self._store is None:
            raise ConfigurationError("Loading workflows by id requires a record store")
        return await load_workflow(self._store, workflow)

    def _plan(self, definition: WorkflowDefinition) -> List:
        """Order the nodes and check every non-trigger node has an executor."""
        ordered = topological_sort(definition.nodes, definition.edges)
        for node in ordered:
            if not node.is_trigger:
                self._registry.get(node.type, node.id)
        return ordered

    async def _run_nodes(
        self,
        definition: WorkflowDefinition,
        run: _RunState,
        *,
        mode: ExecutionMode,
        user_id: Optional[str],
        steps: StepRunner,
        publisher: NodePublisher,
        record: Optional[ExecutionRecord] = None,
    ) -> _RunState:
        ordered = self._plan(definition)
        incoming: Dict[str, List[WorkflowEdge]] = defaultdict(list)
        for edge in definition.edges:
            incoming[edge.target].append(edge)
        execution_id = record.id if record is not None else None

        for node in ordered:
            if node.id in run.completed or node.is_trigger:
                continue
            if not is_node_active(node.id, incoming, run.skipped, run.branches):
                run.skipped.add(node.id)
                continue

            executor = self._registry.get(node.type, node.id)
            node_steps = steps.scoped(node.id) if isinstance(steps, DurableStepRunner) else steps
            await publisher.publish(node.id, NodeStatus.LOADING)

            with telemetry.start_span(
                f"workflow.node.{node.type.value.lower()}",
                span_type=SpanType.WORKFLOW_NODE,
                attributes={
                    "workflow.id": definition.id,
                    "workflow.node_id": node.id,
                    "workflow.mode": mode.value,
                    "workflow.execution_id": execution_id,
                },
            ):
                try:
                    returned = await executor(
                        NodeExecutionParams(
                            data=dict(node.data),
                            node_id=node.id,
                            node_type=node.type,
                            context=self._node_context(run.context, execution_id),
                            step=node_steps,
                            publish=publisher,
                            user_id=user_id,
                            execution_id=execution_id,
                        )
                    )
                    try:
                        new_context = dict(validate_context(returned))
                    except ValidationError as exc:
                        raise ConfigurationError(
                            f"Executor for {node.type.value} returned a non-JSON context: {exc}"
                        ) from exc
                except Exception as exc:
                    runtime_metrics.add_counter(
                        "workflow.nodes", attributes={"type": node.type, "status": "error"}
                    )
                    await publisher.publish(node.id, NodeStatus.ERROR, {"error": str(exc)})
                    raise NodeExecutionError(node.id, node.type.value, exc) from exc

            new_context.pop(EXECUTION_ID_KEY, None)
            paused = bool(new_context.pop(PAUSE_KEY, False))
            branch = new_context.pop(SELECTED_BRANCH_KEY, None)
            if node.type == NodeType.CONDITION and branch is not None:
                run.branches[node.id] = str(branch)
            run.context = new_context
            run.completed.add(node.id)
            runtime_metrics.add_counter(
                "workflow.nodes", attributes={"type": node.type, "status": "success"}
            )

            if record is not None:
                await self._executions.checkpoint(
                    record,
                    node.id,
                    node.type,
                    run.context,
                    skipped_node_ids=run.skipped,
                    selected_branches=run.branches,
                )

            if paused:
                await publisher.publish(node.id, NodeStatus.PAUSED)
                run.paused_at = node.id
                return run
            await publisher.publish(node.id, NodeStatus.SUCCESS)

        return run

    async def execute_sync(
        self,
        workflow: WorkflowRef,
        initial_data: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
        conversation_context: Optional[Dict[str, Any]] = None,
        agent_memories: Optional[List[Dict[str, Any]]] = None,
        timeout_ms: Optional[int] = None,
    ) -> WorkflowRunResult:
        """Run a workflow inline and return its final context.

        Never raises: configuration problems, node failures and the timeout all come
        back as ``success=False`` results. A node that asks to pause ends the run
        with status PAUSED; there is no record to resume from in this mode.
        """
        if timeout_ms is None:
            timeout_ms = self._settings.WORKFLOW_SYNC_TIMEOUT_MS
        try:
            definition = await self._resolve(workflow)
            context = seed_context(
                initial_data,
                conversation_context=conversation_context,
                agent_memories=agent_memories,
            )
        except (ExecutionError, ValidationError) as exc:
            return self._failure(exc)

        with telemetry.start_span(
            "workflow.execute_sync",
            span_type=SpanType.WORKFLOW,
            attributes={"workflow.id": definition.id, "workflow.timeout_ms": timeout_ms},
        ):
            try:
                run = await asyncio.wait_for(
                    self._run_nodes(
                        definition,
                        _RunState(context=context),
                        mode=ExecutionMode.SYNC,
                        user_id=user_id,
                        steps=DirectStepRunner(),
                        publisher=NullPublisher(),
                    ),
                    timeout=timeout_ms / 1000.0,
                )
            except asyncio.TimeoutError:
                log_event(
                    "workflow_sync_timeout",
                    level=logging.WARNING,
                    workflow_id=definition.id,
                    timeout_ms=timeout_ms,
                )
                return WorkflowRunResult(
                    success=False,
                    status=WorkflowStatus.FAILED,
                    error=f"Workflow execution timed out after {timeout_ms} ms",
                    error_code=ErrorCode.EXECUTION_TIMEOUT.value,
                    retryable=True,
                )
            except Exception as exc:
                logger.warning("Sync workflow %s failed: %s", definition.id, exc)
                return self._failure(exc)

        status = WorkflowStatus.PAUSED if run.paused_at else WorkflowStatus.COMPLETED
        return WorkflowRunResult(success=True, status=status, output=run.context)

    async def execute_durable(
        self,
        workflow: WorkflowRef,
        initial_data: Optional[Dict[str, Any]] = None,
        *,
        user_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        conversation_context: Optional[Dict[str, Any]] = None,
        agent_memories: Optional[List[Dict[str, Any]]] = None,
    ) -> WorkflowRunResult:
        """Run a workflow with persisted checkpoints.

        Passing the ``execution_id`` of an earlier attempt continues that execution:
        completed nodes are skipped and recorded steps are not repeated. Completed
        or paused executions are returned as they stand.
        """
        executions = self._require_store()
        definition = await self._resolve(workflow)

        existing = await executions.get(execution_id) if execution_id else None
        if existing is not None:
            if existing.status in (WorkflowStatus.COMPLETED, WorkflowStatus.PAUSED):
                return self._result_from_record(existing)
            record = await executions.mark_running(existing)
            definition = existing.workflow_snapshot or definition
            logger.info("Continuing workflow execution %s after a failed attempt", record.id)
        else:
            context = seed_context(
                initial_data,
                conversation_context=conversation_context,
                agent_memories=agent_memories,
            )
            record = await executions.create(
                workflow_id=definition.id,
                user_id=user_id,
                initial_context=context,
                total_steps=sum(1 for node in definition.nodes if not node.is_trigger),
                execution_id=execution_id,
                workflow_snapshot=definition,
            )

        return await self._run_durable(definition, record)

    async def resume(
        self, execution_id: str, merge_data: Optional[Dict[str, Any]] = None
    ) -> WorkflowRunResult:
        """Continue a paused execution after deep-merging ``merge_data`` into its context.

        Raises:
            NotFoundError: unknown execution id.
            ResumeStateError: the execution is not paused.
        """
        executions = self._require_store()
        record = await executions.claim_for_resume(execution_id, merge_data or {})
        definition = record.workflow_snapshot or await self._resolve(record.workflow_id)
        log_event(
            "workflow_execution_resumed",
            execution_id=execution_id,
            paused_at=record.output.paused_at_node_id,
            merged_keys=sorted((merge_data or {}).keys()),
        )
        return await self._run_durable(definition, record)

    async def _run_durable(
        self, definition: WorkflowDefinition, record: ExecutionRecord
    ) -> WorkflowRunResult:
        publisher: NodePublisher = (
            ChannelPublisher(self._publish_channel, record.id)
            if self._publish_channel is not None
            else NullPublisher()
        )
        steps = DurableStepRunner(
            self._store,
            record.id,
            max_attempts=self._settings.DURABLE_STEP_MAX_ATTEMPTS,
            base_delay=self._settings.DURABLE_STEP_BASE_DELAY_MS / 1000.0,
            max_delay=self._settings.DURABLE_STEP_MAX_DELAY_MS / 1000.0,
        )
        run = _RunState(
            context=dict(record.output.current_context),
            completed=set(record.output.completed_node_ids),
            skipped=set(record.output.skipped_node_ids),
            branches=dict(record.output.selected_branches),
        )

        with telemetry.start_span(
            "workflow.execute_durable",
            span_type=SpanType.WORKFLOW,
            attributes={"workflow.id": definition.id, "workflow.execution_id": record.id},
        ):
            try:
                run = await self._run_nodes(
                    definition,
                    run,
                    mode=ExecutionMode.DURABLE,
                    user_id=record.user_id,
                    steps=steps,
                    publisher=publisher,
                    record=record,
                )
            except Exception as exc:
                node_id = exc.node_id if isinstance(exc, NodeExecutionError) else None
                node_type = exc.node_type if isinstance(exc, NodeExecutionError) else None
                await self._executions.mark_failed(
                    record, str(exc), node_id=node_id, node_type=node_type
                )
                log_event(
                    "workflow_execution_failed",
                    level=logging.WARNING,
                    execution_id=record.id,
                    workflow_id=definition.id,
                    node_id=node_id,
                    error=str(exc),
                )
                return self._failure(exc, execution_id=record.id)
            finally:
                if isinstance(publisher, ChannelPublisher):
                    await publisher.drain()

        if run.paused_at is not None:
            await self._executions.mark_paused(record, run.paused_at)
            log_event(
                "workflow_execution_paused",
                execution_id=record.id,
                workflow_id=definition.id,
                node_id=run.paused_at,
            )
            return WorkflowRunResult(
                success=True,
                status=WorkflowStatus.PAUSED,
                output=run.context,
                execution_id=record.id,
            )

        await self._executions.mark_completed(record, run.context)
        return WorkflowRunResult(
            success=True,
            status=WorkflowStatus.COMPLETED,
            output=run.context,
            execution_id=record.id,
        )

    @staticmethod
    def _node_context(context: Dict[str, Any], execution_id: Optional[str]) -> Dict[str, Any]:
        # Executors see the execution id; it never becomes part of the stored context.
        node_context = dict(context)
        if execution_id:
            node_context[EXECUTION_ID_KEY] = execution_id
        return node_context

    @staticmethod
    def _failure(exc: BaseException, execution_id: Optional[str] = None) -> WorkflowRunResult:
        info = error_info_from_exception(exc)
        return WorkflowRunResult(
            success=False,
            status=WorkflowStatus.FAILED,
            error=info.message,
            error_code=info.code.value,
            retryable=info.retryable,
            failed_node_id=getattr(exc, "node_id", None),
            execution_id=execution_id,
        )

    @staticmethod
    def _result_from_record(record: ExecutionRecord) -> WorkflowRunResult:
        return WorkflowRunResult(
            success=record.status != WorkflowStatus.FAILED,
            status=record.status,
            output=record.output.current_context,
            error=record.error,
            execution_id=record.id,
        )
