"""Durable execution record lifecycle: create, checkpoint, pause, finish, resume."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from common.errors import NotFoundError, ResumeStateError
from common.interfaces.record_store import RecordStore
from common.utils.merge import deep_merge
from workflow.models import (
    PAUSE_KEY,
    Checkpoint,
    ExecutionOutput,
    ExecutionRecord,
    NodeType,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

EXECUTIONS_COLLECTION = "workflow_executions"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ExecutionStateStore:
    """Reads and writes ``ExecutionRecord`` documents through a ``RecordStore``.

    Every write is a per-record merge update of the ``status``/``output`` fields,
    so the record always reflects the last completed node.
    """

    def __init__(self, store: RecordStore):
        self._store = store

    async def create(
        self,
        workflow_id: str,
        user_id: Optional[str],
        initial_context: WorkflowContext,
        total_steps: int,
        execution_id: Optional[str] = None,
        workflow_snapshot: Optional[WorkflowDefinition] = None,
    ) -> ExecutionRecord:
        record = ExecutionRecord(
            id=execution_id or str(uuid.uuid4()),
            workflow_id=workflow_id,
            user_id=user_id,
            workflow_snapshot=workflow_snapshot,
            status=WorkflowStatus.RUNNING,
            input=initial_context,
            output=ExecutionOutput(current_context=initial_context, total_steps=total_steps),
            created_at=_now_iso(),
        )
        stored = await self._store.create(EXECUTIONS_COLLECTION, record.model_dump(mode="json"))
        return ExecutionRecord.model_validate(stored)

    async def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        stored = await self._store.get(EXECUTIONS_COLLECTION, execution_id)
        return ExecutionRecord.model_validate(stored) if stored else None

    async def load(self, execution_id: str) -> ExecutionRecord:
        record = await self.get(execution_id)
        if record is None:
            raise NotFoundError(f"Workflow execution '{execution_id}' not found")
        return record

    async def _save(self, record: ExecutionRecord) -> ExecutionRecord:
        stored = await self._store.update(
            EXECUTIONS_COLLECTION,
            record.id,
            record.model_dump(mode="json", include={"status", "output", "error", "completed_at"}),
        )
        return ExecutionRecord.model_validate(stored)

    async def mark_running(self, record: ExecutionRecord) -> ExecutionRecord:
        record.status = WorkflowStatus.RUNNING
        record.error = None
        record.output.failed_node_id = None
        return await self._save(record)

    async def checkpoint(
        self,
        record: ExecutionRecord,
        node_id: str,
        node_type: NodeType,
        context: WorkflowContext,
        *,
        skipped_node_ids: Iterable[str] = (),
        selected_branches: Optional[Dict[str, str]] = None,
    ) -> ExecutionRecord:
        """Persist the context and branch state after ``node_id`` completed."""
        output = record.output
        output.skipped_node_ids = sorted(set(skipped_node_ids))
        output.selected_branches = dict(selected_branches or {})
        if node_id not in output.completed_node_ids:
            output.completed_node_ids.append(node_id)
        output.current_context = context
        output.current_step = len(output.completed_node_ids)
        output.checkpoints.append(
            Checkpoint(
                node_id=node_id,
                node_type=node_type,
                step_number=output.current_step,
                timestamp=_now_iso(),
            )
        )
        return await self._save(record)

    async def mark_paused(self, record: ExecutionRecord, node_id: str) -> ExecutionRecord:
        record.status = WorkflowStatus.PAUSED
        record.output.paused_at_node_id = node_id
        return await self._save(record)

    async def mark_completed(
        self, record: ExecutionRecord, context: WorkflowContext
    ) -> ExecutionRecord:
        record.status = WorkflowStatus.COMPLETED
        record.output.current_context = context
        record.output.paused_at_node_id = None
        record.completed_at = _now_iso()
        return await self._save(record)

    async def mark_failed(
        self,
        record: ExecutionRecord,
        error: str,
        node_id: Optional[str] = None,
        node_type: Optional[NodeType] = None,
    ) -> ExecutionRecord:
        record.status = WorkflowStatus.FAILED
        record.error = error
        record.output.failed_node_id = node_id
        if node_id is not None:
            record.output.checkpoints.append(
                Checkpoint(
                    node_id=node_id,
                    node_type=node_type,
                    step_number=record.output.current_step,
                    timestamp=_now_iso(),
                    error=error,
                )
            )
        return await self._save(record)

    async def claim_for_resume(
        self, execution_id: str, merge_data: WorkflowContext
    ) -> ExecutionRecord:
        """Deep-merge external data into a paused execution's saved context.

        The merged snapshot is saved together with the RUNNING status, so a second
        resume of the same execution is rejected.

        Raises:
            NotFoundError: unknown execution id.
            ResumeStateError: the execution is not paused.
        """
        record = await self.load(execution_id)
        if not can_resume(record):
            raise ResumeStateError(
                f"Execution '{execution_id}' is {record.status.value}; only paused "
                "executions can be resumed",
                details={"execution_id": execution_id, "status": record.status.value},
            )
        merged = deep_merge(record.output.current_context, merge_data or {})
        merged.pop(PAUSE_KEY, None)
        record.output.current_context = merged
        record.status = WorkflowStatus.RUNNING
        return await self._save(record)


def can_resume(record: ExecutionRecord) -> bool:
    return record.status == WorkflowStatus.PAUSED
