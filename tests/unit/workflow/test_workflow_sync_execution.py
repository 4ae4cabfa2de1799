"""Tests for synchronous workflow execution."""

import asyncio
import time

import pytest

from common.errors import ErrorCode
from tests._support.workflows import (
    RecordingExecutor,
    chain,
    make_workflow,
    recording_registry,
)
from workflow.definitions import save_workflow, seed_context
from workflow.executor import WorkflowExecutor
from workflow.executors import condition_executor
from workflow.models import (
    AGENT_MEMORIES_KEY,
    CONVERSATION_CONTEXT_KEY,
    NodeType,
    WorkflowStatus,
)
from workflow.registry import ExecutorRegistry


@pytest.mark.asyncio
async def test_linear_chain_threads_context():
    """A -> B -> C sees one context updated by each node in order."""
    recorder = RecordingExecutor()
    executor = WorkflowExecutor(recording_registry(recorder))

    result = await executor.execute_sync(chain("A", "B", "C"))

    assert result.success is True
    assert result.status == WorkflowStatus.COMPLETED
    assert result.output == {"x": 1, "visited": ["A", "B", "C"]}
    assert recorder.calls == ["A", "B", "C"]
    assert result.execution_id is None


@pytest.mark.asyncio
async def test_initial_data_reaches_first_node():
    """Trigger input seeds the context."""
    executor = WorkflowExecutor(recording_registry())

    result = await executor.execute_sync(chain("A"), {"lead": {"email": "a@b.c"}})

    assert result.output["lead"] == {"email": "a@b.c"}


@pytest.mark.asyncio
async def test_timeout_returns_retryable_failure():
    """A node that never resolves is abandoned once the wall-clock limit passes."""

    async def never_resolves(params):
        await asyncio.Event().wait()

    executor = WorkflowExecutor(ExecutorRegistry({NodeType.TRANSFORM: never_resolves}))

    started = time.monotonic()
    result = await executor.execute_sync(chain("A"), timeout_ms=50)
    elapsed = time.monotonic() - started

    assert elapsed < 0.2
    assert result.success is False
    assert result.error == "Workflow execution timed out after 50 ms"
    assert result.error_code == ErrorCode.EXECUTION_TIMEOUT.value
    assert result.retryable is True


@pytest.mark.asyncio
async def test_cycle_fails_before_any_node_runs():
    """A cyclic graph is a configuration error and no executor is called."""
    recorder = RecordingExecutor()
    definition = make_workflow(
        [("a", NodeType.TRANSFORM), ("b", NodeType.TRANSFORM)],
        [("a", "b"), ("b", "a")],
    )

    result = await WorkflowExecutor(recording_registry(recorder)).execute_sync(definition)

    assert result.success is False
    assert result.error_code == ErrorCode.WORKFLOW_CYCLE.value
    assert result.retryable is False
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_missing_executor_detected_up_front():
    """An unregistered node type fails the run before earlier nodes execute."""
    recorder = RecordingExecutor()
    definition = make_workflow(
        [("a", NodeType.TRANSFORM), ("b", NodeType.HTTP_REQUEST)],
        [("a", "b")],
    )

    result = await WorkflowExecutor(recording_registry(recorder)).execute_sync(definition)

    assert result.success is False
    assert result.error_code == ErrorCode.EXECUTOR_NOT_FOUND.value
    assert "HTTP_REQUEST" in result.error
    assert recorder.calls == []


@pytest.mark.asyncio
async def test_node_failure_names_the_node():
    """An executor exception fails the run with the failing node id."""

    async def boom(params):
        raise RuntimeError("downstream exploded")

    registry = ExecutorRegistry(
        {NodeType.TRANSFORM: RecordingExecutor(), NodeType.LLM_ACTION: boom}
    )
    definition = make_workflow(
        [("a", NodeType.TRANSFORM), ("b", NodeType.LLM_ACTION)],
        [("a", "b")],
    )

    result = await WorkflowExecutor(registry).execute_sync(definition)

    assert result.success is False
    assert result.failed_node_id == "b"
    assert result.error_code == ErrorCode.NODE_EXECUTION_FAILED.value
    assert "downstream exploded" in result.error


@pytest.mark.asyncio
async def test_non_json_context_is_rejected():
    """Executors must return JSON-compatible contexts."""

    async def bad(params):
        return {"when": object()}

    result = await WorkflowExecutor(ExecutorRegistry({NodeType.TRANSFORM: bad})).execute_sync(
        chain("A")
    )

    assert result.success is False
    assert result.retryable is False
    assert "non-JSON" in result.error


@pytest.mark.asyncio
async def test_condition_runs_only_selected_branch():
    """Nodes behind the unselected branch, and their descendants, are skipped."""
    recorder = RecordingExecutor()
    registry = ExecutorRegistry(
        {NodeType.CONDITION: condition_executor, NodeType.TRANSFORM: recorder}
    )
    definition = make_workflow(
        [
            ("trigger", NodeType.WEBHOOK_TRIGGER),
            ("check", NodeType.CONDITION),
            ("big", NodeType.TRANSFORM),
            ("small", NodeType.TRANSFORM),
            ("small_followup", NodeType.TRANSFORM),
            ("join", NodeType.TRANSFORM),
        ],
        [
            ("trigger", "check"),
            ("check", "big", "big"),
            ("check", "small", "small"),
            ("small", "small_followup"),
            ("big", "join"),
            ("small_followup", "join"),
        ],
        data={
            "check": {
                "conditions": [
                    {"id": "big", "field": "order.total", "operator": "gte", "value": 100},
                    {"id": "small", "operator": "default"},
                ]
            }
        },
    )

    result = await WorkflowExecutor(registry).execute_sync(definition, {"order": {"total": 250}})

    assert result.success is True
    assert recorder.calls == ["big", "join"]
    assert "__selected_branch" not in result.output


@pytest.mark.asyncio
async def test_pause_in_sync_mode_reports_paused():
    """A pausing node ends a sync run with PAUSED and later nodes do not run."""
    recorder = RecordingExecutor()

    async def pause(params):
        return {**params.context, "__pause": True}

    registry = ExecutorRegistry({NodeType.MEETING_RECORDER: pause, NodeType.TRANSFORM: recorder})
    definition = make_workflow(
        [("rec", NodeType.MEETING_RECORDER), ("after", NodeType.TRANSFORM)], [("rec", "after")]
    )

    result = await WorkflowExecutor(registry).execute_sync(definition)

    assert result.success is True
    assert result.status == WorkflowStatus.PAUSED
    assert recorder.calls == []
    assert "__pause" not in result.output


@pytest.mark.asyncio
async def test_workflow_loaded_by_id(store):
    """Workflows can be referenced by id when a store is configured."""
    await save_workflow(store, chain("A", workflow_id="stored"))
    executor = WorkflowExecutor(recording_registry(), store)

    found = await executor.execute_sync("stored")
    missing = await executor.execute_sync("nope")

    assert found.output == {"x": 1, "visited": ["A"]}
    assert missing.success is False
    assert missing.error_code == ErrorCode.NOT_FOUND.value


@pytest.mark.asyncio
async def test_agent_context_is_seeded():
    """Conversation context and memories land under their reserved keys."""
    executor = WorkflowExecutor(recording_registry())

    result = await executor.execute_sync(
        chain("A"),
        {"q": 1},
        conversation_context={"recent_messages": [{"role": "user", "content": "hi"}]},
        agent_memories=[{"key": "tz", "value": "UTC", "category": "prefs", "extra": "dropped"}],
    )

    assert result.output[CONVERSATION_CONTEXT_KEY] == {
        "recent_messages": [{"role": "user", "content": "hi"}],
        "summary": None,
    }
    assert result.output[AGENT_MEMORIES_KEY] == [
        {"key": "tz", "value": "UTC", "category": "prefs"}
    ]


def test_seed_context_without_extras():
    """Plain trigger data is copied as-is."""
    data = {"a": [1, 2]}
    seeded = seed_context(data)

    assert seeded == data
    assert seeded is not data


@pytest.mark.asyncio
async def test_spans_per_node(in_memory_telemetry):
    """Each executed node gets its own span under the run span."""
    await WorkflowExecutor(recording_registry()).execute_sync(chain("A", "B"))

    names = [span.name for span in in_memory_telemetry.spans]
    assert names.count("workflow.node.transform") == 2
    assert "workflow.execute_sync" in names
