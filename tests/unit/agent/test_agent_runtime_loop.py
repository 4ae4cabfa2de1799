"""Tests for AgentRuntime step accounting, termination and middleware integration."""

import asyncio

import pytest

from agent.graph import AgentGraph, AgentNode, AgentNodeType
from agent.middleware import (
    Middleware,
    MiddlewareHook,
    MonthlySpendCache,
    cost_guard_middleware,
    safe_mode_middleware,
)
from agent.middleware.builtin import AI_EVENTS_COLLECTION
from agent.models.termination import ExecutionStatus
from agent.nodes.react import build_react_graph
from agent.runtime import AgentRuntime
from agent.state.agent import END_NODE_ID, START_NODE_ID, AgentState
from agent.state.context import ExecutionContext
from agent.tools import ToolGateway
from common.errors import ErrorCode
from tests._support.fakes import FakeActionProvider, FakeLLM


def _context(**overrides):
    values = {"agent_id": "agent-1", "user_id": "user-1", "model": "claude-sonnet-4"}
    values.update(overrides)
    return ExecutionContext(**values)


def _state(max_steps=10, message="hello"):
    state = AgentState(
        conversation_id="conv-1", agent_id="agent-1", user_id="user-1", max_steps=max_steps
    )
    if message:
        state.add_message("user", message)
    return state


def _linear_graph(*behaviors):
    """start -> n0 -> n1 ... -> end."""
    graph = AgentGraph()
    graph.add_node(AgentNode(START_NODE_ID, AgentNodeType.START))
    previous = START_NODE_ID
    for index, behavior in enumerate(behaviors):
        node_id = f"n{index}"
        graph.add_node(AgentNode(node_id, AgentNodeType.CUSTOM, behavior))
        graph.add_edge(previous, node_id)
        previous = node_id
    graph.add_edge(previous, END_NODE_ID)
    return graph


@pytest.mark.asyncio
async def test_react_run_with_tool_call_accumulates_usage():
    """A tool request round-trips through action and observation, then the run ends."""
    llm = FakeLLM(['{"tool": "search_docs", "input": {"q": "refunds"}}', "Refunds take 5 days."])
    provider = FakeActionProvider({"search_docs": {"hits": 3}})
    runtime = AgentRuntime(build_react_graph(), _context(), llm, ToolGateway(provider))

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.COMPLETED
    assert result.usage.llm_calls == 2
    assert result.total_tokens_in == 20
    assert result.total_tokens_out == 10
    assert result.tool_calls_count == 1
    assert result.tool_success_count == 1
    assert provider.calls[0]["tool_input"] == {"q": "refunds"}
    assert result.state.last_assistant_message == "Refunds take 5 days."
    tool_messages = [m for m in result.state.messages if m.role == "tool"]
    assert tool_messages[0].content == '{"hits": 3}'
    assert tool_messages[0].name == "search_docs"
    # start, reasoning, action, observation, reasoning
    assert result.total_steps == 5
    # 20 in / 10 out at sonnet pricing
    assert result.total_cost == pytest.approx((20 * 3.0 + 10 * 15.0) / 1_000_000)


@pytest.mark.asyncio
async def test_self_loop_stops_at_max_steps():
    """A node that always loops back completes after exactly max_steps steps."""
    visits = []

    async def loop(state, runtime):
        visits.append(state.current_step)
        return state

    graph = AgentGraph()
    graph.add_node(AgentNode(START_NODE_ID, AgentNodeType.START, loop))
    graph.add_edge(START_NODE_ID, START_NODE_ID)

    result = await AgentRuntime(graph, _context(), FakeLLM()).execute(_state(max_steps=3))

    assert result.status == ExecutionStatus.COMPLETED
    assert result.total_steps == 3
    assert visits == [0, 1, 2]


@pytest.mark.asyncio
async def test_failure_keeps_partial_usage_and_runs_on_error():
    """A node failure returns FAILED with the usage observed so far."""
    errors = []

    async def think(state, runtime):
        await runtime.call_llm(state)
        return state

    async def explode(state, runtime):
        raise RuntimeError("node blew up")

    on_error = Middleware(
        "capture", MiddlewareHook.ON_ERROR, lambda data, ctx: errors.append(data.error)
    )
    runtime = AgentRuntime(_linear_graph(think, explode), _context(), FakeLLM(), None, [on_error])

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.FAILED
    assert result.error.code == ErrorCode.INTERNAL_ERROR
    assert result.error.message == "node blew up"
    assert result.total_steps == 2
    assert result.total_tokens_in == 10
    assert result.usage.llm_calls == 1
    assert len(errors) == 1 and isinstance(errors[0], RuntimeError)


@pytest.mark.asyncio
async def test_safe_mode_blocks_tool_before_gateway():
    """A blocked tool in safe mode fails the run and never reaches the provider."""
    llm = FakeLLM(['{"tool": "send_email", "input": {"to": "a@b.c"}}'])
    provider = FakeActionProvider()
    runtime = AgentRuntime(
        build_react_graph(),
        _context(safe_mode=True),
        llm,
        ToolGateway(provider),
        [safe_mode_middleware(["send_email"])],
    )

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.FAILED
    assert result.error.code == ErrorCode.SAFE_MODE_BLOCKED
    assert provider.calls == []
    assert result.usage.llm_calls == 1
    assert result.tool_calls_count == 0


@pytest.mark.asyncio
async def test_cost_guard_blocks_before_model_call(store):
    """Exceeded monthly spend fails the run without calling the model."""
    await store.create(AI_EVENTS_COLLECTION, {"cost": 150.0, "user_id": "user-1"})
    llm = FakeLLM()
    runtime = AgentRuntime(
        build_react_graph(),
        _context(),
        llm,
        None,
        [cost_guard_middleware(store, 100.0, spend_cache=MonthlySpendCache(store))],
    )

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.FAILED
    assert result.error.code == ErrorCode.COST_LIMIT_EXCEEDED
    assert result.error.retryable is False
    assert llm.calls == []
    assert result.total_tokens_in == 0


@pytest.mark.asyncio
async def test_cancel_event_stops_before_next_step():
    """Setting the cancel event ends the run as CANCELLED between steps."""
    cancel = asyncio.Event()

    async def first(state, runtime):
        cancel.set()
        return state

    async def second(state, runtime):
        raise AssertionError("should not run after cancellation")

    runtime = AgentRuntime(_linear_graph(first, second), _context(), FakeLLM())

    result = await runtime.execute(_state(), cancel_event=cancel)

    assert result.status == ExecutionStatus.CANCELLED
    assert result.error.code == ErrorCode.EXECUTION_CANCELLED
    assert result.total_steps == 2


@pytest.mark.asyncio
async def test_timeout_returns_timeout_status():
    """Exceeding timeout_s returns TIMEOUT with totals intact."""

    async def slow(state, runtime):
        await asyncio.sleep(5)
        return state

    runtime = AgentRuntime(_linear_graph(slow), _context(), FakeLLM())

    result = await runtime.execute(_state(), timeout_s=0.05)

    assert result.status == ExecutionStatus.TIMEOUT
    assert result.error.code == ErrorCode.EXECUTION_TIMEOUT
    assert result.total_steps == 1


@pytest.mark.asyncio
async def test_timeout_raised_by_provider_is_a_failure():
    """A TimeoutError from the LLM fails the run; TIMEOUT is reserved for the caller's deadline."""
    llm = FakeLLM([asyncio.TimeoutError("provider read timed out")])
    runtime = AgentRuntime(build_react_graph(), _context(), llm)

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.FAILED
    assert result.error.code == ErrorCode.TRANSIENT_ERROR
    assert result.error.retryable is True
    assert "provider read timed out" in result.error.message


@pytest.mark.asyncio
async def test_unknown_start_node_fails_without_running():
    """A state pointing at a missing node fails with a configuration error."""
    state = _state()
    state.current_node_id = "missing"

    result = await AgentRuntime(build_react_graph(), _context(), FakeLLM()).execute(state)

    assert result.status == ExecutionStatus.FAILED
    assert result.error.code == ErrorCode.CONFIGURATION_ERROR
    assert result.total_steps == 0


@pytest.mark.asyncio
async def test_hook_sequence_and_evaluation():
    """Hooks fire in step order; completion and evaluation run once at the end."""
    events = []

    def recorder(label):
        def handler(data, context):
            events.append(label)

        return handler

    middleware = [
        Middleware(hook.value, hook, recorder(hook.value))
        for hook in (
            MiddlewareHook.BEFORE_STEP,
            MiddlewareHook.AFTER_STEP,
            MiddlewareHook.BEFORE_LLM,
            MiddlewareHook.AFTER_LLM,
            MiddlewareHook.ON_COMPLETION,
        )
    ]

    async def evaluator(state):
        return {"score": len(state.messages)}

    runtime = AgentRuntime(
        build_react_graph(), _context(), FakeLLM(["done"]), None, middleware, evaluator=evaluator
    )

    result = await runtime.execute(_state())

    assert events == [
        "before_step",
        "after_step",
        "before_step",
        "before_llm",
        "after_llm",
        "after_step",
        "on_completion",
    ]
    assert result.evaluation == {"score": 2}


@pytest.mark.asyncio
async def test_failing_evaluator_does_not_fail_run():
    """Evaluator errors are logged and the run still completes."""

    def evaluator(state):
        raise ValueError("scorer offline")

    runtime = AgentRuntime(build_react_graph(), _context(), FakeLLM(), evaluator=evaluator)

    result = await runtime.execute(_state())

    assert result.status == ExecutionStatus.COMPLETED
    assert result.evaluation is None


@pytest.mark.asyncio
async def test_result_state_is_a_snapshot():
    """Mutating the live state after the run does not change the result."""
    state = _state()
    result = await AgentRuntime(build_react_graph(), _context(), FakeLLM()).execute(state)

    state.add_message("user", "later")

    assert len(result.state.messages) == 2


@pytest.mark.asyncio
async def test_run_spans_recorded(in_memory_telemetry):
    """The run, each step and the LLM call produce spans."""
    await AgentRuntime(build_react_graph(), _context(), FakeLLM()).execute(_state())

    names = [span.name for span in in_memory_telemetry.spans]
    assert "agent.execute" in names
    assert "agent.step.reasoning" in names
    assert "agent.llm" in names
