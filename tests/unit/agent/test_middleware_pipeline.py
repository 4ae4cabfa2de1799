"""Tests for MiddlewarePipeline ordering and failure policy."""

import pytest

from agent.middleware import Middleware, MiddlewareHook, MiddlewarePipeline
from agent.state.context import ExecutionContext

CONTEXT = ExecutionContext(agent_id="agent-1", user_id="user-1", model="claude-sonnet-4")


def _appender(label, calls):
    def handler(data, context):
        calls.append(label)
        return data + [label]

    return handler


@pytest.mark.asyncio
async def test_handlers_run_in_order_then_registration_order():
    """Lower order first; equal orders keep registration order."""
    calls = []
    pipeline = MiddlewarePipeline(
        [
            Middleware("late", MiddlewareHook.BEFORE_LLM, _appender("late", calls), order=10),
            Middleware("first-0", MiddlewareHook.BEFORE_LLM, _appender("first-0", calls)),
            Middleware("second-0", MiddlewareHook.BEFORE_LLM, _appender("second-0", calls)),
        ]
    )
    pipeline.register(
        Middleware("early", MiddlewareHook.BEFORE_LLM, _appender("early", calls), order=-1)
    )

    result = await pipeline.run(MiddlewareHook.BEFORE_LLM, [], CONTEXT)

    assert result == ["early", "first-0", "second-0", "late"]
    assert calls == result
    assert [m.id for m in pipeline.handlers_for(MiddlewareHook.BEFORE_LLM)] == result


@pytest.mark.asyncio
async def test_none_return_passes_payload_through_and_async_supported():
    """Handlers returning None leave the payload unchanged; async handlers are awaited."""

    async def async_double(data, context):
        return data * 2

    def observer(data, context):
        return None

    pipeline = MiddlewarePipeline(
        [
            Middleware("observe", MiddlewareHook.AFTER_TOOL, observer, order=0),
            Middleware("double", MiddlewareHook.AFTER_TOOL, async_double, order=1),
        ]
    )

    assert await pipeline.run(MiddlewareHook.AFTER_TOOL, 21, CONTEXT) == 42


@pytest.mark.asyncio
async def test_hooks_are_isolated():
    """Handlers only run for the hook they registered on."""
    calls = []
    pipeline = MiddlewarePipeline(
        [Middleware("tool", MiddlewareHook.BEFORE_TOOL, _appender("tool", calls))]
    )

    assert await pipeline.run(MiddlewareHook.BEFORE_LLM, [], CONTEXT) == []
    assert calls == []


@pytest.mark.asyncio
async def test_run_propagates_first_failure():
    """Strict runs stop at the first failing handler."""
    calls = []

    def boom(data, context):
        raise RuntimeError("guard failed")

    pipeline = MiddlewarePipeline(
        [
            Middleware("boom", MiddlewareHook.BEFORE_STEP, boom, order=0),
            Middleware("after", MiddlewareHook.BEFORE_STEP, _appender("after", calls), order=1),
        ]
    )

    with pytest.raises(RuntimeError, match="guard failed"):
        await pipeline.run(MiddlewareHook.BEFORE_STEP, [], CONTEXT)
    assert calls == []


@pytest.mark.asyncio
async def test_run_observed_logs_and_continues():
    """Observed runs skip a failing handler and keep the prior payload."""

    def boom(data, context):
        raise RuntimeError("tracing down")

    pipeline = MiddlewarePipeline(
        [
            Middleware("a", MiddlewareHook.AFTER_LLM, lambda data, ctx: data + ["a"], order=0),
            Middleware("boom", MiddlewareHook.AFTER_LLM, boom, order=1),
            Middleware("b", MiddlewareHook.AFTER_LLM, lambda data, ctx: data + ["b"], order=2),
        ]
    )

    assert await pipeline.run_observed(MiddlewareHook.AFTER_LLM, [], CONTEXT) == ["a", "b"]


@pytest.mark.asyncio
async def test_dispatch_uses_hook_policy():
    """Guard hooks raise through dispatch; other hooks swallow handler errors."""

    def boom(data, context):
        raise ValueError("nope")

    pipeline = MiddlewarePipeline(
        [
            Middleware("guard", MiddlewareHook.BEFORE_TOOL, boom),
            Middleware("observer", MiddlewareHook.AFTER_TOOL, boom),
        ]
    )

    with pytest.raises(ValueError):
        await pipeline.dispatch(MiddlewareHook.BEFORE_TOOL, {}, CONTEXT)
    assert await pipeline.dispatch(MiddlewareHook.AFTER_TOOL, {"x": 1}, CONTEXT) == {"x": 1}
