"""Tests for ToolGateway result normalization."""

import pytest

from agent.state.context import ExecutionContext
from agent.tools import ToolGateway
from common.errors import PolicyError, TransientExecutionError
from tests._support.fakes import FakeActionProvider


def _context(**overrides):
    values = {"agent_id": "agent-1", "user_id": "user-1", "model": "claude-sonnet-4"}
    values.update(overrides)
    return ExecutionContext(**values)


@pytest.mark.asyncio
async def test_successful_call_returns_output_and_latency():
    """Provider output is wrapped in a successful result."""
    provider = FakeActionProvider({"lookup": {"id": 7}})

    result = await ToolGateway(provider).invoke(
        "lookup", {"key": "a"}, _context(workspace_id="ws-1")
    )

    assert result.success is True
    assert result.output == {"id": 7}
    assert result.latency_ms >= 0
    assert provider.calls == [
        {
            "tool_name": "lookup",
            "tool_input": {"key": "a"},
            "user_id": "user-1",
            "workspace_id": "ws-1",
        }
    ]


@pytest.mark.asyncio
async def test_tool_outside_allowed_set_is_rejected():
    """Tools not granted to the agent fail without calling the provider."""
    provider = FakeActionProvider()

    result = await ToolGateway(provider).invoke("delete_all", {}, _context(tools=frozenset({"a"})))

    assert result.success is False
    assert "not available" in result.error
    assert provider.calls == []


@pytest.mark.asyncio
async def test_provider_failures_become_unsuccessful_results():
    """Unexpected and retryable provider errors are captured on the result."""
    provider = FakeActionProvider(
        {"flaky": TransientExecutionError("upstream 503"), "broken": KeyError("field")}
    )
    gateway = ToolGateway(provider)

    flaky = await gateway.invoke("flaky", {}, _context())
    broken = await gateway.invoke("broken", {}, _context())

    assert flaky.success is False and flaky.error == "upstream 503"
    assert broken.success is False


@pytest.mark.asyncio
async def test_policy_errors_propagate():
    """Non-retryable typed errors are raised to the runtime."""
    provider = FakeActionProvider({"admin": PolicyError("forbidden")})

    with pytest.raises(PolicyError):
        await ToolGateway(provider).invoke("admin", {}, _context())
