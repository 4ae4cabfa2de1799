"""Tool gateway between agent action nodes and the integration layer."""

import logging
import time
from typing import Any, Dict

from agent.state.context import ExecutionContext
from common.errors import ExecutionError
from common.interfaces.actions import ActionProvider, ToolInvocationResult
from common.observability.telemetry import SpanType, telemetry

logger = logging.getLogger(__name__)


class ToolGateway:
    """Invokes tools through an ``ActionProvider`` and normalizes the outcome.

    Provider failures come back as unsuccessful results instead of exceptions, so a
    flaky integration shows up in the run's tool-call record rather than aborting it.
    Policy and configuration errors raised by the provider still propagate.
    """

    def __init__(self, provider: ActionProvider):
        self._provider = provider

    async def invoke(
        self, tool_name: str, tool_input: Dict[str, Any], context: ExecutionContext
    ) -> ToolInvocationResult:
        if not context.allows_tool(tool_name):
            return ToolInvocationResult(
                success=False,
                error=f"Tool '{tool_name}' is not available to agent {context.agent_id}",
                latency_ms=0.0,
            )

        started = time.perf_counter()
        with telemetry.start_span(
            f"tool.{tool_name}",
            span_type=SpanType.TOOL,
            attributes={"tool.name": tool_name, "agent.id": context.agent_id},
        ) as span:
            try:
                output = await self._provider.execute(
                    tool_name,
                    tool_input,
                    user_id=context.user_id,
                    workspace_id=context.workspace_id,
                )
            except ExecutionError as exc:
                if not exc.retryable:
                    raise
                return self._failure(tool_name, exc, started, span)
            except Exception as exc:
                return self._failure(tool_name, exc, started, span)

            latency_ms = (time.perf_counter() - started) * 1000
            span.set_attributes({"tool.success": True, "tool.latency_ms": latency_ms})
            return ToolInvocationResult(output=output, success=True, latency_ms=latency_ms)

    @staticmethod
    def _failure(tool_name: str, exc: Exception, started: float, span) -> ToolInvocationResult:
        latency_ms = (time.perf_counter() - started) * 1000
        logger.warning("Tool %s failed after %.1fms: %s", tool_name, latency_ms, exc)
        span.set_attributes(
            {"tool.success": False, "tool.latency_ms": latency_ms, "error.type": type(exc).__name__}
        )
        return ToolInvocationResult(success=False, error=str(exc), latency_ms=latency_ms)
