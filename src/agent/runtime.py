"""Agent graph runtime.

Runs one agent execution as a sequential state machine: every step passes through
the before_step / node / after_step hooks, then follows the first matching edge.
The loop ends at the terminal node, at ``max_steps``, on error, on caller
cancellation or on timeout, and always returns an ``ExecutionResult``.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from agent.graph import AgentGraph
from agent.middleware.pipeline import (
    CompletionData,
    ErrorData,
    LLMCallData,
    Middleware,
    MiddlewareHook,
    MiddlewarePipeline,
    StepData,
    ToolCallData,
)
from agent.models.result import ExecutionResult
from agent.models.termination import ExecutionStatus
from agent.models.usage import UsageAccumulator, UsageTotals
from agent.pricing import estimate_cost
from agent.state.agent import END_NODE_ID, AgentState, ToolCallRecord
from agent.state.context import ExecutionContext
from agent.tools import ToolGateway
from common.errors import (
    ConfigurationError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    TransientExecutionError,
    error_info_from_exception,
)
from common.interfaces.llm import LLMCapability
from common.observability.events import log_event
from common.observability.metrics import runtime_metrics
from common.observability.telemetry import SpanType, telemetry

logger = logging.getLogger(__name__)

Evaluator = Callable[[AgentState], Union[Dict[str, Any], Awaitable[Dict[str, Any]]]]


class AgentRuntime:
    """Executes an ``AgentGraph`` for one ``ExecutionContext``.

    A runtime instance is single-use: it owns the usage accumulator for exactly one
    execution.
    """

    def __init__(
        self,
        graph: AgentGraph,
        context: ExecutionContext,
        llm: LLMCapability,
        tool_gateway: Optional[ToolGateway] = None,
        middleware: Union[MiddlewarePipeline, Iterable[Middleware], None] = None,
        *,
        evaluator: Optional[Evaluator] = None,
    ):
        graph.validate()
        self.graph = graph
        self.context = context
        self._llm = llm
        self._tools = tool_gateway
        if isinstance(middleware, MiddlewarePipeline):
            self._pipeline = middleware
        else:
            self._pipeline = MiddlewarePipeline(middleware)
        self._evaluator = evaluator
        self._usage = UsageAccumulator()
        self._cancel_requested = False
        self._state: Optional[AgentState] = None

    @property
    def usage(self) -> UsageTotals:
        return self._usage.snapshot()

    def cancel(self) -> None:
        """Request cancellation; honored before the next step starts."""
        self._cancel_requested = True

    async def call_llm(self, state: AgentState, system_prompt: Optional[str] = None) -> str:
        """Send the conversation through before_llm, the model, and after_llm."""
        payload = LLMCallData(
            messages=list(state.messages),
            system_prompt=system_prompt,
            model=self.context.model,
            temperature=self.context.temperature,
            step_number=state.current_step + 1,
        )
        payload = await self._pipeline.run(MiddlewareHook.BEFORE_LLM, payload, self.context)

        started = time.perf_counter()
        with telemetry.start_span(
            "agent.llm",
            span_type=SpanType.CHAT_MODEL,
            attributes={"llm.model": payload.model, "agent.id": self.context.agent_id},
        ) as span:
            response = await self._llm.send(
                payload.messages,
                system_prompt=payload.system_prompt,
                model=payload.model,
                temperature=payload.temperature,
            )
            span.set_attributes(
                {"llm.tokens_in": response.tokens_in, "llm.tokens_out": response.tokens_out}
            )
        latency_ms = (time.perf_counter() - started) * 1000

        cost = estimate_cost(payload.model, response.tokens_in, response.tokens_out)
        self._usage.record_llm_usage(response.tokens_in, response.tokens_out, cost)

        payload.output = response.text
        payload.tokens_in = response.tokens_in
        payload.tokens_out = response.tokens_out
        payload.cost = cost
        payload.latency_ms = latency_ms
        payload = await self._pipeline.run_observed(
            MiddlewareHook.AFTER_LLM, payload, self.context
        )
        return payload.output

    async def call_tool(
        self, state: AgentState, tool_name: str, tool_input: Dict[str, Any]
    ) -> ToolCallRecord:
        """Run a tool call through before_tool, the gateway, and after_tool."""
        if self._tools is None:
            raise ConfigurationError(f"Agent {self.context.agent_id} has no tool gateway")

        payload = ToolCallData(
            tool_name=tool_name, tool_input=dict(tool_input), step_number=state.current_step + 1
        )
        payload = await self._pipeline.run(MiddlewareHook.BEFORE_TOOL, payload, self.context)

        result = await self._tools.invoke(payload.tool_name, payload.tool_input, self.context)
        self._usage.record_tool_outcome(result.success)
        runtime_metrics.add_counter(
            "agent.tool.calls",
            description="Tool calls made by agent executions",
            attributes={"tool": payload.tool_name, "success": result.success},
        )

        payload.output = result.output
        payload.success = result.success
        payload.error = result.error
        payload.latency_ms = result.latency_ms
        payload = await self._pipeline.run_observed(
            MiddlewareHook.AFTER_TOOL, payload, self.context
        )

        record = ToolCallRecord(
            name=payload.tool_name,
            input=payload.tool_input,
            output=payload.output,
            success=bool(payload.success),
            error=payload.error,
            latency_ms=payload.latency_ms,
        )
        state.tool_calls.append(record)
        return record

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event]) -> None:
        if self._cancel_requested or (cancel_event is not None and cancel_event.is_set()):
            raise ExecutionCancelledError("Execution cancelled by caller")

    async def _run_loop(self, state: AgentState, cancel_event: Optional[asyncio.Event]) -> None:
        while state.current_node_id != END_NODE_ID and state.current_step < state.max_steps:
            self._check_cancelled(cancel_event)
            node = self.graph.get_node(state.current_node_id)
            step_number = state.current_step + 1

            with telemetry.start_span(
                f"agent.step.{node.id}",
                span_type=SpanType.AGENT_STEP,
                attributes={
                    "agent.id": self.context.agent_id,
                    "agent.node_type": node.type.value,
                    "agent.step": step_number,
                },
            ):
                try:
                    step = await self._pipeline.run(
                        MiddlewareHook.BEFORE_STEP,
                        StepData(state=state, node_id=node.id, step_number=step_number),
                        self.context,
                    )
                    state = step.state
                    if node.behavior is not None:
                        state = await node.behavior(state, self) or state
                    self._state = state
                    next_node_id = self.graph.next_node(node.id, state)
                except Exception as exc:
                    self._state = state
                    await self._pipeline.run_observed(
                        MiddlewareHook.ON_ERROR, ErrorData(state=state, error=exc), self.context
                    )
                    raise

                await self._pipeline.run_observed(
                    MiddlewareHook.AFTER_STEP,
                    StepData(state=state, node_id=node.id, step_number=step_number),
                    self.context,
                )

            state.current_node_id = next_node_id
            state.current_step += 1

    async def _run_guarded(
        self, state: AgentState, cancel_event: Optional[asyncio.Event]
    ) -> None:
        # TimeoutError raised inside a step is a failure, not the caller's deadline.
        try:
            await self._run_loop(state, cancel_event)
        except asyncio.TimeoutError as exc:
            raise TransientExecutionError(
                f"Agent step timed out: {exc or type(exc).__name__}"
            ) from exc

    async def _evaluate(self, state: AgentState) -> Optional[Dict[str, Any]]:
        if self._evaluator is None:
            return None
        try:
            evaluation = self._evaluator(state)
            if inspect.isawaitable(evaluation):
                evaluation = await evaluation
            return evaluation
        except Exception as exc:
            logger.warning("Evaluation for agent %s failed: %s", self.context.agent_id, exc)
            return None

    def _result(
        self,
        status: ExecutionStatus,
        started: float,
        *,
        error: Optional[BaseException] = None,
        evaluation: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        state = self._state
        latency_ms = (time.perf_counter() - started) * 1000
        result = ExecutionResult(
            status=status,
            state=state.snapshot(),
            total_steps=state.current_step,
            latency_ms=latency_ms,
            usage=self._usage.snapshot(),
            evaluation=evaluation,
            error=error_info_from_exception(error) if error is not None else None,
        )
        runtime_metrics.add_counter(
            "agent.executions",
            description="Finished agent executions",
            attributes={"status": status.value},
        )
        runtime_metrics.record_histogram(
            "agent.execution.latency", latency_ms, unit="ms", attributes={"status": status.value}
        )
        log_event(
            "agent_execution_finished",
            level=logging.INFO if status == ExecutionStatus.COMPLETED else logging.WARNING,
            agent_id=self.context.agent_id,
            trace_id=self.context.trace_id,
            status=status.value,
            total_steps=result.total_steps,
            tokens_in=result.usage.tokens_in,
            tokens_out=result.usage.tokens_out,
            cost=result.usage.cost,
            error=result.error.message if result.error else None,
        )
        return result

    async def execute(
        self,
        initial_state: AgentState,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_s: Optional[float] = None,
    ) -> ExecutionResult:
        """Run the graph from ``initial_state.current_node_id`` until it terminates.

        Args:
            initial_state: State to start from; mutated in place during the run.
            cancel_event: Optional event the caller sets to stop before the next step.
            timeout_s: Optional wall-clock budget for the whole run.

        Returns:
            ExecutionResult with status completed, failed, timeout or cancelled.
            Usage totals are included for every status.
        """
        started = time.perf_counter()
        self._state = initial_state

        if not self.graph.has_node(initial_state.current_node_id):
            return self._result(
                ExecutionStatus.FAILED,
                started,
                error=ConfigurationError(
                    f"Agent graph has no node '{initial_state.current_node_id}'"
                ),
            )

        with telemetry.start_span(
            "agent.execute",
            span_type=SpanType.AGENT_RUN,
            attributes={
                "agent.id": self.context.agent_id,
                "agent.trace_id": self.context.trace_id,
                "agent.max_steps": initial_state.max_steps,
            },
        ) as span:
            try:
                if timeout_s is not None:
                    await asyncio.wait_for(
                        self._run_guarded(initial_state, cancel_event), timeout=timeout_s
                    )
                else:
                    await self._run_guarded(initial_state, cancel_event)
            except asyncio.TimeoutError:
                span.set_attribute("agent.status", ExecutionStatus.TIMEOUT.value)
                return self._result(
                    ExecutionStatus.TIMEOUT,
                    started,
                    error=ExecutionTimeoutError(f"Agent execution exceeded {timeout_s}s"),
                )
            except ExecutionCancelledError as exc:
                span.set_attribute("agent.status", ExecutionStatus.CANCELLED.value)
                return self._result(ExecutionStatus.CANCELLED, started, error=exc)
            except Exception as exc:
                logger.error("Agent %s execution failed: %s", self.context.agent_id, exc)
                span.record_error(exc)
                return self._result(ExecutionStatus.FAILED, started, error=exc)

            await self._pipeline.run_observed(
                MiddlewareHook.ON_COMPLETION,
                CompletionData(state=self._state, usage=self._usage.snapshot()),
                self.context,
            )
            evaluation = await self._evaluate(self._state)
            span.set_attribute("agent.status", ExecutionStatus.COMPLETED.value)
            return self._result(ExecutionStatus.COMPLETED, started, evaluation=evaluation)
