"""Ordered middleware pipeline for agent lifecycle hooks.

Handlers registered on a hook run as a left fold: each receives the payload
returned by the previous one. Ordering is ascending ``order`` and, for equal
orders, registration order.
"""

import inspect
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from agent.models.usage import UsageTotals
from agent.state.agent import AgentState
from agent.state.context import ExecutionContext

logger = logging.getLogger(__name__)


class MiddlewareHook(str, Enum):
    BEFORE_STEP = "before_step"
    AFTER_STEP = "after_step"
    BEFORE_TOOL = "before_tool"
    AFTER_TOOL = "after_tool"
    BEFORE_LLM = "before_llm"
    AFTER_LLM = "after_llm"
    ON_ERROR = "on_error"
    ON_COMPLETION = "on_completion"


# Hooks whose handler failures abort the step; the rest only log.
GUARD_HOOKS = frozenset(
    {MiddlewareHook.BEFORE_STEP, MiddlewareHook.BEFORE_LLM, MiddlewareHook.BEFORE_TOOL}
)


@dataclass
class StepData:
    state: AgentState
    node_id: str
    step_number: int


@dataclass
class LLMCallData:
    """Payload for before_llm / after_llm. Output fields are filled after the call."""

    messages: List[Any]
    system_prompt: Optional[str]
    model: str
    temperature: float
    step_number: int
    output: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    latency_ms: Optional[float] = None


@dataclass
class ToolCallData:
    """Payload for before_tool / after_tool. Outcome fields are filled after the call."""

    tool_name: str
    tool_input: Dict[str, Any]
    step_number: int
    output: Any = None
    success: Optional[bool] = None
    error: Optional[str] = None
    latency_ms: Optional[float] = None


@dataclass
class ErrorData:
    state: AgentState
    error: BaseException


@dataclass
class CompletionData:
    state: AgentState
    usage: UsageTotals = field(default_factory=UsageTotals)


MiddlewareHandler = Callable[[Any, ExecutionContext], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class Middleware:
    """A named handler bound to one hook.

    Handlers may be sync or async. Returning ``None`` passes the payload through
    unchanged.
    """

    id: str
    hook: MiddlewareHook
    handler: MiddlewareHandler
    order: int = 0


class MiddlewarePipeline:
    """Registry and executor for middleware across all hooks."""

    def __init__(self, middleware: Optional[Iterable[Middleware]] = None):
        self._entries: Dict[MiddlewareHook, List[tuple]] = {hook: [] for hook in MiddlewareHook}
        self._sequence = itertools.count()
        for item in middleware or ():
            self.register(item)

    def register(self, middleware: Middleware) -> None:
        """Add a middleware; it runs after earlier registrations with the same order."""
        entries = self._entries[MiddlewareHook(middleware.hook)]
        entries.append((middleware.order, next(self._sequence), middleware))
        entries.sort(key=lambda entry: (entry[0], entry[1]))

    def handlers_for(self, hook: MiddlewareHook) -> List[Middleware]:
        return [entry[2] for entry in self._entries[MiddlewareHook(hook)]]

    async def _invoke(self, middleware: Middleware, data: Any, context: ExecutionContext) -> Any:
        result = middleware.handler(data, context)
        if inspect.isawaitable(result):
            result = await result
        return data if result is None else result

    async def run(self, hook: MiddlewareHook, data: Any, context: ExecutionContext) -> Any:
        """Fold ``data`` through every handler on ``hook``; the first exception propagates."""
        for middleware in self.handlers_for(hook):
            data = await self._invoke(middleware, data, context)
        return data

    async def run_observed(
        self, hook: MiddlewareHook, data: Any, context: ExecutionContext
    ) -> Any:
        """Fold like ``run`` but log handler failures and continue with the prior payload."""
        for middleware in self.handlers_for(hook):
            try:
                data = await self._invoke(middleware, data, context)
            except Exception as exc:
                logger.warning(
                    "Middleware %s failed on %s: %s",
                    middleware.id,
                    MiddlewareHook(hook).value,
                    exc,
                    exc_info=True,
                )
        return data

    async def dispatch(self, hook: MiddlewareHook, data: Any, context: ExecutionContext) -> Any:
        """Run ``hook`` with the failure policy that applies to it."""
        if MiddlewareHook(hook) in GUARD_HOOKS:
            return await self.run(hook, data, context)
        return await self.run_observed(hook, data, context)
