"""Built-in middleware: cost guard, context compression, PII redaction, tracing,
safe mode and step logging, plus the default and production presets."""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from agent.middleware.pipeline import (
    LLMCallData,
    Middleware,
    MiddlewareHook,
    StepData,
    ToolCallData,
)
from agent.pricing import tier_for_model
from agent.state.context import ExecutionContext
from common.config.settings import DEFAULT_SAFE_MODE_BLOCKED_TOOLS
from common.errors import CostLimitExceededError, SafeModeBlockedError
from common.interfaces.llm import ChatMessage
from common.interfaces.record_store import RecordStore
from common.observability.events import log_event
from common.sanitization.pii import redact_pii

logger = logging.getLogger(__name__)

AI_EVENTS_COLLECTION = "ai_events"
DAILY_METRICS_COLLECTION = "agent_daily_metrics"

DEFAULT_MONTHLY_COST_LIMIT = 100.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class MonthlySpendCache:
    """Per-tenant monthly spend, re-read from the store at most once per interval.

    Concurrent executions for the same tenant may briefly see a stale total; the
    guard is a soft ceiling.
    """

    def __init__(
        self,
        store: RecordStore,
        refresh_seconds: float = 60.0,
        now: Callable[[], datetime] = _utcnow,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._refresh_seconds = refresh_seconds
        self._now = now
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, float]] = {}

    @staticmethod
    def scope_for(context: ExecutionContext) -> Tuple[str, str]:
        if context.workspace_id:
            return ("workspace_id", context.workspace_id)
        return ("user_id", context.user_id)

    async def current_spend(self, context: ExecutionContext) -> float:
        scope = self.scope_for(context)
        cached = self._cache.get(scope)
        if cached is not None and self._clock() - cached[1] < self._refresh_seconds:
            return cached[0]

        since = _month_start(self._now()).isoformat()
        events = await self._store.find_many(
            AI_EVENTS_COLLECTION, {scope[0]: scope[1], "created_at": {"gte": since}}
        )
        total = sum(float(event.get("cost") or 0.0) for event in events)
        self._cache[scope] = (total, self._clock())
        return total

    def invalidate(self) -> None:
        self._cache.clear()


def cost_guard_middleware(
    store: RecordStore,
    monthly_limit: float = DEFAULT_MONTHLY_COST_LIMIT,
    *,
    spend_cache: Optional[MonthlySpendCache] = None,
) -> Middleware:
    """Block LLM calls once the tenant's spend this month reaches ``monthly_limit``."""
    cache = spend_cache or MonthlySpendCache(store)

    async def handler(data: LLMCallData, context: ExecutionContext) -> LLMCallData:
        try:
            spend = await cache.current_spend(context)
        except Exception as exc:
            logger.warning("Cost guard could not read monthly spend, allowing call: %s", exc)
            return data

        if spend >= monthly_limit:
            scope_field, scope_value = MonthlySpendCache.scope_for(context)
            log_event(
                "cost_limit_exceeded",
                level=logging.WARNING,
                agent_id=context.agent_id,
                scope=f"{scope_field}:{scope_value}",
                spend=spend,
                limit=monthly_limit,
            )
            raise CostLimitExceededError(
                current_cost=spend, limit=monthly_limit, scope=f"{scope_field}:{scope_value}"
            )
        return data

    return Middleware(id="cost_guard", hook=MiddlewareHook.BEFORE_LLM, handler=handler, order=0)


def context_compression_middleware(threshold: int = 20, retain: int = 5) -> Middleware:
    """Collapse older messages into one summary note once history exceeds ``threshold``."""

    def handler(data: LLMCallData, context: ExecutionContext) -> LLMCallData:
        if len(data.messages) <= threshold:
            return data
        dropped = len(data.messages) - retain
        note = ChatMessage(role="system", content=f"[Previous {dropped} messages compressed]")
        data.messages = [note] + list(data.messages[-retain:])
        return data

    return Middleware(
        id="context_compression", hook=MiddlewareHook.BEFORE_LLM, handler=handler, order=1
    )


def pii_redaction_middleware() -> Middleware:
    def handler(data: LLMCallData, context: ExecutionContext) -> LLMCallData:
        if data.output:
            data.output = redact_pii(data.output)
        return data

    return Middleware(id="pii_redaction", hook=MiddlewareHook.AFTER_LLM, handler=handler, order=0)


def tracing_middleware(
    store: RecordStore, now: Callable[[], datetime] = _utcnow
) -> Middleware:
    """Persist one usage event per LLM call and roll it into the agent's daily metrics."""

    async def handler(data: LLMCallData, context: ExecutionContext) -> LLMCallData:
        timestamp = now()
        await store.create(
            AI_EVENTS_COLLECTION,
            {
                "trace_id": context.trace_id,
                "agent_id": context.agent_id,
                "user_id": context.user_id,
                "workspace_id": context.workspace_id,
                "model": data.model,
                "tier": tier_for_model(data.model).value,
                "tokens_in": data.tokens_in,
                "tokens_out": data.tokens_out,
                "cost": data.cost,
                "latency_ms": data.latency_ms,
                "step_number": data.step_number,
                "action": "llm_call",
                "created_at": timestamp.isoformat(),
            },
        )
        await store.upsert(
            DAILY_METRICS_COLLECTION,
            key=("agent_id", "date"),
            create={
                "agent_id": context.agent_id,
                "date": timestamp.date().isoformat(),
                "llm_calls": 1,
                "tokens_in": data.tokens_in,
                "tokens_out": data.tokens_out,
                "cost": data.cost,
            },
            update={
                "increment": {
                    "llm_calls": 1,
                    "tokens_in": data.tokens_in,
                    "tokens_out": data.tokens_out,
                    "cost": data.cost,
                }
            },
        )
        return data

    return Middleware(id="tracing", hook=MiddlewareHook.AFTER_LLM, handler=handler, order=1)


def safe_mode_middleware(blocked_tools: Optional[Iterable[str]] = None) -> Middleware:
    """Reject side-effecting tools before they reach the gateway when safe mode is on."""
    blocked = frozenset(
        DEFAULT_SAFE_MODE_BLOCKED_TOOLS if blocked_tools is None else blocked_tools
    )

    def handler(data: ToolCallData, context: ExecutionContext) -> ToolCallData:
        if context.safe_mode and data.tool_name in blocked:
            log_event(
                "safe_mode_blocked",
                level=logging.WARNING,
                agent_id=context.agent_id,
                tool_name=data.tool_name,
            )
            raise SafeModeBlockedError(data.tool_name)
        return data

    return Middleware(id="safe_mode", hook=MiddlewareHook.BEFORE_TOOL, handler=handler, order=0)


def step_logging_middleware() -> Middleware:
    def handler(data: StepData, context: ExecutionContext) -> StepData:
        logger.info(
            "Agent %s step %d/%d completed node %s",
            context.agent_id,
            data.step_number,
            data.state.max_steps,
            data.node_id,
        )
        return data

    return Middleware(id="logging", hook=MiddlewareHook.AFTER_STEP, handler=handler, order=100)


def default_middleware(
    store: RecordStore, monthly_limit: float = DEFAULT_MONTHLY_COST_LIMIT
) -> List[Middleware]:
    return [
        cost_guard_middleware(store, monthly_limit),
        tracing_middleware(store),
        step_logging_middleware(),
    ]


def production_middleware(
    store: RecordStore,
    monthly_limit: float = DEFAULT_MONTHLY_COST_LIMIT,
    *,
    blocked_tools: Optional[Iterable[str]] = None,
    compression_threshold: int = 20,
    compression_retain: int = 5,
) -> List[Middleware]:
    return [
        cost_guard_middleware(store, monthly_limit),
        safe_mode_middleware(blocked_tools),
        context_compression_middleware(compression_threshold, compression_retain),
        pii_redaction_middleware(),
        tracing_middleware(store),
        step_logging_middleware(),
    ]
