"""Agent middleware pipeline and built-in middleware."""

from agent.middleware.builtin import (
    MonthlySpendCache,
    context_compression_middleware,
    cost_guard_middleware,
    default_middleware,
    pii_redaction_middleware,
    production_middleware,
    safe_mode_middleware,
    step_logging_middleware,
    tracing_middleware,
)
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

__all__ = [
    "CompletionData",
    "ErrorData",
    "LLMCallData",
    "Middleware",
    "MiddlewareHook",
    "MiddlewarePipeline",
    "MonthlySpendCache",
    "StepData",
    "ToolCallData",
    "context_compression_middleware",
    "cost_guard_middleware",
    "default_middleware",
    "pii_redaction_middleware",
    "production_middleware",
    "safe_mode_middleware",
    "step_logging_middleware",
    "tracing_middleware",
]
