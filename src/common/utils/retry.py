"""Retry utility with exponential backoff and jitter."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from common.errors import ExecutionError
from common.observability.telemetry import telemetry

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: Optional[float] = None) -> float:
    """Return ``base_delay * 2**(attempt - 1)``, capped at ``max_delay``.

    ``attempt`` is 1-based: the first retry waits exactly ``base_delay``.
    """
    delay = base_delay * (2 ** max(attempt - 1, 0))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def is_retryable_error(exception: BaseException) -> bool:
    """Typed execution errors decide for themselves; anything else is assumed transient."""
    if isinstance(exception, ExecutionError):
        return exception.retryable
    return isinstance(exception, Exception)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    jitter: bool = True,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    extra_context: Optional[dict] = None,
) -> T:
    """Retry an async operation with exponential backoff and jitter.

    Args:
        operation: Async callable to retry
        operation_name: Name of operation for logging
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds (default: 0.1)
        max_delay: Maximum delay in seconds (default: 2.0)
        jitter: Add up to 50% random jitter on top of the computed delay
        is_retryable: Predicate deciding whether an exception is worth another attempt
        extra_context: Additional context for logging

    Returns:
        Result of the operation if successful

    Raises:
        Exception: The last exception if all retries fail
    """
    extra_context = extra_context or {}

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            log_extra = {
                "operation": operation_name,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "exception_type": type(e).__name__,
                "exception_message": str(e),
                **extra_context,
            }

            if not is_retryable(e):
                logger.error(
                    f"Non-retryable error in {operation_name}, not retrying", extra=log_extra
                )
                raise

            if attempt >= max_attempts:
                logger.error(
                    f"All {max_attempts} attempts exhausted for {operation_name}",
                    extra=log_extra,
                )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            if jitter:
                delay += random.uniform(0, delay * 0.5)

            logger.warning(
                f"Transient error in {operation_name}, retrying in {delay:.3f}s",
                extra={**log_extra, "delay_seconds": delay},
            )
            with telemetry.start_span(
                "retry.backoff", attributes={"retry.operation": operation_name}
            ) as span:
                span.set_attribute("retry.attempt", attempt)
                await asyncio.sleep(delay)

    raise RuntimeError(f"retry_with_backoff for {operation_name} ran with max_attempts < 1")
