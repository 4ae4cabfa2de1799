"""Step runners: how a node executor's named steps are executed.

``DirectStepRunner`` simply awaits the step; it is used for synchronous runs.
``DurableStepRunner`` stores each completed step's result keyed by execution id
and step name, so a retried or resumed execution returns the recorded result
instead of repeating the side effect.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from common.interfaces.record_store import RecordStore
from common.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

STEP_RESULTS_COLLECTION = "execution_steps"

StepFn = Callable[[], Awaitable[Any]]


@runtime_checkable
class StepRunner(Protocol):
    async def run(self, name: str, fn: StepFn) -> Any:
        """Execute ``fn`` as the step called ``name`` and return its result."""
        ...

    async def sleep(self, name: str, seconds: float) -> None:
        """Wait as a named step."""
        ...


class DirectStepRunner:
    """Pass-through runner: no caching, no retries."""

    async def run(self, name: str, fn: StepFn) -> Any:
        return await fn()

    async def sleep(self, name: str, seconds: float) -> None:
        # Sync runs share one wall-clock budget; waits are skipped.
        logger.debug("Skipping sleep step %s (%.2fs) in direct mode", name, seconds)


class DurableStepRunner:
    """Runner that records step results and retries failed steps with backoff."""

    def __init__(
        self,
        store: RecordStore,
        execution_id: str,
        *,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        scope: Optional[str] = None,
    ):
        self._store = store
        self._execution_id = execution_id
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._scope = scope

    def scoped(self, scope: str) -> "DurableStepRunner":
        """Runner whose step names are prefixed with ``scope`` (one per workflow node)."""
        return DurableStepRunner(
            self._store,
            self._execution_id,
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            scope=scope,
        )

    def _step_id(self, name: str) -> str:
        qualified = f"{self._scope}:{name}" if self._scope else name
        return f"{self._execution_id}:{qualified}"

    async def run(self, name: str, fn: StepFn) -> Any:
        step_id = self._step_id(name)
        cached = await self._store.get(STEP_RESULTS_COLLECTION, step_id)
        if cached is not None:
            logger.debug("Step %s already completed; returning recorded result", step_id)
            return cached["result"]

        result = await retry_with_backoff(
            fn,
            operation_name=f"step {step_id}",
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            extra_context={"execution_id": self._execution_id},
        )
        await self._store.create(
            STEP_RESULTS_COLLECTION,
            {"id": step_id, "execution_id": self._execution_id, "name": name, "result": result},
        )
        return result

    async def sleep(self, name: str, seconds: float) -> None:
        async def _wait() -> bool:
            await asyncio.sleep(seconds)
            return True

        await self.run(f"sleep:{name}", _wait)
