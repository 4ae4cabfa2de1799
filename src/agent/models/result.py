from dataclasses import dataclass
from typing import Any, Dict, Optional

from agent.models.termination import ExecutionStatus
from agent.models.usage import UsageTotals
from agent.state.agent import AgentState
from common.errors import ErrorInfo


@dataclass(frozen=True)
class ExecutionResult:
    """Final outcome of an agent execution, including partial usage on failure."""

    status: ExecutionStatus
    state: AgentState
    total_steps: int
    latency_ms: float
    usage: UsageTotals
    evaluation: Optional[Dict[str, Any]] = None
    error: Optional[ErrorInfo] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def total_tokens_in(self) -> int:
        return self.usage.tokens_in

    @property
    def total_tokens_out(self) -> int:
        return self.usage.tokens_out

    @property
    def total_cost(self) -> float:
        return self.usage.cost

    @property
    def tool_calls_count(self) -> int:
        return self.usage.tool_calls

    @property
    def tool_success_count(self) -> int:
        return self.usage.tool_successes

    @property
    def tool_failure_count(self) -> int:
        return self.usage.tool_failures
