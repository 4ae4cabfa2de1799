from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolInvocationResult:
    """Outcome of one tool or integration call."""

    output: Any = None
    success: bool = True
    error: Optional[str] = None
    latency_ms: Optional[float] = None


@runtime_checkable
class ActionProvider(Protocol):
    """Protocol for the integration layer that performs tool calls.

    Implementations return the raw tool output and raise on failure; the tool
    gateway converts both into ``ToolInvocationResult``.
    """

    async def execute(
        self,
        tool_name: str,
        tool_input: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> Any:
        """Run the named tool with the given input."""
        ...
