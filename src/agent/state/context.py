from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class ExecutionContext:
    """Per-execution configuration, fixed for the lifetime of one run.

    Usage totals are not stored here; the runtime keeps them on a separate
    ``UsageAccumulator``.
    """

    agent_id: str
    user_id: str
    model: str
    workspace_id: Optional[str] = None
    trace_id: Optional[str] = None
    temperature: float = 0.7
    safe_mode: bool = False
    tools: FrozenSet[str] = field(default_factory=frozenset)
    system_prompt: Optional[str] = None

    def allows_tool(self, tool_name: str) -> bool:
        """An empty tool set means every tool the gateway knows is available."""
        return not self.tools or tool_name in self.tools
