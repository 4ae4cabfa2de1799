"""Agent state carried through the graph runtime."""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from common.interfaces.llm import ChatMessage

START_NODE_ID = "start"
END_NODE_ID = "end"


@dataclass
class ToolCallRecord:
    """One tool call made during the run, successful or not."""

    name: str
    input: Dict[str, Any]
    output: Any = None
    success: bool = True
    error: Optional[str] = None
    latency_ms: Optional[float] = None


@dataclass
class AgentState:
    """
    Mutable state for one agent execution.

    Nodes read and update this object in place. The runtime owns ``current_step``
    and ``current_node_id``; nodes should not change them.
    """

    conversation_id: str
    agent_id: str
    user_id: str
    workspace_id: Optional[str] = None

    # Ordered conversation (user, assistant, system, tool messages)
    messages: List[ChatMessage] = field(default_factory=list)

    # Ordered record of tool calls made in this run
    tool_calls: List[ToolCallRecord] = field(default_factory=list)

    # Long-lived facts about the user, injected into the system prompt
    memory: Dict[str, Any] = field(default_factory=dict)

    # Retrieved document snippets for this turn
    rag_context: List[str] = field(default_factory=list)

    current_step: int = 0
    max_steps: int = 10
    current_node_id: str = START_NODE_ID
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {self.max_steps}")
        if self.current_step > self.max_steps:
            raise ValueError(
                f"current_step ({self.current_step}) exceeds max_steps ({self.max_steps})"
            )

    def add_message(self, role: str, content: str, name: Optional[str] = None) -> None:
        self.messages.append(ChatMessage(role=role, content=content, name=name))

    @property
    def last_assistant_message(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content
        return None

    def snapshot(self) -> "AgentState":
        """Deep copy for results; later mutation of the live state does not leak in."""
        return copy.deepcopy(self)
