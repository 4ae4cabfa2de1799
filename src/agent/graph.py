"""Agent graph: typed nodes joined by conditional edges.

Transitions out of a node are evaluated in edge registration order; the first
edge whose condition is absent or true wins. With no matching edge the run moves
to the terminal ``end`` node.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agent.state.agent import END_NODE_ID, START_NODE_ID, AgentState
from common.errors import ConfigurationError


class AgentNodeType(str, Enum):
    START = "start"
    REASONING = "reasoning"
    ACTION = "action"
    OBSERVATION = "observation"
    DECISION = "decision"
    END = "end"
    CUSTOM = "custom"


# behavior(state, runtime) -> state; ``runtime`` exposes call_llm / call_tool.
NodeBehavior = Callable[[AgentState, Any], Awaitable[AgentState]]
EdgeCondition = Callable[[AgentState], bool]


@dataclass(frozen=True)
class AgentNode:
    id: str
    type: AgentNodeType
    behavior: Optional[NodeBehavior] = None


@dataclass(frozen=True)
class AgentEdge:
    source: str
    target: str
    condition: Optional[EdgeCondition] = None


class AgentGraph:
    """Node and edge registry for one agent definition."""

    def __init__(self):
        self._nodes: Dict[str, AgentNode] = {}
        self._edges: Dict[str, List[AgentEdge]] = {}
        self.add_node(AgentNode(id=END_NODE_ID, type=AgentNodeType.END))

    def add_node(self, node: AgentNode) -> "AgentGraph":
        if node.id in self._nodes:
            raise ConfigurationError(f"Duplicate agent graph node '{node.id}'")
        self._nodes[node.id] = node
        return self

    def add_edge(
        self, source: str, target: str, condition: Optional[EdgeCondition] = None
    ) -> "AgentGraph":
        for node_id in (source, target):
            if node_id not in self._nodes:
                raise ConfigurationError(f"Edge {source} -> {target} references unknown node")
        self._edges.setdefault(source, []).append(AgentEdge(source, target, condition))
        return self

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> AgentNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ConfigurationError(f"Agent graph has no node '{node_id}'") from None

    def next_node(self, current: str, state: AgentState) -> str:
        """Resolve the transition out of ``current`` for the given state."""
        for edge in self._edges.get(current, ()):
            if edge.condition is None or edge.condition(state):
                return edge.target
        return END_NODE_ID

    def validate(self) -> None:
        if START_NODE_ID not in self._nodes:
            raise ConfigurationError("Agent graph has no start node")
