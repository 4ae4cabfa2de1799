"""Registry mapping workflow node types to their executors."""

from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional, Protocol

from common.errors import MissingExecutorError
from workflow.models import NodeType, WorkflowContext
from workflow.publish import NodePublisher
from workflow.steps import StepRunner


@dataclass(frozen=True)
class NodeExecutionParams:
    """Everything an executor receives for one node invocation."""

    data: Dict[str, Any]
    node_id: str
    node_type: NodeType
    context: WorkflowContext
    step: StepRunner
    publish: NodePublisher
    user_id: Optional[str] = None
    execution_id: Optional[str] = None


class NodeExecutor(Protocol):
    def __call__(self, params: NodeExecutionParams) -> Awaitable[WorkflowContext]:
        """Run the node and return the new workflow context."""
        ...


class ExecutorRegistry:
    """Typed ``NodeType -> NodeExecutor`` map; lookups never silently fall through."""

    def __init__(self, executors: Optional[Dict[NodeType, NodeExecutor]] = None):
        self._executors: Dict[NodeType, NodeExecutor] = {}
        for node_type, executor in (executors or {}).items():
            self.register(node_type, executor)

    def register(self, node_type: NodeType, executor: NodeExecutor) -> None:
        self._executors[NodeType(node_type)] = executor

    def get(self, node_type: NodeType, node_id: Optional[str] = None) -> NodeExecutor:
        try:
            return self._executors[NodeType(node_type)]
        except (KeyError, ValueError):
            raise MissingExecutorError(str(getattr(node_type, "value", node_type)), node_id)

    def __contains__(self, node_type: object) -> bool:
        try:
            return NodeType(node_type) in self._executors
        except ValueError:
            return False
