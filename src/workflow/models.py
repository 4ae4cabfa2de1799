"""Workflow graph, execution record and result models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter

WorkflowContext = Dict[str, JsonValue]

_CONTEXT_ADAPTER = TypeAdapter(WorkflowContext)

# Reserved context keys
CONVERSATION_CONTEXT_KEY = "_conversation_context"
AGENT_MEMORIES_KEY = "_agent_memories"
EXECUTION_ID_KEY = "__execution_id"
PAUSE_KEY = "__pause"
SELECTED_BRANCH_KEY = "__selected_branch"


class NodeType(str, Enum):
    """Closed set of workflow node types."""

    INITIAL = "INITIAL"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    WEBHOOK_TRIGGER = "WEBHOOK_TRIGGER"
    SCHEDULE_TRIGGER = "SCHEDULE_TRIGGER"
    GOOGLE_FORM_TRIGGER = "GOOGLE_FORM_TRIGGER"
    STRIPE_TRIGGER = "STRIPE_TRIGGER"
    CALENDAR_TRIGGER = "CALENDAR_TRIGGER"

    HTTP_REQUEST = "HTTP_REQUEST"
    LLM_ACTION = "LLM_ACTION"
    TOOL_ACTION = "TOOL_ACTION"
    CONDITION = "CONDITION"
    MEETING_RECORDER = "MEETING_RECORDER"
    TRANSFORM = "TRANSFORM"


TRIGGER_NODE_TYPES = frozenset(
    {
        NodeType.INITIAL,
        NodeType.MANUAL_TRIGGER,
        NodeType.WEBHOOK_TRIGGER,
        NodeType.SCHEDULE_TRIGGER,
        NodeType.GOOGLE_FORM_TRIGGER,
        NodeType.STRIPE_TRIGGER,
        NodeType.CALENDAR_TRIGGER,
    }
)


class WorkflowNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: NodeType
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_trigger(self) -> bool:
        return self.type in TRIGGER_NODE_TYPES


class WorkflowEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    # Branch id on CONDITION nodes; None means the edge is always active.
    source_handle: Optional[str] = None


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    user_id: Optional[str] = None
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[WorkflowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)


class ExecutionMode(str, Enum):
    SYNC = "sync"
    DURABLE = "durable"


class WorkflowStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NodeStatus(str, Enum):
    """Per-node status published to observers."""

    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    PAUSED = "paused"


class Checkpoint(BaseModel):
    node_id: str
    node_type: Optional[NodeType] = None
    step_number: int
    timestamp: str
    error: Optional[str] = None


class ExecutionOutput(BaseModel):
    current_context: WorkflowContext = Field(default_factory=dict)
    completed_node_ids: List[str] = Field(default_factory=list)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    current_step: int = 0
    total_steps: int = 0
    paused_at_node_id: Optional[str] = None
    failed_node_id: Optional[str] = None
    skipped_node_ids: List[str] = Field(default_factory=list)
    selected_branches: Dict[str, str] = Field(default_factory=dict)


class ExecutionRecord(BaseModel):
    """Durable record of one workflow execution."""

    id: str
    workflow_id: str
    user_id: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.PENDING
    input: WorkflowContext = Field(default_factory=dict)
    output: ExecutionOutput = Field(default_factory=ExecutionOutput)
    # Definition as it was when the execution started; resume runs against it.
    workflow_snapshot: Optional[WorkflowDefinition] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class WorkflowRunResult(BaseModel):
    """Outcome of a sync run, a durable run or a resume."""

    success: bool
    status: WorkflowStatus
    output: Optional[WorkflowContext] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    failed_node_id: Optional[str] = None
    execution_id: Optional[str] = None


def validate_context(value: Any) -> WorkflowContext:
    """Check that ``value`` is a JSON-compatible mapping and return it."""
    return _CONTEXT_ADAPTER.validate_python(value)
