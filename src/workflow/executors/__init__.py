"""Built-in workflow node executors."""

from typing import Optional

import httpx

from agent.tools import ToolGateway
from common.interfaces.actions import ActionProvider
from common.interfaces.llm import LLMCapability
from workflow.executors.condition import condition_executor
from workflow.executors.http_request import HttpRequestExecutor
from workflow.executors.llm_action import LLMActionExecutor
from workflow.executors.meeting_recorder import MeetingRecorderExecutor
from workflow.executors.tool_action import ToolActionExecutor
from workflow.executors.transform import transform_executor
from workflow.models import NodeType
from workflow.registry import ExecutorRegistry


def build_default_registry(
    llm: LLMCapability,
    action_provider: ActionProvider,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ExecutorRegistry:
    """Registry with an executor for every non-trigger node type."""
    return ExecutorRegistry(
        {
            NodeType.CONDITION: condition_executor,
            NodeType.TRANSFORM: transform_executor,
            NodeType.LLM_ACTION: LLMActionExecutor(llm),
            NodeType.TOOL_ACTION: ToolActionExecutor(ToolGateway(action_provider)),
            NodeType.HTTP_REQUEST: HttpRequestExecutor(http_client),
            NodeType.MEETING_RECORDER: MeetingRecorderExecutor(action_provider),
        }
    )


__all__ = [
    "build_default_registry",
    "condition_executor",
    "transform_executor",
    "HttpRequestExecutor",
    "LLMActionExecutor",
    "MeetingRecorderExecutor",
    "ToolActionExecutor",
]
