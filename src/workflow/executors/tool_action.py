"""TOOL_ACTION node: call an integration tool through the tool gateway."""

from agent.state.context import ExecutionContext
from agent.tools import ToolGateway
from common.errors import ConfigurationError, TransientExecutionError
from workflow.executors.templating import render_value
from workflow.models import WorkflowContext
from workflow.registry import NodeExecutionParams


class ToolActionExecutor:
    """Invokes ``data["tool"]`` with the rendered ``data["input"]``.

    An unsuccessful tool result fails the node with a retryable error. The tool
    output is stored under ``data["variable_name"]`` (default ``toolResult``).
    """

    def __init__(self, gateway: ToolGateway):
        self._gateway = gateway

    async def __call__(self, params: NodeExecutionParams) -> WorkflowContext:
        tool_name = params.data.get("tool")
        if not tool_name:
            raise ConfigurationError(f"Tool node {params.node_id} has no tool configured")
        tool_input = render_value(params.data.get("input") or {}, params.context)
        context = ExecutionContext(
            agent_id=str(params.context.get("agentId") or f"workflow:{params.node_id}"),
            user_id=params.user_id or "",
            model="",
            workspace_id=params.data.get("workspace_id"),
        )

        async def _invoke():
            result = await self._gateway.invoke(tool_name, tool_input, context)
            if not result.success:
                raise TransientExecutionError(
                    f"Tool '{tool_name}' failed: {result.error}",
                    details={"tool_name": tool_name, "node_id": params.node_id},
                )
            return result.output

        output = await params.step.run(f"tool:{tool_name}", _invoke)
        updated = dict(params.context)
        updated[params.data.get("variable_name") or "toolResult"] = output
        return updated
