"""TRANSFORM node: set context keys from rendered templates."""

from workflow.executors.templating import render_value
from workflow.models import WorkflowContext
from workflow.registry import NodeExecutionParams


async def transform_executor(params: NodeExecutionParams) -> WorkflowContext:
    """Apply ``data["set"]`` (key -> template or literal) and drop ``data["remove"]`` keys."""
    context = dict(params.context)
    for key, value in (params.data.get("set") or {}).items():
        context[key] = render_value(value, params.context)
    for key in params.data.get("remove") or []:
        context.pop(key, None)
    return context
