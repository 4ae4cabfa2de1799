"""LLM_ACTION node: render a prompt from the context and store the completion."""

from typing import Any, Dict

from common.errors import ConfigurationError
from common.interfaces.llm import ChatMessage, LLMCapability
from workflow.executors.templating import render_template
from workflow.models import WorkflowContext
from workflow.registry import NodeExecutionParams


class LLMActionExecutor:
    """Sends ``data["prompt"]`` (with ``{{path}}`` placeholders) to the LLM.

    The completion is stored under ``data["variable_name"]`` (default ``llmResponse``)
    as ``{"text", "tokens_in", "tokens_out"}``.
    """

    def __init__(self, llm: LLMCapability):
        self._llm = llm

    async def __call__(self, params: NodeExecutionParams) -> WorkflowContext:
        data = params.data
        if not data.get("prompt"):
            raise ConfigurationError(f"LLM node {params.node_id} has no prompt configured")
        prompt = render_template(data["prompt"], params.context)
        system_prompt = (
            render_template(data["system_prompt"], params.context)
            if data.get("system_prompt")
            else None
        )

        async def _call() -> Dict[str, Any]:
            response = await self._llm.send(
                [ChatMessage(role="user", content=prompt)],
                system_prompt=system_prompt,
                model=data.get("model"),
                temperature=data.get("temperature"),
            )
            return {
                "text": response.text,
                "tokens_in": response.tokens_in,
                "tokens_out": response.tokens_out,
            }

        completion = await params.step.run("llm-call", _call)
        context = dict(params.context)
        context[data.get("variable_name") or "llmResponse"] = completion
        return context
