"""Queued agent executions: build a ReAct runtime from a job and run it."""

import uuid
from typing import Optional

from agent.middleware import production_middleware
from agent.models.result import ExecutionResult
from agent.nodes.react import build_react_graph
from agent.runtime import AgentRuntime
from agent.state.agent import AgentState
from agent.state.context import ExecutionContext
from agent.tools import ToolGateway
from common.config.settings import RuntimeSettings
from common.interfaces.actions import ActionProvider
from common.interfaces.llm import LLMCapability
from common.interfaces.record_store import RecordStore
from execution_queue.models import JobSpec


class ReactAgentRunner:
    """Runs the ReAct agent graph for an AGENT job.

    The job payload may carry ``message``, ``model``, ``system_prompt``, ``tools``,
    ``safe_mode``, ``temperature``, ``workspace_id``, ``conversation_id`` and
    ``max_steps``.
    """

    def __init__(
        self,
        llm: LLMCapability,
        action_provider: ActionProvider,
        store: RecordStore,
        settings: Optional[RuntimeSettings] = None,
    ):
        self._llm = llm
        self._gateway = ToolGateway(action_provider)
        self._store = store
        self._settings = settings or RuntimeSettings()

    async def __call__(self, spec: JobSpec) -> ExecutionResult:
        payload = spec.payload
        context = ExecutionContext(
            agent_id=spec.target_id,
            user_id=spec.user_id or "",
            model=payload.get("model") or "claude-sonnet-4-20250514",
            workspace_id=payload.get("workspace_id"),
            temperature=float(payload.get("temperature", 0.7)),
            safe_mode=bool(payload.get("safe_mode", False)),
            tools=frozenset(payload.get("tools") or ()),
            system_prompt=payload.get("system_prompt"),
        )
        state = AgentState(
            conversation_id=payload.get("conversation_id") or str(uuid.uuid4()),
            agent_id=spec.target_id,
            user_id=spec.user_id or "",
            workspace_id=context.workspace_id,
            max_steps=int(payload.get("max_steps") or self._settings.AGENT_MAX_STEPS),
            metadata={"triggered_by": spec.triggered_by.value},
        )
        if payload.get("message"):
            state.add_message("user", payload["message"])

        runtime = AgentRuntime(
            build_react_graph(),
            context,
            self._llm,
            self._gateway,
            production_middleware(
                self._store,
                self._settings.AGENT_MONTHLY_COST_LIMIT_USD,
                blocked_tools=self._settings.SAFE_MODE_BLOCKED_TOOLS,
                compression_threshold=self._settings.CONTEXT_COMPRESSION_THRESHOLD,
                compression_retain=self._settings.CONTEXT_RETAIN_MESSAGES,
            ),
        )
        return await runtime.execute(state)
