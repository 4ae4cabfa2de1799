"""Node behaviors for the default reason / act / observe loop."""

import json
import logging
from typing import Any, Dict, Optional

from agent.graph import AgentGraph, AgentNode, AgentNodeType
from agent.state.agent import END_NODE_ID, START_NODE_ID, AgentState
from agent.state.context import ExecutionContext

logger = logging.getLogger(__name__)

PENDING_TOOL_CALL = "pending_tool_call"
LAST_TOOL_RESULT = "last_tool_result"

REASONING_NODE_ID = "reasoning"
ACTION_NODE_ID = "action"
OBSERVATION_NODE_ID = "observation"


def parse_tool_request(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Extract ``{"tool": name, "input": {...}}`` from a model reply, if present."""
    if not text:
        return None
    candidate = text.strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.startswith("json"):
            candidate = candidate[4:]
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("tool"), str):
        return None
    tool_input = payload.get("input")
    return {"tool": payload["tool"], "input": tool_input if isinstance(tool_input, dict) else {}}


def build_system_prompt(context: ExecutionContext, state: AgentState) -> Optional[str]:
    """Combine the agent's base prompt with user memory and retrieved context."""
    sections = []
    if context.system_prompt:
        sections.append(context.system_prompt)
    if state.memory:
        facts = "\n".join(f"- {key}: {value}" for key, value in state.memory.items())
        sections.append(f"What you know about the user:\n{facts}")
    if state.rag_context:
        sections.append("Relevant context:\n" + "\n---\n".join(state.rag_context))
    if context.tools:
        sections.append(
            "To use a tool reply only with JSON "
            '{"tool": "<name>", "input": {...}}. Available tools: '
            + ", ".join(sorted(context.tools))
        )
    return "\n\n".join(sections) or None


async def reasoning_node(state: AgentState, runtime) -> AgentState:
    reply = await runtime.call_llm(state, build_system_prompt(runtime.context, state))
    state.add_message("assistant", reply or "")
    request = parse_tool_request(reply)
    if request is not None:
        state.metadata[PENDING_TOOL_CALL] = request
    else:
        state.metadata.pop(PENDING_TOOL_CALL, None)
    return state


async def action_node(state: AgentState, runtime) -> AgentState:
    request = state.metadata.get(PENDING_TOOL_CALL)
    if not request:
        logger.debug("Action node reached without a pending tool call")
        return state
    record = await runtime.call_tool(state, request["tool"], request.get("input") or {})
    state.metadata[LAST_TOOL_RESULT] = {
        "tool": record.name,
        "success": record.success,
        "output": record.output,
        "error": record.error,
    }
    return state


async def observation_node(state: AgentState, runtime) -> AgentState:
    result = state.metadata.pop(LAST_TOOL_RESULT, None)
    state.metadata.pop(PENDING_TOOL_CALL, None)
    if result is None:
        return state
    if result["success"]:
        content = json.dumps(result["output"], default=str)
    else:
        content = f"Tool error: {result['error']}"
    state.add_message("tool", content, name=result["tool"])
    return state


def _wants_tool(state: AgentState) -> bool:
    return bool(state.metadata.get(PENDING_TOOL_CALL))


def build_react_graph() -> AgentGraph:
    """start -> reasoning -> (action -> observation -> reasoning | end)."""
    graph = AgentGraph()
    graph.add_node(AgentNode(START_NODE_ID, AgentNodeType.START))
    graph.add_node(AgentNode(REASONING_NODE_ID, AgentNodeType.REASONING, reasoning_node))
    graph.add_node(AgentNode(ACTION_NODE_ID, AgentNodeType.ACTION, action_node))
    graph.add_node(AgentNode(OBSERVATION_NODE_ID, AgentNodeType.OBSERVATION, observation_node))
    graph.add_edge(START_NODE_ID, REASONING_NODE_ID)
    graph.add_edge(REASONING_NODE_ID, ACTION_NODE_ID, _wants_tool)
    graph.add_edge(REASONING_NODE_ID, END_NODE_ID)
    graph.add_edge(ACTION_NODE_ID, OBSERVATION_NODE_ID)
    graph.add_edge(OBSERVATION_NODE_ID, REASONING_NODE_ID)
    return graph
