from typing import Any, Dict, List, Optional

from common.errors import NotFoundError
from common.interfaces.record_store import RecordStore
from workflow.models import (
    AGENT_MEMORIES_KEY,
    CONVERSATION_CONTEXT_KEY,
    WorkflowContext,
    WorkflowDefinition,
    validate_context,
)

WORKFLOWS_COLLECTION = "workflows"


async def save_workflow(store: RecordStore, definition: WorkflowDefinition) -> None:
    await store.upsert(
        WORKFLOWS_COLLECTION,
        key=("id",),
        create=definition.model_dump(mode="json"),
        update=definition.model_dump(mode="json"),
    )


async def load_workflow(store: RecordStore, workflow_id: str) -> WorkflowDefinition:
    stored = await store.get(WORKFLOWS_COLLECTION, workflow_id)
    if stored is None:
        raise NotFoundError(f"Workflow '{workflow_id}' not found")
    return WorkflowDefinition.model_validate(stored)


def seed_context(
    initial_data: Optional[Dict[str, Any]] = None,
    *,
    conversation_context: Optional[Dict[str, Any]] = None,
    agent_memories: Optional[List[Dict[str, Any]]] = None,
) -> WorkflowContext:
    """Build the starting context from trigger data plus optional agent context.

    ``conversation_context`` is ``{"recent_messages": [...], "summary": ...}`` and
    ``agent_memories`` a list of ``{"key", "value", "category"}`` entries.
    """
    context: Dict[str, Any] = dict(initial_data or {})
    if conversation_context is not None:
        context[CONVERSATION_CONTEXT_KEY] = {
            "recent_messages": list(conversation_context.get("recent_messages") or []),
            "summary": conversation_context.get("summary"),
        }
    if agent_memories is not None:
        context[AGENT_MEMORIES_KEY] = [
            {
                "key": memory.get("key"),
                "value": memory.get("value"),
                "category": memory.get("category"),
            }
            for memory in agent_memories
        ]
    return validate_context(context)
