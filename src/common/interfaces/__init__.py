"""Capability interfaces for the runtime's external collaborators."""

from .actions import ActionProvider, ToolInvocationResult
from .llm import ChatMessage, LLMCapability, LLMResponse
from .publish import PublishChannel
from .record_store import Record, RecordStore

__all__ = [
    "ActionProvider",
    "ChatMessage",
    "LLMCapability",
    "LLMResponse",
    "PublishChannel",
    "Record",
    "RecordStore",
    "ToolInvocationResult",
]
