from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable


@dataclass
class ChatMessage:
    """A single conversation message (role: user, assistant, system or tool)."""

    role: str
    content: str
    name: Optional[str] = None


@dataclass(frozen=True)
class LLMResponse:
    """Completion text plus the token usage reported by the provider."""

    text: str
    tokens_in: int = 0
    tokens_out: int = 0
    model: Optional[str] = None


@runtime_checkable
class LLMCapability(Protocol):
    """Protocol for the model provider used by reasoning nodes and LLM workflow nodes."""

    async def send(
        self,
        messages: List[ChatMessage],
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Send the conversation and return the completion."""
        ...
