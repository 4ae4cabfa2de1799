"""LLM capability backed by LangChain chat models.

Supports OpenAI and Anthropic chat models with runtime model selection.
"""

import logging
from typing import List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from common.config.env import get_env_str
from common.interfaces.llm import ChatMessage, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODEL = "claude-sonnet-4-20250514"

SUPPORTED_PROVIDERS = ("openai", "anthropic")


def estimate_token_count(text: str) -> int:
    """Rough token estimate (chars / 4) when the provider reports no usage."""
    if not text:
        return 0
    return max(1, len(text) // 4)


def to_langchain_messages(
    messages: Sequence[ChatMessage], system_prompt: Optional[str] = None
) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    if system_prompt:
        converted.append(SystemMessage(content=system_prompt))
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        elif message.role == "tool":
            converted.append(
                ToolMessage(content=message.content, tool_call_id=message.name or "tool")
            )
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def get_chat_model(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    temperature: float = 0.7,
) -> BaseChatModel:
    """Build a LangChain chat model for the given provider.

    Args:
        provider: 'openai' or 'anthropic'. Defaults to LLM_PROVIDER env var.
        model: Model name. Defaults to LLM_MODEL env var or the provider default.
        temperature: Sampling temperature.

    Raises:
        ValueError: If provider is not supported.
    """
    resolved_provider = (provider or get_env_str("LLM_PROVIDER", DEFAULT_PROVIDER)).lower()
    if resolved_provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unsupported provider: {resolved_provider}. Supported: {list(SUPPORTED_PROVIDERS)}"
        )
    resolved_model = model or get_env_str("LLM_MODEL", DEFAULT_MODEL)

    if resolved_provider == "openai":
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(model=resolved_model, temperature=temperature)

    from langchain_anthropic import ChatAnthropic

    return ChatAnthropic(model=resolved_model, temperature=temperature)


class ChatModelLLM:
    """Adapts a LangChain ``BaseChatModel`` to the ``LLMCapability`` protocol."""

    def __init__(self, chat_model: BaseChatModel, model_name: Optional[str] = None):
        self._chat_model = chat_model
        self._model_name = model_name

    async def send(
        self,
        messages: List[ChatMessage],
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        lc_messages = to_langchain_messages(messages, system_prompt)
        runnable = self._chat_model
        if temperature is not None:
            runnable = runnable.bind(temperature=temperature)
        response = await runnable.ainvoke(lc_messages)

        text = response.content if isinstance(response.content, str) else str(response.content)
        usage = getattr(response, "usage_metadata", None) or {}
        tokens_in = usage.get("input_tokens")
        tokens_out = usage.get("output_tokens")
        if tokens_in is None or tokens_out is None:
            logger.debug("Chat model returned no usage metadata; estimating token counts")
            prompt_text = "".join(str(m.content) for m in lc_messages)
            tokens_in = estimate_token_count(prompt_text)
            tokens_out = estimate_token_count(text)

        return LLMResponse(
            text=text,
            tokens_in=int(tokens_in),
            tokens_out=int(tokens_out),
            model=model or self._model_name,
        )
