"""LLM factory and text-completion service for AI analysis.

The coordinator only needs ``prompt -> text``; :class:`ChatCompletionService`
adapts any LangChain chat model to that shape.
"""

import logging
from typing import Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from src.config import Settings

logger = logging.getLogger(__name__)

MAX_RESPONSE_TOKENS = 2048


class CompletionService(Protocol):
    async def complete(self, prompt: str) -> str: ...


class ChatCompletionService:
    """Send a single prompt to a chat model and return the text of its reply."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def complete(self, prompt: str) -> str:
        response = await self._llm.ainvoke(prompt)
        content = response.content
        if isinstance(content, list):
            # Anthropic may return content blocks instead of a plain string
            return "".join(
                block.get("text", "") if isinstance(block, dict) else str(block) for block in content
            )
        return str(content)


def create_llm(settings: Settings) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names, temperature).

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        return ChatAnthropic(  # pyright: ignore[reportCallIssue]
            model=settings.anthropic_model,  # pyright: ignore[reportCallIssue]
            temperature=settings.llm_temperature,
            max_tokens=MAX_RESPONSE_TOKENS,  # pyright: ignore[reportCallIssue]
            api_key=SecretStr(settings.anthropic_api_key),
        )

    return ChatOpenAI(
        model=settings.openai_model,
        temperature=settings.llm_temperature,
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
    )


def create_completion_service(settings: Settings) -> CompletionService | None:
    """Build the completion service, or None when no API key is configured."""
    if not settings.ai_enabled:
        logger.info("AI analysis disabled (no API key for provider %s)", settings.llm_provider)
        return None
    model = settings.anthropic_model if settings.llm_provider == "anthropic" else settings.openai_model
    logger.info("AI analysis enabled with %s model %s", settings.llm_provider, model)
    return ChatCompletionService(create_llm(settings))
