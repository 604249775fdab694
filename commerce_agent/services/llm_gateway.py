"""
Language model gateway.

Every provider turns a list of role-tagged messages plus generation options
into ``LLMResult`` (text + token usage). The concrete provider is chosen once
from settings by :func:`create_llm_gateway`; callers only see ``generate``.

Providers never retry. Transport failures, non-2xx answers and malformed
bodies are raised as ``UpstreamError`` with the upstream status and the
provider name attached.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from langsmith import traceable

from ..config import Settings
from ..models.llm import ChatMessage, GenerationOptions, LLMResult, TokenUsage
from .errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class LLMGateway(ABC):
    """Uniform text-generation capability over interchangeable providers."""

    provider: str = "unknown"

    def __init__(self, *, model: str) -> None:
        self.model = model

    @traceable(run_type="llm", name="llm_gateway.generate")
    async def generate(
        self,
        messages: Sequence[ChatMessage],
        options: GenerationOptions | None = None,
    ) -> LLMResult:
        options = options or GenerationOptions()
        start = time.perf_counter()
        result = await self._generate(list(messages), options)
        logger.info(
            "llm.generate provider=%s model=%s messages=%d tokens=%d latency_ms=%.1f",
            self.provider,
            self.model,
            len(messages),
            result.usage.total_tokens,
            (time.perf_counter() - start) * 1000,
        )
        return result

    @abstractmethod
    async def _generate(self, messages: list[ChatMessage], options: GenerationOptions) -> LLMResult:
        """Provider-specific call."""


class OpenAIGateway(LLMGateway):
    """OpenAI chat completions through LangChain's ``ChatOpenAI``."""

    provider = "openai"

    def __init__(self, settings: Settings, *, llm: Any | None = None) -> None:
        if not settings.openai_api_key and llm is None:
            raise ConfigurationError("OPENAI_API_KEY is required for OpenAI provider")
        super().__init__(model=settings.openai_model)
        if llm is None:
            llm = ChatOpenAI(
                model=settings.openai_model,
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.llm_timeout_seconds,
                max_retries=0,
            )
        self._llm = llm

    async def _generate(self, messages: list[ChatMessage], options: GenerationOptions) -> LLMResult:
        runnable = self._llm.bind(temperature=options.temperature, max_tokens=options.max_output_tokens)
        try:
            response = await runnable.ainvoke(to_langchain_messages(messages))
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            logger.error("OpenAI error status=%s error=%s", status_code, exc)
            raise UpstreamError(
                f"OpenAI API failed: {exc}",
                backend=self.provider,
                status_code=status_code,
            ) from exc
        if not isinstance(response, AIMessage):
            raise UpstreamError("OpenAI returned an unexpected payload", backend=self.provider)
        return LLMResult(
            content=_extract_message_content(response),
            usage=_extract_usage(response),
            model=(response.response_metadata or {}).get("model_name", self.model),
            provider=self.provider,
        )


def to_langchain_messages(messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    result: list[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            result.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            result.append(AIMessage(content=message.content))
        else:
            result.append(HumanMessage(content=message.content))
    return result


def _extract_message_content(message: AIMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    if isinstance(message.content, list):
        # OpenAI can return list[dict]; join textual segments
        return " ".join(
            part.get("text", "")
            for part in message.content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return str(message.content)


def _extract_usage(message: AIMessage) -> TokenUsage:
    metadata: Dict[str, Any] = getattr(message, "response_metadata", {}) or {}
    usage = metadata.get("token_usage") or {}
    if usage:
        return TokenUsage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            total_tokens=int(usage.get("total_tokens") or 0),
        )
    usage_metadata = getattr(message, "usage_metadata", None) or {}
    return TokenUsage.from_counts(usage_metadata.get("input_tokens"), usage_metadata.get("output_tokens"))


def create_llm_gateway(settings: Settings) -> LLMGateway:
    """Build the provider configured in ``settings.llm_provider``."""

    from .http_llm_providers import ClaudeGateway, GeminiGateway, OllamaGateway

    provider = settings.llm_provider
    logger.info("Using LLM provider: %s", provider)
    if provider == "openai":
        return OpenAIGateway(settings)
    if provider == "ollama":
        return OllamaGateway(settings)
    if provider == "claude":
        return ClaudeGateway(settings)
    if provider == "gemini":
        return GeminiGateway(settings)
    raise ConfigurationError(f"Unsupported LLM provider: {provider}")
