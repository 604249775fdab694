"""
REST providers for the language model gateway.

Direct HTTP integrations without vendor SDKs: Ollama, Anthropic Claude and
Google Gemini. Each provider only knows how to shape its request and read its
response; transport and error handling live in ``HttpLLMGateway``.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any, Dict, List

import httpx

from ..config import Settings
from ..models.llm import ChatMessage, GenerationOptions, LLMResult, TokenUsage
from .errors import ConfigurationError, UpstreamError
from .llm_gateway import LLMGateway

logger = logging.getLogger(__name__)

CLAUDE_ENDPOINT = "https://api.anthropic.com/v1/messages"
CLAUDE_API_VERSION = "2023-06-01"
GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class HttpLLMGateway(LLMGateway):
    """Shared POST/parse loop for REST-only providers."""

    def __init__(
        self,
        *,
        model: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(model=model)
        self._timeout = timeout
        self._transport = transport

    async def _generate(self, messages: list[ChatMessage], options: GenerationOptions) -> LLMResult:
        url, payload, headers = self._build_request(messages, options)
        logger.debug(
            "%s request: model=%s messages=%d temperature=%.2f",
            self.provider,
            self.model,
            len(messages),
            options.temperature,
        )
        data = await self._post(url, payload, headers)
        try:
            content, usage = self._parse_response(data)
        except (KeyError, TypeError, IndexError, ValueError) as exc:
            logger.error("%s parse error: %s, response: %s", self.provider, exc, data)
            raise UpstreamError(
                f"Failed to parse {self.provider} response: {exc}",
                backend=self.provider,
            ) from exc
        return LLMResult(content=content, usage=usage, model=self.model, provider=self.provider)

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            error_body = exc.response.text
            logger.error("%s HTTP error: %s - %s", self.provider, exc.response.status_code, error_body)
            raise UpstreamError(
                f"{self.provider} API error: {exc.response.status_code} - {error_body}",
                backend=self.provider,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("%s connection error: %s url=%s", self.provider, exc, url)
            raise UpstreamError(
                f"Cannot connect to {self.provider} at {url}: {exc}",
                backend=self.provider,
            ) from exc
        except ValueError as exc:
            raise UpstreamError(
                f"{self.provider} returned a non-JSON body",
                backend=self.provider,
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamError(f"{self.provider} returned an unexpected payload", backend=self.provider)
        return data

    @abstractmethod
    def _build_request(
        self, messages: list[ChatMessage], options: GenerationOptions
    ) -> tuple[str, Dict[str, Any], Dict[str, str]]:
        """Return url, JSON payload and headers for one generation call."""

    @abstractmethod
    def _parse_response(self, data: Dict[str, Any]) -> tuple[str, TokenUsage]:
        """Return reply text and token usage from a decoded provider body."""


class OllamaGateway(HttpLLMGateway):
    provider = "ollama"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.ollama_base_url:
            raise ConfigurationError("OLLAMA_BASE_URL is required for Ollama provider")
        super().__init__(
            model=settings.ollama_model,
            timeout=settings.ollama_timeout_seconds,
            transport=transport,
        )
        self._base_url = settings.ollama_base_url.rstrip("/")

    def _build_request(self, messages, options):
        payload = {
            "model": self.model,
            "messages": [message.model_dump() for message in messages],
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_output_tokens,
            },
        }
        return f"{self._base_url}/api/chat", payload, {"Content-Type": "application/json"}

    def _parse_response(self, data):
        content = data["message"]["content"]
        usage = TokenUsage.from_counts(data.get("prompt_eval_count"), data.get("eval_count"))
        return content, usage


class ClaudeGateway(HttpLLMGateway):
    """Anthropic Messages API. System text moves to the top-level ``system`` field."""

    provider = "claude"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.claude_api_key:
            raise ConfigurationError("CLAUDE_API_KEY is required for Claude provider")
        super().__init__(
            model=settings.claude_model,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )
        self._api_key = settings.claude_api_key

    def _build_request(self, messages, options):
        system_parts: List[str] = []
        turns: List[Dict[str, str]] = []
        for message in messages:
            if message.role == "system":
                system_parts.append(message.content)
                continue
            turns.append({"role": message.role, "content": message.content})
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_output_tokens,
            "temperature": options.temperature,
            "messages": turns,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": CLAUDE_API_VERSION,
        }
        return CLAUDE_ENDPOINT, payload, headers

    def _parse_response(self, data):
        text = "".join(block.get("text", "") for block in data["content"] if block.get("type") == "text")
        usage = data.get("usage") or {}
        return text, TokenUsage.from_counts(usage.get("input_tokens"), usage.get("output_tokens"))


class GeminiGateway(HttpLLMGateway):
    """Google Gemini ``generateContent``.

    Gemini has no system role, so system instructions are folded into the
    first user turn (or sent as a leading user turn when the exchange does
    not start with one).
    """

    provider = "gemini"

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        if not settings.google_api_key:
            raise ConfigurationError("GOOGLE_API_KEY is required for Gemini provider")
        super().__init__(
            model=settings.gemini_model,
            timeout=settings.llm_timeout_seconds,
            transport=transport,
        )
        self._api_key = settings.google_api_key

    def _build_request(self, messages, options):
        payload = {
            "contents": fold_system_into_contents(messages),
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_output_tokens,
            },
        }
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}
        return GEMINI_ENDPOINT.format(model=self.model), payload, headers

    def _parse_response(self, data):
        candidate = data["candidates"][0]
        text = "".join(part.get("text", "") for part in candidate["content"]["parts"])
        usage = data.get("usageMetadata") or {}
        prompt = int(usage.get("promptTokenCount") or 0)
        completion = int(usage.get("candidatesTokenCount") or 0)
        total = int(usage.get("totalTokenCount") or prompt + completion)
        return text, TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def fold_system_into_contents(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    system_text = "\n\n".join(message.content for message in messages if message.role == "system")
    contents: List[Dict[str, Any]] = [
        {
            "role": "model" if message.role == "assistant" else "user",
            "parts": [{"text": message.content}],
        }
        for message in messages
        if message.role != "system"
    ]
    if not system_text:
        return contents
    if contents and contents[0]["role"] == "user":
        first_text = contents[0]["parts"][0]["text"]
        contents[0]["parts"][0]["text"] = f"{system_text}\n\n{first_text}"
    else:
        contents.insert(0, {"role": "user", "parts": [{"text": system_text}]})
    return contents
