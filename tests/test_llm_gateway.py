from __future__ import annotations

import json

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from commerce_agent.config import Settings
from commerce_agent.models.llm import ChatMessage, GenerationOptions
from commerce_agent.services.errors import ConfigurationError, UpstreamError
from commerce_agent.services.http_llm_providers import (
    CLAUDE_API_VERSION,
    ClaudeGateway,
    GeminiGateway,
    HttpLLMGateway,
    OllamaGateway,
    fold_system_into_contents,
)
from commerce_agent.services.llm_gateway import OpenAIGateway, create_llm_gateway

MESSAGES = [
    ChatMessage(role="system", content="You are a shop assistant."),
    ChatMessage(role="user", content="hello"),
    ChatMessage(role="assistant", content="Hi! How can I help?"),
    ChatMessage(role="user", content="show me jeans"),
]


class FakeChatModel:
    """Minimal stand-in for a LangChain chat model (``bind`` + ``ainvoke``)."""

    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.bound_kwargs: dict = {}
        self.received = None

    def bind(self, **kwargs):
        self.bound_kwargs = kwargs
        return self

    async def ainvoke(self, messages):
        self.received = messages
        if self.error:
            raise self.error
        return self.response


class StatusError(Exception):
    status_code = 429


@pytest.mark.parametrize(
    "provider",
    ["openai", "claude", "gemini"],
)
def test_missing_credentials_fail_at_construction(provider: str) -> None:
    settings = Settings(llm_provider=provider, openai_api_key="", claude_api_key="", google_api_key="")
    with pytest.raises(ConfigurationError):
        create_llm_gateway(settings)


def test_factory_builds_configured_provider() -> None:
    assert isinstance(create_llm_gateway(Settings(llm_provider="ollama")), OllamaGateway)
    assert isinstance(create_llm_gateway(Settings(llm_provider="claude", claude_api_key="k")), ClaudeGateway)
    assert isinstance(create_llm_gateway(Settings(llm_provider="gemini", google_api_key="k")), GeminiGateway)


def test_unknown_provider_is_a_configuration_error() -> None:
    settings = Settings().model_copy(update={"llm_provider": "mistral"})
    with pytest.raises(ConfigurationError):
        create_llm_gateway(settings)


@pytest.mark.asyncio
async def test_openai_gateway_uses_langchain_model() -> None:
    response = AIMessage(
        content="Here are some jeans.",
        response_metadata={
            "model_name": "gpt-4o-mini",
            "token_usage": {"prompt_tokens": 30, "completion_tokens": 10, "total_tokens": 40},
        },
    )
    llm = FakeChatModel(response=response)
    gateway = OpenAIGateway(Settings(openai_api_key=""), llm=llm)

    result = await gateway.generate(MESSAGES, GenerationOptions(temperature=0.3, max_output_tokens=300))

    assert result.content == "Here are some jeans."
    assert result.usage.total_tokens == 40
    assert result.provider == "openai"
    assert llm.bound_kwargs == {"temperature": 0.3, "max_tokens": 300}
    assert [type(message) for message in llm.received] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]


@pytest.mark.asyncio
async def test_openai_gateway_wraps_errors() -> None:
    gateway = OpenAIGateway(Settings(), llm=FakeChatModel(error=StatusError("rate limited")))

    with pytest.raises(UpstreamError) as excinfo:
        await gateway.generate(MESSAGES)

    assert excinfo.value.status_code == 429
    assert excinfo.value.backend == "openai"
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_ollama_request_and_usage() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"message": {"role": "assistant", "content": "Hello!"}, "prompt_eval_count": 20, "eval_count": 5},
        )

    settings = Settings(ollama_base_url="http://ollama:11434/", ollama_model="llama3.2")
    gateway = OllamaGateway(settings, transport=httpx.MockTransport(handler))

    result = await gateway.generate(MESSAGES, GenerationOptions(temperature=0.7, max_output_tokens=600))

    assert seen["url"] == "http://ollama:11434/api/chat"
    assert seen["body"]["stream"] is False
    assert seen["body"]["options"] == {"temperature": 0.7, "num_predict": 600}
    assert seen["body"]["messages"][0] == {"role": "system", "content": "You are a shop assistant."}
    assert result.content == "Hello!"
    assert result.usage.total_tokens == 25


@pytest.mark.asyncio
async def test_claude_moves_system_prompt_to_top_level() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
                "usage": {"input_tokens": 11, "output_tokens": 3},
            },
        )

    gateway = ClaudeGateway(Settings(claude_api_key="secret"), transport=httpx.MockTransport(handler))
    result = await gateway.generate(MESSAGES)

    assert seen["body"]["system"] == "You are a shop assistant."
    assert [turn["role"] for turn in seen["body"]["messages"]] == ["user", "assistant", "user"]
    assert seen["headers"]["x-api-key"] == "secret"
    assert seen["headers"]["anthropic-version"] == CLAUDE_API_VERSION
    assert result.content == "Hi there"
    assert result.usage.total_tokens == 14


@pytest.mark.asyncio
async def test_gemini_folds_system_prompt_into_first_user_turn() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "Sure!"}]}}],
                "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 2, "totalTokenCount": 11},
            },
        )

    settings = Settings(google_api_key="g-key", gemini_model="gemini-2.5-flash-lite")
    gateway = GeminiGateway(settings, transport=httpx.MockTransport(handler))
    result = await gateway.generate(MESSAGES)

    contents = seen["body"]["contents"]
    assert "gemini-2.5-flash-lite:generateContent" in seen["url"]
    assert [turn["role"] for turn in contents] == ["user", "model", "user"]
    assert contents[0]["parts"][0]["text"] == "You are a shop assistant.\n\nhello"
    assert result.content == "Sure!"
    assert result.usage.total_tokens == 11


def test_fold_system_inserts_leading_user_turn_when_needed() -> None:
    contents = fold_system_into_contents(
        [
            ChatMessage(role="system", content="Be brief."),
            ChatMessage(role="assistant", content="Welcome back."),
        ]
    )

    assert contents == [
        {"role": "user", "parts": [{"text": "Be brief."}]},
        {"role": "model", "parts": [{"text": "Welcome back."}]},
    ]


@pytest.mark.asyncio
async def test_http_status_error_carries_upstream_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid key"})

    gateway = ClaudeGateway(Settings(claude_api_key="bad"), transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as excinfo:
        await gateway.generate(MESSAGES)

    assert excinfo.value.status_code == 401
    assert excinfo.value.backend == "claude"
    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_malformed_body_raises_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    gateway = OllamaGateway(Settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError, match="Failed to parse ollama response"):
        await gateway.generate(MESSAGES)


@pytest.mark.asyncio
async def test_connection_error_raises_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    gateway = OllamaGateway(Settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as excinfo:
        await gateway.generate(MESSAGES)

    assert excinfo.value.status_code is None
    assert excinfo.value.backend == "ollama"


def test_http_gateway_requires_both_provider_hooks() -> None:
    class RequestOnlyGateway(HttpLLMGateway):
        provider = "partial"

        def _build_request(self, messages, options):
            return "http://llm.local", {}, {}

    with pytest.raises(TypeError):
        RequestOnlyGateway(model="m", timeout=1.0)
