"""Shared pytest fixtures for all tests."""

from __future__ import annotations

from typing import Iterable, List, Union

import pytest
from fastapi.testclient import TestClient

from commerce_agent.config import Settings, get_settings
from commerce_agent.main import create_app
from commerce_agent.models.llm import ChatMessage, GenerationOptions, LLMResult, TokenUsage
from commerce_agent.routers.chat import get_capability_registry, get_llm_gateway
from commerce_agent.services.capability_registry import BuiltInCapabilityRegistry
from commerce_agent.services.llm_gateway import LLMGateway
from commerce_agent.services.mock_commerce import MockCommerceBackend
from commerce_agent.services.session_store import SessionStore

ScriptItem = Union[str, Exception]


class ScriptedGateway(LLMGateway):
    """Gateway stub that replays scripted replies (or raises scripted errors) in order."""

    provider = "scripted"

    def __init__(self, script: Iterable[ScriptItem] = (), *, default: str = "Happy to help!") -> None:
        super().__init__(model="scripted-model")
        self._script: List[ScriptItem] = list(script)
        self._default = default
        self.calls: list[tuple[list[ChatMessage], GenerationOptions]] = []

    async def _generate(self, messages, options):
        self.calls.append((messages, options))
        item = self._script.pop(0) if self._script else self._default
        if isinstance(item, Exception):
            raise item
        return LLMResult(
            content=item,
            usage=TokenUsage.from_counts(12, 8),
            model=self.model,
            provider=self.provider,
        )


@pytest.fixture
def settings() -> Settings:
    """Default settings for tests."""
    return Settings(llm_provider="ollama", tool_mode="mock", env="test")


@pytest.fixture
def mock_backend() -> MockCommerceBackend:
    return MockCommerceBackend()


@pytest.fixture
def mock_registry(mock_backend: MockCommerceBackend) -> BuiltInCapabilityRegistry:
    return BuiltInCapabilityRegistry(mock_backend, mode="mock")


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def make_gateway():
    """Factory for scripted gateways: ``make_gateway(["reply", UpstreamError(...)])``."""
    return ScriptedGateway


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def app(settings, gateway, mock_registry, session_store):
    application = create_app()
    application.state.session_store = session_store
    application.dependency_overrides[get_settings] = lambda: settings
    application.dependency_overrides[get_llm_gateway] = lambda: gateway
    application.dependency_overrides[get_capability_registry] = lambda: mock_registry
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
