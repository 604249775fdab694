from __future__ import annotations

import json

import pytest

from commerce_agent.intents import IntentType
from commerce_agent.models import ChatRequest
from commerce_agent.models.capability import CapabilityContext, CapabilityResult
from commerce_agent.models.session import Message, MessageRole, UserType
from commerce_agent.services.capability_registry import CapabilityRegistry
from commerce_agent.services.errors import UpstreamError
from commerce_agent.services.orchestrator import (
    DIRECT_RESPONSE_OPTIONS,
    TOOL_RESPONSE_OPTIONS,
    Orchestrator,
)


def _intent(intent_type: str, capabilities=(), parameters=None) -> str:
    return json.dumps(
        {"type": intent_type, "suggestedCapabilities": list(capabilities), "parameters": parameters or {}}
    )


class RecordingRegistry(CapabilityRegistry):
    """Registry stub returning canned results and recording every call."""

    mode = "stub"

    def __init__(self, results: dict[str, CapabilityResult]) -> None:
        self._results = results
        self.calls: list[tuple[str, dict, CapabilityContext]] = []

    async def list_capabilities(self):
        return []

    async def invoke(self, name, parameters, context=None):
        self.calls.append((name, dict(parameters), context))
        return self._results.get(name) or CapabilityResult.failed(name, f"Unknown capability: {name}")


def _orchestrator(gateway, registry, session_store) -> Orchestrator:
    return Orchestrator(gateway=gateway, registry=registry, session_store=session_store)


@pytest.mark.asyncio
async def test_direct_reply_without_tools(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway([_intent("greeting"), "Hello! What are you shopping for today?"])
    orchestrator = _orchestrator(gateway, mock_registry, session_store)

    turn = await orchestrator.process_turn("hello", [], CapabilityContext())

    assert turn.response_text == "Hello! What are you shopping for today?"
    assert turn.intent_type == IntentType.GREETING
    assert turn.tools_used == []
    messages, options = gateway.calls[-1]
    assert options == DIRECT_RESPONSE_OPTIONS
    assert [m.role for m in messages] == ["system", "user"]
    assert messages[-1].content == "hello"


@pytest.mark.asyncio
async def test_created_cart_feeds_add_to_cart(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway(
        [
            _intent("add_to_cart", ["create_cart", "add_to_cart"], {"sku": "JEANS-BLUE-32", "quantity": 1}),
            "Added the jeans to your new cart.",
        ]
    )
    orchestrator = _orchestrator(gateway, mock_registry, session_store)

    turn = await orchestrator.process_turn("add the blue jeans to my cart", [], CapabilityContext())

    assert turn.tools_used == ["create_cart", "add_to_cart"]
    created, added = turn.capability_results
    assert created.success is True
    assert added.success is True
    assert added.data["cartId"] == created.data["cartId"]
    assert turn.cart_reference == created.data["cartId"]


@pytest.mark.asyncio
async def test_dispatch_is_sequential_and_ordered(make_gateway, session_store) -> None:
    registry = RecordingRegistry(
        {
            "create_cart": CapabilityResult.ok("create_cart", {"cartId": "cart-new"}),
            "add_to_cart": CapabilityResult.ok("add_to_cart", {"cartId": "cart-new", "items": []}),
            "get_cart": CapabilityResult.ok("get_cart", {"cartId": "cart-new", "items": []}),
        }
    )
    gateway = make_gateway(
        [_intent("add_to_cart", ["create_cart", "add_to_cart", "get_cart"], {"sku": "SKU-1"}), "Done."]
    )

    await _orchestrator(gateway, registry, session_store).process_turn(
        "add SKU-1", [], CapabilityContext(identity_credential="token")
    )

    assert [name for name, _, _ in registry.calls] == ["create_cart", "add_to_cart", "get_cart"]
    assert "cartId" not in registry.calls[0][1]
    assert registry.calls[1][1] == {"sku": "SKU-1", "cartId": "cart-new"}
    assert registry.calls[2][2].cart_reference == "cart-new"
    assert registry.calls[2][2].identity_credential == "token"


@pytest.mark.asyncio
async def test_session_cart_is_injected(make_gateway, session_store) -> None:
    registry = RecordingRegistry({"get_cart": CapabilityResult.ok("get_cart", {"cartId": "cart-9", "items": []})})
    gateway = make_gateway([_intent("view_cart", ["get_cart"]), "Your cart is empty."])

    turn = await _orchestrator(gateway, registry, session_store).process_turn(
        "what's in my cart", [], CapabilityContext(cart_reference="cart-9")
    )

    assert registry.calls[0][1] == {"cartId": "cart-9"}
    assert turn.cart_reference == "cart-9"


@pytest.mark.asyncio
async def test_search_defaults_query_to_user_message(make_gateway, session_store) -> None:
    registry = RecordingRegistry({"search_products": CapabilityResult.ok("search_products", {"products": []})})
    gateway = make_gateway([_intent("product_search", ["search_products"]), "Nothing found."])

    await _orchestrator(gateway, registry, session_store).process_turn("wool socks", [], CapabilityContext())

    assert registry.calls[0][1] == {"query": "wool socks"}


@pytest.mark.asyncio
async def test_partial_failure_is_reported_to_composer(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway(
        [
            _intent("add_to_cart", ["create_cart", "add_to_cart"], {"sku": "JACKET-DENIM-M"}),
            "Sorry, that jacket is out of stock.",
        ]
    )

    turn = await _orchestrator(gateway, mock_registry, session_store).process_turn(
        "add the denim jacket", [], CapabilityContext()
    )

    assert turn.tools_used == ["create_cart", "add_to_cart"]
    assert [result.success for result in turn.capability_results] == [True, False]
    assert turn.response_text == "Sorry, that jacket is out of stock."
    messages, options = gateway.calls[-1]
    assert options == TOOL_RESPONSE_OPTIONS
    prompt = messages[-1].content
    assert "Tool: create_cart\nResult:" in prompt
    assert 'Tool: add_to_cart\nError: The requested qty of "Denim Trucker Jacket" is not available' in prompt


@pytest.mark.asyncio
async def test_history_windows_for_composition(make_gateway, mock_registry, session_store) -> None:
    history = []
    for index in range(6):
        history.append(Message(role=MessageRole.USER, content=f"question {index}"))
        history.append(Message(role=MessageRole.ASSISTANT, content=f"answer {index}"))
    history.append(Message(role=MessageRole.ERROR, content="Failed to generate a response"))

    direct_gateway = make_gateway([_intent("general_question"), "Sure."])
    await _orchestrator(direct_gateway, mock_registry, session_store).process_turn(
        "anything else?", history, CapabilityContext()
    )
    direct_messages, _ = direct_gateway.calls[-1]
    assert len(direct_messages) == 1 + 10 + 1
    assert direct_messages[1].content == "question 1"
    assert all(m.content != "Failed to generate a response" for m in direct_messages)

    tool_gateway = make_gateway([_intent("product_search", ["search_products"], {"query": "tee"}), "Found it."])
    await _orchestrator(tool_gateway, mock_registry, session_store).process_turn(
        "find a tee", history, CapabilityContext()
    )
    tool_messages, _ = tool_gateway.calls[-1]
    assert len(tool_messages) == 1 + 6 + 1
    assert tool_messages[1].content == "question 3"
    assert tool_messages[6].content == "answer 5"


@pytest.mark.asyncio
async def test_handle_chat_records_turn(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway(
        [_intent("product_search", ["search_products"], {"query": "blue jeans"}), "We have Classic Blue Jeans."]
    )
    orchestrator = _orchestrator(gateway, mock_registry, session_store)

    response = await orchestrator.handle_chat(ChatRequest(message="Search for blue jeans"))

    assert response.success is True
    assert response.user_type == UserType.GUEST
    assert response.tools_used == ["search_products"]
    assert response.intent == "product_search"
    assert response.usage.total_tokens == 20
    history = session_store.get_recent_history(response.session_id, 10)
    assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert history[1].tools_used == ["search_products"]
    assert history[1].intent == "product_search"


@pytest.mark.asyncio
async def test_handle_chat_persists_new_cart(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway(
        [_intent("add_to_cart", ["create_cart", "add_to_cart"], {"sku": "TEE-WHITE-L"}), "Added!"]
    )
    orchestrator = _orchestrator(gateway, mock_registry, session_store)

    response = await orchestrator.handle_chat(ChatRequest(message="add a white tee"))

    assert response.cart_id is not None
    assert response.cart_id.startswith("mock-cart-")
    assert session_store.get(response.session_id).cart_reference == response.cart_id


@pytest.mark.asyncio
async def test_composition_failure_is_recorded_and_raised(make_gateway, mock_registry, session_store) -> None:
    gateway = make_gateway([_intent("greeting"), UpstreamError("ollama API error: 500", backend="ollama", status_code=500)])
    orchestrator = _orchestrator(gateway, mock_registry, session_store)
    session = session_store.get_or_create()

    with pytest.raises(UpstreamError):
        await orchestrator.handle_chat(ChatRequest(message="hi", sessionId=session.session_id))

    history = session_store.get_recent_history(session.session_id, 10)
    assert [m.role for m in history] == [MessageRole.USER, MessageRole.ERROR]
    assert history[0].content == "hi"


class RaisingRegistry(CapabilityRegistry):
    mode = "raising"

    async def list_capabilities(self):
        return []

    async def invoke(self, name, parameters, context=None):
        raise AttributeError("'str' object has no attribute 'get'")


@pytest.mark.asyncio
async def test_registry_exception_becomes_failed_result(make_gateway, session_store) -> None:
    gateway = make_gateway([_intent("view_cart", ["get_cart"]), "I couldn't load your cart right now."])
    orchestrator = _orchestrator(gateway, RaisingRegistry(), session_store)

    response = await orchestrator.handle_chat(ChatRequest(message="my cart", cartId="c"))

    assert response.success is True
    assert response.tools_used == ["get_cart"]
    assert response.response == "I couldn't load your cart right now."
    prompt = gateway.calls[-1][0][-1].content
    assert "Tool: get_cart\nError: 'str' object has no attribute 'get'" in prompt
    history = session_store.get_recent_history(response.session_id, 10)
    assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
