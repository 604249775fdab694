"""
Conversation orchestrator.

One request walks a fixed sequence of states and never revisits one:

    SessionResolved -> IntentClassified -> [ToolsDispatched]
        -> ResponseComposed -> HistoryUpdated -> Done

All state that outlives the request lives in the ``SessionStore``; the
orchestrator itself keeps nothing between turns.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence, Tuple

from langsmith import traceable

from ..intents import CapabilityName
from ..models import ChatRequest, ChatResponse, TurnResult
from ..models.capability import CapabilityContext, CapabilityResult
from ..models.intent import Intent
from ..models.llm import ChatMessage, GenerationOptions, LLMResult
from ..models.session import Message, MessageRole
from ..prompts.assistant_prompt import SYSTEM_PROMPT, build_tool_response_prompt
from ..utils.logging import get_request_logger
from .capability_registry import CapabilityRegistry
from .errors import ValidationError
from .intent_classifier import IntentClassifier
from .llm_gateway import LLMGateway
from .session_store import SessionStore

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
TOOL_RESPONSE_HISTORY = 6
DIRECT_RESPONSE_HISTORY = 10
TOOL_RESPONSE_OPTIONS = GenerationOptions(temperature=0.7, max_output_tokens=800)
DIRECT_RESPONSE_OPTIONS = GenerationOptions(temperature=0.7, max_output_tokens=600)

_CONVERSATIONAL_ROLES = {MessageRole.USER, MessageRole.ASSISTANT}


class Orchestrator:
    def __init__(
        self,
        *,
        gateway: LLMGateway,
        registry: CapabilityRegistry,
        session_store: SessionStore,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self._gateway = gateway
        self._registry = registry
        self._session_store = session_store
        self._classifier = classifier or IntentClassifier(gateway)

    async def handle_chat(self, request: ChatRequest, *, trace_id: str | None = None) -> ChatResponse:
        """Run one full turn for the HTTP endpoint and record it in session history."""

        message = request.message or ""
        if not message.strip():
            raise ValidationError('Parameter "message" is required', reason="empty_message")

        session = self._session_store.get_or_create(
            session_id=request.session_id,
            identity_credential=request.customer_token,
            cart_reference=request.cart_id,
        )
        request_logger = get_request_logger(
            logger,
            trace_id=trace_id,
            session_id=session.session_id,
            user_type=session.user_type.value,
        )
        request_logger.info("Processing message text=%s has_cart=%s", message[:50], bool(session.cart_reference))

        history = self._session_store.get_recent_history(session.session_id, HISTORY_WINDOW)
        context = CapabilityContext(
            identity_credential=session.identity_credential,
            cart_reference=session.cart_reference,
        )
        try:
            turn = await self.process_turn(message, history, context)
        except Exception as exc:
            request_logger.error("Turn failed: %s", exc)
            self._session_store.append(session.session_id, MessageRole.USER, message)
            self._session_store.append(
                session.session_id,
                MessageRole.ERROR,
                f"Failed to generate a response: {exc}",
            )
            raise

        cart_reference = session.cart_reference
        if turn.cart_reference and turn.cart_reference != cart_reference:
            self._session_store.set_cart_reference(session.session_id, turn.cart_reference)
            cart_reference = turn.cart_reference

        self._session_store.append(session.session_id, MessageRole.USER, message)
        self._session_store.append(
            session.session_id,
            MessageRole.ASSISTANT,
            turn.response_text,
            {"tools_used": turn.tools_used, "intent": turn.intent_type.value},
        )
        request_logger.info(
            "Turn complete intent=%s tools=%s tokens=%d",
            turn.intent_type.value,
            turn.tools_used,
            turn.usage.total_tokens,
        )
        return ChatResponse(
            response=turn.response_text,
            session_id=session.session_id,
            user_type=session.user_type,
            tools_used=turn.tools_used,
            intent=turn.intent_type.value,
            cart_id=cart_reference,
            usage=turn.usage,
        )

    @traceable(run_type="chain", name="process_turn")
    async def process_turn(
        self,
        user_message: str,
        history: Sequence[Message],
        context: CapabilityContext,
    ) -> TurnResult:
        intent = await self._classifier.classify(user_message, history)

        results: List[CapabilityResult] = []
        cart_reference = context.cart_reference
        if intent.requires_tools:
            results, cart_reference = await self.dispatch(intent, user_message, context)
            response = await self._compose_with_results(user_message, results, history)
        else:
            response = await self._compose_direct(user_message, history)

        return TurnResult(
            response_text=response.content,
            tools_used=[result.capability_name for result in results],
            intent_type=intent.type,
            usage=response.usage,
            capability_results=results,
            cart_reference=cart_reference,
        )

    async def dispatch(
        self,
        intent: Intent,
        user_message: str,
        context: CapabilityContext,
    ) -> Tuple[List[CapabilityResult], str | None]:
        """Invoke suggested capabilities strictly in order, one at a time.

        A cart created by an earlier capability is fed into the parameters of
        the later ones. Failures are collected, never raised.
        """

        results: List[CapabilityResult] = []
        cart_reference = context.cart_reference
        for name in intent.suggested_capabilities:
            call_context = context.model_copy(update={"cart_reference": cart_reference})
            params = self._build_parameters(name, intent, user_message, cart_reference)
            try:
                result = await self._registry.invoke(name, params, call_context)
            except Exception as exc:
                logger.exception("Capability registry raised for %s", name)
                result = CapabilityResult.failed(name, str(exc) or exc.__class__.__name__)
            if not result.success:
                logger.warning("Capability %s failed: %s", name, result.error)
            new_cart = _cart_id_from(result)
            if new_cart:
                cart_reference = new_cart
            results.append(result)
        return results, cart_reference

    @staticmethod
    def _build_parameters(
        name: str,
        intent: Intent,
        user_message: str,
        cart_reference: str | None,
    ) -> Dict[str, Any]:
        params = dict(intent.parameters)
        if cart_reference:
            params["cartId"] = cart_reference
        if name == CapabilityName.SEARCH_PRODUCTS.value and not params.get("query"):
            params["query"] = user_message
        return params

    async def _compose_with_results(
        self,
        user_message: str,
        results: Sequence[CapabilityResult],
        history: Sequence[Message],
    ) -> LLMResult:
        messages = [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            *_history_messages(history, TOOL_RESPONSE_HISTORY),
            ChatMessage(role="user", content=build_tool_response_prompt(user_message, results)),
        ]
        return await self._gateway.generate(messages, TOOL_RESPONSE_OPTIONS)

    async def _compose_direct(self, user_message: str, history: Sequence[Message]) -> LLMResult:
        messages = [
            ChatMessage(role="system", content=SYSTEM_PROMPT),
            *_history_messages(history, DIRECT_RESPONSE_HISTORY),
            ChatMessage(role="user", content=user_message),
        ]
        return await self._gateway.generate(messages, DIRECT_RESPONSE_OPTIONS)


def _history_messages(history: Sequence[Message], limit: int) -> List[ChatMessage]:
    conversational = [message for message in history if message.role in _CONVERSATIONAL_ROLES]
    return [ChatMessage(role=message.role.value, content=message.content) for message in conversational[-limit:]]


def _cart_id_from(result: CapabilityResult) -> str | None:
    if result.success and isinstance(result.data, dict):
        cart_id = result.data.get("cartId")
        return str(cart_id) if cart_id else None
    return None
