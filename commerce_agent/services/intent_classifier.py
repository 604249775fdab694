from __future__ import annotations

import json
import logging
from typing import Any, Dict, Sequence

from langsmith import traceable
from pydantic import ValidationError as PydanticValidationError

from ..intents import CART_KEYWORDS, SEARCH_KEYWORDS, CapabilityName, IntentType
from ..models.intent import Intent
from ..models.llm import ChatMessage, GenerationOptions
from ..models.session import Message
from ..prompts.intent_prompt import build_intent_system_prompt, build_intent_user_prompt
from .errors import ClassificationDegraded, UpstreamError
from .llm_gateway import LLMGateway

logger = logging.getLogger(__name__)

CLASSIFIER_OPTIONS = GenerationOptions(temperature=0.3, max_output_tokens=300)
CLASSIFIER_HISTORY_LIMIT = 4


def extract_json_object(text: str) -> Dict[str, Any] | None:
    """Return the first balanced ``{...}`` region of ``text`` parsed as a JSON object.

    Only the first balanced region is tried; no repair is attempted.
    """

    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(text[start : index + 1])
                except json.JSONDecodeError:
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def heuristic_intent(user_message: str) -> Intent:
    """Deterministic keyword fallback used when model classification is unavailable."""

    lowered = user_message.lower()
    if any(keyword in lowered for keyword in SEARCH_KEYWORDS):
        return Intent(
            type=IntentType.PRODUCT_SEARCH,
            suggested_capabilities=[CapabilityName.SEARCH_PRODUCTS.value],
            parameters={"query": user_message},
        )
    if any(keyword in lowered for keyword in CART_KEYWORDS):
        return Intent(
            type=IntentType.VIEW_CART,
            suggested_capabilities=[CapabilityName.GET_CART.value],
        )
    return Intent(type=IntentType.GENERAL_QUESTION)


class IntentClassifier:
    """Model-based intent classification with a keyword fallback.

    A slow, wrong or unreachable model never fails the turn: any problem in
    the model path degrades to :func:`heuristic_intent`.
    """

    def __init__(self, gateway: LLMGateway) -> None:
        self._gateway = gateway
        self._system_prompt = build_intent_system_prompt()

    @traceable(run_type="chain", name="classify_intent")
    async def classify(self, user_message: str, recent_history: Sequence[Message] = ()) -> Intent:
        try:
            intent = await self._classify_with_model(user_message, recent_history)
        except ClassificationDegraded as exc:
            logger.warning("Intent classification degraded to heuristic fallback: %s", exc.reason)
            intent = heuristic_intent(user_message)
        logger.info(
            "Intent classified type=%s capabilities=%s",
            intent.type.value,
            intent.suggested_capabilities,
        )
        return intent

    async def _classify_with_model(self, user_message: str, recent_history: Sequence[Message]) -> Intent:
        messages = [
            ChatMessage(role="system", content=self._system_prompt),
            ChatMessage(
                role="user",
                content=build_intent_user_prompt(user_message, list(recent_history)[-CLASSIFIER_HISTORY_LIMIT:]),
            ),
        ]
        try:
            result = await self._gateway.generate(messages, CLASSIFIER_OPTIONS)
        except UpstreamError as exc:
            raise ClassificationDegraded(reason=f"model call failed: {exc}") from exc
        except Exception as exc:
            logger.exception("Unexpected classifier failure")
            raise ClassificationDegraded(reason=f"model call raised {exc.__class__.__name__}") from exc

        payload = extract_json_object(result.content)
        if payload is None:
            raise ClassificationDegraded(reason="no JSON object in model output")
        try:
            return Intent.model_validate(payload)
        except PydanticValidationError as exc:
            raise ClassificationDegraded(reason=f"invalid intent payload: {exc.error_count()} errors") from exc
