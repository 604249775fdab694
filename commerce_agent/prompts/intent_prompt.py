from __future__ import annotations

import json
from typing import Sequence

from ..intents import CapabilityName, intent_descriptions
from ..models.session import Message, MessageRole

_JSON_FORMAT = {
    "type": "intent_type",
    "suggestedCapabilities": ["capability_1", "capability_2"],
    "parameters": {},
}


def build_intent_system_prompt() -> str:
    """Instruction for the classification call: closed vocabulary, strict JSON."""

    intents = "\n".join(f"- {name}: {description}" for name, description in intent_descriptions().items())
    capabilities = ", ".join(name.value for name in CapabilityName)
    return (
        "Analyze the user's message and determine their intent. Respond ONLY with valid JSON.\n\n"
        f"Intent types:\n{intents}\n\n"
        f"Available capabilities (in execution order when several are needed): {capabilities}.\n"
        "List capabilities in suggestedCapabilities only when backend data is required; leave it empty "
        "for greetings and general questions. If the user wants to add a product and has no cart yet, "
        "suggest create_cart before add_to_cart. Put extracted arguments (query, sku, quantity, "
        "cartItemId) into parameters.\n\n"
        f"JSON format:\n{json.dumps(_JSON_FORMAT, indent=2)}"
    )


def build_intent_user_prompt(user_message: str, recent_history: Sequence[Message] = ()) -> str:
    lines = []
    context = [m for m in recent_history if m.role in (MessageRole.USER, MessageRole.ASSISTANT)]
    if context:
        lines.append("Recent conversation:")
        lines.extend(f"{message.role.value}: {message.content}" for message in context)
        lines.append("")
    lines.append(f'User message: "{user_message}"')
    return "\n".join(lines)
