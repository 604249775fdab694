from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..intents import CapabilityName, IntentType
from .capability import CapabilityContext, CapabilityDescriptor, CapabilityResult
from .intent import Intent
from .llm import ChatMessage, GenerationOptions, LLMResult, TokenUsage
from .session import Message, MessageRole, Session, UserType


class ChatOverrides(BaseModel):
    """Per-request backend/provider overrides accepted by the chat endpoint."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tool_mode: Optional[str] = Field(default=None, alias="toolMode")
    llm_provider: Optional[str] = Field(default=None, alias="llmProvider")
    ollama_model: Optional[str] = Field(default=None, alias="ollamaModel")
    openai_model: Optional[str] = Field(default=None, alias="openaiModel")
    claude_model: Optional[str] = Field(default=None, alias="claudeModel")
    gemini_model: Optional[str] = Field(default=None, alias="geminiModel")

    def as_settings_update(self) -> Dict[str, Any]:
        return {key: value for key, value in self.model_dump().items() if value}


class ChatRequest(ChatOverrides):
    # Optional so the endpoint can answer a missing message with its own 400 envelope.
    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    customer_token: Optional[str] = Field(default=None, alias="customerToken")
    cart_id: Optional[str] = Field(default=None, alias="cartId")

    def overrides(self) -> ChatOverrides:
        return ChatOverrides(**{name: getattr(self, name) for name in ChatOverrides.model_fields})


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    response: str
    session_id: str = Field(alias="sessionId")
    user_type: UserType = Field(alias="userType")
    tools_used: List[str] = Field(default_factory=list, alias="toolsUsed")
    intent: str
    cart_id: Optional[str] = Field(default=None, alias="cartId")
    usage: Optional[TokenUsage] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    stack: Optional[str] = None


class TurnResult(BaseModel):
    """Outcome of one orchestrated turn before it is written to history."""

    response_text: str
    tools_used: List[str] = Field(default_factory=list)
    intent_type: IntentType
    usage: TokenUsage = Field(default_factory=TokenUsage)
    capability_results: List[CapabilityResult] = Field(default_factory=list)
    cart_reference: Optional[str] = None


__all__ = [
    "CapabilityContext",
    "CapabilityDescriptor",
    "CapabilityName",
    "CapabilityResult",
    "ChatMessage",
    "ChatOverrides",
    "ChatRequest",
    "ChatResponse",
    "ErrorResponse",
    "GenerationOptions",
    "Intent",
    "IntentType",
    "LLMResult",
    "Message",
    "MessageRole",
    "Session",
    "TokenUsage",
    "TurnResult",
    "UserType",
]
