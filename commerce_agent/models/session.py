from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserType(StrEnum):
    GUEST = "guest"
    AUTHENTICATED = "authenticated"


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


class Message(BaseModel):
    """Single conversation turn. Frozen once appended to a session."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    tools_used: Optional[List[str]] = None
    intent: Optional[str] = None


class Session(BaseModel):
    """Server-held conversation state keyed by ``session_id``."""

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_type: UserType = UserType.GUEST
    identity_credential: Optional[str] = None
    cart_reference: Optional[str] = None
    history: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
