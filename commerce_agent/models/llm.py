from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

LLMRole = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """Role-tagged message sent to a language model provider."""

    role: LLMRole
    content: str


class GenerationOptions(BaseModel):
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1000, gt=0)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: int | None, completion_tokens: int | None) -> "TokenUsage":
        prompt = int(prompt_tokens or 0)
        completion = int(completion_tokens or 0)
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


class LLMResult(BaseModel):
    """Normalized generation result, identical for every provider."""

    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: Optional[str] = None
    provider: Optional[str] = None
