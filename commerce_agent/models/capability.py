from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CapabilityDescriptor(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class CapabilityContext(BaseModel):
    """Cross-cutting data forwarded with every capability call."""

    identity_credential: Optional[str] = None
    cart_reference: Optional[str] = None


class CapabilityResult(BaseModel):
    capability_name: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, name: str, data: Any, message: str | None = None) -> "CapabilityResult":
        return cls(capability_name=name, success=True, data=data, message=message)

    @classmethod
    def failed(cls, name: str, error: str) -> "CapabilityResult":
        return cls(capability_name=name, success=False, error=error)
