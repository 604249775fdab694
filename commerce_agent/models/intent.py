from __future__ import annotations

from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from ..intents import IntentType


class Intent(BaseModel):
    """Classifier output for a single turn. Never persisted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: IntentType
    suggested_capabilities: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "suggested_capabilities",
            "suggestedCapabilities",
            "suggestedTools",
            "suggested_tools",
        ),
    )
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def requires_tools(self) -> bool:
        return bool(self.suggested_capabilities)
