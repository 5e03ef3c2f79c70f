"""Data transfer objects for inbound provider callbacks."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProviderEventDTO(BaseModel):
    """A provider callback body (Stripe event envelope shape)."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> dict[str, Any]:
        """The resource the event is about (``data.object``)."""
        value = self.data.get("object")
        return value if isinstance(value, dict) else {}
