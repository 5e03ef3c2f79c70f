"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

MAX_RETRIES_EXCEEDED = "Max retries exceeded"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


class WebhookEvent(BaseModel):
    """A fact to be fanned out to every subscribed endpoint."""

    id: str = Field(default_factory=lambda: new_id("evt"))
    type: str
    source: str = "internal"
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    processed: bool = False
    processed_at: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: datetime | None = None
    error: str | None = None

    def is_due(self, now: datetime) -> bool:
        return not self.processed and (self.next_retry_at is None or self.next_retry_at <= now)

    @property
    def is_exhausted(self) -> bool:
        return self.processed and self.error is not None


class RetryPolicy(BaseModel):
    max_retries: int = 3
    backoff_multiplier: float = 2
    initial_delay_ms: int = 1000


class WebhookEndpoint(BaseModel):
    """A registered delivery target."""

    id: str = Field(default_factory=lambda: new_id("wh"))
    url: str
    events: list[str] = Field(default_factory=list)
    secret: str
    is_active: bool = True
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    headers: dict[str, str] | None = None
    created_at: datetime
    updated_at: datetime

    def subscribes_to(self, event_type: str) -> bool:
        return self.is_active and event_type in self.events


class WebhookDelivery(BaseModel):
    """One attempt of one event to one endpoint. Never mutated once stored."""

    id: str = Field(default_factory=lambda: new_id("del"))
    webhook_id: str
    event_id: str
    url: str
    http_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    delivered_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None
    created_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.http_status is not None and 200 <= self.http_status < 300
