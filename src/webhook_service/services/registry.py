"""In-memory index of active endpoints, written through to persistence."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List
from urllib.parse import urlparse

import structlog

from webhook_service.core.exceptions import NotFoundError, ValidationError
from webhook_service.domain.webhooks import RetryPolicy, WebhookEndpoint
from webhook_service.repositories.webhooks import WebhookEndpointRepository
from webhook_service.services.signing import generate_secret

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_events(events: list[str]) -> list[str]:
    normalized = list(dict.fromkeys(e.strip() for e in events if e and e.strip()))
    if not normalized:
        raise ValidationError("events must be a non-empty list")
    return normalized


def _validate_url(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise ValidationError(f"Invalid endpoint url: {url!r}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid endpoint url: {url!r}")
    return url


class EndpointRegistry:
    """Active endpoints by id.

    Every mutation persists first and only then touches the index, so a
    failed write leaves memory consistent with the store.
    """

    def __init__(
        self,
        repository: WebhookEndpointRepository,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repository = repository
        self._clock = clock
        self._endpoints: dict[str, WebhookEndpoint] = {}

    async def load(self) -> int:
        """Rebuild the index from persistence. Returns the number of endpoints loaded."""
        endpoints = await self._repository.list_active()
        self._endpoints = {endpoint.id: endpoint for endpoint in endpoints}
        logger.info("webhook_endpoints loaded", count=len(self._endpoints))
        return len(self._endpoints)

    async def register(
        self,
        url: str,
        events: list[str],
        *,
        secret: str | None = None,
        max_retries: int | None = None,
        backoff_multiplier: float | None = None,
        initial_delay_ms: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> WebhookEndpoint:
        defaults = RetryPolicy()
        now = self._clock()
        endpoint = WebhookEndpoint(
            url=_validate_url(url),
            events=_normalize_events(events),
            secret=secret or generate_secret(),
            retry_policy=RetryPolicy(
                max_retries=max_retries or defaults.max_retries,
                backoff_multiplier=backoff_multiplier or defaults.backoff_multiplier,
                initial_delay_ms=initial_delay_ms or defaults.initial_delay_ms,
            ),
            headers=headers,
            created_at=now,
            updated_at=now,
        )
        endpoint = await self._repository.create(endpoint)
        self._endpoints[endpoint.id] = endpoint
        logger.info(
            "webhook_endpoint registered",
            endpoint_id=endpoint.id,
            url=endpoint.url,
            events=endpoint.events,
        )
        return endpoint

    async def update(
        self,
        endpoint_id: str,
        *,
        url: str | None = None,
        events: list[str] | None = None,
        is_active: bool | None = None,
        headers: dict[str, str] | None = None,
    ) -> WebhookEndpoint | None:
        """Apply a partial update. Returns ``None`` for an unknown endpoint."""
        current = self._endpoints.get(endpoint_id)
        if current is None:
            # inactive endpoints are only in the store
            try:
                current = await self._repository.get(endpoint_id)
            except NotFoundError:
                return None
        changes: dict[str, object] = {"updated_at": self._clock()}
        if url:
            changes["url"] = _validate_url(url)
        if events:
            changes["events"] = _normalize_events(events)
        if is_active is not None:
            changes["is_active"] = is_active
        if headers is not None:
            changes["headers"] = headers
        updated = current.model_copy(update=changes)

        await self._repository.update(updated)
        if updated.is_active:
            self._endpoints[endpoint_id] = updated
        else:
            self._endpoints.pop(endpoint_id, None)
        logger.info(
            "webhook_endpoint updated",
            endpoint_id=endpoint_id,
            fields=sorted(k for k in changes if k != "updated_at"),
        )
        return updated

    async def deactivate(self, endpoint_id: str) -> bool:
        """Soft-delete an endpoint. Returns ``False`` if it is unknown or already inactive."""
        if endpoint_id not in self._endpoints:
            return False
        await self.update(endpoint_id, is_active=False)
        logger.info("webhook_endpoint deactivated", endpoint_id=endpoint_id)
        return True

    def get(self, endpoint_id: str) -> WebhookEndpoint | None:
        return self._endpoints.get(endpoint_id)

    def matching(self, event_type: str) -> List[WebhookEndpoint]:
        return [e for e in self._endpoints.values() if e.subscribes_to(event_type)]

    def __len__(self) -> int:
        return len(self._endpoints)
