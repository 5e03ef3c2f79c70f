"""Webhook domain service: event ingestion, endpoint registration, state queries."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, List

import structlog

from webhook_service.domain.enums import EventSource, EventState
from webhook_service.domain.webhooks import WebhookDelivery, WebhookEndpoint, WebhookEvent
from webhook_service.repositories.webhooks import (
    WebhookDeliveryRepository,
    WebhookEventRepository,
)

if TYPE_CHECKING:
    from webhook_service.services.registry import EndpointRegistry
    from webhook_service.webhooks_dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)

EventListener = Callable[[WebhookEvent], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookService:
    """The engine facade handed to producers.

    Built once at startup with its collaborators; holds no global state.
    """

    def __init__(
        self,
        event_repository: WebhookEventRepository,
        delivery_repository: WebhookDeliveryRepository,
        registry: EndpointRegistry,
        dispatcher: WebhookDispatcher,
        *,
        max_retries: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._events = event_repository
        self._deliveries = delivery_repository
        self._registry = registry
        self._dispatcher = dispatcher
        self._max_retries = max_retries
        self._clock = clock
        self._listeners: List[EventListener] = []

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    @property
    def dispatcher(self) -> WebhookDispatcher:
        return self._dispatcher

    async def start(self) -> None:
        """Load endpoints, re-queue unprocessed events, start the dispatch loop."""
        await self._registry.load()
        await self._dispatcher.recover()
        self._dispatcher.start()

    async def stop(self) -> None:
        await self._dispatcher.stop()

    def add_listener(self, listener: EventListener) -> None:
        """Call *listener* synchronously for every event created in this process."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self._listeners.remove(listener)

    async def create_event(
        self,
        event_type: str,
        data: dict[str, Any],
        source: str | EventSource = EventSource.INTERNAL,
    ) -> WebhookEvent:
        """Persist a new event and queue it for delivery.

        Persistence errors propagate and nothing is queued. An event that is
        persisted but never queued is picked up by recovery on restart.
        """
        if isinstance(source, EventSource):
            source = source.value
        event = WebhookEvent(
            type=event_type,
            source=source,
            data=data,
            timestamp=self._clock(),
            max_retries=self._max_retries,
        )
        try:
            event = await self._events.create(event)
        except Exception:
            logger.exception("webhook_event create failed", event_type=event_type, source=source)
            raise
        self._dispatcher.enqueue(event)
        logger.info(
            "webhook_event created",
            event_id=event.id,
            event_type=event.type,
            source=event.source,
        )

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("webhook_event listener failed", event_id=event.id)
        return event

    async def register_endpoint(
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
        return await self._registry.register(
            url,
            events,
            secret=secret,
            max_retries=max_retries,
            backoff_multiplier=backoff_multiplier,
            initial_delay_ms=initial_delay_ms,
            headers=headers,
        )

    async def update_endpoint(
        self,
        endpoint_id: str,
        *,
        url: str | None = None,
        events: list[str] | None = None,
        is_active: bool | None = None,
        headers: dict[str, str] | None = None,
    ) -> WebhookEndpoint | None:
        return await self._registry.update(
            endpoint_id, url=url, events=events, is_active=is_active, headers=headers
        )

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        return await self._registry.deactivate(endpoint_id)

    async def get_event(self, event_id: str) -> WebhookEvent:
        return await self._events.get(event_id)

    async def list_events(
        self,
        *,
        state: EventState | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[WebhookEvent], int]:
        return await self._events.list_events(
            state=state, event_type=event_type, limit=limit, offset=offset
        )

    async def list_deliveries(
        self, event_id: str, *, limit: int = 50, offset: int = 0
    ) -> tuple[List[WebhookDelivery], int]:
        return await self._deliveries.list_by_event(event_id, limit=limit, offset=offset)
