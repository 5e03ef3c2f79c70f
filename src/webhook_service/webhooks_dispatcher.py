"""Background webhook dispatcher: drains pending events and delivers HTTP POSTs."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout
from opentelemetry.trace import Status, StatusCode

from webhook_service.domain.webhooks import (
    MAX_RETRIES_EXCEEDED,
    WebhookDelivery,
    WebhookEndpoint,
    WebhookEvent,
)
from webhook_service.otel import get_tracer
from webhook_service.repositories.webhooks import (
    WebhookDeliveryRepository,
    WebhookEventRepository,
)
from webhook_service.services.registry import EndpointRegistry
from webhook_service.services.signing import encode_payload, sign_payload

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 300_000


def backoff_delay_ms(retry_count: int) -> int:
    """Delay before the next attempt once *retry_count* attempts have failed."""
    return min(2**retry_count * BACKOFF_BASE_MS, BACKOFF_CAP_MS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    """Tick-driven fan-out of pending events to matching endpoints.

    The pending queue is owned by the event loop thread; producers call
    :meth:`enqueue`, the loop calls :meth:`tick`. Ticks never overlap.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        event_repository: WebhookEventRepository,
        delivery_repository: WebhookDeliveryRepository,
        session: ClientSession,
        *,
        batch_size: int = 10,
        interval_seconds: float = 1.0,
        request_timeout_seconds: float = 30.0,
        user_agent: str = "LiveStreaming-Webhook/1.0",
        response_body_limit: int = 10_000,
        recovery_page_size: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._registry = registry
        self._events = event_repository
        self._deliveries = delivery_repository
        self._session = session
        self._batch_size = batch_size
        self._interval = interval_seconds
        self._timeout = ClientTimeout(total=request_timeout_seconds)
        self._user_agent = user_agent
        self._body_limit = response_body_limit
        self._recovery_page_size = recovery_page_size
        self._clock = clock
        # insertion-ordered, keyed by event id so recovery never double-queues
        self._pending: dict[str, WebhookEvent] = {}
        self._busy = False
        self._task: asyncio.Task[None] | None = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def enqueue(self, event: WebhookEvent) -> None:
        if event.processed:
            return
        self._pending.setdefault(event.id, event)

    async def recover(self) -> int:
        """Queue every unprocessed event found in persistence. Returns the number added."""
        before = len(self._pending)
        cursor = None
        while True:
            page = await self._events.list_unprocessed(
                limit=self._recovery_page_size, after=cursor
            )
            for event in page:
                self.enqueue(event)
            if len(page) < self._recovery_page_size:
                break
            cursor = (page[-1].timestamp, page[-1].id)
        recovered = len(self._pending) - before
        if recovered:
            logger.info("webhook_events recovered", count=recovered)
        return recovered

    def _take_due(self, now: datetime) -> List[WebhookEvent]:
        batch: List[WebhookEvent] = []
        for event_id, event in list(self._pending.items()):
            if len(batch) >= self._batch_size:
                break
            if event.is_due(now):
                batch.append(self._pending.pop(event_id))
        return batch

    async def tick(self) -> int:
        """Process one batch of due events. Returns how many events were handled."""
        if self._busy:
            return 0
        self._busy = True
        try:
            batch = self._take_due(self._clock())
            if not batch:
                return 0
            results = await asyncio.gather(
                *(self._process_event(event) for event in batch), return_exceptions=True
            )
            for event, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(
                        "webhook_event processing failed",
                        event_id=event.id,
                        error=str(result),
                        exc_info=result,
                    )
                    self.enqueue(event)
            return len(batch)
        finally:
            self._busy = False

    async def _process_event(self, event: WebhookEvent) -> None:
        endpoints = self._registry.matching(event.type)
        now = self._clock()
        if not endpoints:
            updated = event.model_copy(update={"processed": True, "processed_at": now})
            await self._save(event, updated)
            return

        deliveries = await asyncio.gather(
            *(self._deliver(event, endpoint) for endpoint in endpoints)
        )
        updated = self._reconcile(event, [d.succeeded for d in deliveries])
        await self._save(event, updated)

    def _reconcile(self, event: WebhookEvent, outcomes: List[bool]) -> WebhookEvent:
        now = self._clock()
        if all(outcomes):
            return event.model_copy(
                update={"processed": True, "processed_at": now, "next_retry_at": None}
            )

        retry_count = event.retry_count + 1
        if retry_count >= event.max_retries:
            logger.warning(
                "webhook_event exhausted",
                event_id=event.id,
                event_type=event.type,
                retry_count=retry_count,
            )
            return event.model_copy(
                update={
                    "retry_count": retry_count,
                    "processed": True,
                    "processed_at": now,
                    "next_retry_at": None,
                    "error": MAX_RETRIES_EXCEEDED,
                }
            )

        next_retry_at = now + timedelta(milliseconds=backoff_delay_ms(retry_count))
        logger.info(
            "webhook_event retry scheduled",
            event_id=event.id,
            retry_count=retry_count,
            next_retry_at=next_retry_at.isoformat(),
        )
        return event.model_copy(
            update={"retry_count": retry_count, "next_retry_at": next_retry_at}
        )

    async def _save(self, previous: WebhookEvent, updated: WebhookEvent) -> None:
        """Persist *updated*; on failure the previous state goes back to the queue."""
        try:
            await self._events.update_state(updated)
        except Exception:
            logger.exception("webhook_event state not persisted", event_id=updated.id)
            self.enqueue(previous)
            return
        self.enqueue(updated)

    async def _deliver(self, event: WebhookEvent, endpoint: WebhookEndpoint) -> WebhookDelivery:
        body = encode_payload(event)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "X-Webhook-Signature": sign_payload(body, endpoint.secret),
            "X-Webhook-Event-Type": event.type,
            "X-Webhook-Event-Id": event.id,
            **(endpoint.headers or {}),
        }
        delivery = WebhookDelivery(
            webhook_id=endpoint.id,
            event_id=event.id,
            url=endpoint.url,
            retry_count=event.retry_count,
            created_at=self._clock(),
        )
        with tracer.start_as_current_span(
            "webhook.deliver",
            attributes={
                "webhook.event_id": event.id,
                "webhook.event_type": event.type,
                "webhook.endpoint_id": endpoint.id,
                "webhook.retry_count": event.retry_count,
            },
        ) as span:
            try:
                async with self._session.post(
                    endpoint.url, data=body, headers=headers, timeout=self._timeout
                ) as resp:
                    text = await resp.text(errors="replace")
                    delivery.http_status = resp.status
                    delivery.response_headers = dict(resp.headers)
                    delivery.response_body = text[: self._body_limit]
                    delivery.delivered_at = self._clock()
                    span.set_attribute("http.status_code", resp.status)
                    if not 200 <= resp.status < 300:
                        delivery.error = f"HTTP {resp.status}: {resp.reason}"
            except asyncio.TimeoutError:
                delivery.error = f"Request timed out after {self._timeout.total}s"
            except (ClientError, ValueError) as exc:
                delivery.error = str(exc) or type(exc).__name__
            if delivery.error:
                span.set_status(Status(StatusCode.ERROR, delivery.error))

        log = logger.info if delivery.succeeded else logger.warning
        log(
            "webhook delivered" if delivery.succeeded else "webhook delivery failed",
            delivery_id=delivery.id,
            event_id=event.id,
            event_type=event.type,
            endpoint_id=endpoint.id,
            url=endpoint.url,
            http_status=delivery.http_status,
            error=delivery.error,
        )

        try:
            return await self._deliveries.create(delivery)
        except Exception:
            logger.exception("webhook_delivery not recorded", delivery_id=delivery.id)
            # an unrecorded attempt is retried so the audit trail stays complete
            return delivery.model_copy(update={"error": delivery.error or "Delivery not recorded"})

    async def _loop(self) -> None:
        logger.info(
            "webhook_dispatcher started",
            interval_seconds=self._interval,
            batch_size=self._batch_size,
        )
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.tick()
            except asyncio.CancelledError:
                logger.info("webhook_dispatcher stopped")
                raise
            except Exception:
                logger.exception("webhook_dispatcher tick failed")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
