"""Webhook repositories (events, endpoints, delivery audit log)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Tuple

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import EventState
from webhook_service.domain.webhooks import WebhookDelivery, WebhookEndpoint, WebhookEvent
from webhook_service.repositories.base import BaseRepository

_STATE_FILTERS = {
    EventState.PENDING: "processed = false",
    EventState.PROCESSED: "processed = true AND error IS NULL",
    EventState.FAILED: "processed = true AND error IS NOT NULL",
}


class WebhookEventRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    def _to_model(self, record: Record) -> WebhookEvent:
        return WebhookEvent.model_validate(self._load_json(dict(record), "data"))

    async def create(self, event: WebhookEvent) -> WebhookEvent:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_events (
                id, type, source, data, timestamp, processed,
                processed_at, retry_count, max_retries, next_retry_at, error
            )
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8, $9, $10, $11)
            RETURNING *
            """,
            event.id,
            event.type,
            event.source,
            self._dump_json(event.data),
            event.timestamp,
            event.processed,
            event.processed_at,
            event.retry_count,
            event.max_retries,
            event.next_retry_at,
            event.error,
        )
        assert record is not None
        return self._to_model(record)

    async def update_state(self, event: WebhookEvent) -> None:
        """Persist the mutable processing state of *event*."""
        status = await self._execute(
            """
            UPDATE webhook_events
            SET processed = $2,
                processed_at = $3,
                retry_count = $4,
                next_retry_at = $5,
                error = $6
            WHERE id = $1
            """,
            event.id,
            event.processed,
            event.processed_at,
            event.retry_count,
            event.next_retry_at,
            event.error,
        )
        if self._affected(status) == 0:
            raise NotFoundError("Webhook event not found")

    async def get(self, event_id: str) -> WebhookEvent:
        record = await self._fetchrow("SELECT * FROM webhook_events WHERE id = $1", event_id)
        if record is None:
            raise NotFoundError("Webhook event not found")
        return self._to_model(record)

    async def list_unprocessed(
        self,
        *,
        limit: int = 1000,
        after: Tuple[datetime, str] | None = None,
    ) -> List[WebhookEvent]:
        """Oldest-first page of pending events, keyset-paginated on (timestamp, id)."""
        if after is None:
            records = await self._fetch(
                """
                SELECT *
                FROM webhook_events
                WHERE processed = false
                ORDER BY timestamp ASC, id ASC
                LIMIT $1
                """,
                limit,
            )
        else:
            records = await self._fetch(
                """
                SELECT *
                FROM webhook_events
                WHERE processed = false AND (timestamp, id) > ($2, $3)
                ORDER BY timestamp ASC, id ASC
                LIMIT $1
                """,
                limit,
                after[0],
                after[1],
            )
        return [self._to_model(r) for r in records]

    async def list_events(
        self,
        *,
        state: EventState | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookEvent], int]:
        where = ["true"]
        values: list[Any] = []
        if state is not None:
            where.append(_STATE_FILTERS[state])
        if event_type is not None:
            values.append(event_type)
            where.append(f"type = ${len(values)}")
        where_sql = " AND ".join(where)
        idx = len(values) + 1
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_events
            WHERE {where_sql}
            ORDER BY timestamp DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            limit,
            offset,
        )
        items: List[WebhookEvent] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(WebhookEvent.model_validate(self._load_json(rec_dict, "data")))
        if total is None:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_events WHERE {where_sql}", *values
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def delete_processed_before(self, cutoff: datetime) -> int:
        """Delete processed events created before *cutoff*. Returns count."""
        status = await self._execute(
            "DELETE FROM webhook_events WHERE processed = true AND timestamp < $1",
            cutoff,
        )
        return self._affected(status)


class WebhookEndpointRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    def _to_model(self, record: Record) -> WebhookEndpoint:
        payload = self._load_json(dict(record), "events", "retry_policy", "headers")
        return WebhookEndpoint.model_validate(payload)

    async def create(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_endpoints (
                id, url, events, secret, is_active, retry_policy, headers, created_at, updated_at
            )
            VALUES ($1, $2, $3::jsonb, $4, $5, $6::jsonb, $7::jsonb, $8, $9)
            RETURNING *
            """,
            endpoint.id,
            endpoint.url,
            self._dump_json(endpoint.events),
            endpoint.secret,
            endpoint.is_active,
            self._dump_json(endpoint.retry_policy.model_dump()),
            self._dump_json(endpoint.headers),
            endpoint.created_at,
            endpoint.updated_at,
        )
        assert record is not None
        return self._to_model(record)

    async def update(self, endpoint: WebhookEndpoint) -> None:
        status = await self._execute(
            """
            UPDATE webhook_endpoints
            SET url = $2,
                events = $3::jsonb,
                is_active = $4,
                headers = $5::jsonb,
                updated_at = $6
            WHERE id = $1
            """,
            endpoint.id,
            endpoint.url,
            self._dump_json(endpoint.events),
            endpoint.is_active,
            self._dump_json(endpoint.headers),
            endpoint.updated_at,
        )
        if self._affected(status) == 0:
            raise NotFoundError("Webhook endpoint not found")

    async def get(self, endpoint_id: str) -> WebhookEndpoint:
        record = await self._fetchrow("SELECT * FROM webhook_endpoints WHERE id = $1", endpoint_id)
        if record is None:
            raise NotFoundError("Webhook endpoint not found")
        return self._to_model(record)

    async def list_active(self) -> List[WebhookEndpoint]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_endpoints
            WHERE is_active = true
            ORDER BY created_at ASC
            """
        )
        return [self._to_model(r) for r in records]


class WebhookDeliveryRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    def _to_model(self, record: Record) -> WebhookDelivery:
        return WebhookDelivery.model_validate(self._load_json(dict(record), "response_headers"))

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                id, webhook_id, event_id, url, http_status, response_body,
                response_headers, delivered_at, error, retry_count, next_retry_at, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11, $12)
            RETURNING *
            """,
            delivery.id,
            delivery.webhook_id,
            delivery.event_id,
            delivery.url,
            delivery.http_status,
            delivery.response_body,
            self._dump_json(delivery.response_headers),
            delivery.delivered_at,
            delivery.error,
            delivery.retry_count,
            delivery.next_retry_at,
            delivery.created_at,
        )
        assert record is not None
        return self._to_model(record)

    async def list_by_event(
        self, event_id: str, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[WebhookDelivery], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE event_id = $1
            ORDER BY created_at ASC
            LIMIT $2 OFFSET $3
            """,
            event_id,
            limit,
            offset,
        )
        items: List[WebhookDelivery] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(
                WebhookDelivery.model_validate(self._load_json(rec_dict, "response_headers"))
            )
        if total is None:
            record = await self._fetchrow(
                "SELECT COUNT(*) AS total FROM webhook_deliveries WHERE event_id = $1",
                event_id,
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def delete_created_before(self, cutoff: datetime) -> int:
        """Delete deliveries created before *cutoff*, whatever their outcome."""
        status = await self._execute(
            "DELETE FROM webhook_deliveries WHERE created_at < $1",
            cutoff,
        )
        return self._affected(status)
