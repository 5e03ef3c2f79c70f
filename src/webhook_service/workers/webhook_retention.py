"""Worker: purge processed webhook events and old delivery records."""
from __future__ import annotations

from datetime import datetime, timedelta

from service_common.db.pool import get_pool

from webhook_service.repositories.webhooks import (
    WebhookDeliveryRepository,
    WebhookEventRepository,
)
from webhook_service.settings import settings


async def webhook_retention_sweep(now: datetime) -> str | None:
    """Delete processed events and all deliveries older than ``webhook_retention_days``."""
    pool = await get_pool()
    cutoff = now - timedelta(days=settings.webhook_retention_days)
    events = await WebhookEventRepository(pool).delete_processed_before(cutoff)
    deliveries = await WebhookDeliveryRepository(pool).delete_created_before(cutoff)
    if not events and not deliveries:
        return None
    return f"events={events} deliveries={deliveries}"
