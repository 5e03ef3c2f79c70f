from webhook_service.repositories.billing import BillingRepository
from webhook_service.repositories.webhooks import (
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
    WebhookEventRepository,
)

__all__ = [
    "BillingRepository",
    "WebhookDeliveryRepository",
    "WebhookEndpointRepository",
    "WebhookEventRepository",
]
