from webhook_service.services.providers import ProviderCallbackGateway, StripeSideEffects
from webhook_service.services.registry import EndpointRegistry
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "EndpointRegistry",
    "ProviderCallbackGateway",
    "StripeSideEffects",
    "WebhookService",
]
