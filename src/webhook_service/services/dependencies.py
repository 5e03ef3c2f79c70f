"""Engine assembly and aiohttp lifecycle hooks / request-scoped accessors."""
# pyright: reportMissingImports=false
from __future__ import annotations

from aiohttp import ClientSession, web
from asyncpg import Pool  # type: ignore[import-untyped]

from service_common.db.pool import get_pool
from webhook_service.repositories import (
    BillingRepository,
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
    WebhookEventRepository,
)
from webhook_service.services.providers import ProviderCallbackGateway, StripeSideEffects
from webhook_service.services.registry import EndpointRegistry
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import Settings, settings
from webhook_service.webhooks_dispatcher import WebhookDispatcher

_WEBHOOK_SESSION_KEY = "webhook_http_session"
_WEBHOOK_SERVICE_KEY = "webhook_service"
_PROVIDER_GATEWAY_KEY = "provider_callback_gateway"


def build_webhook_service(pool: Pool, session: ClientSession, config: Settings) -> WebhookService:
    """Wire repositories, registry and dispatcher into one engine instance."""
    events = WebhookEventRepository(pool)
    deliveries = WebhookDeliveryRepository(pool)
    registry = EndpointRegistry(WebhookEndpointRepository(pool))
    dispatcher = WebhookDispatcher(
        registry,
        events,
        deliveries,
        session,
        batch_size=config.webhook_dispatch_batch_size,
        interval_seconds=config.webhook_dispatch_interval_seconds,
        request_timeout_seconds=config.webhook_request_timeout_seconds,
        user_agent=config.webhook_user_agent,
        response_body_limit=config.webhook_response_body_limit,
    )
    return WebhookService(
        events,
        deliveries,
        registry,
        dispatcher,
        max_retries=config.webhook_default_max_retries,
    )


def build_provider_gateway(
    pool: Pool, webhook_service: WebhookService, config: Settings
) -> ProviderCallbackGateway:
    return ProviderCallbackGateway(
        webhook_service,
        config.provider_webhook_secrets,
        side_effects={"stripe": StripeSideEffects(BillingRepository(pool), webhook_service)},
    )


async def start_webhook_engine(app: web.Application) -> None:
    """Build and start the engine. Register with ``app.on_startup`` after the pool."""
    pool = await get_pool()
    session = ClientSession()
    service = build_webhook_service(pool, session, settings)
    app[_WEBHOOK_SESSION_KEY] = session
    app[_WEBHOOK_SERVICE_KEY] = service
    app[_PROVIDER_GATEWAY_KEY] = build_provider_gateway(pool, service, settings)
    await service.start()


async def stop_webhook_engine(app: web.Application) -> None:
    service = app.get(_WEBHOOK_SERVICE_KEY)
    if service is not None:
        await service.stop()
    session = app.get(_WEBHOOK_SESSION_KEY)
    if session is not None:
        await session.close()


def install_webhook_engine(
    app: web.Application,
    service: WebhookService,
    gateway: ProviderCallbackGateway,
) -> None:
    """Attach an already-built engine (used when the caller owns its lifecycle)."""
    app[_WEBHOOK_SERVICE_KEY] = service
    app[_PROVIDER_GATEWAY_KEY] = gateway


def get_webhook_service(request: web.Request) -> WebhookService:
    return request.app[_WEBHOOK_SERVICE_KEY]


def get_provider_gateway(request: web.Request) -> ProviderCallbackGateway:
    return request.app[_PROVIDER_GATEWAY_KEY]


def engine_health(app: web.Application) -> dict[str, object]:
    """Queue depth and endpoint count for ``/health``."""
    service: WebhookService | None = app.get(_WEBHOOK_SERVICE_KEY)
    if service is None:
        return {"engine": "unavailable"}
    return {
        "engine": "ready",
        "pending_events": service.dispatcher.pending_count,
        "active_endpoints": len(service.registry),
    }
