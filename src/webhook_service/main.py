"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web

from service_common.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from service_common.db.migrations import create_migration_runner
from service_common.db.pool import create_pool_hooks
from service_common.logging_config import configure_logging

from webhook_service.api.router import setup_routes
from webhook_service.otel import setup_otel, shutdown_otel
from webhook_service.services.dependencies import (
    engine_health,
    install_webhook_engine,
    start_webhook_engine,
    stop_webhook_engine,
)
from webhook_service.services.providers import ProviderCallbackGateway
from webhook_service.services.webhooks import WebhookService
from webhook_service.settings import settings
from webhook_service.workers import start_background_worker, stop_background_worker

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
MIGRATIONS_PATHS = [
    PROJECT_ROOT / "migrations",
    Path("/app/migrations"),
]


def create_app(
    *,
    webhook_service: WebhookService | None = None,
    provider_gateway: ProviderCallbackGateway | None = None,
) -> web.Application:
    """Build the application.

    When an engine is passed in, the caller owns its lifecycle and no
    database hooks are installed.
    """
    tracing = setup_otel()
    app, cors = create_base_app(settings)
    add_healthcheck(app, settings, engine_health)
    setup_routes(app)

    if webhook_service is not None and provider_gateway is not None:
        install_webhook_engine(app, webhook_service, provider_gateway)
    else:
        init_pool, close_pool = create_pool_hooks(settings)
        app.on_startup.append(init_pool)
        app.on_startup.append(create_migration_runner(settings, MIGRATIONS_PATHS))
        app.on_startup.append(start_webhook_engine)
        app.on_startup.append(start_background_worker)
        app.on_cleanup.append(stop_background_worker)
        app.on_cleanup.append(stop_webhook_engine)
        app.on_cleanup.append(close_pool)

    if tracing:
        app.on_cleanup.append(shutdown_otel)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    configure_logging(settings.log_level)
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
