"""API router composition for aiohttp."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.routes import events, providers

# literal paths before the {provider} catch-all
ROUTE_MODULES = [
    events,
    providers,
]


def setup_routes(app: web.Application) -> None:
    """Attach webhook routes to the aiohttp application."""
    for module in ROUTE_MODULES:
        app.add_routes(module.routes)
