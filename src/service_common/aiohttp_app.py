"""Shared aiohttp application helpers."""
from __future__ import annotations

from typing import Any, Callable, Literal, Protocol

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from service_common.middleware.trace import create_trace_middleware

_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
)

_ALLOWED_METHODS = ("GET", "HEAD", "POST", "OPTIONS")

_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")


class SettingsProtocol(Protocol):
    app_name: str
    env: Literal["development", "staging", "production"]
    cors_allowed_origins: list[str]


def create_base_app(settings: SettingsProtocol) -> tuple[web.Application, CorsConfig]:
    """Create an aiohttp app with tracing middleware and CORS defaults."""
    app = web.Application(middlewares=[create_trace_middleware(settings.app_name)])
    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )
    return app, cors


def add_healthcheck(
    app: web.Application,
    settings: SettingsProtocol,
    details: Callable[[web.Application], dict[str, Any]] | None = None,
) -> None:
    """Register ``GET /health``. *details* adds service-specific fields to the body."""

    async def healthcheck(request: web.Request) -> web.Response:
        body: dict[str, Any] = {"status": "ok", "service": settings.app_name, "env": settings.env}
        if details is not None:
            body.update(details(request.app))
        return web.json_response(body)

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    """Apply CORS configuration to all routes registered so far."""
    for route in list(app.router.routes()):
        cors.add(route)
