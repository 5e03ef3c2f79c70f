"""Inbound payment provider callbacks."""
from __future__ import annotations

from aiohttp import web

from webhook_service.core.exceptions import (
    InvalidPayloadError,
    SignatureVerificationError,
    UnknownProviderError,
)
from webhook_service.services.dependencies import get_provider_gateway

routes = web.RouteTableDef()


@routes.post("/api/v1/webhooks/{provider}")
async def receive_provider_callback(request: web.Request):
    provider = request.match_info["provider"].lower()
    gateway = get_provider_gateway(request)
    if not gateway.supports(provider):
        raise web.HTTPNotFound(text=f"Unknown webhook provider: {provider}")
    raw_body = await request.read()
    signature = request.headers.get(f"{provider}-signature")
    if not signature:
        raise web.HTTPBadRequest(text=f"Missing {provider} signature")
    try:
        event = await gateway.handle(provider, raw_body, signature)
    except UnknownProviderError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except (SignatureVerificationError, InvalidPayloadError) as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response({"received": True, "id": event.id})
