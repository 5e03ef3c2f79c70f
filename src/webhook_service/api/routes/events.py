"""Read-only inspection of webhook events and their delivery attempts."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.utils import paginated_response, pagination_params
from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import EventState
from webhook_service.services.dependencies import get_webhook_service

routes = web.RouteTableDef()


def _parse_state(value: str | None) -> EventState | None:
    if value is None:
        return None
    try:
        return EventState(value)
    except ValueError as exc:
        allowed = ", ".join(s.value for s in EventState)
        raise web.HTTPBadRequest(text=f"state must be one of: {allowed}") from exc


@routes.get("/api/v1/webhooks/events")
async def list_events(request: web.Request):
    service = get_webhook_service(request)
    page = pagination_params(request)
    items, total = await service.list_events(
        state=_parse_state(request.rel_url.query.get("state")),
        event_type=request.rel_url.query.get("type"),
        limit=page.limit,
        offset=page.offset,
    )
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items], page, key="events", total=total
    )
    return web.json_response(payload)


@routes.get("/api/v1/webhooks/events/{event_id}")
async def get_event(request: web.Request):
    service = get_webhook_service(request)
    try:
        event = await service.get_event(request.match_info["event_id"])
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(event.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/events/{event_id}/deliveries")
async def list_event_deliveries(request: web.Request):
    service = get_webhook_service(request)
    event_id = request.match_info["event_id"]
    try:
        await service.get_event(event_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    page = pagination_params(request)
    items, total = await service.list_deliveries(event_id, limit=page.limit, offset=page.offset)
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items], page, key="deliveries", total=total
    )
    return web.json_response(payload)
