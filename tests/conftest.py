"""Pytest configuration and fixtures."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import pytest
from aiohttp import ClientSession, web

from tests.fakes import (
    InMemoryDeliveryRepository,
    InMemoryEndpointRepository,
    InMemoryEventRepository,
    ManualClock,
)
from webhook_service.services.registry import EndpointRegistry
from webhook_service.services.webhooks import WebhookService
from webhook_service.webhooks_dispatcher import WebhookDispatcher

REQUEST_TIMEOUT_SECONDS = 0.3


@dataclass
class ReceivedRequest:
    name: str
    headers: dict[str, str]
    raw: bytes

    @property
    def body(self) -> dict[str, Any]:
        return json.loads(self.raw.decode("utf-8"))


@dataclass
class Receiver:
    """Local HTTP server standing in for registered endpoints.

    Each path ``/<name>`` answers with the configured status, optionally after
    holding the request for ``delay`` seconds.
    """

    base_url: str = ""
    received: list[ReceivedRequest] = field(default_factory=list)
    statuses: dict[str, int] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    release: asyncio.Event = field(default_factory=asyncio.Event)

    def url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    def requests_for(self, name: str) -> list[ReceivedRequest]:
        return [r for r in self.received if r.name == name]

    async def handler(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        self.received.append(ReceivedRequest(name, dict(request.headers), await request.read()))
        delay = self.delays.get(name)
        if delay:
            try:
                await asyncio.wait_for(self.release.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        status = self.statuses.get(name, 200)
        return web.Response(status=status, text="ok" if status < 400 else "boom")


@pytest.fixture
async def receiver():
    recv = Receiver()
    app = web.Application()
    app.router.add_post("/{name}", recv.handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    recv.base_url = f"http://127.0.0.1:{port}"
    try:
        yield recv
    finally:
        recv.release.set()
        await runner.cleanup()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
async def http_session():
    session = ClientSession()
    try:
        yield session
    finally:
        await session.close()


@dataclass
class Engine:
    service: WebhookService
    registry: EndpointRegistry
    dispatcher: WebhookDispatcher
    events: InMemoryEventRepository
    endpoints: InMemoryEndpointRepository
    deliveries: InMemoryDeliveryRepository
    clock: ManualClock


@pytest.fixture
def engine(clock, http_session) -> Engine:
    events = InMemoryEventRepository()
    endpoints = InMemoryEndpointRepository()
    deliveries = InMemoryDeliveryRepository()
    registry = EndpointRegistry(endpoints, clock=clock)
    dispatcher = WebhookDispatcher(
        registry,
        events,
        deliveries,
        http_session,
        batch_size=10,
        interval_seconds=0.01,
        request_timeout_seconds=REQUEST_TIMEOUT_SECONDS,
        clock=clock,
    )
    service = WebhookService(events, deliveries, registry, dispatcher, max_retries=3, clock=clock)
    return Engine(service, registry, dispatcher, events, endpoints, deliveries, clock)
