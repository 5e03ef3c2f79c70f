from __future__ import annotations

import pytest

from tests.utils import STRIPE_SECRET, stripe_body, stripe_header
from webhook_service.main import create_app
from webhook_service.services.providers import ProviderCallbackGateway


@pytest.fixture
async def service_client(aiohttp_client, engine):
    gateway = ProviderCallbackGateway(engine.service, {"stripe": STRIPE_SECRET})
    app = create_app(webhook_service=engine.service, provider_gateway=gateway)
    return await aiohttp_client(app)


@pytest.mark.asyncio
async def test_health(service_client):
    resp = await service_client.get("/health")
    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "webhook-service"
    assert body["engine"] == "ready"
    assert body["pending_events"] == 0
    assert body["active_endpoints"] == 0
    assert "X-Trace-Id" in resp.headers


@pytest.mark.asyncio
async def test_provider_callback_accepted(service_client, engine):
    body = stripe_body()
    resp = await service_client.post(
        "/api/v1/webhooks/stripe",
        data=body,
        headers={"Content-Type": "application/json", "stripe-signature": stripe_header(body)},
    )
    assert resp.status == 200
    assert await resp.json() == {"received": True, "id": "evt_stripe_1"}
    [stored] = engine.events.rows.values()
    assert stored.type == "stripe.payment_intent.succeeded"
    assert stored.source == "stripe"


@pytest.mark.asyncio
async def test_provider_callback_tampered_body(service_client, engine):
    body = stripe_body(obj={"id": "pi_1", "amount": 500})
    header = stripe_header(body)
    resp = await service_client.post(
        "/api/v1/webhooks/stripe",
        data=body.replace(b"500", b"5000"),
        headers={"stripe-signature": header},
    )
    assert resp.status == 400
    assert engine.events.rows == {}


@pytest.mark.asyncio
async def test_provider_callback_missing_signature(service_client, engine):
    resp = await service_client.post("/api/v1/webhooks/stripe", data=stripe_body())
    assert resp.status == 400
    assert "Missing stripe signature" in await resp.text()
    assert engine.events.rows == {}


@pytest.mark.asyncio
async def test_provider_callback_invalid_payload(service_client, engine):
    body = b"not-json"
    resp = await service_client.post(
        "/api/v1/webhooks/stripe", data=body, headers={"stripe-signature": stripe_header(body)}
    )
    assert resp.status == 400
    assert engine.events.rows == {}


@pytest.mark.asyncio
async def test_provider_callback_unknown_provider(service_client):
    resp = await service_client.post(
        "/api/v1/webhooks/paypal", data=b"{}", headers={"paypal-signature": "v1=abc"}
    )
    assert resp.status == 404


@pytest.mark.asyncio
async def test_list_and_get_events(service_client, engine, receiver):
    receiver.statuses["bad"] = 500
    await engine.service.register_endpoint(receiver.url("bad"), ["order.failed"])
    ok = await engine.service.create_event("order.paid", {"orderId": "o1"})
    failing = await engine.service.create_event("order.failed", {"orderId": "o2"})
    await engine.dispatcher.tick()

    resp = await service_client.get("/api/v1/webhooks/events")
    assert resp.status == 200
    body = await resp.json()
    assert body["total"] == 2
    assert body["page"] == 1
    assert body["page_size"] == 50
    assert body["has_more"] is False
    assert {e["id"] for e in body["events"]} == {ok.id, failing.id}

    resp = await service_client.get("/api/v1/webhooks/events", params={"state": "pending"})
    body = await resp.json()
    assert [e["id"] for e in body["events"]] == [failing.id]
    assert body["events"][0]["retry_count"] == 1

    resp = await service_client.get("/api/v1/webhooks/events", params={"type": "order.paid"})
    body = await resp.json()
    assert [e["id"] for e in body["events"]] == [ok.id]

    resp = await service_client.get(f"/api/v1/webhooks/events/{ok.id}")
    assert resp.status == 200
    body = await resp.json()
    assert body["processed"] is True
    assert body["data"] == {"orderId": "o1"}


@pytest.mark.asyncio
async def test_list_failed_events(service_client, engine):
    event = await engine.service.create_event("order.paid", {})
    exhausted = event.model_copy(
        update={"processed": True, "retry_count": 3, "error": "Max retries exceeded"}
    )
    await engine.events.update_state(exhausted)

    resp = await service_client.get("/api/v1/webhooks/events", params={"state": "failed"})
    body = await resp.json()
    assert [e["id"] for e in body["events"]] == [event.id]
    assert body["events"][0]["error"] == "Max retries exceeded"


@pytest.mark.asyncio
async def test_list_events_rejects_bad_query(service_client):
    resp = await service_client.get("/api/v1/webhooks/events", params={"state": "bogus"})
    assert resp.status == 400
    resp = await service_client.get("/api/v1/webhooks/events", params={"limit": "ten"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_get_missing_event(service_client):
    resp = await service_client.get("/api/v1/webhooks/events/evt_missing")
    assert resp.status == 404
    resp = await service_client.get("/api/v1/webhooks/events/evt_missing/deliveries")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_list_event_deliveries(service_client, engine, receiver):
    endpoint = await engine.service.register_endpoint(receiver.url("orders"), ["order.paid"])
    event = await engine.service.create_event("order.paid", {"orderId": "o1"})
    await engine.dispatcher.tick()

    resp = await service_client.get(f"/api/v1/webhooks/events/{event.id}/deliveries")
    assert resp.status == 200
    body = await resp.json()
    assert body["total"] == 1
    [delivery] = body["deliveries"]
    assert delivery["webhook_id"] == endpoint.id
    assert delivery["http_status"] == 200
    assert delivery["event_id"] == event.id


@pytest.mark.asyncio
async def test_list_events_pagination(service_client, engine):
    for i in range(3):
        await engine.service.create_event("noop.event", {"i": i})

    resp = await service_client.get("/api/v1/webhooks/events", params={"limit": "2", "offset": "2"})
    body = await resp.json()
    assert body["total"] == 3
    assert body["page"] == 2
    assert body["page_size"] == 2
    assert len(body["events"]) == 1
    assert body["has_more"] is False

    resp = await service_client.get("/api/v1/webhooks/events", params={"limit": "500"})
    body = await resp.json()
    assert body["page_size"] == 100
    assert len(body["events"]) == 3
