from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from tests.utils import STRIPE_SECRET, stripe_body, stripe_header
from webhook_service.core.exceptions import (
    InvalidPayloadError,
    SignatureVerificationError,
    UnknownProviderError,
)
from webhook_service.domain.dto import ProviderEventDTO
from webhook_service.services.providers import ProviderCallbackGateway, StripeSideEffects


@pytest.fixture
def side_effects():
    return AsyncMock()


@pytest.fixture
def gateway(engine, side_effects):
    return ProviderCallbackGateway(
        engine.service, {"stripe": STRIPE_SECRET}, side_effects={"stripe": side_effects}
    )


@pytest.mark.asyncio
async def test_valid_callback_creates_namespaced_event(engine, gateway, side_effects):
    body = stripe_body(obj={"id": "pi_1", "amount": 500})

    event = await gateway.handle("stripe", body, stripe_header(body))

    assert isinstance(event, ProviderEventDTO)
    assert event.id == "evt_stripe_1"
    [stored] = engine.events.rows.values()
    assert stored.type == "stripe.payment_intent.succeeded"
    assert stored.source == "stripe"
    assert stored.data == {"object": {"id": "pi_1", "amount": 500}}
    assert engine.dispatcher.pending_count == 1
    side_effects.handle.assert_awaited_once_with(event)


@pytest.mark.asyncio
async def test_tampered_body_is_rejected_without_event(engine, gateway, side_effects):
    body = stripe_body(obj={"id": "pi_1", "amount": 500})
    header = stripe_header(body)
    tampered = body.replace(b"500", b"999")

    with pytest.raises(SignatureVerificationError):
        await gateway.handle("stripe", tampered, header)

    assert engine.events.rows == {}
    side_effects.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_wrong_secret_or_missing_header_is_rejected(engine, gateway):
    body = stripe_body()
    with pytest.raises(SignatureVerificationError):
        await gateway.handle("stripe", body, stripe_header(body, "other"))
    with pytest.raises(SignatureVerificationError):
        await gateway.handle("stripe", body, None)
    assert engine.events.rows == {}


@pytest.mark.asyncio
async def test_unknown_provider(engine, gateway):
    assert gateway.supports("stripe")
    assert not gateway.supports("paypal")
    with pytest.raises(UnknownProviderError):
        await gateway.handle("paypal", b"{}", "v1=abc")
    assert engine.events.rows == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b"[]", b'{"id": "evt_1"}', b'{"type": "x"}'])
async def test_signed_but_malformed_body(engine, gateway, body):
    with pytest.raises(InvalidPayloadError):
        await gateway.handle("stripe", body, stripe_header(body))
    assert engine.events.rows == {}


@pytest.mark.asyncio
async def test_gateway_without_side_effects(engine):
    gateway = ProviderCallbackGateway(engine.service, {"stripe": STRIPE_SECRET})
    body = stripe_body("charge.refunded")
    await gateway.handle("stripe", body, stripe_header(body))
    assert [e.type for e in engine.events.rows.values()] == ["stripe.charge.refunded"]


# ---------------------------------------------------------------------------
# StripeSideEffects
# ---------------------------------------------------------------------------


@pytest.fixture
def billing():
    return AsyncMock()


@pytest.fixture
def webhooks():
    return AsyncMock()


def _dto(event_type: str, obj: dict) -> ProviderEventDTO:
    return ProviderEventDTO(id="evt_stripe_1", type=event_type, data={"object": obj})


@pytest.mark.asyncio
async def test_order_payment_succeeded(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(
        _dto("payment_intent.succeeded", {"id": "pi_1", "metadata": {"type": "order", "orderId": "o1"}})
    )
    billing.mark_order_paid.assert_awaited_once_with("o1")
    webhooks.create_event.assert_awaited_once_with("order.paid", {"orderId": "o1"})


@pytest.mark.asyncio
async def test_donation_payment_succeeded_touches_nothing(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(
        _dto("payment_intent.succeeded", {"id": "pi_1", "metadata": {"type": "donation"}})
    )
    billing.mark_order_paid.assert_not_awaited()
    webhooks.create_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_order_payment_failed(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(
        _dto("payment_intent.payment_failed", {"metadata": {"type": "order", "orderId": "o2"}})
    )
    billing.mark_order_payment_failed.assert_awaited_once_with("o2")
    webhooks.create_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscription_invoice_paid(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(
        _dto(
            "invoice.payment_succeeded",
            {
                "id": "in_1",
                "customer": "cus_1",
                "subscription": "sub_1",
                "amount_paid": 1999,
                "currency": "usd",
            },
        )
    )
    billing.activate_subscription.assert_awaited_once_with("cus_1")
    webhooks.create_event.assert_awaited_once_with(
        "subscription.payment_succeeded",
        {
            "customerId": "cus_1",
            "subscriptionId": "sub_1",
            "invoiceId": "in_1",
            "amount": 19.99,
            "currency": "usd",
        },
    )


@pytest.mark.asyncio
async def test_one_time_invoice_is_only_logged(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(_dto("invoice.payment_succeeded", {"id": "in_1", "customer": "cus_1"}))
    billing.activate_subscription.assert_not_awaited()
    webhooks.create_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscription_lifecycle(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(_dto("customer.subscription.created", {"id": "sub_1", "customer": "cus_1"}))
    await effects.handle(_dto("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"}))
    billing.activate_subscription.assert_awaited_once_with("cus_1", "sub_1")
    billing.cancel_subscription.assert_awaited_once_with("cus_1")


@pytest.mark.asyncio
async def test_side_effect_failure_is_contained(billing, webhooks):
    billing.mark_order_paid.side_effect = ConnectionError("db down")
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(
        _dto("payment_intent.succeeded", {"metadata": {"type": "order", "orderId": "o1"}})
    )
    webhooks.create_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_unhandled_event_type(billing, webhooks):
    effects = StripeSideEffects(billing, webhooks)
    await effects.handle(_dto("charge.refunded", {"id": "ch_1"}))
    assert billing.method_calls == []
    webhooks.create_event.assert_not_awaited()
