"""Inbound payment provider callbacks: signature check, translation, side effects."""
from __future__ import annotations

import json
from typing import Awaitable, Callable, Mapping, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from webhook_service.core.exceptions import (
    InvalidPayloadError,
    SignatureVerificationError,
    UnknownProviderError,
)
from webhook_service.domain.dto import ProviderEventDTO
from webhook_service.repositories.billing import BillingRepository
from webhook_service.services.signing import verify_provider_signature
from webhook_service.services.webhooks import WebhookService

logger = structlog.get_logger(__name__)


class ProviderSideEffects(Protocol):
    async def handle(self, event: ProviderEventDTO) -> None: ...


class StripeSideEffects:
    """Order and subscription updates driven by Stripe events."""

    def __init__(self, billing: BillingRepository, webhook_service: WebhookService):
        self._billing = billing
        self._webhooks = webhook_service
        self._handlers: dict[str, Callable[[dict], Awaitable[None]]] = {
            "payment_intent.succeeded": self._payment_intent_succeeded,
            "payment_intent.payment_failed": self._payment_intent_failed,
            "invoice.payment_succeeded": self._invoice_payment_succeeded,
            "customer.subscription.created": self._subscription_created,
            "customer.subscription.deleted": self._subscription_deleted,
        }

    async def handle(self, event: ProviderEventDTO) -> None:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("stripe event unhandled", provider_event_type=event.type)
            return
        try:
            await handler(event.data_object)
        except Exception:
            logger.exception(
                "stripe side effect failed",
                provider_event_id=event.id,
                provider_event_type=event.type,
            )

    async def _payment_intent_succeeded(self, intent: dict) -> None:
        metadata = intent.get("metadata") or {}
        if metadata.get("type") == "order" and metadata.get("orderId"):
            order_id = str(metadata["orderId"])
            await self._billing.mark_order_paid(order_id)
            await self._webhooks.create_event("order.paid", {"orderId": order_id})
            logger.info("order payment completed", order_id=order_id)
        elif metadata.get("type") == "donation":
            # donations are settled by the donation service, nothing to update here
            logger.info("donation payment succeeded", payment_intent_id=intent.get("id"))

    async def _payment_intent_failed(self, intent: dict) -> None:
        metadata = intent.get("metadata") or {}
        if metadata.get("type") == "order" and metadata.get("orderId"):
            await self._billing.mark_order_payment_failed(str(metadata["orderId"]))
            logger.info("order payment failed", order_id=metadata["orderId"])

    async def _invoice_payment_succeeded(self, invoice: dict) -> None:
        customer_id = invoice.get("customer")
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            logger.info(
                "one-time invoice payment succeeded",
                customer_id=customer_id,
                invoice_id=invoice.get("id"),
            )
            return
        await self._billing.activate_subscription(str(customer_id))
        await self._webhooks.create_event(
            "subscription.payment_succeeded",
            {
                "customerId": customer_id,
                "subscriptionId": subscription_id,
                "invoiceId": invoice.get("id"),
                "amount": (invoice.get("amount_paid") or 0) / 100,
                "currency": invoice.get("currency"),
            },
        )
        logger.info(
            "subscription payment succeeded",
            customer_id=customer_id,
            subscription_id=subscription_id,
        )

    async def _subscription_created(self, subscription: dict) -> None:
        await self._billing.activate_subscription(
            str(subscription.get("customer")), subscription.get("id")
        )
        logger.info("subscription created", subscription_id=subscription.get("id"))

    async def _subscription_deleted(self, subscription: dict) -> None:
        await self._billing.cancel_subscription(str(subscription.get("customer")))
        logger.info("subscription cancelled", subscription_id=subscription.get("id"))


class ProviderCallbackGateway:
    """Verifies provider callbacks and turns them into internal events."""

    def __init__(
        self,
        webhook_service: WebhookService,
        secrets: Mapping[str, str],
        side_effects: Mapping[str, ProviderSideEffects] | None = None,
    ):
        self._webhooks = webhook_service
        self._secrets = dict(secrets)
        self._side_effects = dict(side_effects or {})

    def supports(self, provider: str) -> bool:
        return provider in self._secrets

    async def handle(self, provider: str, raw_body: bytes, signature_header: str | None) -> ProviderEventDTO:
        """Verify, record and act on one callback.

        Raises a :class:`ProviderCallbackError` subclass before anything is
        created when the provider is unknown, the signature is bad, or the
        body is not a provider event.
        """
        secret = self._secrets.get(provider)
        if secret is None:
            raise UnknownProviderError(f"Unknown webhook provider: {provider}")
        if not verify_provider_signature(raw_body, signature_header, secret):
            logger.warning(
                "provider signature rejected",
                provider=provider,
                signature_present=bool(signature_header),
            )
            raise SignatureVerificationError(f"Invalid {provider} signature")

        try:
            event = ProviderEventDTO.model_validate(json.loads(raw_body))
        except (ValueError, PydanticValidationError) as exc:
            raise InvalidPayloadError(f"Invalid {provider} event payload") from exc

        await self._webhooks.create_event(f"{provider}.{event.type}", event.data, provider)
        side_effects = self._side_effects.get(provider)
        if side_effects is not None:
            await side_effects.handle(event)
        logger.info(
            "provider callback processed",
            provider=provider,
            provider_event_id=event.id,
            provider_event_type=event.type,
        )
        return event
