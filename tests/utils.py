from __future__ import annotations

import json

from webhook_service.services.signing import sign_payload

STRIPE_SECRET = "whsec_test"


def stripe_body(event_type: str = "payment_intent.succeeded", obj: dict | None = None) -> bytes:
    payload = {
        "id": "evt_stripe_1",
        "object": "event",
        "type": event_type,
        "data": {"object": obj if obj is not None else {"id": "pi_1"}},
    }
    return json.dumps(payload).encode("utf-8")


def stripe_header(body: bytes, secret: str = STRIPE_SECRET) -> str:
    return f"t=1700000000,v1={sign_payload(body, secret)}"
