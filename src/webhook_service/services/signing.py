"""HMAC-SHA256 signing of outbound payloads and verification of provider callbacks."""
from __future__ import annotations

import hmac
import json
import secrets
from hashlib import sha256

from webhook_service.domain.webhooks import WebhookEvent

SIGNATURE_SCHEME = "v1"


def encode_payload(event: WebhookEvent) -> bytes:
    """Serialize the outbound body. The exact bytes returned are what gets signed and sent."""
    body = {
        "id": event.id,
        "type": event.type,
        "data": event.data,
        "timestamp": event.timestamp.isoformat(),
    }
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, sha256).hexdigest()


def verify_payload(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of a hex *signature* over *body*."""
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))


def generate_secret() -> str:
    return secrets.token_hex(32)


def parse_signature_header(header: str) -> dict[str, list[str]]:
    """Split ``t=1700000000,v1=abc,v1=def`` into ``{"t": [...], "v1": [...]}``.

    Malformed elements are ignored.
    """
    parts: dict[str, list[str]] = {}
    for element in header.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep or not key or not value:
            continue
        parts.setdefault(key, []).append(value)
    return parts


def verify_provider_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Check a provider ``<provider>-signature`` header against the raw body.

    Every ``v1`` candidate is compared with :func:`hmac.compare_digest`, so the
    time taken does not depend on how many leading characters match.
    """
    if not header or not secret:
        return False
    candidates = parse_signature_header(header).get(SIGNATURE_SCHEME, [])
    matched = False
    for candidate in candidates:
        matched |= verify_payload(body, secret, candidate)
    return matched
