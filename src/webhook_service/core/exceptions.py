"""Common exceptions for domain, repository and gateway layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for the service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class ValidationError(WebhookServiceError):
    """Raised when producer input is rejected (e.g. an endpoint without events)."""


class ProviderCallbackError(WebhookServiceError):
    """Base error for inbound provider callbacks."""


class UnknownProviderError(ProviderCallbackError):
    """Raised for callbacks from a provider with no configured secret."""


class SignatureVerificationError(ProviderCallbackError):
    """Raised when a callback signature is missing or does not match."""


class InvalidPayloadError(ProviderCallbackError):
    """Raised when a verified callback body is not a provider event."""
