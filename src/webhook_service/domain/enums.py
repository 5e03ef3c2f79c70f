"""Webhook domain enums."""
from __future__ import annotations

from enum import Enum


class EventSource(str, Enum):
    """Sources that are not a named provider."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class EventState(str, Enum):
    """Filter values for event state queries.

    ``processed`` means delivered to every matching endpoint (or nobody
    subscribed); ``failed`` is the dead-letter state, processed with an
    error recorded.
    """

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
