"""Structured key=value logging shared by every service process."""
from __future__ import annotations

import logging
import sys
from typing import Iterable

import structlog

REDACTED = "***"

# Event keys whose values are never written out: endpoint secrets and
# signatures travel through webhook log context.
DEFAULT_REDACTED_KEYS = frozenset({"secret", "signature", "authorization", "password"})


def _sanitize_string(value: str) -> str:
    """Escape control characters so the log entry stays on a single line."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _is_sensitive(key: str, sensitive: frozenset[str]) -> bool:
    key = key.lower()
    return key in sensitive or any(key.endswith(f"_{name}") for name in sensitive)


def create_redaction_processor(keys: Iterable[str] = DEFAULT_REDACTED_KEYS):
    """Build a processor masking values of *keys* (and ``*_<key>``), also one level into dicts."""
    sensitive = frozenset(k.lower() for k in keys)

    def redact_secrets_processor(logger, method_name, event_dict):
        for key, value in event_dict.items():
            if _is_sensitive(key, sensitive):
                event_dict[key] = REDACTED
            elif isinstance(value, dict):
                event_dict[key] = {
                    k: REDACTED if isinstance(k, str) and _is_sensitive(k, sensitive) else v
                    for k, v in value.items()
                }
        return event_dict

    return redact_secrets_processor


def replace_newlines_processor(logger, method_name, event_dict):
    """
    Escape newlines in every string value of the event dict.

    Runs after ``format_exc_info`` so rendered tracebacks are flattened too.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _sanitize_string(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [
                _sanitize_string(item) if isinstance(item, str) else item for item in value
            ]
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _sanitize_string(v) if isinstance(v, str) else v for k, v in value.items()
            }
    return event_dict


class SingleLineFormatter(logging.Formatter):
    """stdlib formatter for records that bypass structlog (aiohttp, asyncio)."""

    def format(self, record):
        message = super().format(record)
        return message.replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(
    level: int | str = logging.INFO,
    *,
    redacted_keys: Iterable[str] = DEFAULT_REDACTED_KEYS,
) -> None:
    """Route stdlib and structlog output to stdout as single-line key=value records."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    access_logger = logging.getLogger("aiohttp.access")
    access_logger.setLevel(level)
    access_logger.handlers = []
    access_logger.propagate = True

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            create_redaction_processor(redacted_keys),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # must stay between format_exc_info and the renderer
            replace_newlines_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
