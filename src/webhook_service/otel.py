"""OpenTelemetry instrumentation for webhook-service.

Activated only when ``otel_exporter_endpoint`` is set in settings. Inbound
requests get a server span each; outbound deliveries are traced manually by
the dispatcher through :func:`get_tracer`.
"""
from __future__ import annotations

import structlog
from aiohttp import web
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.aiohttp_server import AioHttpServerInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

_provider: TracerProvider | None = None


def setup_otel() -> bool:
    """Install the tracer provider. Call before the application is created.

    Returns ``False`` when tracing is disabled.
    """
    global _provider

    endpoint = settings.otel_exporter_endpoint
    if not endpoint:
        logger.info("otel_exporter_endpoint not set, tracing disabled")
        return False
    if _provider is not None:
        return True

    _provider = TracerProvider(resource=Resource.create({SERVICE_NAME: settings.app_name}))
    exporter = OTLPSpanExporter(endpoint=f"{str(endpoint).rstrip('/')}/v1/traces")
    _provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(_provider)

    # patches web.Application, so it must run before create_base_app
    AioHttpServerInstrumentor().instrument()

    logger.info("OpenTelemetry tracing enabled", endpoint=str(endpoint), service=settings.app_name)
    return True


async def shutdown_otel(_app: web.Application) -> None:
    """Flush pending spans. Register with ``app.on_cleanup``."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        logger.info("OpenTelemetry tracer provider shut down")
        _provider = None


def get_tracer(name: str = __name__) -> trace.Tracer:
    """Tracer for manual spans; a no-op tracer while tracing is disabled."""
    return trace.get_tracer(name)
