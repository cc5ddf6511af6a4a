"""Tracing for the chat backend.

``OBSERVABILITY`` selects the exporter:

- ``logfire``: Pydantic Logfire (token read from ``LOGFIRE_TOKEN``), which
  also traces pydantic-ai model requests and outbound httpx calls.
- ``otel``: OpenTelemetry SDK with an OTLP/HTTP span exporter.
- ``off``: nothing is imported or instrumented.

The exporters ship in the ``observability`` extra and are imported lazily.
"""

from __future__ import annotations

from fastapi import FastAPI
from loguru import logger

from docchat.config import Settings

SERVICE_VERSION = "0.1.0"

# Paths excluded from request tracing.
_UNTRACED_URLS = "health"


def is_observability_active(settings: Settings) -> bool:
    """True when spans are exported, so model requests should be instrumented too."""
    return settings.observability in ("logfire", "otel")


def setup_telemetry(app: FastAPI, settings: Settings) -> None:
    """Configure the selected exporter and instrument *app*.

    The tracer provider (if any) is kept on ``app.state`` so the lifespan
    can flush pending spans at shutdown.
    """
    app.state.tracer_provider = None

    if settings.observability == "logfire":
        _setup_logfire(app, settings)
    elif settings.observability == "otel":
        app.state.tracer_provider = _setup_otel(app, settings)
    else:
        logger.debug("Tracing disabled")


def shutdown_telemetry(app: FastAPI) -> None:
    """Flush and stop the OpenTelemetry provider created by ``setup_telemetry``."""
    provider = getattr(app.state, "tracer_provider", None)
    if provider is not None:
        provider.shutdown()


def _setup_logfire(app: FastAPI, settings: Settings) -> None:
    import logfire

    logfire.configure(service_name=settings.otel_service_name, service_version=SERVICE_VERSION)
    logfire.instrument_fastapi(app, excluded_urls=_UNTRACED_URLS)
    logfire.instrument_pydantic_ai()
    logfire.instrument_httpx()
    logger.info("Tracing via Logfire | service={}", settings.otel_service_name)


def _setup_otel(app: FastAPI, settings: Settings):
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION as VERSION_KEY, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    provider = TracerProvider(
        resource=Resource.create(
            {SERVICE_NAME: settings.otel_service_name, VERSION_KEY: SERVICE_VERSION}
        )
    )
    endpoint = settings.otel_exporter_otlp_endpoint.rstrip("/") + "/v1/traces"
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, excluded_urls=_UNTRACED_URLS)
    logger.info("Tracing via OTLP | service={} endpoint={}", settings.otel_service_name, endpoint)
    return provider
