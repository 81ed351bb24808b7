"""
OpenTelemetry spans for evaluation cycles.

Span tree per cycle:

    alerts.cycle
      └─ alerts.evaluate   (one per alert, attributes: alert_id, metric_kind)
           └─ alerts.dispatch

Tracing is off unless ``setup_tracing`` runs (the CLI does so when
``TRACING_ENABLED`` is set). Until then ``get_tracer`` hands out the API's
no-op tracer, so instrumented code pays almost nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, StatusCode, Tracer

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install a global TracerProvider.

    With no ``exporter`` spans are batched to an OTLP gRPC collector at
    ``otlp_endpoint``. A supplied exporter (tests pass an in-memory one)
    receives every span synchronously.

    The global provider can only be set once per process; later calls
    return the provider already installed.
    """
    global _provider
    if _provider is not None:
        return _provider

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        target = type(exporter).__name__
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        target = otlp_endpoint or "http://localhost:4317"
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=target, insecure=True))
        )

    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info("Tracing enabled for %s, exporting to %s", service_name, target)
    return provider


def shutdown_tracing() -> None:
    """Flush pending spans. Safe to call when tracing was never set up."""
    if _provider is not None:
        _provider.force_flush()
        _provider.shutdown()


def is_tracing_enabled() -> bool:
    return _provider is not None


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span]:
    """
    Open a span as the current span; mark it ERROR if the body raises.

    The span is yielded so callers can attach counts once they are known.
    """
    with tracer.start_as_current_span(
        name,
        attributes=attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, str(exc))
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor: stamp ``trace_id``/``span_id`` from the current span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = trace.format_trace_id(ctx.trace_id)
        event_dict["span_id"] = trace.format_span_id(ctx.span_id)
    return event_dict
