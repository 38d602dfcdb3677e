"""
OpenTelemetry spans around provider operations.

Every PostgresProvider operation runs inside a ``vdb.<operation>`` span
carrying the collection and database as attributes. Without
setup_tracing() the global tracer is a no-op, so the spans cost nothing.

Usage:
    from src.observability.tracing import setup_tracing, get_tracer, traced

    setup_tracing("pgvector-provider", "http://localhost:4317")
    tracer = get_tracer("vectorstore")

    with traced(tracer, "vdb.vector_search", {"vdb.collection": "docs"}):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
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
from opentelemetry.trace import Span, Tracer
from opentelemetry.trace.propagation import get_current_span

logger = logging.getLogger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install a global TracerProvider.

    Spans are batched to an OTLP gRPC collector unless ``exporter`` is
    given, in which case they are exported synchronously to it (tests
    pass an InMemorySpanExporter).

    Args:
        service_name: service.name resource attribute
        otlp_endpoint: Collector endpoint (defaults to localhost:4317)
        exporter: Exporter to use instead of OTLP
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        endpoint = otlp_endpoint or DEFAULT_OTLP_ENDPOINT
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )

    trace.set_tracer_provider(provider)
    _tracing_enabled = True
    logger.info(
        "Tracing enabled for %s, exporting to %s",
        service_name,
        otlp_endpoint or ("custom exporter" if exporter else DEFAULT_OTLP_ENDPOINT),
    )
    return provider


def get_tracer(name: str) -> Tracer:
    """Named tracer from the global provider (no-op until setup_tracing())."""
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    return _tracing_enabled


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: Mapping[str, Any] | None = None,
) -> Iterator[Span]:
    """
    Run a block inside a span.

    Attributes whose value is None are left off the span. An exception
    leaving the block is recorded on the span, which is marked as an
    error, and then re-raised.
    """
    span_attributes = {
        key: value for key, value in (attributes or {}).items() if value is not None
    }
    with tracer.start_as_current_span(
        name,
        attributes=span_attributes,
        record_exception=True,
        set_status_on_exception=True,
    ) as span:
        yield span


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor adding the current trace_id and span_id, if any."""
    ctx = get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict
