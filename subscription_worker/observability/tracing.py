"""
OpenTelemetry distributed tracing for the subscription pipeline.

Provides:
- setup_tracing(): Initialize TracerProvider with OTLP exporter
- get_tracer(): Get a named tracer instance
- traced(): Context manager for creating spans that record failures
- inject_trace_context() / extract_trace_context(): Redis Streams propagation
- add_trace_context(): structlog processor adding span ids to log entries
- generate_trace_id(): Short correlation id stamped on every pipeline run

Two ids travel with a job. The pipeline ``trace_id`` is a short random
hex string that is persisted in ledger metadata and notification rows,
so it survives even when no collector is configured. The W3C
``traceparent`` is carried as a Redis Stream field on trigger messages
and published events so spans connect across workers:

    trigger (publish) -> worker (claim, analyze, fan-out) -> event consumers
"""

from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import SpanContext, StatusCode, TraceFlags, Tracer
from opentelemetry.trace.propagation import get_current_span

logger = logging.getLogger(__name__)

_tracing_enabled = False

# W3C traceparent field name used in Redis Streams messages
TRACE_PARENT_FIELD = "traceparent"

# Bytes of randomness in a pipeline trace id (16 hex chars)
TRACE_ID_BYTES = 8


def generate_trace_id() -> str:
    """Return a fresh pipeline trace id."""
    return secrets.token_hex(TRACE_ID_BYTES)


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Initialize the OpenTelemetry TracerProvider.

    Uses the OTLP gRPC exporter unless a custom exporter is passed
    (e.g., InMemorySpanExporter in tests).

    Args:
        service_name: Logical service name.
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317").
        exporter: Optional custom exporter (overrides OTLP).

    Returns:
        The configured TracerProvider.
    """
    global _tracing_enabled

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if exporter is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(
            endpoint=otlp_endpoint or "http://localhost:4317",
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _tracing_enabled = True
    logger.info(
        "OpenTelemetry tracing initialized: service=%s endpoint=%s",
        service_name,
        otlp_endpoint or "(custom exporter)",
    )
    return provider


def get_tracer(name: str) -> Tracer:
    """
    Get a named tracer from the global TracerProvider.

    Returns a no-op tracer when tracing has not been set up.
    """
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    """Check whether tracing has been initialized."""
    return _tracing_enabled


# ── Redis Streams trace context propagation ──────────────────────────


def inject_trace_context() -> dict[str, str]:
    """
    Encode the active span as Redis XADD fields.

    Returns:
        ``{"traceparent": ...}`` in W3C format, or an empty dict when no
        span is active.
    """
    ctx = get_current_span().get_span_context()

    if not ctx.is_valid:
        return {}

    traceparent = f"00-{ctx.trace_id:032x}-{ctx.span_id:016x}-{ctx.trace_flags:02x}"
    return {TRACE_PARENT_FIELD: traceparent}


def extract_trace_context(fields: dict[str, str]) -> Context | None:
    """
    Rebuild a remote parent context from Redis message fields.

    Args:
        fields: Redis message fields (may contain ``traceparent``).

    Returns:
        OTel Context carrying the remote span, or None if absent or malformed.
    """
    traceparent = fields.get(TRACE_PARENT_FIELD)
    if not traceparent:
        return None

    parts = traceparent.split("-")
    if len(parts) != 4:
        logger.debug("Malformed traceparent: %s", traceparent)
        return None

    try:
        remote_ctx = SpanContext(
            trace_id=int(parts[1], 16),
            span_id=int(parts[2], 16),
            is_remote=True,
            trace_flags=TraceFlags(int(parts[3], 16)),
        )
    except ValueError:
        logger.debug("Malformed traceparent: %s", traceparent)
        return None

    return trace.set_span_in_context(trace.NonRecordingSpan(remote_ctx))


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
    parent_context: Context | None = None,
):
    """
    Create a span and record any exception raised inside it.

    Usage:
        with traced(tracer, "pipeline.analyze", {"prompt_count": 2}):
            ...
    """
    kwargs: dict[str, Any] = {}
    if parent_context is not None:
        kwargs["context"] = parent_context

    with tracer.start_as_current_span(name, **kwargs) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor that adds otel_trace_id / otel_span_id to log entries."""
    ctx = get_current_span().get_span_context()

    if ctx.is_valid:
        event_dict["otel_trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["otel_span_id"] = f"{ctx.span_id:016x}"

    return event_dict
