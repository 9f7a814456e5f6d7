"""Observability layer - logging, metrics, and tracing."""

from subscription_worker.observability.logging import setup_logging
from subscription_worker.observability.metrics import MetricsCollector, get_metrics
from subscription_worker.observability.tracing import (
    generate_trace_id,
    get_tracer,
    setup_tracing,
)

__all__ = [
    "MetricsCollector",
    "generate_trace_id",
    "get_metrics",
    "get_tracer",
    "setup_logging",
    "setup_tracing",
]
