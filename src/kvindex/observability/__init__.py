"""Observability module: structured logging, OpenTelemetry tracing and metrics."""

from kvindex.observability.context import get_trace_context, set_trace_context, trace_context
from kvindex.observability.logging import JsonFormatter, configure_logging
from kvindex.observability.metrics import (
    DOCUMENTS_INDEXED,
    DOCUMENTS_REMOVED,
    SEARCH_LATENCY,
    SEARCH_OUTCOMES,
    STORE_CALLS,
    get_metrics,
    get_metrics_content_type,
    track_latency,
)
from kvindex.observability.setup import configure_observability
from kvindex.observability.tracing import create_span, get_tracer, init_tracing, reset_tracer


__all__ = [
    "DOCUMENTS_INDEXED",
    "DOCUMENTS_REMOVED",
    "SEARCH_LATENCY",
    "SEARCH_OUTCOMES",
    "STORE_CALLS",
    "JsonFormatter",
    "configure_logging",
    "configure_observability",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "reset_tracer",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
