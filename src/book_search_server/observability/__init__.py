"""Observability module: structured logging, tracing and Prometheus metrics."""

from book_search_server.observability.context import get_trace_context, set_trace_context, trace_context
from book_search_server.observability.logging import JsonFormatter, configure_logging
from book_search_server.observability.metrics import (
    BOOKS_INDEXED,
    INDEX_LATENCY,
    INDEX_OPERATIONS,
    REQUEST_COUNT,
    SEARCH_LATENCY,
    SEARCH_RESULTS,
    get_metrics,
    get_metrics_content_type,
    track_latency,
)
from book_search_server.observability.tracing import (
    TraceContextMiddleware,
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
    trace_request,
)


__all__ = [
    "BOOKS_INDEXED",
    "INDEX_LATENCY",
    "INDEX_OPERATIONS",
    "REQUEST_COUNT",
    "SEARCH_LATENCY",
    "SEARCH_RESULTS",
    "JsonFormatter",
    "TraceContextMiddleware",
    "configure_logging",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "trace_request",
    "track_latency",
]
