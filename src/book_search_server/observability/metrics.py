"""Prometheus metrics for the indexing and search golden signals."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


REQUEST_COUNT = Counter(
    "book_search_requests_total",
    "Total HTTP requests",
    ["route", "status"],
)

SEARCH_LATENCY = Histogram(
    "search_latency_seconds",
    "Search query latency",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

SEARCH_RESULTS = Histogram(
    "search_result_count",
    "Results returned per search",
    buckets=(0, 1, 5, 10, 25, 50, 100, 500),
)

INDEX_OPERATIONS = Counter(
    "index_operations_total",
    "Index operations by kind and outcome",
    ["operation", "status"],
)

INDEX_LATENCY = Histogram(
    "index_book_latency_seconds",
    "Time to index a single book",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

BOOKS_INDEXED = Gauge(
    "books_indexed",
    "Books present in the index at the last status check",
)


@contextmanager
def track_latency(histogram: Histogram) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
