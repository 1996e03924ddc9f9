"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "lbqa_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "lbqa_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

RETRIEVAL_COUNT = Counter(
    "lbqa_retrievals_total",
    "Completed retrievals by mode and strategy that produced the hits",
    labelnames=("mode", "strategy"),
    registry=REGISTRY,
)

RETRIEVAL_LATENCY = Histogram(
    "lbqa_retrieval_latency_seconds",
    "End-to-end retrieval latency including embedding",
    labelnames=("mode",),
    registry=REGISTRY,
)

STRATEGY_FAILURES = Counter(
    "lbqa_strategy_failures_total",
    "Strategy executions that raised or returned a malformed response",
    labelnames=("strategy",),
    registry=REGISTRY,
)

HYBRID_BRANCH_FAILURES = Counter(
    "lbqa_hybrid_branch_failures_total",
    "Hybrid search branches that degraded to an empty list",
    labelnames=("branch",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "RETRIEVAL_COUNT",
    "RETRIEVAL_LATENCY",
    "STRATEGY_FAILURES",
    "HYBRID_BRANCH_FAILURES",
    "metrics_response",
]
