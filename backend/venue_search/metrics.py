"""Prometheus metrics for monitoring and observability."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from functools import lru_cache

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# ==============================================================================
# APPLICATION INFO
# ==============================================================================

app_info = Info("venue_search", "Venue search core information")
app_info.info({"version": "0.1.0", "service": "venue-search"})

# ==============================================================================
# HTTP METRICS
# ==============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)

# ==============================================================================
# CACHE METRICS
# ==============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total cache hits",
    ["cache_name"],
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total cache misses",
    ["cache_name"],
)

cache_size = Gauge(
    "cache_size",
    "Current cache size (number of entries)",
    ["cache_name"],
)

cache_evictions_total = Counter(
    "cache_evictions_total",
    "Total cache evictions",
    ["cache_name"],
)

cache_expirations_total = Counter(
    "cache_expirations_total",
    "Total cache expirations",
    ["cache_name"],
)

# ==============================================================================
# ADMISSION + DEDUP METRICS
# ==============================================================================

admission_active = Gauge(
    "admission_active_requests",
    "Requests currently holding an admission slot",
)

admission_waiting = Gauge(
    "admission_waiting_requests",
    "Requests currently queued for an admission slot",
)

admission_rejected_total = Counter(
    "admission_rejected_total",
    "Requests refused by the admission gate",
    ["cause"],
)

dedup_coalesced_total = Counter(
    "dedup_coalesced_total",
    "Calls that attached to an in-flight producer instead of starting one",
)

# ==============================================================================
# SEARCH METRICS
# ==============================================================================

search_responses_total = Counter(
    "search_responses_total",
    "Search responses by mode and failure reason",
    ["mode", "failure_reason"],
)

narration_fallbacks_total = Counter(
    "narration_fallbacks_total",
    "Narrations replaced by the static fallback table",
    ["cause"],
)

intent_fallbacks_total = Counter(
    "intent_fallbacks_total",
    "Intent extractions that fell back to the heuristic parser",
    ["cause"],
)

stage_duration_seconds = Histogram(
    "search_stage_duration_seconds",
    "Per-stage latency of the search pipeline",
    ["stage"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ==============================================================================
# HELPER FUNCTIONS
# ==============================================================================


def track_cache_metrics(cache_name: str, stats: dict) -> None:
    """Update cache metrics from stats dict."""
    previous = track_cache_metrics._previous.setdefault(
        cache_name,
        {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0},
    )
    cache_size.labels(cache_name=cache_name).set(stats.get("size", 0))
    for key, counter in (
        ("hits", cache_hits_total),
        ("misses", cache_misses_total),
        ("evictions", cache_evictions_total),
        ("expirations", cache_expirations_total),
    ):
        current = int(stats.get(key, 0) or 0)
        delta = max(0, current - previous[key])
        if delta:
            counter.labels(cache_name=cache_name).inc(delta)
        previous[key] = current


track_cache_metrics._previous = {}  # type: ignore[attr-defined]


def track_admission_metrics(stats: dict) -> None:
    """Mirror gate occupancy into the gauges."""
    admission_active.set(stats.get("active", 0))
    admission_waiting.set(stats.get("waiting", 0))


class stage_timer:
    """
    Context manager recording one pipeline stage into ``stage_duration_seconds``.

    Usage:
        with stage_timer("geocode"):
            coords = await geocoder.resolve(text)
    """

    __slots__ = ("stage", "_start")

    def __init__(self, stage: str) -> None:
        self.stage = stage
        self._start = 0.0

    def __enter__(self) -> stage_timer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_exc) -> None:
        stage_duration_seconds.labels(stage=self.stage).observe(time.perf_counter() - self._start)


@lru_cache(maxsize=2048)
def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path to reduce cardinality.

    Examples:
        /v1/search/3f0c...-uuid/assistant -> /v1/search/{id}/assistant
    """
    path = re.sub(
        r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
        "/{id}",
        path,
        flags=re.IGNORECASE,
    )
    path = re.sub(r"/\d+", "/{id}", path)
    path = re.sub(r"/[a-zA-Z0-9_-]{20,}", "/{id}", path)
    return path


# ==============================================================================
# PROMETHEUS MIDDLEWARE
# ==============================================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = normalize_endpoint(request.url.path)
        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            duration = time.time() - start_time
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


# ==============================================================================
# METRICS ENDPOINT
# ==============================================================================


def get_metrics() -> Response:
    """Generate Prometheus metrics response."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "PrometheusMiddleware",
    "get_metrics",
    "http_requests_total",
    "http_request_duration_seconds",
    "cache_hits_total",
    "cache_misses_total",
    "admission_rejected_total",
    "dedup_coalesced_total",
    "search_responses_total",
    "narration_fallbacks_total",
    "intent_fallbacks_total",
    "stage_timer",
    "track_cache_metrics",
    "track_admission_metrics",
    "normalize_endpoint",
]
