"""Prometheus metrics helpers for the portal metrics service."""

from __future__ import annotations

import threading

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

_LOCK = threading.Lock()
_REGISTRY: CollectorRegistry | None = None

# Prometheus collectors (initialised lazily so tests can reset the registry)
_SOURCE_FETCH_COUNTER: Counter
_SOURCE_FETCH_SECONDS: Histogram
_CACHE_LOOKUP_COUNTER: Counter
_REFRESH_COUNTER: Counter
_HTTP_REQUEST_COUNTER: Counter
_HTTP_REQUEST_LATENCY_SECONDS: Histogram


def _initialise_registry() -> None:
    global _REGISTRY
    global _SOURCE_FETCH_COUNTER, _SOURCE_FETCH_SECONDS
    global _CACHE_LOOKUP_COUNTER, _REFRESH_COUNTER
    global _HTTP_REQUEST_COUNTER, _HTTP_REQUEST_LATENCY_SECONDS

    registry = CollectorRegistry()

    _SOURCE_FETCH_COUNTER = Counter(
        "portal_source_fetch_total",
        "Calls to external metric sources grouped by outcome.",
        ["source", "outcome"],
        registry=registry,
    )
    _SOURCE_FETCH_SECONDS = Histogram(
        "portal_source_fetch_seconds",
        "Latency of calls to external metric sources.",
        ["source"],
        buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0),
        registry=registry,
    )
    _CACHE_LOOKUP_COUNTER = Counter(
        "portal_cache_lookups_total",
        "Metric cache lookups by kind and state (fresh, stale, absent, error).",
        ["kind", "state"],
        registry=registry,
    )
    _REFRESH_COUNTER = Counter(
        "portal_refresh_requests_total",
        "Explicit refresh requests by outcome (accepted, rejected, unavailable).",
        ["outcome"],
        registry=registry,
    )
    _HTTP_REQUEST_COUNTER = Counter(
        "portal_http_requests_total",
        "HTTP requests handled by the dashboard API.",
        ["method", "path", "status"],
        registry=registry,
    )
    _HTTP_REQUEST_LATENCY_SECONDS = Histogram(
        "portal_http_request_seconds",
        "HTTP handler latency for the dashboard API.",
        ["method", "path"],
        registry=registry,
    )

    _REGISTRY = registry


def _ensure_registry() -> None:
    if _REGISTRY is None:
        with _LOCK:
            if _REGISTRY is None:
                _initialise_registry()


def record_source_fetch(source: str, *, outcome: str, duration_seconds: float) -> None:
    """Record a call to an external metric source."""

    _ensure_registry()
    _SOURCE_FETCH_COUNTER.labels(source=source, outcome=outcome).inc()
    _SOURCE_FETCH_SECONDS.labels(source=source).observe(duration_seconds)


def record_cache_lookup(kind: str, state: str) -> None:
    _ensure_registry()
    _CACHE_LOOKUP_COUNTER.labels(kind=kind, state=state).inc()


def record_refresh(outcome: str) -> None:
    _ensure_registry()
    _REFRESH_COUNTER.labels(outcome=outcome).inc()


def record_http_request(
    method: str,
    path: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record an HTTP request handled by the dashboard API."""

    _ensure_registry()
    _HTTP_REQUEST_COUNTER.labels(
        method=method,
        path=path,
        status=str(status_code),
    ).inc()
    _HTTP_REQUEST_LATENCY_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus metrics payload and content type."""

    _ensure_registry()
    return generate_latest(_REGISTRY or CollectorRegistry()), CONTENT_TYPE_LATEST


def reset_metrics_for_tests() -> None:  # pragma: no cover - test utility
    """Reset the registry so tests can run with a clean state."""

    with _LOCK:
        _initialise_registry()
