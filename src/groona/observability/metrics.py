from __future__ import annotations

"""Prometheus metrics for the assistant API.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for model fallbacks and entities created through the assistant.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds); chat turns are slow.
REQUEST_LATENCY = Histogram(
    "groona_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

MODEL_FALLBACKS = Counter(
    "groona_model_fallbacks_total",
    "Model fallbacks taken after an upstream error",
    labelnames=("from_model", "to_model", "reason"),
)

ENTITIES_CREATED = Counter(
    "groona_entities_created_total",
    "Projects and tasks created through the assistant",
    labelnames=("entity",),
)

SIDE_EFFECT_FAILURES = Counter(
    "groona_side_effect_failures_total",
    "Best-effort side effects that raised",
    labelnames=("effect",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /assistant/conversations/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    if segs[0] == "api":
        segs = segs[1:]
    return "/" + "/".join(segs[:2])


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
