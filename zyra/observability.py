# zyra/observability.py
from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

request_log = logging.getLogger("request")

# Labels stay low-cardinality: route templates, resource names, fixed outcomes.
REQUEST_COUNT = Counter(
    "zyra_http_requests_total",
    "API requests by route template and status",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "zyra_http_request_duration_seconds",
    "API request latency (seconds)",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

UPSTREAM_REQUESTS = Counter(
    "zyra_upstream_requests_total",
    "Calls to third-party data providers",
    ["resource", "outcome"],
)

CACHE_EVENTS = Counter(
    "zyra_cache_events_total",
    "Market data cache lookups by outcome",
    ["event"],
)

LLM_TOKENS = Counter(
    "zyra_llm_tokens_total",
    "Tokens consumed by chat completions",
)


def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def route_label(request: Request) -> str:
    """/api/market/chains/{chain} rather than one label per chain name."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


async def timing_middleware(request: Request, call_next: Callable):
    """Record count + latency and emit one JSON line per request on the "request" logger."""
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        # the 500 envelope is written outside this middleware
        _record(request, "500", time.perf_counter() - start)
        raise
    _record(request, str(response.status_code), time.perf_counter() - start)
    return response


def _record(request: Request, status: str, elapsed: float) -> None:
    REQUEST_COUNT.labels(method=request.method, path=route_label(request), status=status).inc()
    REQUEST_LATENCY.observe(elapsed)

    request_log.info(
        json.dumps(
            {
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round(elapsed * 1000, 2),
                "client": request.client.host if request.client else None,
            }
        )
    )
