"""Prometheus metrics for the relay."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("relay", "Hugging Face relay application info")
APP_INFO.info({"version": "1.0.0", "name": "hf_relay"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60],
)

DISPATCH_ATTEMPTS = Counter(
    "relay_dispatch_attempts_total",
    "Backend calls issued by the dispatch engine",
    ["backend", "outcome"],
)

FALLBACK_RESPONSES = Counter(
    "relay_fallback_responses_total",
    "Responses answered with a fallback message instead of generated text",
    ["token"],
)

RATE_LIMIT_DENIALS = Counter(
    "relay_rate_limit_denials_total",
    "Requests rejected by the per-client rate limiter",
)


# --- Middleware ---

# Requests that match no route (404s, scanners) share one label to bound cardinality
_UNMATCHED_PATH = "<unmatched>"


def _normalize_path(request: Request) -> str:
    """Label by the matched route template rather than the raw URL."""
    route = request.scope.get("route")
    return getattr(route, "path", _UNMATCHED_PATH)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        # The router records the matched route in the scope while handling the request
        path = _normalize_path(request)

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
