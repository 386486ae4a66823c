import re
import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

REQUESTS_IN_FLIGHT = Gauge(
    "http_requests_in_flight",
    "HTTP requests currently being served",
)

# Normalise dynamic path segments to avoid high-cardinality label explosion.
_PATH_PATTERNS = [
    (re.compile(r"^/orders/[^/]+$"), "/orders/{order_id}"),
]


def _normalise_path(path: str) -> str:
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Per-route request counts and latency, labelled by normalised path."""

    async def dispatch(self, request: Request, call_next) -> Response:
        route = _normalise_path(request.url.path)
        REQUESTS_IN_FLIGHT.inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            REQUESTS_IN_FLIGHT.dec()
        elapsed = time.perf_counter() - start

        REQUEST_COUNT.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(method=request.method, route=route).observe(elapsed)
        return response
