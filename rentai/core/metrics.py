"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("app", "RentAI gateway application info")
APP_INFO.info({"version": "1.0.0", "name": "rentai_gateway"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

AI_DISPATCH_TOTAL = Counter(
    "ai_dispatch_total",
    "AI operation dispatches by final outcome",
    ["operation", "outcome"],
)

AI_ADAPTER_ATTEMPTS = Counter(
    "ai_adapter_attempts_total",
    "AI adapter attempts by outcome",
    ["adapter", "outcome"],
)

AI_TOKENS_TOTAL = Counter(
    "ai_tokens_total",
    "Tokens consumed by successful AI adapter calls",
    ["adapter", "direction"],
)

AI_COST_USD_TOTAL = Counter(
    "ai_cost_usd_total",
    "Estimated USD cost of successful AI adapter calls",
    ["adapter"],
)

AI_DISPATCH_DURATION = Histogram(
    "ai_dispatch_duration_seconds",
    "End-to-end AI dispatch duration in seconds",
    ["operation"],
    buckets=[0.005, 0.05, 0.25, 1, 2.5, 5, 10, 30, 60, 120],
)


# --- Middleware ---

# Normalize dynamic path segments to reduce cardinality
_PATH_PREFIXES = ("/api/v1/ai/providers/",)
_STATIC_SEGMENTS = ("status",)


def _normalize_path(path: str) -> str:
    """Replace provider names in paths with {name} to avoid high cardinality."""
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            rest = path[len(prefix) :]
            parts = rest.split("/", 1)
            if parts[0] and parts[0] not in _STATIC_SEGMENTS:
                tail = f"/{parts[1]}" if len(parts) > 1 else ""
                return f"{prefix}{{name}}{tail}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
