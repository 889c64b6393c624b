"""
Prometheus metrics.

HTTP request counter/histogram collected by PrometheusMiddleware, plus the
domain counters the services update: analyses, estimated CO2, eco scores,
optimization transitions and agent runs.
"""

import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Analysis metrics ─────────────────────────────────────────────────────────

pipeline_analyses_total = Counter(
    "pipeline_analyses_total",
    "Pipeline analyses run",
    ["status"],
)

pipeline_co2_kg_total = Counter(
    "pipeline_co2_kg_total",
    "Estimated CO2 (kg) of all recorded pipeline runs",
)

eco_score = Histogram(
    "eco_score",
    "Eco score of recorded pipeline runs",
    buckets=(40, 60, 75, 90, 100),
)

# ── Optimization / agent metrics ─────────────────────────────────────────────

optimizations_transitions_total = Counter(
    "optimizations_transitions_total",
    "Optimization status transitions",
    ["from_status", "to_status"],
)

agent_runs_total = Counter(
    "agent_runs_total",
    "Agent runs by outcome",
    ["agent", "outcome"],
)

_RUN_OR_DIGITS = re.compile(r"^\d+$|^RUN-[0-9A-F]+$")


def _normalize_path(path: str) -> str:
    """Fallback label for requests no route matched.

    e.g. /api/agents/ghost/runs/RUN-1A2B → /api/agents/ghost/runs/{id}
    """
    parts = path.strip("/").split("/")
    return "/" + "/".join("{id}" if _RUN_OR_DIGITS.match(p) else p for p in parts)


def route_label(request: Request) -> str:
    """Label a request by its route template so ids and agent names stay out of it."""
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return template
    return _normalize_path(request.url.path)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # routing has run by now, so the matched template is in the scope
        path = route_label(request)
        http_requests_total.labels(method=request.method, path=path, status_code=response.status_code).inc()
        http_request_duration_seconds.labels(method=request.method, path=path).observe(elapsed)
        return response
