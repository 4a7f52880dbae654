from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

calls_recorded_total = Counter(
    "calls_recorded_total",
    "Total recorded calls by outcome status",
    ["status"],
)

lead_status_transitions_total = Counter(
    "lead_status_transitions_total",
    "Lead status changes driven by recorded calls",
    ["from_status", "to_status"],
)

lead_status_update_failures_total = Counter(
    "lead_status_update_failures_total",
    "Lead status updates that failed after the call was recorded",
)

access_denied_total = Counter(
    "access_denied_total",
    "Requests denied by the access policy",
    ["resource", "action"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    return _UUID_RE.sub("{id}", path)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_call_recorded(status: str) -> None:
    calls_recorded_total.labels(status=status).inc()


def observe_lead_status_transition(from_status: str, to_status: str) -> None:
    lead_status_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def observe_lead_status_update_failure() -> None:
    lead_status_update_failures_total.inc()


def observe_access_denied(resource: str, action: str) -> None:
    access_denied_total.labels(resource=resource, action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
