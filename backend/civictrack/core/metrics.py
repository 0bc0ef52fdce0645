"""
Prometheus metrics and instrumentation helpers.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


HTTP_REQUESTS_TOTAL = Counter(
    "app_http_requests_total",
    "Total count of HTTP requests processed.",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "app_http_request_duration_seconds",
    "Histogram of HTTP request durations in seconds.",
    ["method", "path"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

HTTP_REQUEST_ERRORS = Counter(
    "app_http_request_errors_total",
    "Count of HTTP requests resulting in error responses.",
    ["method", "path", "status"],
)

ISSUES_CREATED = Counter(
    "app_issues_created_total",
    "Issues reported, by category.",
    ["category"],
)

ISSUE_TRANSITIONS = Counter(
    "app_issue_transitions_total",
    "Applied issue status transitions.",
    ["from_status", "to_status"],
)

NOTIFICATIONS_CREATED = Counter(
    "app_notifications_created_total",
    "Persisted notifications, by audience and type.",
    ["audience", "type"],
)

REALTIME_PUSH_FAILURES = Counter(
    "app_realtime_push_failures_total",
    "Realtime pushes that could not be delivered.",
)

MEDIA_STORE_OPERATIONS = Counter(
    "app_media_store_operations_total",
    "Media store calls partitioned by operation and outcome.",
    ["operation", "outcome"],
)


def _normalise_path(request: Request) -> str:
    """
    Full request path with matched path parameters replaced by ``{name}``.

    Must run after routing so ``path_params`` is populated.
    """
    path = request.url.path
    params = request.scope.get("path_params") or {}
    if not params:
        return path
    placeholders = {str(value): f"{{{name}}}" for name, value in params.items()}
    return "/".join(placeholders.get(segment, segment) for segment in path.split("/"))


def _label(value) -> str:
    return str(getattr(value, "value", value))


def observe_http_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record metrics for an HTTP request."""
    status_str = str(status_code)
    HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status=status_str).inc()
    HTTP_REQUEST_DURATION.labels(method=method, path=path).observe(duration)

    if status_code >= 400:
        HTTP_REQUEST_ERRORS.labels(method=method, path=path, status=status_str).inc()


def record_issue_created(category) -> None:
    ISSUES_CREATED.labels(category=_label(category)).inc()


def record_issue_transition(from_status, to_status) -> None:
    ISSUE_TRANSITIONS.labels(from_status=_label(from_status), to_status=_label(to_status)).inc()


def record_notification(audience: str, notification_type) -> None:
    NOTIFICATIONS_CREATED.labels(audience=audience, type=_label(notification_type)).inc()


def record_realtime_failure() -> None:
    REALTIME_PUSH_FAILURES.inc()


def record_media_operation(operation: str, outcome: str) -> None:
    MEDIA_STORE_OPERATIONS.labels(operation=operation, outcome=outcome).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for capturing request metrics."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        method = request.method
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            observe_http_request(method, _normalise_path(request), 500, duration)
            raise

        duration = time.perf_counter() - start
        observe_http_request(method, _normalise_path(request), response.status_code, duration)
        return response


__all__ = [
    "MetricsMiddleware",
    "HTTP_REQUESTS_TOTAL",
    "HTTP_REQUEST_DURATION",
    "HTTP_REQUEST_ERRORS",
    "ISSUES_CREATED",
    "ISSUE_TRANSITIONS",
    "NOTIFICATIONS_CREATED",
    "REALTIME_PUSH_FAILURES",
    "MEDIA_STORE_OPERATIONS",
    "observe_http_request",
    "record_issue_created",
    "record_issue_transition",
    "record_notification",
    "record_realtime_failure",
    "record_media_operation",
]
