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

automation_rules_processed_total = Counter(
    "automation_rules_processed_total",
    "Automation rules processed per scan by outcome",
    ["trigger_type", "status"],
)

automation_tasks_created_total = Counter(
    "automation_tasks_created_total",
    "Tasks created by automation rules",
    ["trigger_type"],
)

automation_scan_duration_seconds = Histogram(
    "automation_scan_duration_seconds",
    "Automation scan duration in seconds",
)

workflow_executions_total = Counter(
    "workflow_executions_total",
    "Workflow executions by trigger type and status",
    ["trigger_type", "status"],
)

workflow_execution_duration_seconds = Histogram(
    "workflow_execution_duration_seconds",
    "Workflow execution duration in seconds",
    ["trigger_type"],
)

scheduling_bookings_total = Counter(
    "scheduling_bookings_total",
    "Booking attempts by outcome",
    ["outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_automation_rule(trigger_type: str, status: str, tasks_created: int = 0) -> None:
    automation_rules_processed_total.labels(trigger_type=trigger_type, status=status).inc()
    if tasks_created > 0:
        automation_tasks_created_total.labels(trigger_type=trigger_type).inc(tasks_created)


def observe_automation_scan(duration: float) -> None:
    automation_scan_duration_seconds.observe(duration)


def observe_workflow_execution(trigger_type: str, status: str, duration: float) -> None:
    workflow_executions_total.labels(trigger_type=trigger_type, status=status).inc()
    workflow_execution_duration_seconds.labels(trigger_type=trigger_type).observe(duration)


def observe_booking(outcome: str) -> None:
    scheduling_bookings_total.labels(outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
