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

leads_created_total = Counter(
    "leads_created_total",
    "Total leads created by initial priority",
    ["priority"],
)

lead_priority_changes_total = Counter(
    "lead_priority_changes_total",
    "Total lead priority transitions",
    ["from_priority", "to_priority"],
)

lead_visibility_denied_total = Counter(
    "lead_visibility_denied_total",
    "Total lead reads or writes denied by the hierarchy rule",
    ["role", "action"],
)

report_exports_total = Counter(
    "report_exports_total",
    "Total report exports by report type and format",
    ["report_type", "export_format"],
)

report_export_duration_seconds = Histogram(
    "report_export_duration_seconds",
    "Report export build duration in seconds",
    ["report_type"],
)

authz_policy_cache_hit_total = Counter(
    "authz_policy_cache_hit_total",
    "Authorization policy cache hits",
)

authz_policy_cache_miss_total = Counter(
    "authz_policy_cache_miss_total",
    "Authorization policy cache misses",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_lead_created(priority: str) -> None:
    leads_created_total.labels(priority=priority).inc()


def observe_lead_priority_change(from_priority: str | None, to_priority: str) -> None:
    lead_priority_changes_total.labels(from_priority=from_priority or "none", to_priority=to_priority).inc()


def observe_lead_visibility_denied(role: str | None, action: str) -> None:
    lead_visibility_denied_total.labels(role=role or "none", action=action).inc()


def observe_report_export(report_type: str, export_format: str, duration: float) -> None:
    report_exports_total.labels(report_type=report_type, export_format=export_format).inc()
    report_export_duration_seconds.labels(report_type=report_type).observe(duration)


def observe_authz_policy_cache_hit() -> None:
    authz_policy_cache_hit_total.inc()


def observe_authz_policy_cache_miss() -> None:
    authz_policy_cache_miss_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
