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

sheet_sync_runs_total = Counter(
    "sheet_sync_runs_total",
    "Total spreadsheet sync runs by funnel and outcome",
    ["funnel", "status"],
)

sheet_sync_duration_seconds = Histogram(
    "sheet_sync_duration_seconds",
    "Spreadsheet sync duration in seconds",
    ["funnel"],
)

sheet_sync_rows_total = Counter(
    "sheet_sync_rows_total",
    "Spreadsheet rows processed by outcome",
    ["funnel", "outcome"],
)

webhook_relay_total = Counter(
    "webhook_relay_total",
    "Outbound webhook relays by outcome",
    ["status"],
)

leads_assigned_total = Counter(
    "leads_assigned_total",
    "Leads assigned to SDRs",
    ["funnel", "mode"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{(?!funnel\})[^{}]+\}")


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


def observe_sheet_sync(funnel: str, status: str, duration: float, inserted: int = 0, skipped: int = 0) -> None:
    sheet_sync_runs_total.labels(funnel=funnel, status=status).inc()
    sheet_sync_duration_seconds.labels(funnel=funnel).observe(duration)
    if inserted > 0:
        sheet_sync_rows_total.labels(funnel=funnel, outcome="inserted").inc(inserted)
    if skipped > 0:
        sheet_sync_rows_total.labels(funnel=funnel, outcome="skipped").inc(skipped)


def observe_webhook_relay(status: str) -> None:
    webhook_relay_total.labels(status=status).inc()


def observe_leads_assigned(funnel: str, mode: str, count: int) -> None:
    if count > 0:
        leads_assigned_total.labels(funnel=funnel, mode=mode).inc(count)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
