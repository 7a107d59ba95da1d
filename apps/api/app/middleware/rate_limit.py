from __future__ import annotations

import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_correlation_id
from app.core.auth import bearer_subject
from app.core.config import get_settings

WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class SlidingWindowLimiter:
    """Allows at most `limit` hits per key within any rolling window."""

    def __init__(self, window_seconds: float = WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._hits: dict[tuple[str, str], deque[float]] = {}

    def hit(self, subject: str, group: str, limit: int) -> RateLimitDecision:
        if limit <= 0:
            return RateLimitDecision(allowed=False, retry_after=int(self.window_seconds))

        now = time.monotonic()
        horizon = now - self.window_seconds
        with self._lock:
            hits = self._hits.setdefault((subject, group), deque())
            while hits and hits[0] <= horizon:
                hits.popleft()
            if len(hits) >= limit:
                return RateLimitDecision(allowed=False, retry_after=max(1, math.ceil(hits[0] - horizon)))
            hits.append(now)
        return RateLimitDecision(allowed=True)

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


_limiter = SlidingWindowLimiter()


def route_group(path: str) -> str:
    # /api/crm/funnels/... -> "funnels", /api/functions/create-user -> "functions.create-user"
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 3 and parts[1] == "functions":
        return f"functions.{parts[2]}"
    if len(parts) >= 3:
        return parts[2]
    return parts[-1] if parts else "root"


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    mutating_methods = frozenset({"POST", "PUT", "PATCH", "DELETE"})
    limited_prefixes = ("/api/crm", "/api/functions", "/api/users")

    def _applies(self, request: Request) -> bool:
        return request.method.upper() in self.mutating_methods and request.url.path.startswith(self.limited_prefixes)

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled or not self._applies(request):
            return await call_next(request)

        decision = _limiter.hit(
            bearer_subject(request) or "anonymous",
            route_group(request.url.path),
            settings.rate_limit_mutations_per_minute,
        )
        if decision.allowed:
            return await call_next(request)
        return _too_many_requests(request, decision.retry_after)


def _too_many_requests(request: Request, retry_after: int) -> JSONResponse:
    correlation_id = (
        get_correlation_id()
        or getattr(request.state, "correlation_id", None)
        or str(uuid.uuid4())
    )
    return JSONResponse(
        status_code=429,
        content={
            "code": "RATE_LIMITED",
            "message": "Too many requests",
            "details": None,
            "correlation_id": correlation_id,
        },
        headers={"Retry-After": str(retry_after), "X-Correlation-Id": correlation_id},
    )


def reset_rate_limiter() -> None:
    _limiter.clear()
