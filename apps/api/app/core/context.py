from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.core.auth import bearer_subject

_FUNNEL_PREFIX = ("api", "crm", "funnels")


@dataclass
class RequestContext:
    request_id: str
    user_id: str | None
    funnel: str | None


def funnel_from_path(path: str) -> str | None:
    parts = [part for part in path.split("/") if part]
    if tuple(parts[:3]) == _FUNNEL_PREFIX and len(parts) > 3:
        return parts[3]
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attaches request id, caller and funnel to request.state.context."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        request_id = getattr(request.state, "correlation_id", None) or ""
        request.state.context = RequestContext(
            request_id=request_id,
            user_id=bearer_subject(request),
            funnel=funnel_from_path(request.url.path) or request.headers.get("x-funnel"),
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response
