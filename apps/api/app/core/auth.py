from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def create_access_token(subject: str, roles: list[str], expires_in: timedelta = timedelta(hours=1)) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {"sub": subject, "roles": roles, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_bearer(request: Request) -> dict[str, Any] | None:
    """Claims of the request's bearer token, or None when absent or invalid."""
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[len("Bearer ") :].strip()
    if not token:
        return None

    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def bearer_subject(request: Request) -> str | None:
    claims = decode_bearer(request)
    if not claims or claims.get("sub") is None:
        return None
    return str(claims["sub"])


async def get_current_user(request: Request) -> AuthUser:
    claims = decode_bearer(request)
    if claims is None:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(claims.get("sub", "anonymous"))
    roles = claims.get("roles")
    if roles is None and isinstance(claims.get("role"), str):
        roles = [claims["role"]]
    if not isinstance(roles, list):
        roles = ["guest"]
    request.state.context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles])
