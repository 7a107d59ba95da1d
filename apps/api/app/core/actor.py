from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Request, status

from app.context import get_correlation_id, set_actor_user_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.rbac import permissions_for_roles, primary_role


def coerce_user_uuid(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"salesdesk-actor:{value}")


@dataclass
class ActorUser:
    user_id: str
    role: str | None
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None

    @property
    def user_uuid(self) -> uuid.UUID:
        return coerce_user_uuid(self.user_id)


def actor_for_role(user_id: str, role: str, correlation_id: str | None = None) -> ActorUser:
    return ActorUser(
        user_id=user_id,
        role=role,
        permissions=permissions_for_roles([role]),
        correlation_id=correlation_id,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    set_actor_user_id(auth_user.sub)
    return ActorUser(
        user_id=auth_user.sub,
        role=primary_role(auth_user.roles),
        permissions=permissions_for_roles(auth_user.roles),
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")
