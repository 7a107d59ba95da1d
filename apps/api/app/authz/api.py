from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import error_response
from app.authz.schemas import UpdateUserRoleRequest, UserRead
from app.authz.service import user_provisioning_service
from app.core.actor import ActorUser, get_current_user, require_permission
from app.core.database import get_db


users_router = APIRouter(prefix="/api/users", tags=["users"])


@users_router.get("", response_model=list[UserRead])
def list_users(
    request: Request,
    role: str | None = Query(default=None),
    q: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[UserRead] | JSONResponse:
    try:
        require_permission(user, "users.read")
        return user_provisioning_service.list_users(db, role=role, q=q)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="user_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@users_router.get("/{user_id}", response_model=UserRead)
def get_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        require_permission(user, "users.read")
        return user_provisioning_service.get_user(db, user_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="user_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@users_router.patch("/{user_id}/role", response_model=UserRead)
def update_user_role(
    request: Request,
    user_id: uuid.UUID,
    dto: UpdateUserRoleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        require_permission(user, "users.manage")
        return user_provisioning_service.update_role(db, user, user_id, dto.role)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="user_role_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@users_router.delete("/{user_id}", response_model=dict[str, str])
def delete_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, str] | JSONResponse:
    try:
        require_permission(user, "users.manage")
        if str(user_id) == user.user_id:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="cannot delete yourself")
        user_provisioning_service.delete_user(db, user, user_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="user_delete_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
