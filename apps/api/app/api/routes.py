from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.api.functions import functions_router
from app.authz.api import users_router
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.rbac import permissions_for_roles, primary_role
from app.crm.api import leads_router, reports_router, scheduling_router, sync_router, tasks_router
from app.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(leads_router)
router.include_router(tasks_router)
router.include_router(scheduling_router)
router.include_router(reports_router)
router.include_router(sync_router)
router.include_router(users_router)
router.include_router(functions_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    return {
        "sub": user.sub,
        "roles": user.roles,
        "role": primary_role(user.roles),
        "permissions": sorted(permissions_for_roles(user.roles)),
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if "system.metrics.read" not in permissions_for_roles(user.roles):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
