from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import error_response
from app.authz.schemas import CreateUserRequest, CreateUserResponse
from app.authz.service import user_provisioning_service
from app.core.actor import ActorUser, get_current_user, require_permission
from app.core.database import get_db
from app.crm.importer import lead_import_service
from app.crm.schemas import LeadWebhookRequest, LeadWebhookResult, SheetSyncRequest, SheetSyncResult
from app.crm.sheets import SheetsSyncError
from app.crm.webhooks import WebhookRelayError, webhook_relay_service


functions_router = APIRouter(prefix="/api/functions", tags=["functions"])


@functions_router.post("/create-user", response_model=CreateUserResponse)
def create_user(
    request: Request,
    dto: CreateUserRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CreateUserResponse | JSONResponse:
    try:
        require_permission(user, "users.manage")
        created = user_provisioning_service.create_user(db, user, dto)
        return CreateUserResponse(success=True, user=created)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="create_user_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@functions_router.post("/schedule-lead-webhook", response_model=LeadWebhookResult)
def schedule_lead_webhook(
    request: Request,
    dto: LeadWebhookRequest,
    user: ActorUser = Depends(get_current_user),
) -> LeadWebhookResult | JSONResponse:
    try:
        require_permission(user, "crm.webhooks.send")
        return webhook_relay_service.relay(user, dto)
    except WebhookRelayError as exc:
        return error_response(
            request,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="lead_webhook_upstream_failed",
            message=str(exc),
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="lead_webhook_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@functions_router.post("/sync-google-sheets", response_model=SheetSyncResult)
def sync_google_sheets(
    request: Request,
    dto: SheetSyncRequest | None = None,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SheetSyncResult | JSONResponse:
    payload = dto or SheetSyncRequest()
    try:
        require_permission(user, "crm.sync.run")
        return lead_import_service.sync_funnel(
            db,
            payload.funnel,
            target_date=payload.target_date,
            target_month=payload.target_month,
            actor_user_id=user.user_id,
        )
    except SheetsSyncError as exc:
        return error_response(
            request,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="sheet_sync_upstream_failed",
            message=str(exc),
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="sheet_sync_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
