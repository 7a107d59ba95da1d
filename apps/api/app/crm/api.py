from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import error_response
from app.core.actor import ActorUser, get_current_user, require_permission
from app.core.database import get_db
from app.crm.importer import lead_import_service, resolve_funnel
from app.crm.reporting import reporting_service
from app.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    AppointmentCreate,
    AppointmentRead,
    AppointmentStatus,
    AppointmentStatusUpdate,
    BulkAssignRequest,
    BulkAssignResult,
    DashboardRead,
    DedupeResult,
    FunnelKey,
    FunnelStats,
    LeadAssignRequest,
    LeadCreate,
    LeadQualifyRequest,
    LeadRead,
    LeadStatus,
    LeadUpdate,
    SaleCreate,
    SaleRead,
    SDRMetricsRead,
    SheetSyncResult,
    SlotConfigRead,
    SlotConfigUpsert,
    SyncConfigRead,
    SyncConfigUpsert,
    SyncToggleRequest,
    TaskCreate,
    TaskRead,
    TaskStatus,
    TimeSlotRead,
)
from app.crm.service import activity_service, appointment_service, lead_service, slot_config_service, task_service
from app.crm.sheets import SheetsSyncError


leads_router = APIRouter(prefix="/api/crm/funnels/{funnel}", tags=["crm-leads"])
tasks_router = APIRouter(prefix="/api/crm/tasks", tags=["crm-tasks"])
scheduling_router = APIRouter(prefix="/api/crm", tags=["crm-scheduling"])
reports_router = APIRouter(prefix="/api/crm/reports", tags=["crm-reports"])
sync_router = APIRouter(prefix="/api/crm/sync-configs", tags=["crm-sync"])

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    request: Request,
    funnel: FunnelKey,
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    q: str | None = Query(default=None),
    sdr_id: uuid.UUID | None = Query(default=None),
    unassigned: bool = Query(default=False),
    month: str | None = Query(default=None, pattern=MONTH_PATTERN),
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(user, "crm.leads.read")
        return lead_service.list_leads(
            db,
            user,
            funnel,
            filters={
                "status": status_filter,
                "q": q,
                "sdr_id": sdr_id,
                "unassigned": unassigned,
                "month": month,
                "day": day,
            },
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    funnel: FunnelKey,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.create")
        return lead_service.create_lead(db, user, funnel, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads/bulk-assign", response_model=BulkAssignResult)
def bulk_assign_leads(
    request: Request,
    funnel: FunnelKey,
    dto: BulkAssignRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> BulkAssignResult | JSONResponse:
    try:
        require_permission(user, "crm.leads.assign")
        return lead_service.bulk_assign(db, user, funnel, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_bulk_assign_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads/dedupe", response_model=DedupeResult)
def dedupe_leads(
    request: Request,
    funnel: FunnelKey,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DedupeResult | JSONResponse:
    try:
        require_permission(user, "crm.leads.dedupe")
        return lead_import_service.remove_duplicates(db, user, funnel)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_dedupe_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.read")
        return lead_service.get_lead(db, user, funnel, lead_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.patch("/leads/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.update")
        return lead_service.update_lead(db, user, funnel, lead_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    dto: LeadAssignRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.assign")
        return lead_service.assign_lead(db, user, funnel, lead_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_assign_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads/{lead_id}/qualify", response_model=LeadRead)
def qualify_lead(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    dto: LeadQualifyRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.qualify")
        return lead_service.qualify_lead(db, user, funnel, lead_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_lead_qualify_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.get("/leads/{lead_id}/activities", response_model=list[ActivityRead])
def list_activities(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ActivityRead] | JSONResponse:
    try:
        require_permission(user, "crm.activities.read")
        return activity_service.list_for_lead(db, user, funnel, lead_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_activity_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/leads/{lead_id}/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    request: Request,
    funnel: FunnelKey,
    lead_id: uuid.UUID,
    dto: ActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ActivityRead | JSONResponse:
    try:
        require_permission(user, "crm.activities.create")
        return activity_service.add(db, user, funnel, lead_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_activity_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.get("/stats", response_model=FunnelStats)
def get_funnel_stats(
    request: Request,
    funnel: FunnelKey,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> FunnelStats | JSONResponse:
    try:
        require_permission(user, "crm.reports.read")
        return reporting_service.funnel_stats(db, resolve_funnel(funnel))
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_funnel_stats_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@sync_router.get("", response_model=list[SyncConfigRead])
def list_sync_configs(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SyncConfigRead] | JSONResponse:
    try:
        require_permission(user, "crm.sync.run")
        return lead_import_service.list_configs(db)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sync_config_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.get("/sync-config", response_model=SyncConfigRead)
def get_sync_config(
    request: Request,
    funnel: FunnelKey,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SyncConfigRead | JSONResponse:
    try:
        require_permission(user, "crm.sync.run")
        return lead_import_service.get_config(db, funnel)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sync_config_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.put("/sync-config", response_model=SyncConfigRead)
def put_sync_config(
    request: Request,
    funnel: FunnelKey,
    dto: SyncConfigUpsert,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SyncConfigRead | JSONResponse:
    try:
        require_permission(user, "crm.sync.manage")
        return lead_import_service.upsert_config(db, user, funnel, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sync_config_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/sync-config/toggle", response_model=SyncConfigRead)
def toggle_sync(
    request: Request,
    funnel: FunnelKey,
    dto: SyncToggleRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SyncConfigRead | JSONResponse:
    try:
        require_permission(user, "crm.sync.manage")
        return lead_import_service.toggle(db, user, funnel, dto.is_active)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sync_toggle_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@leads_router.post("/sync", response_model=SheetSyncResult)
def run_sync(
    request: Request,
    funnel: FunnelKey,
    target_date: date | None = Query(default=None),
    target_month: str | None = Query(default=None, pattern=MONTH_PATTERN),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SheetSyncResult | JSONResponse:
    try:
        require_permission(user, "crm.sync.run")
        if target_date is not None and target_month is not None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="target_date and target_month are mutually exclusive",
            )
        return lead_import_service.sync_funnel(
            db,
            funnel,
            target_date=target_date,
            target_month=target_month,
            actor_user_id=user.user_id,
        )
    except SheetsSyncError as exc:
        return error_response(
            request,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="crm_sync_upstream_failed",
            message=str(exc),
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sync_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.get("", response_model=list[TaskRead])
def list_tasks(
    request: Request,
    sdr_id: uuid.UUID | None = Query(default=None),
    status_filter: TaskStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TaskRead] | JSONResponse:
    try:
        require_permission(user, "crm.tasks.read")
        return task_service.list_tasks(db, user, sdr_id=sdr_id, status_filter=status_filter)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.write")
        return task_service.create_task(db, user, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@tasks_router.post("/{task_id}/toggle", response_model=TaskRead)
def toggle_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TaskRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.write")
        return task_service.toggle_task(db, user, task_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_task_toggle_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.get("/slots", response_model=list[TimeSlotRead])
def list_slots(
    request: Request,
    closer_id: uuid.UUID = Query(),
    day: date = Query(alias="date"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TimeSlotRead] | JSONResponse:
    try:
        require_permission(user, "crm.appointments.read")
        return appointment_service.available_slots(db, closer_id, day)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_slot_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.get("/slots/config", response_model=list[SlotConfigRead])
def list_slot_configs(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SlotConfigRead] | JSONResponse:
    try:
        require_permission(user, "crm.appointments.read")
        return slot_config_service.list_configs(db)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_slot_config_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.put("/slots/config/{day_of_week}", response_model=SlotConfigRead)
def put_slot_config(
    request: Request,
    day_of_week: int,
    dto: SlotConfigUpsert,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SlotConfigRead | JSONResponse:
    try:
        require_permission(user, "crm.slots.manage")
        return slot_config_service.upsert(db, user, day_of_week, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_slot_config_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.get("/appointments", response_model=list[AppointmentRead])
def list_appointments(
    request: Request,
    closer_id: uuid.UUID | None = Query(default=None),
    scheduled_date: date | None = Query(default=None, alias="date"),
    status_filter: AppointmentStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AppointmentRead] | JSONResponse:
    try:
        require_permission(user, "crm.appointments.read")
        return appointment_service.list_appointments(
            db,
            user,
            filters={"closer_id": closer_id, "scheduled_date": scheduled_date, "status": status_filter},
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_appointment_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.post("/appointments", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def book_appointment(
    request: Request,
    dto: AppointmentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AppointmentRead | JSONResponse:
    try:
        require_permission(user, "crm.appointments.create")
        return appointment_service.book(db, user, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_appointment_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.patch("/appointments/{appointment_id}/status", response_model=AppointmentRead)
def update_appointment_status(
    request: Request,
    appointment_id: uuid.UUID,
    dto: AppointmentStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AppointmentRead | JSONResponse:
    try:
        require_permission(user, "crm.appointments.update")
        return appointment_service.update_status(db, user, appointment_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_appointment_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@scheduling_router.post("/sales", response_model=SaleRead, status_code=status.HTTP_201_CREATED)
def record_sale(
    request: Request,
    dto: SaleCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SaleRead | JSONResponse:
    try:
        require_permission(user, "crm.sales.create")
        return appointment_service.record_sale(db, user, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sale_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@reports_router.get("/dashboard", response_model=DashboardRead)
def get_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DashboardRead | JSONResponse:
    try:
        require_permission(user, "crm.reports.read")
        return reporting_service.dashboard(db)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_dashboard_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@reports_router.get("/sdr-metrics", response_model=SDRMetricsRead)
def get_sdr_metrics(
    request: Request,
    sdr_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SDRMetricsRead | JSONResponse:
    try:
        require_permission(user, "crm.tasks.read")
        target = sdr_id or user.user_uuid
        if target != user.user_uuid:
            require_permission(user, "crm.reports.read")
        return reporting_service.sdr_metrics(db, target)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_sdr_metrics_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
