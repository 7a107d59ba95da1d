from __future__ import annotations

import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


FunnelKey = Literal["fifty_scripts", "mpm", "teste"]
LeadStatus = Literal["new", "contacted", "qualified", "scheduled", "lost"]
ActivityType = Literal["call", "email", "whatsapp", "meeting", "note", "status_change", "qualification"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
TaskStatus = Literal["pending", "completed"]
AppointmentStatus = Literal["scheduled", "completed", "no_show", "cancelled"]

_CLOCK_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def normalize_clock(value: str) -> str:
    match = _CLOCK_RE.match(value.strip())
    if match is None:
        raise ValueError("time must be HH:MM or HH:MM:SS")
    hours, minutes, seconds = match.groups()
    return f"{hours}:{minutes}:{seconds or '00'}"


class LeadCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    notes: str | None = None
    form_submitted_at: datetime | None = None
    instagram_handle: str | None = None
    business: str | None = None
    business_niche: str | None = None
    business_role: str | None = None
    monthly_revenue: str | None = None
    monthly_net_profit: str | None = None


class LeadUpdate(BaseModel):
    status: LeadStatus | None = None
    notes: str | None = None
    name: str | None = Field(default=None, min_length=1)
    email: EmailStr | None = None
    phone: str | None = None
    instagram_handle: str | None = None
    business: str | None = None
    business_niche: str | None = None
    business_role: str | None = None
    monthly_revenue: str | None = None
    monthly_net_profit: str | None = None


class LeadRead(BaseModel):
    id: UUID
    funnel: FunnelKey
    name: str
    email: str | None
    phone: str | None
    source: str
    notes: str | None
    status: str
    form_submitted_at: datetime | None
    assigned_to: UUID | None
    closer_id: UUID | None
    instagram_handle: str | None
    business: str | None
    business_niche: str | None
    business_role: str | None
    monthly_revenue: str | None
    monthly_net_profit: str | None
    qualified: bool
    qualification_notes: str | None
    qualified_at: datetime | None
    qualified_by: UUID | None
    created_at: datetime
    updated_at: datetime


class LeadAssignRequest(BaseModel):
    assigned_to: UUID


class BulkAssignRequest(BaseModel):
    sdr_id: UUID
    quantity: int = Field(gt=0)


class BulkAssignResult(BaseModel):
    funnel: FunnelKey
    sdr_id: UUID
    requested: int
    assigned: int
    lead_ids: list[UUID]


class LeadQualifyRequest(BaseModel):
    qualification_notes: str | None = None
    closer_id: UUID | None = None


class ActivityCreate(BaseModel):
    activity_type: ActivityType
    title: str = Field(min_length=1)
    description: str | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lead_id: UUID
    lead_table: str
    sdr_id: UUID | None
    activity_type: str
    title: str
    description: str | None
    created_at: datetime


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    due_date: datetime
    priority: TaskPriority = "medium"
    sdr_id: UUID | None = None
    lead_id: UUID | None = None
    funnel: FunnelKey | None = None

    @model_validator(mode="after")
    def validate_lead_reference(self) -> "TaskCreate":
        if self.lead_id is not None and self.funnel is None:
            raise ValueError("funnel is required when lead_id is set")
        return self


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sdr_id: UUID
    lead_id: UUID | None
    lead_table: str | None
    title: str
    description: str | None
    due_date: datetime
    priority: str
    status: str
    completed_at: datetime | None
    created_at: datetime


class AppointmentCreate(BaseModel):
    closer_id: UUID
    lead_name: str = Field(min_length=1)
    lead_phone: str | None = None
    lead_email: str | None = None
    lead_id: UUID | None = None
    funnel: FunnelKey | None = None
    scheduled_date: date
    scheduled_time: str
    notes: str | None = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, value: str) -> str:
        return normalize_clock(value)

    @model_validator(mode="after")
    def validate_lead_reference(self) -> "AppointmentCreate":
        if self.lead_id is not None and self.funnel is None:
            raise ValueError("funnel is required when lead_id is set")
        return self


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus
    notes: str | None = None


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    closer_id: UUID
    lead_id: UUID | None
    lead_name: str
    lead_phone: str | None
    lead_email: str | None
    funnel: str | None
    scheduled_date: date
    scheduled_time: str
    status: str
    notes: str | None
    created_by: UUID | None
    created_at: datetime


class TimeSlotRead(BaseModel):
    time: str
    available: bool


class SlotConfigUpsert(BaseModel):
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(default=30, gt=0)
    is_active: bool = True


class SlotConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_active: bool


class SaleCreate(BaseModel):
    appointment_id: UUID
    value: Decimal = Field(ge=0)
    entry_value: Decimal = Field(default=Decimal("0"), ge=0)
    installments: int = Field(default=1, ge=1)
    notes: str | None = None


class SaleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appointment_id: UUID
    closer_id: UUID
    value: Decimal
    entry_value: Decimal
    installments: int
    notes: str | None
    created_at: datetime


class SyncConfigUpsert(BaseModel):
    sheet_id: str = Field(min_length=1)
    sheet_tab_name: str = Field(min_length=1)
    is_active: bool = True


class SyncToggleRequest(BaseModel):
    is_active: bool


class SyncConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    funnel: str
    product_name: str
    sheet_id: str
    sheet_tab_name: str
    is_active: bool
    last_sync_at: datetime | None


class SheetSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    funnel: FunnelKey = "fifty_scripts"
    target_date: date | None = Field(default=None, alias="targetDate")
    target_month: str | None = Field(default=None, alias="targetMonth", pattern=r"^\d{4}-(0[1-9]|1[0-2])$")

    @model_validator(mode="after")
    def validate_period(self) -> "SheetSyncRequest":
        if self.target_date is not None and self.target_month is not None:
            raise ValueError("target_date and target_month are mutually exclusive")
        return self


class SheetSyncStats(BaseModel):
    total: int = 0
    inserted: int = 0
    skipped: int = 0


class SheetSyncResult(BaseModel):
    success: bool
    message: str
    stats: SheetSyncStats | None = None
    inserted_ids: list[UUID] = Field(default_factory=list)


class DedupeResult(BaseModel):
    funnel: FunnelKey
    removed: int
    removed_ids: list[UUID]


class LeadWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lead_id: UUID = Field(alias="leadId")
    lead_name: str = Field(alias="leadName", min_length=1)
    lead_phone: str | None = Field(default=None, alias="leadPhone")
    lead_email: str | None = Field(default=None, alias="leadEmail")
    table_name: str = Field(alias="tableName", min_length=1)


class LeadWebhookResult(BaseModel):
    success: bool
    result: object = None


class FunnelStats(BaseModel):
    funnel: FunnelKey
    product_name: str
    total: int
    by_status: dict[str, int]
    unassigned: int
    qualified: int


class DashboardRead(BaseModel):
    funnels: list[FunnelStats]
    calls_scheduled: int
    calls_completed: int
    sales_count: int
    revenue: Decimal
    attendance_rate: float
    conversion_rate: float


class SDRMetricsRead(BaseModel):
    sdr_id: UUID
    total_leads: int
    qualified_leads: int
    qualification_rate: float
    pending_tasks: int
    completed_today: int
