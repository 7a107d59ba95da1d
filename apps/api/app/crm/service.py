from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from app import audit, events
from app.authz.service import user_provisioning_service
from app.core.actor import ActorUser
from app.core.config import get_settings
from app.crm.importer import resolve_funnel
from app.crm.models import (
    AnyLead,
    Appointment,
    Funnel,
    LeadActivity,
    SDRTask,
    Sale,
    TimeSlotConfig,
    utcnow,
)
from app.crm.scheduling import generate_time_slots, iso_day_of_week
from app.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    AppointmentCreate,
    AppointmentRead,
    AppointmentStatusUpdate,
    BulkAssignRequest,
    BulkAssignResult,
    LeadAssignRequest,
    LeadCreate,
    LeadQualifyRequest,
    LeadRead,
    LeadUpdate,
    SaleCreate,
    SaleRead,
    SlotConfigRead,
    SlotConfigUpsert,
    TaskCreate,
    TaskRead,
    TimeSlotRead,
)
from app.metrics import observe_leads_assigned

logger = logging.getLogger("app.crm")


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day, tzinfo=ZoneInfo(get_settings().sheet_timezone))
    return to_utc(start), to_utc(start + timedelta(days=1))


def period_bounds(month: str | None, day: date | None) -> tuple[datetime, datetime] | None:
    """Return the UTC half-open range covering a local calendar day or month."""
    zone = ZoneInfo(get_settings().sheet_timezone)
    if day is not None:
        return day_bounds(day)
    if month is not None:
        year, month_number = (int(part) for part in month.split("-"))
        start = datetime(year, month_number, 1, tzinfo=zone)
        following = datetime(year + month_number // 12, month_number % 12 + 1, 1, tzinfo=zone)
        return to_utc(start), to_utc(following)
    return None


def record_activity(
    session: Session,
    funnel: Funnel,
    lead_id: uuid.UUID,
    actor_user: ActorUser,
    activity_type: str,
    title: str,
    description: str | None = None,
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead_id,
        lead_table=funnel.table_name,
        sdr_id=actor_user.user_uuid,
        activity_type=activity_type,
        title=title,
        description=description,
    )
    session.add(activity)
    return activity


def lead_to_read(funnel: Funnel, lead: AnyLead) -> LeadRead:
    values: dict[str, Any] = {column.key: getattr(lead, column.key) for column in lead.__table__.columns}
    values["funnel"] = funnel.key
    return LeadRead.model_validate(values)


class LeadService:
    entity_type = "crm.lead"

    def list_leads(self, session: Session, actor_user: ActorUser, funnel_key: str, filters: dict[str, Any]) -> list[LeadRead]:
        funnel = resolve_funnel(funnel_key)
        model = funnel.model
        stmt: Select[tuple[AnyLead]] = select(model)

        if "crm.leads.read_all" in actor_user.permissions:
            if filters.get("unassigned"):
                stmt = stmt.where(model.assigned_to.is_(None))
            elif filters.get("sdr_id"):
                stmt = stmt.where(model.assigned_to == filters["sdr_id"])
        else:
            stmt = stmt.where((model.assigned_to == actor_user.user_uuid) | (model.closer_id == actor_user.user_uuid))

        bounds = period_bounds(filters.get("month"), filters.get("day"))
        if bounds is not None:
            stmt = stmt.where(model.form_submitted_at >= bounds[0], model.form_submitted_at < bounds[1])

        rows = session.scalars(stmt.order_by(model.form_submitted_at.desc().nulls_last(), model.created_at.desc())).all()

        q = (filters.get("q") or "").strip()
        status_filter = filters.get("status")
        results: list[LeadRead] = []
        for lead in rows:
            if status_filter and lead.status != status_filter:
                continue
            if q and not self._matches(lead, q):
                continue
            results.append(lead_to_read(funnel, lead))
        return results

    def get_lead(self, session: Session, actor_user: ActorUser, funnel_key: str, lead_id: uuid.UUID) -> LeadRead:
        funnel = resolve_funnel(funnel_key)
        return lead_to_read(funnel, self._load_visible(session, actor_user, funnel, lead_id))

    def create_lead(self, session: Session, actor_user: ActorUser, funnel_key: str, dto: LeadCreate) -> LeadRead:
        funnel = resolve_funnel(funnel_key)
        lead = funnel.model(
            name=dto.name,
            email=str(dto.email) if dto.email is not None else None,
            phone=dto.phone,
            notes=dto.notes,
            source="manual_sdr",
            status="new",
            assigned_to=actor_user.user_uuid,
            form_submitted_at=to_utc(dto.form_submitted_at) if dto.form_submitted_at is not None else utcnow(),
            instagram_handle=dto.instagram_handle,
            business=dto.business,
            business_niche=dto.business_niche,
            business_role=dto.business_role,
            monthly_revenue=dto.monthly_revenue,
            monthly_net_profit=dto.monthly_net_profit,
        )
        session.add(lead)
        session.flush()
        record_activity(
            session,
            funnel,
            lead.id,
            actor_user,
            "note",
            "Lead created manually",
            f"Lead {lead.name} created by SDR",
        )
        created = lead_to_read(funnel, lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        events.publish(
            events.build_envelope(
                "crm.lead.created",
                {"lead_id": str(lead.id), "source": lead.source},
                actor_user_id=actor_user.user_id,
                funnel=funnel.key,
            )
        )
        session.commit()
        return created

    def update_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        funnel_key: str,
        lead_id: uuid.UUID,
        dto: LeadUpdate,
    ) -> LeadRead:
        funnel = resolve_funnel(funnel_key)
        lead = self._load_visible(session, actor_user, funnel, lead_id)
        payload = dto.model_dump(exclude_unset=True)
        for key in ("status", "name"):
            if key in payload and payload[key] is None:
                payload.pop(key)
        if "email" in payload and payload["email"] is not None:
            payload["email"] = str(payload["email"])
        if not payload:
            return lead_to_read(funnel, lead)

        before = lead_to_read(funnel, lead)
        previous_status = lead.status
        for key, value in payload.items():
            setattr(lead, key, value)
        lead.updated_at = utcnow()

        if "status" in payload and payload["status"] != previous_status:
            record_activity(
                session,
                funnel,
                lead.id,
                actor_user,
                "status_change",
                f"Status changed to {payload['status']}",
                f"Status changed from {previous_status} to {payload['status']}",
            )
        session.flush()

        updated = lead_to_read(funnel, lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="update",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        events.publish(
            events.build_envelope(
                "crm.lead.updated",
                {"lead_id": str(lead.id), "status": lead.status},
                actor_user_id=actor_user.user_id,
                funnel=funnel.key,
            )
        )
        session.commit()
        return updated

    def assign_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        funnel_key: str,
        lead_id: uuid.UUID,
        dto: LeadAssignRequest,
    ) -> LeadRead:
        funnel = resolve_funnel(funnel_key)
        lead = session.scalar(select(funnel.model).where(funnel.model.id == lead_id))
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        user_provisioning_service.require_role(session, dto.assigned_to, "sdr")

        before = lead_to_read(funnel, lead)
        lead.assigned_to = dto.assigned_to
        lead.updated_at = utcnow()
        session.flush()

        updated = lead_to_read(funnel, lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="assign",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        events.publish(
            events.build_envelope(
                "crm.lead.assigned",
                {"lead_id": str(lead.id), "assigned_to": str(dto.assigned_to)},
                actor_user_id=actor_user.user_id,
                funnel=funnel.key,
            )
        )
        session.commit()
        observe_leads_assigned(funnel.key, "single", 1)
        return updated

    def bulk_assign(self, session: Session, actor_user: ActorUser, funnel_key: str, dto: BulkAssignRequest) -> BulkAssignResult:
        funnel = resolve_funnel(funnel_key)
        model = funnel.model
        user_provisioning_service.require_role(session, dto.sdr_id, "sdr")

        lead_ids = list(
            session.scalars(
                select(model.id)
                .where(model.assigned_to.is_(None))
                .order_by(model.form_submitted_at.desc().nulls_last(), model.created_at.desc())
                .limit(dto.quantity)
            ).all()
        )
        if not lead_ids:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="no unassigned leads available")

        result = session.execute(
            update(model)
            .where(model.id.in_(lead_ids), model.assigned_to.is_(None))
            .values(assigned_to=dto.sdr_id, updated_at=utcnow())
        )
        assigned = int(result.rowcount or 0)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=funnel.table_name,
            action="bulk_assign",
            before=None,
            after={"sdr_id": str(dto.sdr_id), "lead_ids": [str(item) for item in lead_ids], "assigned": assigned},
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        events.publish(
            events.build_envelope(
                "crm.leads.bulk_assigned",
                {"sdr_id": str(dto.sdr_id), "assigned": assigned},
                actor_user_id=actor_user.user_id,
                funnel=funnel.key,
            )
        )
        session.commit()
        observe_leads_assigned(funnel.key, "bulk", assigned)
        logger.info("crm.leads.bulk_assigned", extra={"funnel": funnel.key, "assigned": assigned, "target": str(dto.sdr_id)})
        return BulkAssignResult(
            funnel=funnel.key,
            sdr_id=dto.sdr_id,
            requested=dto.quantity,
            assigned=assigned,
            lead_ids=lead_ids,
        )

    def qualify_lead(
        self,
        session: Session,
        actor_user: ActorUser,
        funnel_key: str,
        lead_id: uuid.UUID,
        dto: LeadQualifyRequest,
    ) -> LeadRead:
        funnel = resolve_funnel(funnel_key)
        lead = self._load_visible(session, actor_user, funnel, lead_id)
        if lead.qualified:
            return lead_to_read(funnel, lead)
        if dto.closer_id is not None:
            user_provisioning_service.require_role(session, dto.closer_id, "closer")

        before = lead_to_read(funnel, lead)
        lead.qualified = True
        lead.qualification_notes = dto.qualification_notes
        lead.qualified_at = utcnow()
        lead.qualified_by = actor_user.user_uuid
        lead.status = "qualified"
        if dto.closer_id is not None:
            lead.closer_id = dto.closer_id
        lead.updated_at = utcnow()
        record_activity(
            session,
            funnel,
            lead.id,
            actor_user,
            "qualification",
            "Lead qualified",
            f"Lead qualified and handed off to a closer. Notes: {dto.qualification_notes or ''}",
        )
        session.flush()

        updated = lead_to_read(funnel, lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="qualify",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        events.publish(
            events.build_envelope(
                "crm.lead.qualified",
                {"lead_id": str(lead.id), "closer_id": str(lead.closer_id) if lead.closer_id else None},
                actor_user_id=actor_user.user_id,
                funnel=funnel.key,
            )
        )
        session.commit()
        return updated

    def _load_visible(self, session: Session, actor_user: ActorUser, funnel: Funnel, lead_id: uuid.UUID) -> AnyLead:
        lead = session.scalar(select(funnel.model).where(funnel.model.id == lead_id))
        if lead is None or not self._can_view(actor_user, lead):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        return lead

    def _can_view(self, actor_user: ActorUser, lead: AnyLead) -> bool:
        if "crm.leads.read_all" in actor_user.permissions:
            return True
        return actor_user.user_uuid in {lead.assigned_to, lead.closer_id}

    def _matches(self, lead: AnyLead, q: str) -> bool:
        needle = q.lower()
        return (
            needle in lead.name.lower()
            or (lead.email is not None and needle in lead.email.lower())
            or (lead.phone is not None and q in lead.phone)
        )


class ActivityService:
    def list_for_lead(self, session: Session, actor_user: ActorUser, funnel_key: str, lead_id: uuid.UUID) -> list[ActivityRead]:
        funnel = resolve_funnel(funnel_key)
        lead_service._load_visible(session, actor_user, funnel, lead_id)
        rows = session.scalars(
            select(LeadActivity)
            .where(LeadActivity.lead_table == funnel.table_name, LeadActivity.lead_id == lead_id)
            .order_by(LeadActivity.created_at.desc())
        ).all()
        return [ActivityRead.model_validate(row) for row in rows]

    def add(
        self,
        session: Session,
        actor_user: ActorUser,
        funnel_key: str,
        lead_id: uuid.UUID,
        dto: ActivityCreate,
    ) -> ActivityRead:
        funnel = resolve_funnel(funnel_key)
        lead_service._load_visible(session, actor_user, funnel, lead_id)
        activity = record_activity(session, funnel, lead_id, actor_user, dto.activity_type, dto.title, dto.description)
        session.commit()
        return ActivityRead.model_validate(activity)


class TaskService:
    entity_type = "crm.task"

    def list_tasks(
        self,
        session: Session,
        actor_user: ActorUser,
        sdr_id: uuid.UUID | None = None,
        status_filter: str | None = None,
    ) -> list[TaskRead]:
        owner = sdr_id if sdr_id is not None and "crm.leads.read_all" in actor_user.permissions else actor_user.user_uuid
        stmt = select(SDRTask).where(SDRTask.sdr_id == owner)
        if status_filter:
            stmt = stmt.where(SDRTask.status == status_filter)
        rows = session.scalars(stmt.order_by(SDRTask.due_date.asc())).all()
        return [TaskRead.model_validate(row) for row in rows]

    def create_task(self, session: Session, actor_user: ActorUser, dto: TaskCreate) -> TaskRead:
        owner = dto.sdr_id or actor_user.user_uuid
        if owner != actor_user.user_uuid and "crm.leads.read_all" not in actor_user.permissions:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot create tasks for another user")

        lead_table = None
        if dto.lead_id is not None and dto.funnel is not None:
            funnel = resolve_funnel(dto.funnel)
            lead_service._load_visible(session, actor_user, funnel, dto.lead_id)
            lead_table = funnel.table_name

        task = SDRTask(
            sdr_id=owner,
            lead_id=dto.lead_id,
            lead_table=lead_table,
            title=dto.title,
            description=dto.description,
            due_date=to_utc(dto.due_date),
            priority=dto.priority,
            status="pending",
        )
        session.add(task)
        session.commit()
        return TaskRead.model_validate(task)

    def toggle_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> TaskRead:
        task = session.scalar(select(SDRTask).where(SDRTask.id == task_id))
        if task is None or (task.sdr_id != actor_user.user_uuid and "crm.leads.read_all" not in actor_user.permissions):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found")

        if task.status == "pending":
            task.status = "completed"
            task.completed_at = utcnow()
        else:
            task.status = "pending"
            task.completed_at = None
        session.commit()
        return TaskRead.model_validate(task)


class AppointmentService:
    entity_type = "crm.appointment"

    def available_slots(self, session: Session, closer_id: uuid.UUID, day: date) -> list[TimeSlotRead]:
        config = session.scalar(
            select(TimeSlotConfig).where(
                TimeSlotConfig.day_of_week == iso_day_of_week(day),
                TimeSlotConfig.is_active.is_(True),
            )
        )
        if config is None:
            return []

        booked = session.scalars(
            select(Appointment.scheduled_time).where(
                Appointment.closer_id == closer_id,
                Appointment.scheduled_date == day,
                Appointment.status != "cancelled",
            )
        ).all()
        try:
            slots = generate_time_slots(config.start_time, config.end_time, config.slot_duration_minutes, booked)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        return [TimeSlotRead(time=slot.time, available=slot.available) for slot in slots]

    def list_appointments(self, session: Session, actor_user: ActorUser, filters: dict[str, Any]) -> list[AppointmentRead]:
        stmt = select(Appointment)
        closer_id = filters.get("closer_id")
        if actor_user.role == "closer":
            closer_id = actor_user.user_uuid
        if closer_id is not None:
            stmt = stmt.where(Appointment.closer_id == closer_id)
        if filters.get("scheduled_date") is not None:
            stmt = stmt.where(Appointment.scheduled_date == filters["scheduled_date"])
        if filters.get("status"):
            stmt = stmt.where(Appointment.status == filters["status"])
        rows = session.scalars(stmt.order_by(Appointment.scheduled_date.asc(), Appointment.scheduled_time.asc())).all()
        return [AppointmentRead.model_validate(row) for row in rows]

    def book(self, session: Session, actor_user: ActorUser, dto: AppointmentCreate) -> AppointmentRead:
        user_provisioning_service.require_role(session, dto.closer_id, "closer")
        clash = session.scalar(
            select(Appointment.id).where(
                Appointment.closer_id == dto.closer_id,
                Appointment.scheduled_date == dto.scheduled_date,
                Appointment.scheduled_time == dto.scheduled_time,
                Appointment.status != "cancelled",
            )
        )
        if clash is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="time slot already booked")

        lead: AnyLead | None = None
        funnel: Funnel | None = None
        if dto.lead_id is not None and dto.funnel is not None:
            funnel = resolve_funnel(dto.funnel)
            lead = lead_service._load_visible(session, actor_user, funnel, dto.lead_id)

        appointment = Appointment(
            closer_id=dto.closer_id,
            lead_id=dto.lead_id,
            lead_name=dto.lead_name,
            lead_phone=dto.lead_phone,
            lead_email=dto.lead_email,
            funnel=dto.funnel,
            scheduled_date=dto.scheduled_date,
            scheduled_time=dto.scheduled_time,
            status="scheduled",
            notes=dto.notes,
            created_by=actor_user.user_uuid,
        )
        session.add(appointment)

        if lead is not None and funnel is not None:
            previous_status = lead.status
            lead.status = "scheduled"
            lead.closer_id = dto.closer_id
            lead.updated_at = utcnow()
            if previous_status != "scheduled":
                record_activity(
                    session,
                    funnel,
                    lead.id,
                    actor_user,
                    "status_change",
                    "Status changed to scheduled",
                    f"Call booked for {dto.scheduled_date.isoformat()} {dto.scheduled_time}",
                )
        session.flush()

        booked = AppointmentRead.model_validate(appointment)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(appointment.id),
            action="create",
            before=None,
            after=booked.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=dto.funnel,
        )
        events.publish(
            events.build_envelope(
                "crm.appointment.booked",
                {
                    "appointment_id": str(appointment.id),
                    "closer_id": str(dto.closer_id),
                    "scheduled_date": dto.scheduled_date.isoformat(),
                    "scheduled_time": dto.scheduled_time,
                },
                actor_user_id=actor_user.user_id,
                funnel=dto.funnel,
            )
        )
        session.commit()
        return booked

    def update_status(
        self,
        session: Session,
        actor_user: ActorUser,
        appointment_id: uuid.UUID,
        dto: AppointmentStatusUpdate,
    ) -> AppointmentRead:
        appointment = self._load(session, actor_user, appointment_id)
        before = AppointmentRead.model_validate(appointment)
        appointment.status = dto.status
        if dto.notes is not None:
            appointment.notes = dto.notes
        appointment.updated_at = utcnow()
        session.flush()

        updated = AppointmentRead.model_validate(appointment)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(appointment.id),
            action="update_status",
            before=before.model_dump(mode="json"),
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=appointment.funnel,
        )
        session.commit()
        return updated

    def record_sale(self, session: Session, actor_user: ActorUser, dto: SaleCreate) -> SaleRead:
        appointment = self._load(session, actor_user, dto.appointment_id)
        if appointment.status == "cancelled":
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="cannot record a sale for a cancelled appointment")

        sale = Sale(
            appointment_id=appointment.id,
            closer_id=appointment.closer_id,
            value=dto.value,
            entry_value=dto.entry_value,
            installments=dto.installments,
            notes=dto.notes,
        )
        session.add(sale)
        if appointment.status == "scheduled":
            appointment.status = "completed"
            appointment.updated_at = utcnow()
        session.flush()

        created = SaleRead.model_validate(sale)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="crm.sale",
            entity_id=str(sale.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=appointment.funnel,
        )
        events.publish(
            events.build_envelope(
                "crm.sale.recorded",
                {"sale_id": str(sale.id), "appointment_id": str(appointment.id), "value": str(sale.value)},
                actor_user_id=actor_user.user_id,
                funnel=appointment.funnel,
            )
        )
        session.commit()
        return created

    def _load(self, session: Session, actor_user: ActorUser, appointment_id: uuid.UUID) -> Appointment:
        appointment = session.scalar(select(Appointment).where(Appointment.id == appointment_id))
        if appointment is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
        if actor_user.role == "closer" and appointment.closer_id != actor_user.user_uuid:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="appointment not found")
        return appointment


class SlotConfigService:
    def list_configs(self, session: Session) -> list[SlotConfigRead]:
        rows = session.scalars(select(TimeSlotConfig).order_by(TimeSlotConfig.day_of_week.asc())).all()
        return [SlotConfigRead.model_validate(row) for row in rows]

    def upsert(self, session: Session, actor_user: ActorUser, day_of_week: int, dto: SlotConfigUpsert) -> SlotConfigRead:
        if day_of_week < 1 or day_of_week > 7:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="day_of_week must be between 1 and 7")

        config = session.scalar(select(TimeSlotConfig).where(TimeSlotConfig.day_of_week == day_of_week))
        before = SlotConfigRead.model_validate(config).model_dump(mode="json") if config is not None else None
        if config is None:
            config = TimeSlotConfig(day_of_week=day_of_week, start_time=dto.start_time, end_time=dto.end_time)
            session.add(config)
        config.start_time = dto.start_time
        config.end_time = dto.end_time
        config.slot_duration_minutes = dto.slot_duration_minutes
        config.is_active = dto.is_active
        session.flush()

        saved = SlotConfigRead.model_validate(config)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="crm.time_slot_config",
            entity_id=str(config.id),
            action="upsert",
            before=before,
            after=saved.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        return saved


lead_service = LeadService()
activity_service = ActivityService()
task_service = TaskService()
appointment_service = AppointmentService()
slot_config_service = SlotConfigService()
