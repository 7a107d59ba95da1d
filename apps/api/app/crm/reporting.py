from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.crm.models import FUNNELS, LEAD_STATUSES, Appointment, Funnel, SDRTask, Sale
from app.crm.schemas import DashboardRead, FunnelStats, SDRMetricsRead
from app.crm.service import day_bounds


def percentage(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 1)


class ReportingService:
    def funnel_stats(self, session: Session, funnel: Funnel) -> FunnelStats:
        model = funnel.model
        by_status = {value: 0 for value in LEAD_STATUSES}
        for lead_status, count in session.execute(select(model.status, func.count()).group_by(model.status)).all():
            by_status[lead_status] = int(count)

        unassigned = session.scalar(select(func.count()).select_from(model).where(model.assigned_to.is_(None)))
        qualified = session.scalar(select(func.count()).select_from(model).where(model.qualified.is_(True)))
        return FunnelStats(
            funnel=funnel.key,
            product_name=funnel.product_name,
            total=sum(by_status.values()),
            by_status=by_status,
            unassigned=int(unassigned or 0),
            qualified=int(qualified or 0),
        )

    def dashboard(self, session: Session) -> DashboardRead:
        call_counts = dict(session.execute(select(Appointment.status, func.count()).group_by(Appointment.status)).all())
        scheduled = int(call_counts.get("scheduled", 0))
        completed = int(call_counts.get("completed", 0))
        sales_count = int(session.scalar(select(func.count()).select_from(Sale)) or 0)
        revenue = session.scalar(select(func.coalesce(func.sum(Sale.value), 0)))

        return DashboardRead(
            funnels=[self.funnel_stats(session, funnel) for funnel in FUNNELS.values()],
            calls_scheduled=scheduled,
            calls_completed=completed,
            sales_count=sales_count,
            revenue=Decimal(str(revenue or 0)),
            attendance_rate=percentage(completed, scheduled),
            conversion_rate=percentage(sales_count, completed),
        )

    def sdr_metrics(self, session: Session, sdr_id: uuid.UUID, now: datetime | None = None) -> SDRMetricsRead:
        total = 0
        qualified = 0
        for funnel in FUNNELS.values():
            model = funnel.model
            total += int(session.scalar(select(func.count()).select_from(model).where(model.assigned_to == sdr_id)) or 0)
            qualified += int(
                session.scalar(
                    select(func.count()).select_from(model).where(model.assigned_to == sdr_id, model.qualified.is_(True))
                )
                or 0
            )

        pending = session.scalar(
            select(func.count()).select_from(SDRTask).where(SDRTask.sdr_id == sdr_id, SDRTask.status == "pending")
        )
        local_today = (now or datetime.now(timezone.utc)).astimezone(ZoneInfo(get_settings().sheet_timezone)).date()
        start, end = day_bounds(local_today)
        completed_today = session.scalar(
            select(func.count())
            .select_from(SDRTask)
            .where(
                SDRTask.sdr_id == sdr_id,
                SDRTask.status == "completed",
                SDRTask.completed_at >= start,
                SDRTask.completed_at < end,
            )
        )
        return SDRMetricsRead(
            sdr_id=sdr_id,
            total_leads=total,
            qualified_leads=qualified,
            qualification_rate=percentage(qualified, total),
            pending_tasks=int(pending or 0),
            completed_today=int(completed_today or 0),
        )


reporting_service = ReportingService()
