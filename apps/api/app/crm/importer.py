from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import date, timezone
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import audit, events
from app.core.actor import ActorUser
from app.core.config import get_settings
from app.crm.models import FUNNELS, Funnel, LeadActivity, SyncConfig, utcnow
from app.crm.schemas import (
    DedupeResult,
    SheetSyncResult,
    SheetSyncStats,
    SyncConfigRead,
    SyncConfigUpsert,
)
from app.crm.sheets import GoogleSheetsClient, SheetLead, SheetsSyncError, parse_sheet_rows, parse_submitted_at
from app.metrics import observe_sheet_sync
from app.otel import traced

logger = logging.getLogger("app.crm.importer")


def resolve_funnel(funnel_key: str) -> Funnel:
    funnel = FUNNELS.get(funnel_key)
    if funnel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"unknown funnel: {funnel_key}")
    return funnel


class LeadImportService:
    entity_type = "crm.sync_config"

    def __init__(self, client_factory: Callable[[], GoogleSheetsClient] = GoogleSheetsClient) -> None:
        self.client_factory = client_factory

    def list_configs(self, session: Session) -> list[SyncConfigRead]:
        rows = session.scalars(select(SyncConfig).order_by(SyncConfig.funnel.asc())).all()
        return [SyncConfigRead.model_validate(row) for row in rows]

    def get_config(self, session: Session, funnel_key: str) -> SyncConfigRead:
        return SyncConfigRead.model_validate(self._load_config(session, resolve_funnel(funnel_key)))

    def upsert_config(self, session: Session, actor_user: ActorUser, funnel_key: str, dto: SyncConfigUpsert) -> SyncConfigRead:
        funnel = resolve_funnel(funnel_key)
        config = session.scalar(select(SyncConfig).where(SyncConfig.funnel == funnel.key))
        before = SyncConfigRead.model_validate(config).model_dump(mode="json") if config is not None else None
        if config is None:
            config = SyncConfig(funnel=funnel.key, product_name=funnel.product_name, sheet_id=dto.sheet_id, sheet_tab_name=dto.sheet_tab_name)
            session.add(config)
        config.sheet_id = dto.sheet_id
        config.sheet_tab_name = dto.sheet_tab_name
        config.is_active = dto.is_active
        session.flush()

        after = SyncConfigRead.model_validate(config)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(config.id),
            action="upsert",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        session.commit()
        return after

    def toggle(self, session: Session, actor_user: ActorUser, funnel_key: str, is_active: bool) -> SyncConfigRead:
        funnel = resolve_funnel(funnel_key)
        config = self._load_config(session, funnel)
        before = SyncConfigRead.model_validate(config).model_dump(mode="json")
        config.is_active = is_active
        session.flush()

        after = SyncConfigRead.model_validate(config)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(config.id),
            action="activate" if is_active else "deactivate",
            before=before,
            after=after.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
            funnel=funnel.key,
        )
        session.commit()
        logger.info("crm.sync.toggled", extra={"funnel": funnel.key, "status": "active" if is_active else "inactive"})
        return after

    def sync_funnel(
        self,
        session: Session,
        funnel_key: str,
        *,
        target_date: date | None = None,
        target_month: str | None = None,
        actor_user_id: str | None = None,
    ) -> SheetSyncResult:
        funnel = resolve_funnel(funnel_key)
        config = self._load_config(session, funnel)
        if not config.is_active:
            observe_sheet_sync(funnel.key, "disabled", 0.0)
            return SheetSyncResult(success=False, message=f"Sync is currently disabled for {funnel.product_name}")

        started = time.perf_counter()
        with traced("app.crm.importer", "crm.sheet_sync", funnel=funnel.key, sheet_id=config.sheet_id) as span:
            try:
                values = self.client_factory().fetch_values(config.sheet_id, config.sheet_tab_name)
            except SheetsSyncError:
                observe_sheet_sync(funnel.key, "error", time.perf_counter() - started)
                logger.exception("crm.sync.upstream_failed", extra={"funnel": funnel.key, "sheet_id": config.sheet_id})
                raise

            candidates = self._filter_period(self._stamp(parse_sheet_rows(values)), target_date, target_month)
            inserted_ids: list[uuid.UUID] = []
            skipped = 0
            for candidate in candidates:
                if self._exists(session, funnel, candidate):
                    skipped += 1
                    continue
                lead_id = self._insert(session, funnel, candidate)
                if lead_id is None:
                    skipped += 1
                else:
                    inserted_ids.append(lead_id)

            config = self._load_config(session, funnel)
            config.last_sync_at = utcnow()
            session.commit()

            stats = SheetSyncStats(total=len(candidates), inserted=len(inserted_ids), skipped=skipped)
            span.set_attribute("sync.inserted", stats.inserted)
            span.set_attribute("sync.skipped", stats.skipped)

        observe_sheet_sync(funnel.key, "success", time.perf_counter() - started, stats.inserted, stats.skipped)
        logger.info(
            "crm.sync.completed",
            extra={"funnel": funnel.key, "total": stats.total, "inserted": stats.inserted, "skipped": stats.skipped},
        )
        events.publish(
            events.build_envelope(
                "crm.leads.imported",
                {"sheet_id": config.sheet_id, **stats.model_dump()},
                actor_user_id=actor_user_id,
                funnel=funnel.key,
            )
        )
        return SheetSyncResult(success=True, message="Sync completed", stats=stats, inserted_ids=inserted_ids)

    def remove_duplicates(self, session: Session, actor_user: ActorUser, funnel_key: str) -> DedupeResult:
        funnel = resolve_funnel(funnel_key)
        model = funnel.model
        leads = session.scalars(select(model).order_by(model.created_at.asc(), model.id.asc())).all()

        seen_emails: set[str] = set()
        seen_phones: set[str] = set()
        duplicate_ids: list[uuid.UUID] = []
        for lead in leads:
            if (lead.email and lead.email in seen_emails) or (lead.phone and lead.phone in seen_phones):
                duplicate_ids.append(lead.id)
                continue
            if lead.email:
                seen_emails.add(lead.email)
            if lead.phone:
                seen_phones.add(lead.phone)

        if duplicate_ids:
            session.execute(
                delete(LeadActivity).where(
                    LeadActivity.lead_table == funnel.table_name,
                    LeadActivity.lead_id.in_(duplicate_ids),
                )
            )
            session.execute(delete(model).where(model.id.in_(duplicate_ids)))
            audit.record(
                actor_user_id=actor_user.user_id,
                entity_type="crm.lead",
                entity_id=funnel.table_name,
                action="dedupe",
                before={"count": len(leads)},
                after={"count": len(leads) - len(duplicate_ids), "removed_ids": [str(item) for item in duplicate_ids]},
                correlation_id=actor_user.correlation_id,
                funnel=funnel.key,
            )
        session.commit()
        logger.info("crm.leads.deduplicated", extra={"funnel": funnel.key, "removed": len(duplicate_ids)})
        return DedupeResult(funnel=funnel.key, removed=len(duplicate_ids), removed_ids=duplicate_ids)

    def _load_config(self, session: Session, funnel: Funnel) -> SyncConfig:
        config = session.scalar(select(SyncConfig).where(SyncConfig.funnel == funnel.key))
        if config is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Sync configuration not found for {funnel.product_name}",
            )
        return config

    def _stamp(self, candidates: list[SheetLead]) -> list[SheetLead]:
        settings = get_settings()
        for candidate in candidates:
            candidate.submitted_at = parse_submitted_at(
                candidate.submitted_raw, settings.sheet_datetime_formats, settings.sheet_timezone
            )
        return candidates

    def _filter_period(self, candidates: list[SheetLead], target_date: date | None, target_month: str | None) -> list[SheetLead]:
        if target_date is None and target_month is None:
            return candidates

        zone = ZoneInfo(get_settings().sheet_timezone)
        selected: list[SheetLead] = []
        for candidate in candidates:
            if candidate.submitted_at is None:
                continue
            local_day = candidate.submitted_at.astimezone(zone).date()
            if target_date is not None and local_day != target_date:
                continue
            if target_month is not None and local_day.strftime("%Y-%m") != target_month:
                continue
            selected.append(candidate)
        return selected

    def _exists(self, session: Session, funnel: Funnel, candidate: SheetLead) -> bool:
        model = funnel.model
        conditions = []
        if candidate.email:
            conditions.append(model.email == candidate.email)
        if candidate.phone:
            conditions.append(model.phone == candidate.phone)
        if not conditions:
            return False
        return session.scalar(select(model.id).where(or_(*conditions)).limit(1)) is not None

    def _insert(self, session: Session, funnel: Funnel, candidate: SheetLead) -> uuid.UUID | None:
        lead = funnel.model(
            name=candidate.name,
            email=candidate.email,
            phone=candidate.phone,
            source=candidate.source,
            notes=candidate.notes,
            status="new",
            business=candidate.business,
            business_niche=candidate.business_niche,
            monthly_revenue=candidate.monthly_revenue,
            form_submitted_at=candidate.submitted_at.astimezone(timezone.utc) if candidate.submitted_at is not None else None,
        )
        try:
            session.add(lead)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("crm.sync.row_failed", extra={"funnel": funnel.key, "row": candidate.row_number})
            return None
        return lead.id


lead_import_service = LeadImportService()
