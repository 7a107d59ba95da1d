import logging
from datetime import date
from typing import Any

from celery import Celery

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.crm.importer import lead_import_service

settings = get_settings()
logger = logging.getLogger("app.jobs")

celery_app = Celery("salesdesk_api", broker=settings.redis_url, backend=settings.redis_url)


@celery_app.task(name="crm.sync_funnel")
def sync_funnel_task(funnel: str, target_date: str | None = None, target_month: str | None = None) -> dict[str, Any]:
    session = SessionLocal()
    try:
        result = lead_import_service.sync_funnel(
            session,
            funnel,
            target_date=date.fromisoformat(target_date) if target_date else None,
            target_month=target_month,
            actor_user_id="system",
        )
    finally:
        session.close()
    logger.info("crm.sync.job_finished", extra={"funnel": funnel, "status": "success" if result.success else "disabled"})
    return result.model_dump(mode="json")
