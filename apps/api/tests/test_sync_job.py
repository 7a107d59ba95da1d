from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import celery_app as jobs
from app.core.database import Base
from app.crm.importer import lead_import_service
from app.crm.models import MPMLead, SyncConfig


class StaticSheetsClient:
    def fetch_values(self, sheet_id: str, tab_name: str) -> list[list[str]]:
        return [
            ["Timestamp", "Nome", "Email"],
            ["05/03/2026 10:00:00", "March Lead", "march@example.com"],
            ["05/04/2026 10:00:00", "April Lead", "april@example.com"],
        ]


@pytest.fixture()
def session_factory(monkeypatch: pytest.MonkeyPatch) -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(jobs, "SessionLocal", SessionLocal)
    monkeypatch.setattr(lead_import_service, "client_factory", StaticSheetsClient)
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


def _add_config(factory: sessionmaker[Session], is_active: bool) -> None:
    with factory() as session:
        session.add(
            SyncConfig(funnel="mpm", product_name="MPM", sheet_id="sheet-job", sheet_tab_name="Leads", is_active=is_active)
        )
        session.commit()


def test_sync_job_imports_rows_for_the_requested_month(session_factory: sessionmaker[Session]) -> None:
    _add_config(session_factory, is_active=True)

    result = jobs.sync_funnel_task("mpm", target_month="2026-03")

    assert result["success"] is True
    assert result["stats"] == {"total": 1, "inserted": 1, "skipped": 0}
    with session_factory() as session:
        names = session.scalars(select(MPMLead.name)).all()
    assert names == ["March Lead"]


def test_sync_job_reports_disabled_config(session_factory: sessionmaker[Session]) -> None:
    _add_config(session_factory, is_active=False)

    result = jobs.sync_funnel_task("mpm")

    assert result["success"] is False
    assert result["stats"] is None
