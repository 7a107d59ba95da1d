from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.authz.schemas import CreateUserRequest
from app.authz.service import user_provisioning_service
from app.core.actor import ActorUser, actor_for_role, get_current_user
from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import FiftyScriptsLead
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def auth_roles() -> list[str]:
    return ["admin"]


@pytest.fixture()
def client(db_session: Session, auth_roles: list[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_crm_user(request: Request) -> ActorUser:
        return actor_for_role("metrics-manager", "manager", correlation_id="metrics-corr-1")

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=auth_roles)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_crm_user
    app.dependency_overrides[auth_get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _seed_assignable(db_session: Session) -> str:
    sdr = user_provisioning_service.create_user(
        db_session,
        actor_for_role("bootstrap", "admin"),
        CreateUserRequest.model_validate(
            {"email": "metrics-sdr@example.com", "password": "secret-123", "fullName": "Metrics SDR", "role": "sdr"}
        ),
    )
    db_session.add_all([FiftyScriptsLead(name=f"Metric Lead {index}", source="Google Sheets") for index in range(2)])
    db_session.commit()
    return str(sdr.id)


def test_metrics_endpoint_exposes_http_and_pipeline_metrics(client: TestClient, db_session: Session) -> None:
    assert client.get("/health").status_code == 200

    created = client.post("/api/crm/funnels/fifty_scripts/leads", json={"name": "Metrics Lead"})
    assert created.status_code == 201

    sdr_id = _seed_assignable(db_session)
    assigned = client.post("/api/crm/funnels/fifty_scripts/leads/bulk-assign", json={"sdr_id": sdr_id, "quantity": 2})
    assert assigned.status_code == 200

    config = client.put(
        "/api/crm/funnels/fifty_scripts/sync-config",
        json={"sheet_id": "sheet-1", "sheet_tab_name": "Leads", "is_active": False},
    )
    assert config.status_code == 200
    assert client.post("/api/crm/funnels/fifty_scripts/sync").json()["success"] is False

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "sheet_sync_runs_total" in body
    assert "webhook_relay_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/crm/funnels/{funnel}/leads"' in body
    assert 'leads_assigned_total{funnel="fifty_scripts",mode="bulk"}' in body
    assert 'sheet_sync_runs_total{funnel="fifty_scripts",status="disabled"}' in body


@pytest.mark.parametrize("auth_roles", [["sdr"]])
def test_metrics_require_permission(client: TestClient) -> None:
    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_can_be_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics").status_code == 404
