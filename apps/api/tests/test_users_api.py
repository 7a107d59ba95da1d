from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.authz.models import UserCredential
from app.authz.service import verify_password
from app.core.actor import ActorUser, actor_for_role, get_current_user
from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[str, str], None]], None, None]:
    state = {"user_id": "root-admin", "role": "admin"}

    def use_actor(user_id: str, role: str) -> None:
        state["user_id"] = user_id
        state["role"] = role

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return actor_for_role(state["user_id"], state["role"], correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, use_actor
    app.dependency_overrides.clear()


def _create_user(client: TestClient, email: str, role: str, full_name: str = "Someone") -> dict:
    response = client.post(
        "/api/functions/create-user",
        json={"email": email, "password": "secret-123", "fullName": full_name, "role": role},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    return body["user"]


def test_create_user_provisions_profile_credential_and_role(
    client: tuple[TestClient, Callable[[str, str], None]],
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="app.audit")
    test_client, _ = client

    user = _create_user(test_client, "Carla@Example.com", "closer", full_name="Carla Closer")
    assert user["email"] == "carla@example.com"
    assert user["full_name"] == "Carla Closer"
    assert user["role"] == "closer"

    credential = db_session.scalar(select(UserCredential).where(UserCredential.user_id == uuid.UUID(user["id"])))
    assert credential is not None
    assert credential.password_hash != "secret-123"
    assert verify_password("secret-123", credential.password_hash)
    assert credential.email_confirmed_at is not None

    audit_records = [record for record in caplog.records if record.name == "app.audit" and getattr(record, "entity_id", None) == user["id"]]
    assert [(record.entity_type, record.action) for record in audit_records] == [("user", "create")]
    assert audit_records[0].actor_user_id == "root-admin"


def test_create_user_rejects_duplicates_and_bad_input(client: tuple[TestClient, Callable[[str, str], None]]) -> None:
    test_client, _ = client
    _create_user(test_client, "dup@example.com", "sdr")

    duplicate = test_client.post(
        "/api/functions/create-user",
        json={"email": "DUP@example.com", "password": "secret-123", "fullName": "Again", "role": "sdr"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "create_user_failed"

    short_password = test_client.post(
        "/api/functions/create-user",
        json={"email": "short@example.com", "password": "123", "fullName": "Short", "role": "sdr"},
    )
    assert short_password.status_code == 422

    unknown_role = test_client.post(
        "/api/functions/create-user",
        json={"email": "role@example.com", "password": "secret-123", "fullName": "Role", "role": "owner"},
    )
    assert unknown_role.status_code == 422


def test_only_admins_create_users(client: tuple[TestClient, Callable[[str, str], None]]) -> None:
    test_client, use_actor = client
    use_actor("manager-1", "manager")

    response = test_client.post(
        "/api/functions/create-user",
        json={"email": "new@example.com", "password": "secret-123", "fullName": "New", "role": "sdr"},
    )
    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: users.manage"


def test_list_and_filter_users(client: tuple[TestClient, Callable[[str, str], None]]) -> None:
    test_client, use_actor = client
    _create_user(test_client, "bia@example.com", "sdr", full_name="Bia Santos")
    _create_user(test_client, "caio@example.com", "sdr", full_name="Caio Souza")
    closer = _create_user(test_client, "ana@example.com", "closer", full_name="Ana Lima")

    everyone = test_client.get("/api/users")
    assert [user["full_name"] for user in everyone.json()] == ["Ana Lima", "Bia Santos", "Caio Souza"]

    sdrs = test_client.get("/api/users", params={"role": "sdr"})
    assert [user["email"] for user in sdrs.json()] == ["bia@example.com", "caio@example.com"]

    search = test_client.get("/api/users", params={"q": "souza"})
    assert [user["email"] for user in search.json()] == ["caio@example.com"]

    single = test_client.get(f"/api/users/{closer['id']}")
    assert single.json()["role"] == "closer"

    use_actor("manager-1", "manager")
    assert test_client.get("/api/users").status_code == 200

    use_actor("sdr-1", "sdr")
    assert test_client.get("/api/users").status_code == 403


def test_last_admin_cannot_be_demoted_or_deleted(client: tuple[TestClient, Callable[[str, str], None]]) -> None:
    test_client, use_actor = client
    admin = _create_user(test_client, "boss@example.com", "admin")

    demote = test_client.patch(f"/api/users/{admin['id']}/role", json={"role": "manager"})
    assert demote.status_code == 422
    assert demote.json()["message"] == "cannot remove the last admin"

    delete = test_client.delete(f"/api/users/{admin['id']}")
    assert delete.status_code == 422

    second = _create_user(test_client, "deputy@example.com", "admin")
    demoted = test_client.patch(f"/api/users/{admin['id']}/role", json={"role": "manager"})
    assert demoted.status_code == 200
    assert demoted.json()["role"] == "manager"

    use_actor(second["id"], "admin")
    self_delete = test_client.delete(f"/api/users/{second['id']}")
    assert self_delete.status_code == 422
    assert self_delete.json()["message"] == "cannot delete yourself"

    removed = test_client.delete(f"/api/users/{admin['id']}")
    assert removed.status_code == 200
    assert removed.json() == {"status": "deleted"}
    assert test_client.get(f"/api/users/{admin['id']}").status_code == 404


def test_me_reports_roles_from_bearer_token() -> None:
    get_settings.cache_clear()
    token = create_access_token("user-42", ["sdr"])

    with TestClient(app) as test_client:
        response = test_client.get("/me", headers={"Authorization": f"Bearer {token}"})
        anonymous = test_client.get("/me")

    assert response.status_code == 200
    body = response.json()
    assert body["sub"] == "user-42"
    assert body["role"] == "sdr"
    assert "crm.leads.qualify" in body["permissions"]
    assert "users.manage" not in body["permissions"]
    assert anonymous.json()["role"] is None
