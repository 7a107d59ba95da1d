from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.authz.schemas import CreateUserRequest
from app.authz.service import user_provisioning_service
from app.core.actor import ActorUser, actor_for_role, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import FiftyScriptsLead, LeadActivity
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


ROLES = {
    "admin": "admin",
    "manager": "manager",
    "sdr": "sdr",
    "other_sdr": "sdr",
    "closer": "closer",
}

LEADS_URL = "/api/crm/funnels/fifty_scripts/leads"


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
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, str]:
    bootstrap = actor_for_role("bootstrap", "admin")
    ids: dict[str, str] = {}
    for key, role in ROLES.items():
        created = user_provisioning_service.create_user(
            db_session,
            bootstrap,
            CreateUserRequest.model_validate(
                {"email": f"{key}@example.com", "password": "secret-123", "fullName": key.title(), "role": role}
            ),
        )
        ids[key] = str(created.id)
    return ids


@pytest.fixture()
def client(db_session: Session, users: dict[str, str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        key = request.headers.get("x-test-user", "admin")
        return actor_for_role(users[key], ROLES[key], correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _as(key: str) -> dict[str, str]:
    return {"x-test-user": key}


def _create_lead(client: TestClient, key: str, **fields: object) -> dict:
    payload = {"name": "Lead", **fields}
    response = client.post(LEADS_URL, json=payload, headers=_as(key))
    assert response.status_code == 201, response.text
    return response.json()


def _add_unassigned(db_session: Session, count: int) -> list[uuid.UUID]:
    leads = [FiftyScriptsLead(name=f"Sheet Lead {index}", source="Google Sheets", status="new") for index in range(count)]
    db_session.add_all(leads)
    db_session.commit()
    return [lead.id for lead in leads]


def test_manual_lead_is_assigned_to_creator_with_note_activity(
    client: TestClient, users: dict[str, str], caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="app.audit")
    lead = _create_lead(client, "sdr", name="Maria Silva", email="maria@example.com", phone="5511988887777")

    assert lead["funnel"] == "fifty_scripts"
    assert lead["source"] == "manual_sdr"
    assert lead["status"] == "new"
    assert lead["assigned_to"] == users["sdr"]
    assert lead["qualified"] is False

    activities = client.get(f"{LEADS_URL}/{lead['id']}/activities", headers=_as("sdr"))
    assert activities.status_code == 200
    assert [(item["activity_type"], item["title"]) for item in activities.json()] == [("note", "Lead created manually")]

    created_events = [event for event in events.published_events if event["event_type"] == "crm.lead.created"]
    assert created_events and created_events[0]["funnel"] == "fifty_scripts"
    audit_actions = [
        record.action
        for record in caplog.records
        if record.name == "app.audit" and getattr(record, "entity_id", None) == lead["id"]
    ]
    assert audit_actions == ["create"]


def test_invalid_lead_payloads_are_rejected(client: TestClient) -> None:
    assert client.post(LEADS_URL, json={"name": ""}).status_code == 422
    assert client.post(LEADS_URL, json={"name": "X", "email": "not-an-email"}).status_code == 422
    assert client.get("/api/crm/funnels/unknown/leads").status_code == 422


def test_sdr_sees_only_own_leads_and_manager_sees_all(client: TestClient, users: dict[str, str]) -> None:
    mine = _create_lead(client, "sdr", name="Mine")
    theirs = _create_lead(client, "other_sdr", name="Theirs")
    _create_lead(client, "admin", name="Admin Lead")

    own = client.get(LEADS_URL, headers=_as("sdr"))
    assert own.status_code == 200
    assert [item["id"] for item in own.json()] == [mine["id"]]

    everything = client.get(LEADS_URL, headers=_as("manager"))
    assert len(everything.json()) == 3

    by_sdr = client.get(LEADS_URL, params={"sdr_id": users["other_sdr"]}, headers=_as("manager"))
    assert [item["id"] for item in by_sdr.json()] == [theirs["id"]]

    hidden = client.get(f"{LEADS_URL}/{theirs['id']}", headers=_as("sdr"))
    assert hidden.status_code == 404
    assert hidden.json()["code"] == "crm_lead_get_failed"


def test_list_filters_by_month_status_and_search(client: TestClient) -> None:
    march = _create_lead(client, "admin", name="Ana Paula", email="ana@example.com", form_submitted_at="2026-03-10T15:00:00Z")
    april = _create_lead(client, "admin", name="Bruno Lima", phone="5511900001111", form_submitted_at="2026-04-02T15:00:00Z")
    # 02:30 UTC on March 1st is still February 28th in Sao Paulo.
    late_february = _create_lead(client, "admin", name="Carla Dias", form_submitted_at="2026-03-01T02:30:00Z")

    everything = client.get(LEADS_URL)
    assert [item["id"] for item in everything.json()] == [april["id"], march["id"], late_february["id"]]

    in_march = client.get(LEADS_URL, params={"month": "2026-03"})
    assert [item["id"] for item in in_march.json()] == [march["id"]]

    in_february = client.get(LEADS_URL, params={"month": "2026-02"})
    assert [item["id"] for item in in_february.json()] == [late_february["id"]]

    on_day = client.get(LEADS_URL, params={"day": "2026-04-02"})
    assert [item["id"] for item in on_day.json()] == [april["id"]]

    assert client.get(LEADS_URL, params={"month": "2026-13"}).status_code == 422

    by_name = client.get(LEADS_URL, params={"q": "ANA"})
    assert [item["id"] for item in by_name.json()] == [march["id"]]

    by_phone = client.get(LEADS_URL, params={"q": "90000"})
    assert [item["id"] for item in by_phone.json()] == [april["id"]]

    client.patch(f"{LEADS_URL}/{april['id']}", json={"status": "contacted"})
    contacted = client.get(LEADS_URL, params={"status": "contacted"})
    assert [item["id"] for item in contacted.json()] == [april["id"]]


def test_status_change_records_activity(client: TestClient) -> None:
    lead = _create_lead(client, "sdr", name="Status Lead")

    updated = client.patch(f"{LEADS_URL}/{lead['id']}", json={"status": "contacted"}, headers=_as("sdr"))
    assert updated.status_code == 200
    assert updated.json()["status"] == "contacted"

    notes_only = client.patch(f"{LEADS_URL}/{lead['id']}", json={"notes": "called twice"}, headers=_as("sdr"))
    assert notes_only.status_code == 200
    assert notes_only.json()["notes"] == "called twice"
    assert notes_only.json()["status"] == "contacted"

    activities = client.get(f"{LEADS_URL}/{lead['id']}/activities", headers=_as("sdr")).json()
    assert [item["activity_type"] for item in activities] == ["status_change", "note"]
    assert activities[0]["title"] == "Status changed to contacted"

    bad_status = client.patch(f"{LEADS_URL}/{lead['id']}", json={"status": "won"}, headers=_as("sdr"))
    assert bad_status.status_code == 422


def test_activities_can_be_logged_by_lead_owner_only(client: TestClient) -> None:
    lead = _create_lead(client, "sdr", name="Activity Lead")

    created = client.post(
        f"{LEADS_URL}/{lead['id']}/activities",
        json={"activity_type": "call", "title": "First call", "description": "No answer"},
        headers=_as("sdr"),
    )
    assert created.status_code == 201
    assert created.json()["lead_table"] == "fifty_scripts_leads"

    other = client.post(
        f"{LEADS_URL}/{lead['id']}/activities",
        json={"activity_type": "call", "title": "Sneaky call"},
        headers=_as("other_sdr"),
    )
    assert other.status_code == 404

    closer = client.post(
        f"{LEADS_URL}/{lead['id']}/activities",
        json={"activity_type": "call", "title": "Closer call"},
        headers=_as("closer"),
    )
    assert closer.status_code == 403
    assert closer.json()["code"] == "crm_activity_create_failed"


def test_assign_lead_requires_sdr_target(client: TestClient, users: dict[str, str]) -> None:
    lead = _create_lead(client, "admin", name="Reassign Me")

    to_closer = client.post(f"{LEADS_URL}/{lead['id']}/assign", json={"assigned_to": users["closer"]})
    assert to_closer.status_code == 422
    assert to_closer.json()["message"] == "user is not a sdr"

    to_unknown = client.post(f"{LEADS_URL}/{lead['id']}/assign", json={"assigned_to": str(uuid.uuid4())})
    assert to_unknown.status_code == 404

    assigned = client.post(f"{LEADS_URL}/{lead['id']}/assign", json={"assigned_to": users["sdr"]})
    assert assigned.status_code == 200
    assert assigned.json()["assigned_to"] == users["sdr"]

    forbidden = client.post(f"{LEADS_URL}/{lead['id']}/assign", json={"assigned_to": users["sdr"]}, headers=_as("sdr"))
    assert forbidden.status_code == 403


@pytest.mark.parametrize(("available", "quantity", "expected"), [(3, 5, 3), (3, 2, 2), (4, 4, 4)])
def test_bulk_assign_assigns_min_of_quantity_and_available(
    client: TestClient,
    db_session: Session,
    users: dict[str, str],
    available: int,
    quantity: int,
    expected: int,
) -> None:
    _add_unassigned(db_session, available)
    _create_lead(client, "other_sdr", name="Already Owned")

    response = client.post(f"{LEADS_URL}/bulk-assign", json={"sdr_id": users["sdr"], "quantity": quantity})
    assert response.status_code == 200
    body = response.json()
    assert body["requested"] == quantity
    assert body["assigned"] == expected
    assert len(body["lead_ids"]) == expected

    db_session.expire_all()
    owned = db_session.scalars(select(FiftyScriptsLead).where(FiftyScriptsLead.assigned_to == uuid.UUID(users["sdr"]))).all()
    assert {str(lead.id) for lead in owned} == set(body["lead_ids"])

    stats = client.get("/api/crm/funnels/fifty_scripts/stats").json()
    assert stats["unassigned"] == available - expected
    assert stats["total"] == available + 1


def test_bulk_assign_with_nothing_available_is_rejected(client: TestClient, db_session: Session, users: dict[str, str]) -> None:
    _create_lead(client, "other_sdr", name="Owned")

    empty = client.post(f"{LEADS_URL}/bulk-assign", json={"sdr_id": users["sdr"], "quantity": 3})
    assert empty.status_code == 422
    assert empty.json()["code"] == "crm_lead_bulk_assign_failed"
    assert empty.json()["message"] == "no unassigned leads available"

    _add_unassigned(db_session, 1)
    zero = client.post(f"{LEADS_URL}/bulk-assign", json={"sdr_id": users["sdr"], "quantity": 0})
    assert zero.status_code == 422

    not_sdr = client.post(f"{LEADS_URL}/bulk-assign", json={"sdr_id": users["closer"], "quantity": 1})
    assert not_sdr.status_code == 422


def test_qualify_hands_lead_to_closer_once(client: TestClient, db_session: Session, users: dict[str, str]) -> None:
    lead = _create_lead(client, "sdr", name="Hot Lead")

    first = client.post(
        f"{LEADS_URL}/{lead['id']}/qualify",
        json={"qualification_notes": "ready to buy", "closer_id": users["closer"]},
        headers=_as("sdr"),
    )
    assert first.status_code == 200
    body = first.json()
    assert body["qualified"] is True
    assert body["status"] == "qualified"
    assert body["closer_id"] == users["closer"]
    assert body["qualified_by"] == users["sdr"]
    assert body["qualification_notes"] == "ready to buy"

    second = client.post(
        f"{LEADS_URL}/{lead['id']}/qualify",
        json={"qualification_notes": "changed my mind"},
        headers=_as("sdr"),
    )
    assert second.status_code == 200
    assert second.json()["qualification_notes"] == "ready to buy"

    qualification_rows = db_session.scalars(
        select(LeadActivity).where(
            LeadActivity.lead_id == uuid.UUID(lead["id"]),
            LeadActivity.activity_type == "qualification",
        )
    ).all()
    assert len(qualification_rows) == 1

    seen_by_closer = client.get(f"{LEADS_URL}/{lead['id']}", headers=_as("closer"))
    assert seen_by_closer.status_code == 200


def test_qualify_rejects_non_closer_handoff(client: TestClient, users: dict[str, str]) -> None:
    lead = _create_lead(client, "sdr", name="Lukewarm Lead")

    response = client.post(
        f"{LEADS_URL}/{lead['id']}/qualify",
        json={"closer_id": users["other_sdr"]},
        headers=_as("sdr"),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "crm_lead_qualify_failed"

    unchanged = client.get(f"{LEADS_URL}/{lead['id']}", headers=_as("sdr")).json()
    assert unchanged["qualified"] is False


def test_funnels_are_isolated(client: TestClient) -> None:
    _create_lead(client, "admin", name="Fifty Lead")

    mpm = client.post("/api/crm/funnels/mpm/leads", json={"name": "MPM Lead"})
    assert mpm.status_code == 201
    assert mpm.json()["funnel"] == "mpm"

    assert [item["name"] for item in client.get("/api/crm/funnels/mpm/leads").json()] == ["MPM Lead"]
    assert client.get(f"/api/crm/funnels/teste/leads/{mpm.json()['id']}").status_code == 404
