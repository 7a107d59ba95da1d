from __future__ import annotations

import json
import uuid
from collections.abc import Generator

import httpx
import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from app import events
from app.core.actor import ActorUser, actor_for_role, get_current_user
from app.core.config import Settings, get_settings
from app.crm.webhooks import webhook_relay_service
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


WEBHOOK_URL = "/api/functions/schedule-lead-webhook"


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
def client() -> Generator[TestClient, None, None]:
    def override_get_current_user(request: Request) -> ActorUser:
        role = request.headers.get("x-test-role", "sdr")
        return actor_for_role(f"{role}-1", role, correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _relay_to(monkeypatch: pytest.MonkeyPatch, handler, token: str | None = "hook-secret") -> None:  # type: ignore[no-untyped-def]
    settings = Settings(external_webhook_url="https://hooks.example.com/leads", external_webhook_token=token)
    monkeypatch.setattr(webhook_relay_service, "_settings", settings)
    monkeypatch.setattr(webhook_relay_service, "transport", httpx.MockTransport(handler))


def _payload(lead_id: uuid.UUID) -> dict[str, str]:
    return {
        "leadId": str(lead_id),
        "leadName": "Maria Silva",
        "leadPhone": "5511988887777",
        "leadEmail": "maria@example.com",
        "tableName": "fifty_scripts_leads",
    }


def test_relay_posts_lead_payload_with_bearer_token(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"received": True})

    _relay_to(monkeypatch, handler)
    lead_id = uuid.uuid4()

    response = client.post(WEBHOOK_URL, json=_payload(lead_id))
    assert response.status_code == 200
    assert response.json() == {"success": True, "result": {"received": True}}

    (outbound,) = seen
    assert str(outbound.url) == "https://hooks.example.com/leads"
    assert outbound.headers["Authorization"] == "Bearer hook-secret"
    body = json.loads(outbound.content)
    assert body["lead_id"] == str(lead_id)
    assert body["lead_name"] == "Maria Silva"
    assert body["table_name"] == "fifty_scripts_leads"
    assert body["timestamp"]

    sent = [event for event in events.published_events if event["event_type"] == "crm.lead.webhook_sent"]
    assert sent and sent[0]["payload"]["lead_id"] == str(lead_id)


def test_relay_without_token_sends_no_authorization(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, text="queued")

    _relay_to(monkeypatch, handler, token=None)

    response = client.post(WEBHOOK_URL, json=_payload(uuid.uuid4()))
    assert response.status_code == 200
    assert response.json()["result"] == "queued"
    assert "Authorization" not in seen[0].headers


def test_rejected_relay_surfaces_as_bad_gateway(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _relay_to(monkeypatch, lambda request: httpx.Response(500, text="boom"))

    response = client.post(WEBHOOK_URL, json=_payload(uuid.uuid4()))
    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "lead_webhook_upstream_failed"
    assert body["message"] == "Webhook failed: 500 - boom"
    assert not [event for event in events.published_events if event["event_type"] == "crm.lead.webhook_sent"]


def test_unreachable_target_surfaces_as_bad_gateway(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _relay_to(monkeypatch, handler)

    response = client.post(WEBHOOK_URL, json=_payload(uuid.uuid4()))
    assert response.status_code == 502
    assert response.json()["message"].startswith("Webhook failed:")


def test_missing_webhook_url_is_a_server_error(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(webhook_relay_service, "_settings", Settings(external_webhook_url=None))

    response = client.post(WEBHOOK_URL, json=_payload(uuid.uuid4()))
    assert response.status_code == 500
    assert response.json()["code"] == "lead_webhook_failed"


def test_relay_requires_permission_and_valid_body(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _relay_to(monkeypatch, lambda request: httpx.Response(200, json={}))

    assert client.post(WEBHOOK_URL, json=_payload(uuid.uuid4()), headers={"x-test-role": "closer"}).status_code == 403
    assert client.post(WEBHOOK_URL, json={"leadName": "No id", "tableName": "x"}).status_code == 422
