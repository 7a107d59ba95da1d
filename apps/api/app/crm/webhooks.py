from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import HTTPException, status

from app import events
from app.core.actor import ActorUser
from app.core.config import Settings, get_settings
from app.crm.schemas import LeadWebhookRequest, LeadWebhookResult
from app.metrics import observe_webhook_relay
from app.otel import traced

logger = logging.getLogger("app.crm.webhooks")


class WebhookRelayError(Exception):
    pass


class WebhookRelayService:
    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings
        self.transport = transport

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def build_payload(self, dto: LeadWebhookRequest) -> dict[str, Any]:
        return {
            "lead_id": str(dto.lead_id),
            "lead_name": dto.lead_name,
            "lead_phone": dto.lead_phone,
            "lead_email": dto.lead_email,
            "table_name": dto.table_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def relay(self, actor_user: ActorUser, dto: LeadWebhookRequest) -> LeadWebhookResult:
        target = self.settings.external_webhook_url
        if not target:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="external webhook url not configured",
            )

        headers = {"Content-Type": "application/json"}
        if self.settings.external_webhook_token:
            headers["Authorization"] = f"Bearer {self.settings.external_webhook_token}"

        payload = self.build_payload(dto)
        with traced("app.crm.webhooks", "crm.webhook_relay", lead_id=str(dto.lead_id), table_name=dto.table_name):
            try:
                with httpx.Client(timeout=self.settings.external_webhook_timeout_seconds, transport=self.transport) as client:
                    response = client.post(target, json=payload, headers=headers)
            except httpx.HTTPError as exc:
                observe_webhook_relay("error")
                raise WebhookRelayError(f"Webhook failed: {exc}") from exc

            if not response.is_success:
                observe_webhook_relay("rejected")
                logger.warning(
                    "crm.webhook.rejected",
                    extra={"lead_id": str(dto.lead_id), "status_code": response.status_code, "error": response.text},
                )
                raise WebhookRelayError(f"Webhook failed: {response.status_code} - {response.text}")

        try:
            result: Any = response.json()
        except ValueError:
            result = response.text

        observe_webhook_relay("success")
        logger.info("crm.webhook.sent", extra={"lead_id": str(dto.lead_id), "status_code": response.status_code})
        events.publish(
            events.build_envelope(
                "crm.lead.webhook_sent",
                {"lead_id": str(dto.lead_id), "table_name": dto.table_name},
                actor_user_id=actor_user.user_id,
            )
        )
        return LeadWebhookResult(success=True, result=result)


webhook_relay_service = WebhookRelayService()
