from __future__ import annotations

import logging
import uuid
from typing import Any

from app.context import get_correlation_id, reset_correlation_id, set_correlation_id

logger = logging.getLogger("app.audit")


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
    funnel: str | None = None,
) -> None:
    """Emits one structured audit record on the ``app.audit`` logger."""
    # the record factory reads correlation_id from the context var
    token = set_correlation_id(correlation_id or get_correlation_id())
    try:
        logger.info(
            "audit.recorded",
            extra={
                "audit_id": str(uuid.uuid4()),
                "actor_user_id": actor_user_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "funnel": funnel,
                "action": action,
                "before": before,
                "after": after,
            },
        )
    finally:
        reset_correlation_id(token)
