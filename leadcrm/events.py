from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from leadcrm.context import get_correlation_id

logger = logging.getLogger("leadcrm.events")

published_events: list[dict[str, Any]] = []


def build_envelope(event_type: str, actor_user_id: uuid.UUID | str | None, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": str(actor_user_id) if actor_user_id is not None else None,
        "version": 1,
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    published_events.append(envelope)
    logger.debug("event.published", extra={"event_type": envelope.get("event_type")})
