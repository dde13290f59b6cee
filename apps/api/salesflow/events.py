"""Domain event envelopes (``lead.created``, ``lead.stage_changed``, ``email.received``)."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from salesflow.context import get_correlation_id
from salesflow.core.events import event_bus

ENVELOPE_VERSION = 1

logger = logging.getLogger("salesflow.events")

published_events: list[dict[str, Any]] = []


def build_envelope(
    event_type: str,
    workspace_id: uuid.UUID | str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "workspace_id": str(workspace_id),
        "correlation_id": correlation_id or get_correlation_id(),
        "payload": payload,
        "version": ENVELOPE_VERSION,
    }


def publish(envelope: dict[str, Any]) -> None:
    """Record the envelope and hand it to in-process subscribers."""
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    published_events.append(envelope)

    event_type = envelope.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        logger.warning("event.untyped", extra={"event_id": envelope.get("event_id")})
        return
    logger.info("event.published", extra={"event_name": event_type, "event_id": envelope.get("event_id")})
    event_bus.publish(event_type, envelope)
