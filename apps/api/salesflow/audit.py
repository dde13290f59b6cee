"""Append-only audit trail for mutations of sequences, enrollments, workflows and approvals."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from salesflow.context import get_correlation_id, get_workspace_id

logger = logging.getLogger("salesflow.audit")

audit_entries: list[dict[str, Any]] = []


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: uuid.UUID | str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    workspace_id: uuid.UUID | str | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "workspace_id": _as_text(workspace_id) or get_workspace_id(),
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "before": before,
        "after": after,
        "correlation_id": correlation_id or get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.info(
        "audit.recorded",
        extra={"entity_type": entity_type, "entity_id": entry["entity_id"], "action": action},
    )
    return entry


def entries_for(entity_type: str, entity_id: uuid.UUID | str | None = None) -> list[dict[str, Any]]:
    wanted = _as_text(entity_id)
    return [
        entry
        for entry in audit_entries
        if entry["entity_type"] == entity_type and (wanted is None or entry["entity_id"] == wanted)
    ]
