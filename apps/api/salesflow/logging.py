"""Structured JSON logging.

Every record carries the ambient correlation id (set by the record factory so
that captured records see it too). The stdout handler also stamps the active
workspace and whitelists the domain fields that are emitted under ``fields``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from salesflow.context import get_correlation_id, get_workspace_id

MAX_ERROR_LENGTH = 500

_REQUEST_FIELDS = frozenset({"method", "path", "status_code", "duration_ms"})
_JOB_FIELDS = frozenset({"job_id", "job_type", "status", "count"})
_DOMAIN_FIELDS = frozenset(
    {
        "lead_id",
        "enrollment_id",
        "sequence_id",
        "workflow_id",
        "run_id",
        "approval_id",
        "account_id",
        "message_id",
        "event_id",
        "event_name",
        "entity_type",
        "entity_id",
        "action",
        "reason",
        "error",
    }
)
_EXPORTED_FIELDS = _REQUEST_FIELDS | _JOB_FIELDS | _DOMAIN_FIELDS

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class ContextFilter(logging.Filter):
    """Fill in context values the caller did not pass through ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        if not getattr(record, "workspace_id", None):
            record.workspace_id = get_workspace_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: value for key, value in record.__dict__.items() if key in _EXPORTED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "workspace_id": getattr(record, "workspace_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_salesflow_configured", False):
        return

    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(ContextFilter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._salesflow_configured = True  # type: ignore[attr-defined]
