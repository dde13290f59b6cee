from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesflow.context import bind_context, unbind_context


CORRELATION_HEADER = "x-correlation-id"
WORKSPACE_HEADER = "x-workspace-id"
_ACCEPTED_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_correlation_id(raw: str | None) -> str:
    """Reuse a caller-supplied id when it is a short token, otherwise mint one."""
    if raw and _ACCEPTED_CORRELATION_ID.match(raw):
        return raw
    return str(uuid.uuid4())


def parse_workspace_header(raw: str | None) -> str | None:
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))
        workspace_id = parse_workspace_header(request.headers.get(WORKSPACE_HEADER))
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            if workspace_id:
                span.set_attribute("workspace_id", workspace_id)

        tokens = bind_context(correlation_id, workspace_id)
        try:
            response = await call_next(request)
        finally:
            unbind_context(tokens)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
