from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesflow.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("salesflow.request")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    context = getattr(request.state, "context", None)
    if context is not None and context.workspace_id:
        fields["workspace_id"] = context.workspace_id
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One ``http.request`` line per response, labelled by route template rather than raw path."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, _elapsed_ms(started))
            observe_http_request(request.method, fields["path"], 500, fields["duration_ms"] / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        fields = _request_fields(request, response.status_code, _elapsed_ms(started))
        observe_http_request(request.method, fields["path"], response.status_code, fields["duration_ms"] / 1000)
        logger.info("http.request", extra=fields)
        return response
