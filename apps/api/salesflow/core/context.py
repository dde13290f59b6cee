from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesflow.middleware.correlation_id import WORKSPACE_HEADER, parse_workspace_header


@dataclass
class RequestContext:
    """Per-request identity; ``user_id`` is filled in once the bearer token is decoded."""

    correlation_id: str
    workspace_id: str | None
    user_id: str | None = None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(
            correlation_id=getattr(request.state, "correlation_id", None) or "",
            workspace_id=parse_workspace_header(request.headers.get(WORKSPACE_HEADER)),
        )
        request.state.context = context
        response = await call_next(request)
        if context.workspace_id is not None:
            response.headers[WORKSPACE_HEADER] = context.workspace_id
        return response
