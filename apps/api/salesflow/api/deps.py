from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from salesflow.context import get_correlation_id
from salesflow.core.auth import AuthUser, get_current_user as get_auth_user
from salesflow.errors import Forbidden, SalesflowError, WorkspaceRequired


@dataclass
class ActorUser:
    user_id: str
    workspace_id: uuid.UUID | None
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None

    def require_workspace(self) -> uuid.UUID:
        if self.workspace_id is None:
            raise WorkspaceRequired("x-workspace-id header is required")
        return self.workspace_id


def request_correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(request.state, "correlation_id", None)


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=request_correlation_id(request),
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def http_error_response(request: Request, exc: HTTPException, fallback_code: str) -> JSONResponse:
    code = exc.code if isinstance(exc, SalesflowError) else fallback_code
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    context = getattr(request.state, "context", None)
    workspace_raw = getattr(context, "workspace_id", None)
    return ActorUser(
        user_id=auth_user.sub,
        workspace_id=uuid.UUID(workspace_raw) if workspace_raw else None,
        permissions=set(auth_user.roles),
        correlation_id=request_correlation_id(request),
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise Forbidden(f"Missing permission: {permission}")


def require_any_permission(user: ActorUser, permissions: list[str]) -> None:
    if not any(permission in user.permissions for permission in permissions):
        raise Forbidden(f"Missing permission: {' or '.join(permissions)}")
