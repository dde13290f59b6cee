from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from salesflow.core.config import get_settings

ANONYMOUS_SUBJECT = "anonymous"


@dataclass
class AuthUser:
    """Caller identity taken from the bearer token. Roles double as permission names."""

    sub: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_anonymous(self) -> bool:
        return self.sub == ANONYMOUS_SUBJECT

    def has_role(self, role: str) -> bool:
        return role in self.roles


def decode_bearer(authorization: str | None) -> dict[str, Any] | None:
    """Return the verified claims of a ``Bearer`` token, or None when absent or invalid."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    settings = get_settings()
    try:
        return jwt.decode(token.strip(), settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def user_from_claims(claims: dict[str, Any] | None) -> AuthUser:
    if not claims or claims.get("sub") is None:
        return AuthUser(sub=ANONYMOUS_SUBJECT, roles=["guest"])
    roles = claims.get("roles")
    if not isinstance(roles, list):
        roles = ["user"]
    return AuthUser(sub=str(claims["sub"]), roles=[str(role) for role in roles])


async def get_current_user(request: Request) -> AuthUser:
    user = user_from_claims(decode_bearer(request.headers.get("authorization")))
    context = getattr(request.state, "context", None)
    if context is not None and not user.is_anonymous:
        context.user_id = user.sub
    return user
