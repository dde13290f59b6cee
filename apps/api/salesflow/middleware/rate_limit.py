"""Token-bucket limiter for mutating API calls.

Buckets are keyed by caller, workspace and route group (the first path
segment after ``/api``), so a burst of lead imports does not starve
sequence edits for the same rep.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import NamedTuple

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesflow.core.auth import decode_bearer, user_from_claims
from salesflow.core.config import get_settings
from salesflow.middleware.correlation_id import CORRELATION_HEADER, resolve_correlation_id

WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})

logger = logging.getLogger("salesflow.rate_limit")


class BucketKey(NamedTuple):
    subject: str
    workspace_id: str
    route_group: str


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float


class TokenBucketLimiter:
    def __init__(self, clock=time.monotonic) -> None:  # type: ignore[no-untyped-def]
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[BucketKey, _Bucket] = {}

    def acquire(self, key: BucketKey, capacity: int, window_seconds: int = WINDOW_SECONDS) -> int:
        """Take one token. Returns 0 when allowed, otherwise the seconds to wait."""
        if capacity <= 0:
            return window_seconds

        rate = capacity / float(window_seconds)
        now = self._clock()
        with self._lock:
            bucket = self._buckets.setdefault(key, _Bucket(tokens=float(capacity), refilled_at=now))
            bucket.tokens = min(float(capacity), bucket.tokens + max(0.0, now - bucket.refilled_at) * rate)
            bucket.refilled_at = now
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return 0
            return max(1, math.ceil((1.0 - bucket.tokens) / rate))

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


def route_group(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    return parts[1] if len(parts) >= 2 else "api"


def bucket_key(request: Request) -> BucketKey:
    user = user_from_claims(decode_bearer(request.headers.get("authorization")))
    subject = user.sub
    if user.is_anonymous and request.client is not None:
        subject = f"ip:{request.client.host}"
    context = getattr(request.state, "context", None)
    workspace_id = getattr(context, "workspace_id", None) or "-"
    return BucketKey(subject=subject, workspace_id=workspace_id, route_group=route_group(request.url.path))


def _rate_limited_response(request: Request, retry_after: int) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None) or resolve_correlation_id(
        request.headers.get(CORRELATION_HEADER)
    )
    return JSONResponse(
        status_code=429,
        content={
            "code": "rate_limited",
            "message": "Too many requests",
            "details": {"retry_after_seconds": retry_after},
            "correlation_id": correlation_id,
        },
        headers={"Retry-After": str(retry_after), "X-Correlation-Id": correlation_id},
    )


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if (
            settings.rate_limit_disabled
            or request.method.upper() not in MUTATING_METHODS
            or not request.url.path.startswith("/api/")
        ):
            return await call_next(request)

        key = bucket_key(request)
        retry_after = _limiter.acquire(key, settings.rate_limit_mutations_per_minute)
        if retry_after == 0:
            return await call_next(request)

        logger.warning(
            "rate_limit.exceeded",
            extra={"path": request.url.path, "method": request.method},
        )
        return _rate_limited_response(request, retry_after)


def reset_rate_limiter() -> None:
    _limiter.clear()
