from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from callbook.context import get_correlation_id
from callbook.core.auth import bearer_token, decode_subject
from callbook.core.config import get_settings


@dataclass
class _BucketState:
    tokens: float
    last_refill: float


class TokenBucketLimiter:
    """Per (caller, route group) token buckets refilled continuously."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _BucketState] = {}
        self._last_sweep = time.monotonic()

    def take(self, caller: str, route_group: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        if capacity <= 0:
            return False, window_seconds

        now = time.monotonic()
        refill_rate = capacity / float(window_seconds)
        key = (caller, route_group)

        with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._evict_idle(now, window_seconds)
            bucket = self._buckets.setdefault(key, _BucketState(tokens=float(capacity), last_refill=now))
            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(capacity), bucket.tokens + elapsed * refill_rate)
            bucket.last_refill = now

            if bucket.tokens < 1.0:
                return False, max(1, math.ceil((1.0 - bucket.tokens) / refill_rate))

            bucket.tokens -= 1.0
            return True, 0

    def _evict_idle(self, now: float, window_seconds: int) -> None:
        # a bucket idle for a whole window has refilled to capacity
        idle = [key for key, bucket in self._buckets.items() if now - bucket.last_refill >= window_seconds]
        for key in idle:
            del self._buckets[key]
        self._last_sweep = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = TokenBucketLimiter()


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    mutating_methods = {"POST", "PUT", "DELETE"}
    limited_prefixes = ("/api/leads", "/api/calls")

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)

        path = request.url.path
        if request.method.upper() not in self.mutating_methods or not path.startswith(self.limited_prefixes):
            return await call_next(request)

        allowed, retry_after = _limiter.take(
            caller=_resolve_caller(request),
            route_group=_resolve_route_group(path),
            capacity=settings.rate_limit_mutations_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None) or str(uuid.uuid4())
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many requests",
                "details": {"retry_after_seconds": retry_after},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def _resolve_route_group(path: str) -> str:
    # "/api/leads/..." -> "leads"
    parts = [part for part in path.split("/") if part]
    return parts[1] if len(parts) > 1 else "api"


def _resolve_caller(request: Request) -> str:
    token = bearer_token(request)
    subject = decode_subject(token) if token else None
    if subject is not None:
        return str(subject)
    return request.client.host if request.client else "anonymous"


def reset_rate_limiter() -> None:
    _limiter.clear()
