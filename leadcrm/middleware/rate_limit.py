from __future__ import annotations

import math
import threading
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadcrm.api.errors import error_response
from leadcrm.core.auth import token_subject
from leadcrm.core.config import get_settings


_LEAD_PREFIX = "/api/leads"
_EXPORT_PREFIX = "/api/reports/export"
_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_WINDOW_SECONDS = 60


class _FixedWindowCounter:
    """Counts hits per (subject, route group) inside the current minute."""

    def __init__(self, window_seconds: int = _WINDOW_SECONDS) -> None:
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._windows: dict[tuple[str, str], tuple[float, int]] = {}

    def hit(self, key: tuple[str, str], limit: int) -> int:
        """Register a hit; returns 0 when allowed, else seconds until the window resets."""
        now = time.monotonic()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= limit:
                return max(1, math.ceil(self.window_seconds - (now - started)))
            self._windows[key] = (started, count + 1)
            return 0

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()


_counter = _FixedWindowCounter()


def _route_group(request: Request) -> str | None:
    """Limited bucket for the request: lead mutations and every report export call."""
    path = request.url.path
    if path.startswith(_EXPORT_PREFIX):
        return "reports"
    if path.startswith(_LEAD_PREFIX) and request.method.upper() in _MUTATING_METHODS:
        return "leads"
    return None


class LeadMutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        group = _route_group(request)
        if settings.rate_limit_disabled or group is None:
            return await call_next(request)

        key = (token_subject(request) or "anonymous", group)
        retry_after = _counter.hit(key, settings.rate_limit_lead_mutations_per_minute)
        if not retry_after:
            return await call_next(request)

        return error_response(
            request,
            status_code=429,
            code="RATE_LIMITED",
            message="Too many requests",
            details={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


def reset_rate_limiter() -> None:
    _counter.clear()
