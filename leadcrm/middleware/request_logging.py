from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from leadcrm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("leadcrm.request")


def _fields(request: Request, path: str, status_code: int, elapsed: float) -> dict:
    return {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(elapsed * 1000, 2),
        "user_id": getattr(request.state, "user_id", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emits one ``http.request`` record and the HTTP metrics per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed = time.perf_counter() - started
            path = resolve_http_path_label(request)
            observe_http_request(method=request.method, path=path, status=500, duration=elapsed)
            logger.error("http.error", exc_info=True, extra=_fields(request, path, 500, elapsed))
            raise

        elapsed = time.perf_counter() - started
        path = resolve_http_path_label(request)
        observe_http_request(method=request.method, path=path, status=response.status_code, duration=elapsed)
        log = logger.warning if response.status_code >= 500 else logger.info
        log("http.request", extra=_fields(request, path, response.status_code, elapsed))
        return response
