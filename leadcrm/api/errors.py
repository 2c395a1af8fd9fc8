from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from leadcrm.context import get_correlation_id


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any = None
    correlation_id: str | None = None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=get_correlation_id() or getattr(request.state, "correlation_id", None),
    )
    return JSONResponse(status_code=status_code, content=asdict(envelope), headers=headers)
