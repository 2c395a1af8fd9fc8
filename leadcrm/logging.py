"""JSON logging for the API and the export worker.

Every record carries the active correlation id. Only whitelisted ``extra``
fields are rendered so request payloads never leak into the log stream.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from leadcrm.context import get_correlation_id


_KNOWN_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "lead_id",
        "user_id",
        "old_priority",
        "new_priority",
        "report_type",
        "export_format",
        "row_count",
        "task_id",
        "event_type",
        "status",
        "error",
    }
)
_MAX_ERROR_LENGTH = 500

_base_factory = logging.getLogRecordFactory()


def _correlated_record(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _base_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: value for key, value in vars(record).items() if key in _KNOWN_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging() -> None:
    root = logging.getLogger()
    if getattr(root, "_leadcrm_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    logging.setLogRecordFactory(_correlated_record)
    root.handlers = [handler]
    root.setLevel(level)
    root._leadcrm_configured = True  # type: ignore[attr-defined]
