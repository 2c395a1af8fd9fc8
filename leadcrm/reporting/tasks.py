from __future__ import annotations

import logging
import uuid
from typing import Any

from leadcrm import files
from leadcrm.context import reset_correlation_id, set_correlation_id
from leadcrm.core.celery_app import celery_app
from leadcrm.core.database import SessionLocal
from leadcrm.reporting.exports import report_exporter
from leadcrm.reporting.schemas import ReportFilters
from leadcrm.security.dependencies import build_auth_context
from leadcrm.users.models import User

logger = logging.getLogger("leadcrm.tasks")

EXPORT_DIRECTORY = "report_exports"


def run_export(actor_user_id: str, report_type: str, export_format: str, filters: dict[str, Any]) -> str:
    """Render an export as ``actor_user_id`` would see it and store it. Returns the stored path."""

    session = SessionLocal()
    try:
        user = session.get(User, uuid.UUID(actor_user_id))
        if user is None:
            raise ValueError(f"unknown user: {actor_user_id}")
        ctx = build_auth_context(session, user)
        content, filename = report_exporter.render(
            session,
            ctx,
            report_type,
            export_format,
            ReportFilters.model_validate(filters),
        )
        path = files.store_bytes(content, EXPORT_DIRECTORY, filename)
        logger.info(
            "report.export.stored",
            extra={"user_id": actor_user_id, "report_type": report_type, "export_format": export_format},
        )
        return path
    finally:
        session.close()


@celery_app.task(name="leadcrm.tasks.export_report")
def export_report_task(
    actor_user_id: str,
    report_type: str,
    export_format: str,
    filters: dict[str, Any],
    correlation_id: str | None = None,
) -> str:
    token = set_correlation_id(correlation_id)
    try:
        return run_export(actor_user_id, report_type, export_format, filters)
    finally:
        reset_correlation_id(token)
