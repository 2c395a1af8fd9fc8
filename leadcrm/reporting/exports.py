from __future__ import annotations

import csv
import io
import logging
import time
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from leadcrm.formatting import format_rupiah
from leadcrm.metrics import observe_report_export
from leadcrm.otel import traced_operation
from leadcrm.reporting.schemas import ReportExportRead, ReportFilters
from leadcrm.reporting.service import local_now, range_bounds, report_service, to_local
from leadcrm.security.context import AuthContext
from leadcrm.users.models import ActivityLog, User

logger = logging.getLogger("leadcrm.reports")

REPORT_TYPES: tuple[str, ...] = ("leads", "users", "activities")
EXPORT_FORMATS: tuple[str, ...] = ("json", "csv")
ACTIVITY_EXPORT_LIMIT = 1000

FILENAME_PREFIXES: dict[str, str] = {
    "leads": "leads_report",
    "users": "user_performance",
    "activities": "activities",
}

CSV_HEADERS: dict[str, list[str]] = {
    "leads": [
        "ID",
        "Contact Name",
        "Email",
        "Phone",
        "Company",
        "Project",
        "Unit Type",
        "Unit No",
        "Priority",
        "Status",
        "Estimated Value",
        "Expected Closing",
        "Source",
        "Assigned To",
        "Created By",
        "Manager",
        "Supervisor",
        "Created At",
        "Updated At",
    ],
    "users": [
        "ID",
        "Name",
        "Email",
        "Role",
        "Total Leads",
        "New Leads",
        "In Progress",
        "Converted",
        "Conversion Rate",
        "Join Date",
    ],
    "activities": [
        "ID",
        "User",
        "Action",
        "Model",
        "Model ID",
        "Description",
        "IP Address",
        "User Agent",
        "Created At",
    ],
}


def _timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    return f"{to_local(value):%Y-%m-%d %H:%M:%S}"


def _name(user: User | None) -> str:
    return user.name if user is not None else ""


def validate_export(report_type: str, export_format: str) -> None:
    if report_type not in REPORT_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid report type")
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid export type")


def export_filename(report_type: str, generated_at: datetime, extension: str = "csv") -> str:
    return f"{FILENAME_PREFIXES[report_type]}_{generated_at:%Y-%m-%d_%H-%M-%S}.{extension}"


def lead_rows(session: Session, ctx: AuthContext, filters: ReportFilters) -> list[dict[str, Any]]:
    leads = report_service.leads_in_range(session, ctx, filters)
    return [
        {
            "id": str(lead.id),
            "contact_name": lead.contact_name,
            "contact_email": lead.contact_email or "",
            "contact_phone": lead.contact_phone or "",
            "contact_company": lead.contact_company or "",
            "project": lead.project or "",
            "unit_type": lead.unit_type or "",
            "unit_no": lead.unit_no or "",
            "priority": lead.priority,
            "status": lead.status or "",
            "estimated_value": format_rupiah(lead.estimated_value) if lead.estimated_value else "",
            "expected_closing_date": lead.expected_closing_date.isoformat() if lead.expected_closing_date else "",
            "source": lead.source or "",
            "assigned_to": _name(lead.assignee),
            "created_by": _name(lead.creator),
            "manager": _name(lead.manager),
            "supervisor": _name(lead.spv),
            "created_at": _timestamp(lead.created_at),
            "updated_at": _timestamp(lead.updated_at),
        }
        for lead in leads
    ]


def user_rows(session: Session, ctx: AuthContext, filters: ReportFilters) -> list[dict[str, Any]]:
    unfiltered = ReportFilters(date_from=filters.date_from, date_to=filters.date_to)
    leads = report_service.leads_in_range(session, ctx, unfiltered)
    rows: list[dict[str, Any]] = []
    for perf in report_service.user_performance(session, leads):
        user = session.get(User, perf.id) if perf.id is not None else None
        if user is not None:
            join_date = (user.join_date or to_local(user.created_at).date()).isoformat()
        else:
            join_date = ""
        rows.append(
            {
                "id": str(perf.id) if perf.id is not None else "",
                "name": perf.name,
                "email": perf.email or "",
                "role": user.primary_role if user is not None else "N/A",
                "total_leads": perf.total_leads,
                "new_leads": perf.cold_leads + perf.warm_leads,
                "in_progress_leads": perf.hot_leads,
                "converted_leads": perf.booking_leads + perf.closing_leads,
                "conversion_rate": f"{perf.conversion_rate:g}%",
                "join_date": join_date,
            }
        )
    return rows


def activity_rows(session: Session, filters: ReportFilters) -> list[dict[str, Any]]:
    start, end = range_bounds(filters.date_from, filters.date_to)
    stmt = (
        select(ActivityLog)
        .options(joinedload(ActivityLog.user))
        .where(ActivityLog.created_at >= start, ActivityLog.created_at < end)
    )
    if filters.user_id is not None:
        stmt = stmt.where(ActivityLog.user_id == filters.user_id)
    logs = session.scalars(stmt.order_by(ActivityLog.created_at.desc()).limit(ACTIVITY_EXPORT_LIMIT)).unique().all()
    return [
        {
            "id": str(log.id),
            "user_name": log.user.name if log.user is not None else "System",
            "action": log.action,
            "model": log.model or "",
            "model_id": log.model_id or "",
            "description": log.description,
            "ip_address": log.ip_address or "",
            "user_agent": log.user_agent or "",
            "created_at": _timestamp(log.created_at),
        }
        for log in logs
    ]


def collect_rows(session: Session, ctx: AuthContext, report_type: str, filters: ReportFilters) -> list[dict[str, Any]]:
    if report_type == "leads":
        return lead_rows(session, ctx, filters)
    if report_type == "users":
        return user_rows(session, ctx, filters)
    return activity_rows(session, filters)


def render_csv(report_type: str, rows: list[dict[str, Any]]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADERS[report_type])
    for row in rows:
        writer.writerow(list(row.values()))
    return output.getvalue().encode("utf-8")


def _filters_payload(filters: ReportFilters) -> dict[str, Any]:
    return {
        "date_from": filters.date_from.isoformat(),
        "date_to": filters.date_to.isoformat(),
        "user_id": str(filters.user_id) if filters.user_id is not None else None,
        "status": filters.status,
    }


class ReportExporter:
    def build_json(
        self,
        session: Session,
        ctx: AuthContext,
        report_type: str,
        filters: ReportFilters,
    ) -> ReportExportRead:
        validate_export(report_type, "json")
        started = time.perf_counter()
        with traced_operation("reports.export", report_type=report_type, export_format="json"):
            rows = collect_rows(session, ctx, report_type, filters)
        observe_report_export(report_type, "json", time.perf_counter() - started)
        logger.info(
            "report.exported",
            extra={"report_type": report_type, "export_format": "json", "row_count": len(rows)},
        )
        return ReportExportRead(
            data=rows,
            filters=_filters_payload(filters),
            report_type=report_type,  # type: ignore[arg-type]
            generated_at=f"{local_now():%Y-%m-%d %H:%M:%S}",
        )

    def build_csv(
        self,
        session: Session,
        ctx: AuthContext,
        report_type: str,
        filters: ReportFilters,
    ) -> tuple[bytes, str]:
        """Render a CSV export and return ``(content, filename)``."""

        validate_export(report_type, "csv")
        started = time.perf_counter()
        with traced_operation("reports.export", report_type=report_type, export_format="csv"):
            rows = collect_rows(session, ctx, report_type, filters)
            content = render_csv(report_type, rows)
        observe_report_export(report_type, "csv", time.perf_counter() - started)
        logger.info(
            "report.exported",
            extra={"report_type": report_type, "export_format": "csv", "row_count": len(rows)},
        )
        return content, export_filename(report_type, local_now())

    def render(
        self,
        session: Session,
        ctx: AuthContext,
        report_type: str,
        export_format: str,
        filters: ReportFilters,
    ) -> tuple[bytes, str]:
        validate_export(report_type, export_format)
        if export_format == "csv":
            return self.build_csv(session, ctx, report_type, filters)
        payload = self.build_json(session, ctx, report_type, filters)
        return payload.model_dump_json().encode("utf-8"), export_filename(report_type, local_now(), "json")


report_exporter = ReportExporter()
