from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm import files
from leadcrm.api.errors import error_response
from leadcrm.core.database import get_db
from leadcrm.reporting.dashboard import dashboard_service
from leadcrm.reporting.exports import report_exporter, validate_export
from leadcrm.reporting.schemas import DashboardAnalytics, DashboardOverview, ExportQueued, ReportExportRead, ReportOverview
from leadcrm.reporting.service import report_service
from leadcrm.reporting.tasks import export_report_task
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_permission

dashboard_router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])
reports_router = APIRouter(prefix="/api/reports", tags=["reports"])


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@dashboard_router.get("", response_model=DashboardOverview)
def dashboard_overview(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DashboardOverview:
    return dashboard_service.overview(db, ctx)


@dashboard_router.get("/analytics", response_model=DashboardAnalytics)
def dashboard_analytics(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DashboardAnalytics:
    return dashboard_service.analytics(db, ctx)


@reports_router.get("", response_model=ReportOverview)
def report_overview(
    request: Request,
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ReportOverview | JSONResponse:
    try:
        require_permission(ctx, "reports.view")
        filters = report_service.resolve_filters(
            date_from=date_from,
            date_to=date_to,
            user_id=user_id,
            status_filter=status_filter,
        )
        return report_service.overview(db, ctx, filters)
    except HTTPException as exc:
        return _failed(request, exc, "report_overview_failed")


@reports_router.get("/export", response_model=None)
def export_report(
    request: Request,
    report: str = Query(default="leads"),
    export_format: str = Query(default="json", alias="type"),
    deliver: str = Query(default="sync"),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ReportExportRead | ExportQueued | Response | JSONResponse:
    try:
        require_permission(ctx, "reports.view")
        validate_export(report, export_format)
        filters = report_service.resolve_filters(
            date_from=date_from,
            date_to=date_to,
            user_id=user_id,
            status_filter=status_filter,
            for_export=True,
        )
        if deliver == "async":
            result = export_report_task.delay(
                str(ctx.user_id), report, export_format, filters.model_dump(mode="json"), ctx.correlation_id
            )
            return ExportQueued(task_id=str(result.id))
        if export_format == "csv":
            content, filename = report_exporter.build_csv(db, ctx, report, filters)
            return Response(
                content=content,
                media_type="text/csv",
                headers={"Content-Disposition": files.content_disposition(filename)},
            )
        return report_exporter.build_json(db, ctx, report, filters)
    except HTTPException as exc:
        return _failed(request, exc, "report_export_failed")
