from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm import files
from leadcrm.api.errors import error_response
from leadcrm.core.config import get_settings
from leadcrm.core.database import get_db
from leadcrm.leads.schemas import (
    AvailableUnitRead,
    LeadAttachmentRead,
    LeadCreate,
    LeadDetailRead,
    LeadFormOptions,
    LeadPage,
    LeadQuickUpdate,
    LeadUpdate,
)
from leadcrm.leads.service import lead_attachment_service, lead_lookup_service, lead_service
from leadcrm.leads.statuses import statuses_by_priority
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_any_permission, require_permission
from leadcrm.users.schemas import UserSummary

router = APIRouter(prefix="/api/leads", tags=["leads"])

VIEW_PERMISSIONS = ["leads.view", "leads.view_own"]


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@router.get("", response_model=LeadPage)
def list_leads(
    request: Request,
    priority: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    assigned_to: uuid.UUID | None = Query(default=None),
    project: str | None = Query(default=None),
    unit_type: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        filters = {
            "priority": priority,
            "status": status_filter,
            "assigned_to": assigned_to,
            "project": project,
            "unit_type": unit_type,
            "start_date": start_date,
            "end_date": end_date,
            "search": search,
        }
        return lead_service.list_leads(db, ctx, filters, page=page, per_page=per_page)
    except HTTPException as exc:
        return _failed(request, exc, "lead_list_failed")


@router.post("", response_model=LeadDetailRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadDetailRead | JSONResponse:
    try:
        require_permission(ctx, "leads.create")
        return lead_service.create_lead(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "lead_create_failed")


@router.get("/search", response_model=LeadPage)
def search_leads(
    request: Request,
    q: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_service.search(db, ctx, q, page=page)
    except HTTPException as exc:
        return _failed(request, exc, "lead_search_failed")


@router.get("/by-priority/{priority}", response_model=LeadPage)
def leads_by_priority(
    request: Request,
    priority: str,
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_service.leads_by_priority(db, ctx, priority, page=page)
    except HTTPException as exc:
        return _failed(request, exc, "lead_by_priority_failed")


@router.get("/by-ha/{ha_id}", response_model=LeadPage)
def leads_by_ha(
    request: Request,
    ha_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_service.leads_by_ha(db, ctx, ha_id, page=page)
    except HTTPException as exc:
        return _failed(request, exc, "lead_by_ha_failed")


@router.get("/lookups/available-units", response_model=list[AvailableUnitRead])
def available_units(
    request: Request,
    project: str | None = Query(default=None),
    unit_type: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[AvailableUnitRead] | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_lookup_service.available_units(db, project, unit_type)
    except HTTPException as exc:
        return _failed(request, exc, "lead_available_units_failed")


@router.get("/lookups/unit-types", response_model=list[str])
def unit_types(
    request: Request,
    project: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[str] | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_lookup_service.unit_types(db, project)
    except HTTPException as exc:
        return _failed(request, exc, "lead_unit_types_failed")


@router.get("/lookups/statuses", response_model=list[str] | dict[str, list[str]])
def statuses(
    request: Request,
    priority: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[str] | dict[str, list[str]] | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return statuses_by_priority(db, priority)
    except HTTPException as exc:
        return _failed(request, exc, "lead_statuses_failed")


@router.get("/lookups/assignable-users", response_model=list[UserSummary])
def assignable_users(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UserSummary] | JSONResponse:
    try:
        require_any_permission(ctx, ["leads.create", "leads.edit"])
        return lead_lookup_service.assignable_users(db, ctx)
    except HTTPException as exc:
        return _failed(request, exc, "lead_assignable_users_failed")


@router.get("/lookups/form-options", response_model=LeadFormOptions)
def form_options(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadFormOptions | JSONResponse:
    try:
        require_any_permission(ctx, ["leads.create", "leads.edit"])
        return lead_lookup_service.form_options(db, ctx)
    except HTTPException as exc:
        return _failed(request, exc, "lead_form_options_failed")


@router.get("/{lead_id}", response_model=LeadDetailRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadDetailRead | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        return lead_service.get_lead(db, ctx, lead_id)
    except HTTPException as exc:
        return _failed(request, exc, "lead_get_failed")


@router.patch("/{lead_id}", response_model=LeadDetailRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadDetailRead | JSONResponse:
    try:
        require_permission(ctx, "leads.edit")
        return lead_service.update_lead(db, ctx, lead_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "lead_update_failed")


@router.post("/{lead_id}/quick-update", response_model=LeadDetailRead)
def quick_update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadQuickUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadDetailRead | JSONResponse:
    try:
        require_permission(ctx, "leads.edit")
        return lead_service.quick_update(db, ctx, lead_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "lead_quick_update_failed")


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response | JSONResponse:
    try:
        require_permission(ctx, "leads.delete")
        lead_service.delete_lead(db, ctx, lead_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except HTTPException as exc:
        return _failed(request, exc, "lead_delete_failed")


@router.post("/{lead_id}/attachments", response_model=LeadAttachmentRead, status_code=status.HTTP_201_CREATED)
def upload_attachment(
    request: Request,
    lead_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadAttachmentRead | JSONResponse:
    try:
        require_permission(ctx, "leads.edit")
        content = files.read_upload(file.file, get_settings().attachment_max_bytes)
        return lead_attachment_service.upload(
            db,
            ctx,
            lead_id,
            original_name=file.filename,
            content=content,
            mime_type=file.content_type,
        )
    except HTTPException as exc:
        return _failed(request, exc, "lead_attachment_upload_failed")


@router.get("/{lead_id}/attachments/{attachment_id}/download", response_model=None)
def download_attachment(
    request: Request,
    lead_id: uuid.UUID,
    attachment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response | JSONResponse:
    try:
        require_any_permission(ctx, VIEW_PERMISSIONS)
        attachment, payload = lead_attachment_service.download(db, ctx, lead_id, attachment_id)
        return Response(
            content=payload,
            media_type=attachment.mime_type or "application/octet-stream",
            headers={"Content-Disposition": files.content_disposition(attachment.original_name)},
        )
    except HTTPException as exc:
        return _failed(request, exc, "lead_attachment_download_failed")


@router.delete("/{lead_id}/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def delete_attachment(
    request: Request,
    lead_id: uuid.UUID,
    attachment_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response | JSONResponse:
    try:
        require_permission(ctx, "leads.edit")
        lead_attachment_service.delete(db, ctx, lead_id, attachment_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except HTTPException as exc:
        return _failed(request, exc, "lead_attachment_delete_failed")
