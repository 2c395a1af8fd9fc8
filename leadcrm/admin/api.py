from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm.admin.schemas import SystemSettingsRead, SystemSettingsUpdate
from leadcrm.admin.service import system_settings_service
from leadcrm.api.errors import error_response
from leadcrm.core.database import get_db
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_super_admin

router = APIRouter(prefix="/api/settings", tags=["admin.settings"])


@router.get("", response_model=SystemSettingsRead)
def get_system_settings(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SystemSettingsRead | JSONResponse:
    try:
        require_super_admin(ctx)
        return system_settings_service.get_settings(db)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="settings_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.put("", response_model=SystemSettingsRead)
def update_system_settings(
    request: Request,
    dto: SystemSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SystemSettingsRead | JSONResponse:
    try:
        require_super_admin(ctx)
        return system_settings_service.update_settings(db, ctx, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="settings_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
