from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm.api.errors import error_response
from leadcrm.core.database import get_db
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_permission
from leadcrm.users.activity import activity_log_service, login_history_service
from leadcrm.users.models import User
from leadcrm.users.schemas import (
    ActivityLogPage,
    AssignHARequest,
    HACreate,
    HAUpdate,
    HierarchyOptions,
    LoginHistoryPage,
    LoginHistoryRead,
    ProfileUpdate,
    SecurityOverview,
    UserCreate,
    UserDetailRead,
    UserPage,
    UserRead,
    UserUpdate,
)
from leadcrm.users.service import ha_management_service, profile_service, user_management_service

users_router = APIRouter(prefix="/api/users", tags=["users"])
ha_router = APIRouter(prefix="/api/ha-management", tags=["users.ha"])
profile_router = APIRouter(prefix="/api/profile", tags=["users.profile"])
activity_router = APIRouter(prefix="/api", tags=["users.activity"])
sessions_router = APIRouter(prefix="/api/auth", tags=["auth"])


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@users_router.get("", response_model=UserPage)
def list_users(
    request: Request,
    search: str | None = Query(default=None),
    role: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    department: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserPage | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.list_users(
            db,
            search=search,
            role=role,
            status_filter=status_filter,
            department=department,
            page=page,
            per_page=per_page,
        )
    except HTTPException as exc:
        return _failed(request, exc, "user_list_failed")


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.create_user(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_create_failed")


@users_router.get("/departments", response_model=list[str])
def list_departments(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[str] | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.list_departments(db)
    except HTTPException as exc:
        return _failed(request, exc, "user_departments_failed")


@users_router.get("/ha-users", response_model=list[UserRead])
def list_ha_users(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UserRead] | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.list_ha_users(db)
    except HTTPException as exc:
        return _failed(request, exc, "user_ha_list_failed")


@users_router.post("/assign-ha", response_model=UserRead)
def assign_ha(
    request: Request,
    dto: AssignHARequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "teams.manage")
        return user_management_service.assign_ha(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_assign_ha_failed")


@users_router.get("/{user_id}", response_model=UserDetailRead)
def get_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserDetailRead | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.get_user(db, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_get_failed")


@users_router.patch("/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.update_user(db, ctx, user_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "user_update_failed")


@users_router.post("/{user_id}/deactivate", response_model=UserRead)
def deactivate_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.deactivate_user(db, ctx, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_deactivate_failed")


@users_router.post("/{user_id}/reactivate", response_model=UserRead)
def reactivate_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.manage")
        return user_management_service.reactivate_user(db, ctx, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "user_reactivate_failed")


@ha_router.get("", response_model=UserPage)
def list_has(
    request: Request,
    search: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserPage | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.list_has(
            db,
            ctx,
            search=search,
            status_filter=status_filter,
            page=page,
            per_page=per_page,
        )
    except HTTPException as exc:
        return _failed(request, exc, "ha_list_failed")


@ha_router.get("/hierarchy-options", response_model=HierarchyOptions)
def hierarchy_options(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> HierarchyOptions | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.hierarchy_options(db, ctx)
    except HTTPException as exc:
        return _failed(request, exc, "ha_hierarchy_options_failed")


@ha_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_ha(
    request: Request,
    dto: HACreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.create_ha(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "ha_create_failed")


@ha_router.get("/{user_id}", response_model=UserDetailRead)
def get_ha(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserDetailRead | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.get_ha(db, ctx, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "ha_get_failed")


@ha_router.patch("/{user_id}", response_model=UserRead)
def update_ha(
    request: Request,
    user_id: uuid.UUID,
    dto: HAUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.update_ha(db, ctx, user_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "ha_update_failed")


@ha_router.post("/{user_id}/deactivate", response_model=UserRead)
def deactivate_ha(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.deactivate_ha(db, ctx, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "ha_deactivate_failed")


@ha_router.post("/{user_id}/reactivate", response_model=UserRead)
def reactivate_ha(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        require_permission(ctx, "users.create")
        return ha_management_service.reactivate_ha(db, ctx, user_id)
    except HTTPException as exc:
        return _failed(request, exc, "ha_reactivate_failed")


@profile_router.get("", response_model=UserDetailRead)
def get_profile(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserDetailRead | JSONResponse:
    try:
        return profile_service.get_profile(db, ctx)
    except HTTPException as exc:
        return _failed(request, exc, "profile_get_failed")


@profile_router.patch("", response_model=UserRead)
def update_profile(
    request: Request,
    dto: ProfileUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UserRead | JSONResponse:
    try:
        return profile_service.update_profile(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "profile_update_failed")


@profile_router.get("/security", response_model=SecurityOverview)
def security_overview(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SecurityOverview | JSONResponse:
    try:
        return profile_service.security_overview(db, ctx)
    except HTTPException as exc:
        return _failed(request, exc, "profile_security_failed")


@activity_router.get("/activity-logs", response_model=ActivityLogPage)
def list_activity_logs(
    request: Request,
    user_id: uuid.UUID | None = Query(default=None),
    action: str | None = Query(default=None),
    model: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> ActivityLogPage | JSONResponse:
    try:
        return activity_log_service.list_logs(
            db,
            ctx,
            user_id=user_id,
            action=action,
            model=model,
            date_from=date_from,
            date_to=date_to,
            page=page,
            per_page=per_page,
        )
    except HTTPException as exc:
        return _failed(request, exc, "activity_log_list_failed")


@activity_router.get("/login-history", response_model=LoginHistoryPage)
def list_login_history(
    request: Request,
    user_id: uuid.UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LoginHistoryPage | JSONResponse:
    try:
        return login_history_service.list_history(
            db,
            ctx,
            user_id=user_id,
            status_filter=status_filter,
            date_from=date_from,
            date_to=date_to,
            page=page,
            per_page=per_page,
        )
    except HTTPException as exc:
        return _failed(request, exc, "login_history_list_failed")


@sessions_router.post("/sessions", response_model=LoginHistoryRead, status_code=status.HTTP_201_CREATED)
def start_session(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LoginHistoryRead | JSONResponse:
    try:
        user = db.get(User, ctx.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown user")
        return login_history_service.record_login(
            db,
            user,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
    except HTTPException as exc:
        return _failed(request, exc, "session_start_failed")


@sessions_router.delete("/sessions/{history_id}", response_model=LoginHistoryRead)
def end_session(
    request: Request,
    history_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LoginHistoryRead | JSONResponse:
    try:
        return login_history_service.record_logout(db, ctx, history_id)
    except HTTPException as exc:
        return _failed(request, exc, "session_end_failed")
