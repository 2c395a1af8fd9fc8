from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm.api.errors import error_response
from leadcrm.authz.schemas import (
    AttachRolePermissionRequest,
    PermissionRead,
    RolePermissionRead,
    RoleRead,
    SyncUserPermissionsRequest,
    UserPermissionsRead,
)
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.database import get_db
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_super_admin

admin_router = APIRouter(prefix="/api/admin", tags=["admin.authz"])


def _require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    require_super_admin(ctx)
    return ctx


@admin_router.get("/roles", response_model=list[RoleRead])
def list_roles(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> list[RoleRead]:
    return authorization_admin_service.list_roles(db)


@admin_router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> list[PermissionRead]:
    return authorization_admin_service.list_permissions(db)


@admin_router.get("/role-permissions", response_model=list[RolePermissionRead])
def list_role_permissions(
    role_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> list[RolePermissionRead]:
    return authorization_admin_service.list_role_permissions(db, role_id)


@admin_router.post("/roles/{role_id}/permissions", response_model=RolePermissionRead, status_code=status.HTTP_201_CREATED)
def attach_permission(
    role_id: uuid.UUID,
    dto: AttachRolePermissionRequest,
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> RolePermissionRead:
    return authorization_admin_service.attach_permission_to_role(db, role_id, dto.permission_id)


@admin_router.delete("/roles/{role_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def detach_permission(
    role_id: uuid.UUID,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> Response:
    authorization_admin_service.detach_permission_from_role(db, role_id, permission_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.get("/user-permissions", response_model=list[UserPermissionsRead])
def list_user_permissions(
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> list[UserPermissionsRead]:
    return authorization_admin_service.users_with_permissions(db)


@admin_router.put("/user-permissions/{user_id}", response_model=UserPermissionsRead)
def sync_user_permissions(
    request: Request,
    user_id: uuid.UUID,
    dto: SyncUserPermissionsRequest,
    db: Session = Depends(get_db),
    _ctx: AuthContext = Depends(_require_admin),
) -> UserPermissionsRead | JSONResponse:
    try:
        return authorization_admin_service.sync_user_permissions(db, user_id, dto.permissions)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="authz_user_permissions_sync_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
