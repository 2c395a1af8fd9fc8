from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcrm.authz.models import Permission, UserPermission
from leadcrm.context import get_correlation_id
from leadcrm.core.auth import AuthUser, get_current_user
from leadcrm.core.database import get_db
from leadcrm.security.context import AuthContext
from leadcrm.security.policies import has_permission
from leadcrm.users.models import User


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or None
    return request.client.host if request.client is not None else None


def build_auth_context(session: Session, user: User, request: Request | None = None) -> AuthContext:
    direct_permissions = session.scalars(
        select(Permission.name)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user.id)
        .order_by(Permission.name.asc())
    ).all()

    return AuthContext(
        user_id=user.id,
        name=user.name,
        roles=user.role_names,
        permissions=list(direct_permissions),
        manager_id=user.manager_id,
        spv_id=user.spv_id,
        correlation_id=get_correlation_id(),
        ip_address=client_ip(request) if request is not None else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
    auth_user: AuthUser = Depends(get_current_user),
) -> AuthContext:
    try:
        user_id = uuid.UUID(auth_user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown user")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown user")
    if not user.is_currently_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user is inactive")
    request.state.user_id = str(user.id)
    return build_auth_context(db, user, request)


def require_permission(ctx: AuthContext, permission: str) -> None:
    if not has_permission(ctx, permission):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def require_any_permission(ctx: AuthContext, permissions: list[str]) -> None:
    if not any(has_permission(ctx, permission) for permission in permissions):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {' or '.join(permissions)}")


def require_super_admin(ctx: AuthContext) -> None:
    if not ctx.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: superadmin")
