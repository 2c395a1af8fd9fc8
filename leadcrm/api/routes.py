from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadcrm.admin.api import router as settings_router
from leadcrm.authz.api import admin_router
from leadcrm.core.config import get_settings
from leadcrm.inventory.api import router as units_router
from leadcrm.leads.api import router as leads_router
from leadcrm.metrics import generate_metrics_payload, metrics_content_type
from leadcrm.reporting.api import dashboard_router, reports_router
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_permission
from leadcrm.security.policies import has_permission
from leadcrm.security.roles import ALL_PERMISSIONS
from leadcrm.users.api import activity_router, ha_router, profile_router, sessions_router, users_router

router = APIRouter()
router.include_router(leads_router)
router.include_router(units_router)
router.include_router(users_router)
router.include_router(ha_router)
router.include_router(profile_router)
router.include_router(activity_router)
router.include_router(sessions_router)
router.include_router(dashboard_router)
router.include_router(reports_router)
router.include_router(settings_router)
router.include_router(admin_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(ctx: AuthContext = Depends(get_auth_context)) -> dict[str, Any]:
    return {
        "id": str(ctx.user_id),
        "name": ctx.name,
        "roles": ctx.roles,
        "primary_role": ctx.primary_role,
        "permissions": [permission for permission in ALL_PERMISSIONS if has_permission(ctx, permission)],
        "manager_id": str(ctx.manager_id) if ctx.manager_id is not None else None,
        "spv_id": str(ctx.spv_id) if ctx.spv_id is not None else None,
    }


@router.get("/metrics", tags=["system"])
def metrics(ctx: AuthContext = Depends(get_auth_context)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    require_permission(ctx, "system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
