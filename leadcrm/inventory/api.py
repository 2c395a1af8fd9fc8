from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadcrm.api.errors import error_response
from leadcrm.core.database import get_db
from leadcrm.inventory.schemas import UnitCreate, UnitDetailRead, UnitPage, UnitRead, UnitUpdate
from leadcrm.inventory.service import project_unit_service
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import get_auth_context, require_permission

router = APIRouter(prefix="/api/units", tags=["inventory"])


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


@router.get("", response_model=UnitPage)
def list_units(
    project: str | None = Query(default=None),
    unit_type: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UnitPage:
    return project_unit_service.list_units(
        db,
        project=project,
        unit_type=unit_type,
        status_filter=status_filter,
        search=search,
        page=page,
    )


@router.post("", response_model=UnitRead, status_code=status.HTTP_201_CREATED)
def create_unit(
    request: Request,
    dto: UnitCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UnitRead | JSONResponse:
    try:
        require_permission(ctx, "units.manage")
        return project_unit_service.create_unit(db, ctx, dto)
    except HTTPException as exc:
        return _failed(request, exc, "unit_create_failed")


@router.get("/projects", response_model=list[str])
def list_projects(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[str]:
    return project_unit_service.projects(db)


@router.get("/unit-types", response_model=list[str])
def list_unit_types(
    project: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[str]:
    return project_unit_service.unit_types(db, project)


@router.get("/by-project", response_model=list[UnitRead])
def list_units_by_project(
    project: str = Query(),
    unit_type: str = Query(),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[UnitRead]:
    return project_unit_service.units(db, project, unit_type)


@router.get("/{unit_id}", response_model=UnitDetailRead)
def get_unit(
    request: Request,
    unit_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UnitDetailRead | JSONResponse:
    try:
        return project_unit_service.get_unit(db, ctx, unit_id)
    except HTTPException as exc:
        return _failed(request, exc, "unit_get_failed")


@router.patch("/{unit_id}", response_model=UnitRead)
def update_unit(
    request: Request,
    unit_id: uuid.UUID,
    dto: UnitUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> UnitRead | JSONResponse:
    try:
        require_permission(ctx, "units.manage")
        return project_unit_service.update_unit(db, ctx, unit_id, dto)
    except HTTPException as exc:
        return _failed(request, exc, "unit_update_failed")


@router.delete("/{unit_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def delete_unit(
    request: Request,
    unit_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> Response | JSONResponse:
    try:
        require_permission(ctx, "units.manage")
        project_unit_service.delete_unit(db, ctx, unit_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except HTTPException as exc:
        return _failed(request, exc, "unit_delete_failed")
