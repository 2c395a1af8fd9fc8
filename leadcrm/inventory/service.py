from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadcrm.inventory.models import ProjectUnit
from leadcrm.inventory.schemas import UnitCreate, UnitDetailRead, UnitPage, UnitRead, UnitUpdate
from leadcrm.leads.models import Lead
from leadcrm.leads.service import to_lead_read
from leadcrm.pagination import paginate
from leadcrm.security.context import AuthContext
from leadcrm.security.visibility import apply_lead_visibility
from leadcrm.users.activity import activity_log_service
from leadcrm.users.schemas import PageMeta

logger = logging.getLogger("leadcrm.inventory")

UNITS_PER_PAGE = 50
DUPLICATE_UNIT = "Unit already exists for this project and unit type."


def _leads_for_unit(unit: ProjectUnit):  # type: ignore[no-untyped-def]
    return select(Lead).where(
        Lead.project == unit.project,
        Lead.unit_type == unit.unit_type,
        Lead.unit_no == unit.unit_no,
    )


class ProjectUnitService:
    entity_type = "ProjectUnit"

    def _get(self, session: Session, unit_id: uuid.UUID) -> ProjectUnit:
        unit = session.get(ProjectUnit, unit_id)
        if unit is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unit not found")
        return unit

    def list_units(
        self,
        session: Session,
        *,
        project: str | None = None,
        unit_type: str | None = None,
        status_filter: str | None = None,
        search: str | None = None,
        page: int = 1,
    ) -> UnitPage:
        stmt = select(ProjectUnit)
        if project:
            stmt = stmt.where(ProjectUnit.project == project)
        if unit_type:
            stmt = stmt.where(ProjectUnit.unit_type == unit_type)
        if status_filter:
            stmt = stmt.where(ProjectUnit.status == status_filter)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    ProjectUnit.unit_no.ilike(pattern),
                    ProjectUnit.project.ilike(pattern),
                    ProjectUnit.unit_type.ilike(pattern),
                    ProjectUnit.description.ilike(pattern),
                )
            )
        stmt = stmt.order_by(ProjectUnit.project.asc(), ProjectUnit.unit_type.asc(), ProjectUnit.unit_no.asc())
        rows, meta = paginate(session, stmt, page=page, per_page=UNITS_PER_PAGE)
        return UnitPage(data=[UnitRead.model_validate(row) for row in rows], meta=PageMeta.from_dict(meta))

    def create_unit(self, session: Session, ctx: AuthContext, dto: UnitCreate) -> UnitRead:
        unit = ProjectUnit(**dto.model_dump())
        session.add(unit)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_UNIT)

        activity_log_service.record(
            session,
            ctx,
            action="create",
            description=f"Created unit: {unit.full_unit}",
            model=self.entity_type,
            model_id=unit.id,
            properties={"unit_data": dto.model_dump(mode="json")},
        )
        session.commit()
        session.refresh(unit)
        logger.info("unit.created", extra={"unit_id": str(unit.id), "user_id": str(ctx.user_id)})
        return UnitRead.model_validate(unit)

    def get_unit(self, session: Session, ctx: AuthContext, unit_id: uuid.UUID) -> UnitDetailRead:
        unit = self._get(session, unit_id)
        stmt = apply_lead_visibility(_leads_for_unit(unit), ctx).order_by(Lead.created_at.desc())
        leads = session.scalars(stmt).unique().all()
        base = UnitRead.model_validate(unit)
        return UnitDetailRead(**base.model_dump(), leads=[to_lead_read(lead) for lead in leads])

    def update_unit(self, session: Session, ctx: AuthContext, unit_id: uuid.UUID, dto: UnitUpdate) -> UnitRead:
        unit = self._get(session, unit_id)
        changes: dict[str, Any] = {
            key: value for key, value in dto.model_dump(exclude_unset=True).items()
            if value is not None or key in {"price", "size", "description", "specifications"}
        }
        before = UnitRead.model_validate(unit).model_dump(mode="json")
        for key, value in changes.items():
            setattr(unit, key, value)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_UNIT)

        activity_log_service.record(
            session,
            ctx,
            action="update",
            description=f"Updated unit: {unit.full_unit}",
            model=self.entity_type,
            model_id=unit.id,
            properties={"before": before, "changes": dto.model_dump(mode="json", exclude_unset=True)},
        )
        session.commit()
        session.refresh(unit)
        return UnitRead.model_validate(unit)

    def delete_unit(self, session: Session, ctx: AuthContext, unit_id: uuid.UUID) -> None:
        unit = self._get(session, unit_id)
        lead_count = session.scalar(select(func.count()).select_from(_leads_for_unit(unit).subquery())) or 0
        if lead_count:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Cannot delete unit with associated leads.")

        activity_log_service.record(
            session,
            ctx,
            action="delete",
            description=f"Deleted unit: {unit.full_unit}",
            model=self.entity_type,
            model_id=unit.id,
            properties={"unit_data": UnitRead.model_validate(unit).model_dump(mode="json")},
        )
        session.delete(unit)
        session.commit()

    def projects(self, session: Session) -> list[str]:
        rows = session.scalars(select(ProjectUnit.project).distinct().order_by(ProjectUnit.project.asc())).all()
        return list(rows)

    def unit_types(self, session: Session, project: str | None = None) -> list[str]:
        stmt = select(ProjectUnit.unit_type).distinct().order_by(ProjectUnit.unit_type.asc())
        if project:
            stmt = stmt.where(ProjectUnit.project == project)
        return list(session.scalars(stmt).all())

    def units(self, session: Session, project: str, unit_type: str) -> list[UnitRead]:
        rows = session.scalars(
            select(ProjectUnit)
            .where(ProjectUnit.project == project, ProjectUnit.unit_type == unit_type)
            .order_by(ProjectUnit.unit_no.asc())
        ).all()
        return [UnitRead.model_validate(row) for row in rows]


project_unit_service = ProjectUnitService()
