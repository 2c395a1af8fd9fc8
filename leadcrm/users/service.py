from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from leadcrm import events
from leadcrm.authz.models import Role
from leadcrm.leads.models import Lead
from leadcrm.pagination import normalize_per_page, paginate
from leadcrm.security.context import AuthContext
from leadcrm.security.roles import HA, MANAGER, SPV, SUPERADMIN
from leadcrm.users.activity import activity_log_service, login_history_service
from leadcrm.users.models import User
from leadcrm.users.schemas import (
    AssignHARequest,
    HACreate,
    HAUpdate,
    HierarchyOptions,
    PageMeta,
    ProfileUpdate,
    SecurityOverview,
    UserCreate,
    UserDetailRead,
    UserPage,
    UserRead,
    UserSummary,
    UserUpdate,
)


logger = logging.getLogger("leadcrm.users")


def active_clause():
    today = date.today()
    return and_(User.is_active.is_(True), or_(User.leave_date.is_(None), User.leave_date > today))


def inactive_clause():
    today = date.today()
    return or_(User.is_active.is_(False), and_(User.leave_date.is_not(None), User.leave_date <= today))


def has_role_clause(*roles: str):
    return User.roles.any(Role.name.in_(roles))


def assigned_lead_counts(session: Session, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not user_ids:
        return {}
    rows = session.execute(
        select(Lead.assigned_to, func.count(Lead.id)).where(Lead.assigned_to.in_(user_ids)).group_by(Lead.assigned_to)
    ).all()
    return {row[0]: int(row[1]) for row in rows}


def to_user_read(user: User, assigned_leads_count: int = 0) -> UserRead:
    return UserRead(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        address=user.address,
        employee_id=user.employee_id,
        department=user.department,
        position=user.position,
        join_date=user.join_date,
        leave_date=user.leave_date,
        is_active=user.is_active,
        notes=user.notes,
        manager_id=user.manager_id,
        spv_id=user.spv_id,
        last_login_at=user.last_login_at,
        last_login_ip=user.last_login_ip,
        created_at=user.created_at,
        updated_at=user.updated_at,
        roles=user.role_names,
        primary_role=user.primary_role,
        assigned_leads_count=assigned_leads_count,
    )


def _summary(user: User | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary(id=user.id, name=user.name, email=user.email)


def _snapshot(user: User) -> dict[str, Any]:
    return to_user_read(user).model_dump(mode="json", exclude={"assigned_leads_count"})


def _ensure_unique_identity(
    session: Session,
    *,
    email: str | None,
    employee_id: str | None,
    exclude_id: uuid.UUID | None = None,
) -> None:
    if email:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email already in use")
    if employee_id:
        stmt = select(User.id).where(User.employee_id == employee_id)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="employee id already in use")


def _ensure_user_exists(session: Session, user_id: uuid.UUID | None, label: str) -> None:
    if user_id is None:
        return
    if session.get(User, user_id) is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{label} not found")


def _get_role(session: Session, name: str) -> Role:
    role = session.scalar(select(Role).where(Role.name == name))
    if role is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"unknown role: {name}")
    return role


def _apply_search(stmt, search: str | None, *columns):  # type: ignore[no-untyped-def]
    if not search:
        return stmt
    pattern = f"%{search.strip()}%"
    return stmt.where(or_(*[column.ilike(pattern) for column in columns]))


def _apply_status(stmt, status_filter: str | None):  # type: ignore[no-untyped-def]
    if status_filter == "active":
        return stmt.where(active_clause())
    if status_filter == "inactive":
        return stmt.where(inactive_clause())
    return stmt


def _publish(event_type: str, ctx: AuthContext, user: User) -> None:
    events.publish(
        events.build_envelope(
            event_type,
            ctx.user_id,
            {"user_id": str(user.id), "primary_role": user.primary_role},
        )
    )


class UserManagementService:
    def list_users(
        self,
        session: Session,
        *,
        search: str | None = None,
        role: str | None = None,
        status_filter: str | None = None,
        department: str | None = None,
        page: int = 1,
        per_page: int | None = None,
    ) -> UserPage:
        stmt = select(User)
        stmt = _apply_search(stmt, search, User.name, User.email, User.employee_id, User.department, User.position)
        if role:
            stmt = stmt.where(has_role_clause(role))
        stmt = _apply_status(stmt, status_filter)
        if department:
            stmt = stmt.where(User.department == department)

        rows, meta = paginate(session, stmt.order_by(User.created_at.desc()), page=page, per_page=normalize_per_page(per_page))
        counts = assigned_lead_counts(session, [row.id for row in rows])
        return UserPage(
            data=[to_user_read(row, counts.get(row.id, 0)) for row in rows],
            meta=PageMeta.from_dict(meta),
        )

    def create_user(self, session: Session, ctx: AuthContext, dto: UserCreate) -> UserRead:
        email = str(dto.email) if dto.email is not None else None
        _ensure_unique_identity(session, email=email, employee_id=dto.employee_id)
        role = _get_role(session, dto.role)
        _ensure_user_exists(session, dto.manager_id, "manager")
        _ensure_user_exists(session, dto.spv_id, "supervisor")

        user = User(
            name=dto.name.strip(),
            email=email,
            phone=dto.phone,
            address=dto.address,
            employee_id=dto.employee_id,
            department=dto.department,
            position=dto.position,
            join_date=dto.join_date,
            manager_id=dto.manager_id,
            spv_id=dto.spv_id,
            notes=dto.notes,
            is_active=True,
        )
        user.roles = [role]
        session.add(user)
        session.flush()

        activity_log_service.record(
            session,
            ctx,
            action="create",
            description=f"Created user: {user.name}",
            model="User",
            model_id=user.id,
            properties={"user_data": _snapshot(user)},
        )
        session.commit()
        session.refresh(user)
        _publish("user.created", ctx, user)
        logger.info("user.created", extra={"user_id": str(user.id)})
        return to_user_read(user)

    def get_user(self, session: Session, user_id: uuid.UUID) -> UserDetailRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        return self._to_detail(session, user)

    def update_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")

        payload = dto.model_dump(exclude_unset=True)
        role_name = payload.pop("role", None)
        if "email" in payload and payload["email"] is not None:
            payload["email"] = str(payload["email"])
        _ensure_unique_identity(
            session,
            email=payload.get("email"),
            employee_id=payload.get("employee_id"),
            exclude_id=user.id,
        )
        _ensure_user_exists(session, payload.get("manager_id"), "manager")
        _ensure_user_exists(session, payload.get("spv_id"), "supervisor")
        join_date = payload.get("join_date", user.join_date)
        leave_date = payload.get("leave_date")
        if leave_date is not None and join_date is not None and leave_date <= join_date:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="leave_date must be after join_date")

        before = _snapshot(user)
        for key, value in payload.items():
            setattr(user, key, value)
        if role_name is not None:
            user.roles = [_get_role(session, role_name)]

        session.flush()
        activity_log_service.record(
            session,
            ctx,
            action="update",
            description=f"Updated user: {user.name}",
            model="User",
            model_id=user.id,
            properties={"before": before, "after": _snapshot(user)},
        )
        session.commit()
        session.refresh(user)
        _publish("user.updated", ctx, user)
        return to_user_read(user, assigned_lead_counts(session, [user.id]).get(user.id, 0))

    def deactivate_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        if user.has_role(SUPERADMIN):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Cannot deactivate superadmin user.")
        if user.id == ctx.user_id:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="You cannot deactivate yourself.")

        user.is_active = False
        user.leave_date = date.today()
        activity_log_service.record(
            session,
            ctx,
            action="deactivate",
            description=f"Deactivated user: {user.name}",
            model="User",
            model_id=user.id,
        )
        session.commit()
        session.refresh(user)
        _publish("user.deactivated", ctx, user)
        return to_user_read(user)

    def reactivate_user(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")

        user.is_active = True
        user.leave_date = None
        activity_log_service.record(
            session,
            ctx,
            action="reactivate",
            description=f"Reactivated user: {user.name}",
            model="User",
            model_id=user.id,
        )
        session.commit()
        session.refresh(user)
        _publish("user.reactivated", ctx, user)
        return to_user_read(user)

    def list_departments(self, session: Session) -> list[str]:
        rows = session.scalars(
            select(User.department).where(User.department.is_not(None)).distinct().order_by(User.department.asc())
        ).all()
        return [str(row) for row in rows if row]

    def list_ha_users(self, session: Session) -> list[UserRead]:
        rows = session.scalars(select(User).where(has_role_clause(HA)).order_by(User.name.asc())).all()
        counts = assigned_lead_counts(session, [row.id for row in rows])
        return [to_user_read(row, counts.get(row.id, 0)) for row in rows]

    def assign_ha(self, session: Session, ctx: AuthContext, dto: AssignHARequest) -> UserRead:
        ha_user = session.get(User, dto.ha_id)
        if ha_user is None or not ha_user.has_role(HA):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="User is not an HA.")
        _ensure_user_exists(session, dto.manager_id, "manager")
        _ensure_user_exists(session, dto.spv_id, "supervisor")

        ha_user.manager_id = dto.manager_id
        ha_user.spv_id = dto.spv_id
        activity_log_service.record(
            session,
            ctx,
            action="assign_ha",
            description=f"Assigned HA {ha_user.name} to new hierarchy",
            model="User",
            model_id=ha_user.id,
            properties={
                "manager_id": str(dto.manager_id) if dto.manager_id else None,
                "spv_id": str(dto.spv_id) if dto.spv_id else None,
            },
        )
        session.commit()
        session.refresh(ha_user)
        _publish("user.updated", ctx, ha_user)
        return to_user_read(ha_user)

    def _to_detail(self, session: Session, user: User) -> UserDetailRead:
        base = to_user_read(user, assigned_lead_counts(session, [user.id]).get(user.id, 0))
        return UserDetailRead(
            **base.model_dump(),
            manager=_summary(user.manager),
            spv=_summary(user.spv),
            recent_activities=activity_log_service.recent_for_user(session, user.id, limit=10),
        )


class HAManagementService:
    """Team-scoped management of Housing Advisor accounts."""

    def _scoped_query(self, ctx: AuthContext):  # type: ignore[no-untyped-def]
        stmt = select(User).where(has_role_clause(HA))
        role = ctx.primary_role
        if role == MANAGER:
            stmt = stmt.where(User.manager_id == ctx.user_id)
        elif role == SPV:
            stmt = stmt.where(User.spv_id == ctx.user_id)
        return stmt

    def _in_scope(self, ctx: AuthContext, target: User) -> bool:
        role = ctx.primary_role
        if role == MANAGER:
            return target.manager_id == ctx.user_id
        if role == SPV:
            return target.spv_id == ctx.user_id
        return True

    def _get_ha(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> User:
        user = session.get(User, user_id)
        if user is None or not user.has_role(HA):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="HA user not found")
        if not self._in_scope(ctx, user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="HA user is outside your team")
        return user

    def list_has(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        search: str | None = None,
        status_filter: str | None = None,
        page: int = 1,
        per_page: int | None = None,
    ) -> UserPage:
        stmt = self._scoped_query(ctx)
        stmt = _apply_search(stmt, search, User.name, User.email, User.employee_id)
        stmt = _apply_status(stmt, status_filter)
        rows, meta = paginate(session, stmt.order_by(User.created_at.desc()), page=page, per_page=normalize_per_page(per_page))
        counts = assigned_lead_counts(session, [row.id for row in rows])
        return UserPage(
            data=[to_user_read(row, counts.get(row.id, 0)) for row in rows],
            meta=PageMeta.from_dict(meta),
        )

    def hierarchy_options(self, session: Session, ctx: AuthContext) -> HierarchyOptions:
        role = ctx.primary_role
        if role == MANAGER:
            me = session.get(User, ctx.user_id)
            managers = [me] if me is not None else []
            supervisors = session.scalars(
                select(User).where(has_role_clause(SPV), User.manager_id == ctx.user_id).order_by(User.name.asc())
            ).all()
        elif role == SPV:
            me = session.get(User, ctx.user_id)
            managers = [me.manager] if me is not None and me.manager is not None else []
            supervisors = [me] if me is not None else []
        else:
            managers = session.scalars(
                select(User).where(has_role_clause(SUPERADMIN, MANAGER)).order_by(User.name.asc())
            ).all()
            supervisors = session.scalars(
                select(User).where(has_role_clause(SUPERADMIN, MANAGER, SPV)).order_by(User.name.asc())
            ).all()
        return HierarchyOptions(
            managers=[UserSummary.model_validate(item) for item in managers],
            supervisors=[UserSummary.model_validate(item) for item in supervisors],
        )

    def _validate_hierarchy(
        self,
        session: Session,
        ctx: AuthContext,
        manager_id: uuid.UUID | None,
        spv_id: uuid.UUID | None,
    ) -> None:
        options = self.hierarchy_options(session, ctx)
        if manager_id is not None and manager_id not in {item.id for item in options.managers}:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Selected manager is outside your hierarchy.")
        if spv_id is not None and spv_id not in {item.id for item in options.supervisors}:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Selected supervisor is outside your hierarchy.")

    def create_ha(self, session: Session, ctx: AuthContext, dto: HACreate) -> UserRead:
        email = str(dto.email) if dto.email is not None else None
        _ensure_unique_identity(session, email=email, employee_id=dto.employee_id)

        manager_id = dto.manager_id
        spv_id = dto.spv_id
        role = ctx.primary_role
        if role == MANAGER and manager_id is None:
            manager_id = ctx.user_id
        elif role == SPV:
            if spv_id is None:
                spv_id = ctx.user_id
            if manager_id is None:
                manager_id = ctx.manager_id
        self._validate_hierarchy(session, ctx, manager_id, spv_id)

        user = User(
            name=dto.name.strip(),
            email=email,
            phone=dto.phone,
            address=dto.address,
            employee_id=dto.employee_id,
            join_date=dto.join_date,
            manager_id=manager_id,
            spv_id=spv_id,
            notes=dto.notes,
            is_active=True,
        )
        user.roles = [_get_role(session, HA)]
        session.add(user)
        session.flush()
        activity_log_service.record(
            session,
            ctx,
            action="create",
            description=f"Created HA user: {user.name}",
            model="User",
            model_id=user.id,
            properties={"user_data": _snapshot(user)},
        )
        session.commit()
        session.refresh(user)
        _publish("user.created", ctx, user)
        return to_user_read(user)

    def get_ha(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserDetailRead:
        user = self._get_ha(session, ctx, user_id)
        return user_management_service._to_detail(session, user)

    def update_ha(self, session: Session, ctx: AuthContext, user_id: uuid.UUID, dto: HAUpdate) -> UserRead:
        user = self._get_ha(session, ctx, user_id)
        payload = dto.model_dump(exclude_unset=True)
        if "email" in payload and payload["email"] is not None:
            payload["email"] = str(payload["email"])
        _ensure_unique_identity(
            session,
            email=payload.get("email"),
            employee_id=payload.get("employee_id"),
            exclude_id=user.id,
        )
        self._validate_hierarchy(session, ctx, payload.get("manager_id"), payload.get("spv_id"))
        join_date = payload.get("join_date", user.join_date)
        leave_date = payload.get("leave_date")
        if leave_date is not None and join_date is not None and leave_date <= join_date:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="leave_date must be after join_date")

        before = _snapshot(user)
        for key, value in payload.items():
            setattr(user, key, value)
        session.flush()
        activity_log_service.record(
            session,
            ctx,
            action="update",
            description=f"Updated HA user: {user.name}",
            model="User",
            model_id=user.id,
            properties={"before": before, "after": _snapshot(user)},
        )
        session.commit()
        session.refresh(user)
        _publish("user.updated", ctx, user)
        return to_user_read(user, assigned_lead_counts(session, [user.id]).get(user.id, 0))

    def deactivate_ha(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        user = self._get_ha(session, ctx, user_id)
        user.is_active = False
        user.leave_date = date.today()
        activity_log_service.record(
            session,
            ctx,
            action="deactivate",
            description=f"Deactivated HA user: {user.name}",
            model="User",
            model_id=user.id,
        )
        session.commit()
        session.refresh(user)
        _publish("user.deactivated", ctx, user)
        return to_user_read(user)

    def reactivate_ha(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> UserRead:
        user = self._get_ha(session, ctx, user_id)
        user.is_active = True
        user.leave_date = None
        activity_log_service.record(
            session,
            ctx,
            action="reactivate",
            description=f"Reactivated HA user: {user.name}",
            model="User",
            model_id=user.id,
        )
        session.commit()
        session.refresh(user)
        _publish("user.reactivated", ctx, user)
        return to_user_read(user)


class ProfileService:
    def get_profile(self, session: Session, ctx: AuthContext) -> UserDetailRead:
        return user_management_service.get_user(session, ctx.user_id)

    def update_profile(self, session: Session, ctx: AuthContext, dto: ProfileUpdate) -> UserRead:
        user = session.get(User, ctx.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")

        payload = dto.model_dump(exclude_unset=True)
        if "email" in payload and payload["email"] is not None:
            payload["email"] = str(payload["email"])
        _ensure_unique_identity(
            session,
            email=payload.get("email"),
            employee_id=payload.get("employee_id"),
            exclude_id=user.id,
        )
        before = _snapshot(user)
        for key, value in payload.items():
            setattr(user, key, value)
        session.flush()
        activity_log_service.record(
            session,
            ctx,
            action="update_profile",
            description="Updated own profile",
            model="User",
            model_id=user.id,
            properties={"before": before, "after": _snapshot(user)},
        )
        session.commit()
        session.refresh(user)
        _publish("user.updated", ctx, user)
        return to_user_read(user)

    def security_overview(self, session: Session, ctx: AuthContext) -> SecurityOverview:
        user = session.get(User, ctx.user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        return SecurityOverview(
            user=to_user_read(user),
            recent_logins=login_history_service.recent_for_user(session, user.id, limit=10),
            recent_activities=activity_log_service.recent_for_user(session, user.id, limit=20),
        )


user_management_service = UserManagementService()
ha_management_service = HAManagementService()
profile_service = ProfileService()
