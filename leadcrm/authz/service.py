from __future__ import annotations

import uuid

from fastapi import HTTPException, status
from sqlalchemy import and_, delete, select
from sqlalchemy.orm import Session

from leadcrm.authz.models import Permission, Role, RolePermission, UserPermission
from leadcrm.authz.schemas import PermissionRead, RolePermissionRead, RoleRead, UserPermissionsRead
from leadcrm.security.roles import ALL_PERMISSIONS, DEFAULT_ROLE_PERMISSIONS, ROLE_PRECEDENCE
from leadcrm.users.models import User


def _direct_permissions(session: Session, user_id: uuid.UUID) -> list[str]:
    return list(
        session.scalars(
            select(Permission.name)
            .join(UserPermission, UserPermission.permission_id == Permission.id)
            .where(UserPermission.user_id == user_id)
            .order_by(Permission.name.asc())
        ).all()
    )


class AuthorizationAdminService:
    def list_roles(self, session: Session) -> list[RoleRead]:
        rows = session.scalars(select(Role).order_by(Role.name.asc())).all()
        return [RoleRead.model_validate(row) for row in rows]

    def list_permissions(self, session: Session) -> list[PermissionRead]:
        rows = session.scalars(select(Permission).order_by(Permission.name.asc())).all()
        return [PermissionRead.model_validate(row) for row in rows]

    def attach_permission_to_role(self, session: Session, role_id: uuid.UUID, permission_id: uuid.UUID) -> RolePermissionRead:
        role = session.get(Role, role_id)
        if role is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
        permission = session.get(Permission, permission_id)
        if permission is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="permission not found")

        mapping = session.scalar(
            select(RolePermission).where(
                and_(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            mapping = RolePermission(role_id=role_id, permission_id=permission_id)
            session.add(mapping)
            session.commit()
            session.refresh(mapping)

        return RolePermissionRead(
            role_id=role.id,
            role_name=role.name,
            permission_id=permission.id,
            permission_name=permission.name,
            created_at=mapping.created_at,
        )

    def list_role_permissions(self, session: Session, role_id: uuid.UUID | None = None) -> list[RolePermissionRead]:
        stmt = (
            select(RolePermission, Role, Permission)
            .join(Role, RolePermission.role_id == Role.id)
            .join(Permission, RolePermission.permission_id == Permission.id)
            .order_by(Role.name.asc(), Permission.name.asc())
        )
        if role_id is not None:
            stmt = stmt.where(RolePermission.role_id == role_id)
        return [
            RolePermissionRead(
                role_id=role.id,
                role_name=role.name,
                permission_id=permission.id,
                permission_name=permission.name,
                created_at=mapping.created_at,
            )
            for mapping, role, permission in session.execute(stmt).all()
        ]

    def detach_permission_from_role(self, session: Session, role_id: uuid.UUID, permission_id: uuid.UUID) -> None:
        mapping = session.scalar(
            select(RolePermission).where(
                and_(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role-permission mapping not found")
        session.delete(mapping)
        session.commit()

    def users_with_permissions(self, session: Session) -> list[UserPermissionsRead]:
        users = session.scalars(select(User).order_by(User.name.asc())).all()
        return [
            UserPermissionsRead(
                user_id=user.id,
                name=user.name,
                email=user.email,
                roles=user.role_names,
                permissions=_direct_permissions(session, user.id),
            )
            for user in users
        ]

    def sync_user_permissions(self, session: Session, user_id: uuid.UUID, names: list[str]) -> UserPermissionsRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")

        wanted = sorted({name.strip() for name in names if name.strip()})
        permissions = session.scalars(select(Permission).where(Permission.name.in_(wanted))).all() if wanted else []
        unknown = sorted(set(wanted) - {permission.name for permission in permissions})
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"unknown permissions: {', '.join(unknown)}",
            )

        session.execute(delete(UserPermission).where(UserPermission.user_id == user.id))
        for permission in permissions:
            session.add(UserPermission(user_id=user.id, permission_id=permission.id))
        session.commit()
        return UserPermissionsRead(
            user_id=user.id,
            name=user.name,
            email=user.email,
            roles=user.role_names,
            permissions=_direct_permissions(session, user.id),
        )

    def seed_roles_and_permissions(self, session: Session) -> None:
        """Create the system roles and permissions and the default grants. Safe to re-run."""

        permissions = {row.name: row for row in session.scalars(select(Permission)).all()}
        for name in ALL_PERMISSIONS:
            if name not in permissions:
                permissions[name] = Permission(name=name)
                session.add(permissions[name])

        roles = {row.name: row for row in session.scalars(select(Role)).all()}
        for name in ROLE_PRECEDENCE:
            if name not in roles:
                roles[name] = Role(name=name, is_system=True)
                session.add(roles[name])
        session.flush()

        granted = set(session.execute(select(RolePermission.role_id, RolePermission.permission_id)).tuples().all())
        for role_name, permission_names in DEFAULT_ROLE_PERMISSIONS.items():
            role = roles[role_name]
            for permission_name in sorted(permission_names):
                permission = permissions[permission_name]
                if (role.id, permission.id) not in granted:
                    session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        session.commit()


authorization_admin_service = AuthorizationAdminService()
