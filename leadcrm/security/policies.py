from __future__ import annotations

from threading import Lock
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from leadcrm.authz.models import Permission, Role, RolePermission, UserRole
from leadcrm.core.database import SessionLocal
from leadcrm.metrics import observe_authz_policy_cache_hit, observe_authz_policy_cache_miss
from leadcrm.security.context import AuthContext
from leadcrm.security.roles import DEFAULT_ROLE_PERMISSIONS


class PolicyBackend(Protocol):
    """Pluggable backend answering role-based permission checks."""

    def is_allowed(self, permission: str, ctx: AuthContext) -> bool:
        ...


def _matches(grant: str, required: str) -> bool:
    if grant in {"*", required}:
        return True
    if grant.endswith(".*"):
        return required.startswith(grant[:-1])
    return False


class InMemoryPolicyBackend:
    """Static role map with wildcard support."""

    def __init__(self, role_permissions: dict[str, set[str]] | None = None) -> None:
        self._role_permissions = role_permissions if role_permissions is not None else DEFAULT_ROLE_PERMISSIONS

    def is_allowed(self, permission: str, ctx: AuthContext) -> bool:
        grants: set[str] = set()
        for role in ctx.roles:
            grants.update(self._role_permissions.get(role, set()))
        return any(_matches(grant, permission) for grant in grants)


class DbPolicyBackend:
    """Resolves role permissions from the authz tables, cached on the context."""

    CACHE_KEY = "authz.db_policy"

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    def is_allowed(self, permission: str, ctx: AuthContext) -> bool:
        grants = self._load_grants(ctx)
        return any(_matches(grant, permission) for grant in grants["permissions"])

    def _load_grants(self, ctx: AuthContext) -> dict[str, Any]:
        cache = ctx._cache.get(self.CACHE_KEY)
        if isinstance(cache, dict):
            observe_authz_policy_cache_hit()
            return cache

        observe_authz_policy_cache_miss()
        with self._session_factory() as session:
            rows = session.execute(
                select(Role.name, Permission.name)
                .select_from(UserRole)
                .join(Role, UserRole.role_id == Role.id)
                .join(RolePermission, RolePermission.role_id == Role.id)
                .join(Permission, Permission.id == RolePermission.permission_id)
                .where(UserRole.user_id == ctx.user_id)
            ).all()

        role_names = sorted({str(row[0]) for row in rows})
        if role_names and not ctx.roles:
            ctx.roles = role_names

        payload: dict[str, Any] = {
            "permissions": {str(row[1]) for row in rows},
            "role_names": role_names,
        }
        ctx._cache[self.CACHE_KEY] = payload
        return payload


_POLICY_BACKEND: PolicyBackend = InMemoryPolicyBackend()
_POLICY_LOCK = Lock()


def get_policy_backend() -> PolicyBackend:
    """Get the active policy backend instance."""

    return _POLICY_BACKEND


def set_policy_backend(backend: PolicyBackend) -> None:
    """Set the active policy backend instance."""

    global _POLICY_BACKEND
    with _POLICY_LOCK:
        _POLICY_BACKEND = backend


def has_permission(ctx: AuthContext, permission: str) -> bool:
    if ctx.is_super_admin:
        return True
    if any(_matches(grant, permission) for grant in ctx.permissions):
        return True
    return get_policy_backend().is_allowed(permission, ctx)
