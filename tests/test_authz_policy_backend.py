from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Role, UserRole
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.database import Base
from leadcrm.security.context import AuthContext
from leadcrm.security.policies import (
    DbPolicyBackend,
    InMemoryPolicyBackend,
    get_policy_backend,
    has_permission,
    set_policy_backend,
)


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        authorization_admin_service.seed_roles_and_permissions(session)
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


def _assign_role(session_factory: sessionmaker[Session], role_name: str) -> uuid.UUID:
    user_id = uuid.uuid4()
    with session_factory() as session:
        role = session.scalar(select(Role).where(Role.name == role_name))
        session.add(UserRole(user_id=user_id, role_id=role.id))
        session.commit()
    return user_id


def _cache_hits() -> float:
    return REGISTRY.get_sample_value("authz_policy_cache_hit_total") or 0.0


def test_db_policy_resolves_seeded_role_grants(session_factory: sessionmaker[Session]) -> None:
    backend = DbPolicyBackend(session_factory=session_factory)

    manager_ctx = AuthContext(user_id=_assign_role(session_factory, "manager"))
    assert backend.is_allowed("units.manage", manager_ctx) is True
    assert backend.is_allowed("leads.delete", manager_ctx) is False
    assert manager_ctx.roles == ["manager"]

    ha_ctx = AuthContext(user_id=_assign_role(session_factory, "ha"))
    assert backend.is_allowed("leads.view_own", ha_ctx) is True
    assert backend.is_allowed("reports.view", ha_ctx) is False


def test_db_policy_caches_grants_on_context(session_factory: sessionmaker[Session]) -> None:
    backend = DbPolicyBackend(session_factory=session_factory)
    ctx = AuthContext(user_id=_assign_role(session_factory, "spv"))

    assert backend.is_allowed("reports.view", ctx) is True
    before = _cache_hits()
    assert backend.is_allowed("leads.edit", ctx) is True
    assert _cache_hits() == before + 1


def test_db_policy_denies_users_without_roles(session_factory: sessionmaker[Session]) -> None:
    backend = DbPolicyBackend(session_factory=session_factory)
    assert backend.is_allowed("leads.view", AuthContext(user_id=uuid.uuid4())) is False


def test_in_memory_policy_supports_wildcards() -> None:
    backend = InMemoryPolicyBackend({"auditor": {"reports.*"}, "root": {"*"}})
    assert backend.is_allowed("reports.view", AuthContext(user_id=uuid.uuid4(), roles=["auditor"])) is True
    assert backend.is_allowed("leads.view", AuthContext(user_id=uuid.uuid4(), roles=["auditor"])) is False
    assert backend.is_allowed("anything.at.all", AuthContext(user_id=uuid.uuid4(), roles=["root"])) is True


def test_has_permission_honours_superadmin_and_direct_grants() -> None:
    previous = get_policy_backend()
    set_policy_backend(InMemoryPolicyBackend({}))
    try:
        assert has_permission(AuthContext(user_id=uuid.uuid4(), roles=["superadmin"]), "users.manage") is True
        direct = AuthContext(user_id=uuid.uuid4(), roles=["ha"], permissions=["reports.view"])
        assert has_permission(direct, "reports.view") is True
        assert has_permission(direct, "leads.view_own") is False
    finally:
        set_policy_backend(previous)
