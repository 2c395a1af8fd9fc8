from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Permission, Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.auth import AuthUser, get_current_user
from leadcrm.core.config import get_settings
from leadcrm.core.database import Base, get_db
from leadcrm.main import app
from leadcrm.middleware.rate_limit import reset_rate_limiter
from leadcrm.security.policies import DbPolicyBackend, InMemoryPolicyBackend, set_policy_backend
from leadcrm.users.models import User


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch, db_session: Session) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    set_policy_backend(DbPolicyBackend(session_factory=sessionmaker(bind=db_session.bind)))
    reset_rate_limiter()
    yield
    set_policy_backend(InMemoryPolicyBackend())
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def users(db_session: Session) -> dict[str, User]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    created: dict[str, User] = {}
    for key, role in (("admin", "superadmin"), ("manager", "manager"), ("ha", "ha")):
        user = User(name=key.title(), email=f"{key}@example.com", is_active=True)
        user.roles = [db_session.scalar(select(Role).where(Role.name == role))]
        db_session.add(user)
        created[key] = user
    db_session.commit()
    return created


@pytest.fixture()
def client(
    db_session: Session,
    users: dict[str, User],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    state = {"actor": "admin"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(users[state["actor"]].id), roles=[])

    def set_actor(actor: str) -> None:
        state["actor"] = actor

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client, set_actor

    app.dependency_overrides.clear()


def _ids(db_session: Session, role_name: str, permission_name: str) -> tuple[str, str]:
    role = db_session.scalar(select(Role).where(Role.name == role_name))
    permission = db_session.scalar(select(Permission).where(Permission.name == permission_name))
    return str(role.id), str(permission.id)


def test_admin_endpoints_list_seeded_roles_and_permissions(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client

    roles = test_client.get("/api/admin/roles")
    assert roles.status_code == 200
    assert {row["name"] for row in roles.json()} == {"superadmin", "manager", "spv", "ha"}

    permissions = {row["name"] for row in test_client.get("/api/admin/permissions").json()}
    assert {"leads.view", "leads.view_own", "units.manage", "system.metrics.read"} <= permissions

    ha_role_permissions = [
        row["permission_name"]
        for row in test_client.get("/api/admin/role-permissions").json()
        if row["role_name"] == "ha"
    ]
    assert sorted(ha_role_permissions) == ["leads.create", "leads.edit", "leads.view_own"]

    set_actor("manager")
    assert test_client.get("/api/admin/roles").status_code == 403


def test_detaching_role_permission_takes_effect_for_role_holders(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    role_id, permission_id = _ids(db_session, "manager", "units.manage")

    set_actor("manager")
    allowed = test_client.post("/api/units", json={"project": "Green", "unit_type": "T36", "unit_no": "A1"})
    assert allowed.status_code == 201

    set_actor("admin")
    detached = test_client.delete(f"/api/admin/roles/{role_id}/permissions/{permission_id}")
    assert detached.status_code == 204
    assert test_client.delete(f"/api/admin/roles/{role_id}/permissions/{permission_id}").status_code == 404

    set_actor("manager")
    denied = test_client.post("/api/units", json={"project": "Green", "unit_type": "T36", "unit_no": "A2"})
    assert denied.status_code == 403

    set_actor("admin")
    attached = test_client.post(f"/api/admin/roles/{role_id}/permissions", json={"permission_id": permission_id})
    assert attached.status_code == 201
    assert attached.json()["permission_name"] == "units.manage"


def test_direct_user_permissions_grant_access(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, User],
) -> None:
    test_client, set_actor = client

    set_actor("ha")
    assert test_client.get("/api/reports").status_code == 403

    set_actor("admin")
    synced = test_client.put(f"/api/admin/user-permissions/{users['ha'].id}", json={"permissions": ["reports.view"]})
    assert synced.status_code == 200
    assert synced.json()["permissions"] == ["reports.view"]
    assert synced.json()["roles"] == ["ha"]

    listing = {row["name"]: row for row in test_client.get("/api/admin/user-permissions").json()}
    assert listing["Ha"]["permissions"] == ["reports.view"]

    set_actor("ha")
    assert test_client.get("/api/reports").status_code == 200


def test_sync_rejects_unknown_permissions(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, User],
) -> None:
    test_client, _ = client
    response = test_client.put(f"/api/admin/user-permissions/{users['ha'].id}", json={"permissions": ["leads.fly"]})
    assert response.status_code == 422
    assert response.json()["code"] == "authz_user_permissions_sync_failed"
    assert response.json()["message"] == "unknown permissions: leads.fly"
