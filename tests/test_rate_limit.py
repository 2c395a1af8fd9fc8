from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.auth import AuthUser, get_current_user, issue_token
from leadcrm.core.config import get_settings
from leadcrm.core.database import Base, get_db
from leadcrm.main import app
from leadcrm.middleware.rate_limit import reset_rate_limiter
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
def configure_rate_limiter_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "false")
    monkeypatch.setenv("RATE_LIMIT_LEAD_MUTATIONS_PER_MINUTE", "3")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def ha_user(db_session: Session) -> User:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    user = User(name="Hana Ha", is_active=True)
    user.roles = [db_session.scalar(select(Role).where(Role.name == "ha"))]
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def client(db_session: Session, ha_user: User) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(ha_user.id), roles=[])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _lead_payload(ha_user: User, index: int) -> dict:
    return {
        "contact_name": f"Rate Limit Lead {index}",
        "priority": "Cold",
        "status": "Respon",
        "assigned_to": str(ha_user.id),
    }


def test_mutating_lead_endpoints_are_rate_limited(client: TestClient, ha_user: User) -> None:
    responses = [client.post("/api/leads", json=_lead_payload(ha_user, index)) for index in range(5)]

    limited = [response for response in responses if response.status_code == 429]
    assert limited

    first_limited = limited[0]
    body = first_limited.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["message"] == "Too many requests"
    assert body["correlation_id"] is not None
    assert first_limited.headers.get("Retry-After") is not None


def test_get_endpoints_are_not_rate_limited(client: TestClient, ha_user: User) -> None:
    create = client.post("/api/leads", json=_lead_payload(ha_user, 0))
    assert create.status_code == 201

    responses = [client.get("/api/leads") for _ in range(10)]
    assert all(response.status_code != 429 for response in responses)


def test_unit_mutations_are_outside_the_limited_group(client: TestClient) -> None:
    responses = [client.post("/api/units", json={"project": "P", "unit_type": "T", "unit_no": str(index)}) for index in range(5)]
    assert all(response.status_code == 403 for response in responses)


def test_report_exports_are_rate_limited_for_every_method(client: TestClient) -> None:
    responses = [client.get("/api/reports/export", params={"report": "leads", "type": "csv"}) for _ in range(5)]

    assert [response.status_code for response in responses[:3]] == [403, 403, 403]
    limited = responses[3]
    assert limited.status_code == 429
    assert limited.json()["code"] == "RATE_LIMITED"
    assert int(limited.headers["Retry-After"]) >= 1


def test_lead_and_export_buckets_are_tracked_per_token_subject(client: TestClient, ha_user: User) -> None:
    first = {"Authorization": f"Bearer {issue_token('subject-one')}"}
    second = {"Authorization": f"Bearer {issue_token('subject-two')}"}

    for index in range(3):
        assert client.post("/api/leads", json=_lead_payload(ha_user, index), headers=first).status_code == 201
    assert client.post("/api/leads", json=_lead_payload(ha_user, 3), headers=first).status_code == 429

    assert client.post("/api/leads", json=_lead_payload(ha_user, 4), headers=second).status_code == 201
    assert client.get("/api/reports/export", headers=first).status_code == 403
