from __future__ import annotations

import os
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from leadcrm.authz.models import Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.auth import AuthUser, get_current_user
from leadcrm.core.config import get_settings
from leadcrm.core.database import Base, get_db
from leadcrm.main import app
from leadcrm.middleware.rate_limit import reset_rate_limiter
from leadcrm.otel import setup_inmemory_otel
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("leadcrm-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def users(db_session: Session) -> dict[str, User]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    created: dict[str, User] = {}
    for role in ("manager", "ha"):
        user = User(name=f"Otel {role}", is_active=True)
        user.roles = [db_session.scalar(select(Role).where(Role.name == role))]
        db_session.add(user)
        created[role] = user
    db_session.commit()
    return created


@pytest.fixture()
def client(db_session: Session, users: dict[str, User]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(users["ha"].id), roles=[])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(
    client: TestClient,
    users: dict[str, User],
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.post(
        "/api/leads",
        json={"contact_name": "Traced Lead", "priority": "Hot", "status": "Visit", "assigned_to": str(users["ha"].id)},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_lead_create_span_carries_lead_id_and_role(
    client: TestClient,
    users: dict[str, User],
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.post(
        "/api/leads",
        json={"contact_name": "Span Lead", "priority": "Cold", "status": "Respon", "assigned_to": str(users["ha"].id)},
        headers={"X-Correlation-Id": "otel-lead-1"},
    )
    assert response.status_code == 201

    create_spans = [span for span in span_exporter.get_finished_spans() if span.name == "leads.create"]
    assert create_spans
    assert any(
        span.attributes.get("lead_id") == response.json()["id"]
        and span.attributes.get("actor_role") == "ha"
        and span.attributes.get("correlation_id") == "otel-lead-1"
        for span in create_spans
    )


def test_dashboard_span_is_recorded(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/api/dashboard", headers={"X-Correlation-Id": "otel-dash-1"})
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "dashboard.overview"]
    assert spans
    assert spans[-1].attributes.get("correlation_id") == "otel-dash-1"
