from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.auth import AuthUser, get_current_user
from leadcrm.core.config import get_settings
from leadcrm.core.database import Base, get_db
from leadcrm.leads.models import Lead, LeadHistory
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
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


def _make_user(session: Session, name: str, role: str, **kwargs: object) -> User:
    user = User(name=name, is_active=True, **kwargs)
    user.roles = [session.scalar(select(Role).where(Role.name == role))]
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def team(db_session: Session) -> dict[str, User]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    manager = _make_user(db_session, "Maya Manager", "manager")
    spv = _make_user(db_session, "Sari Spv", "spv", manager_id=manager.id)
    ha = _make_user(db_session, "Hana Ha", "ha", manager_id=manager.id, spv_id=spv.id)
    other_ha = _make_user(db_session, "Hadi Ha", "ha")

    closing = Lead(contact_name="Closer", priority="Closing", assigned_to=ha.id, created_by=ha.id, manager_id=manager.id)
    db_session.add_all(
        [
            closing,
            Lead(contact_name="Cold One", priority="Cold", assigned_to=ha.id, created_by=ha.id, manager_id=manager.id),
            Lead(contact_name="Lost One", priority="Lost", assigned_to=ha.id, created_by=ha.id, manager_id=manager.id),
            Lead(contact_name="Elsewhere", priority="Hot", assigned_to=other_ha.id, created_by=other_ha.id),
        ]
    )
    db_session.flush()
    db_session.add(
        LeadHistory(
            lead_id=closing.id,
            old_priority="Booking",
            new_priority="Closing",
            created_by=ha.id,
            description="Priority changed from Booking to Closing",
        )
    )
    db_session.commit()
    return {"manager": manager, "spv": spv, "ha": ha, "other_ha": other_ha}


@pytest.fixture()
def client(
    db_session: Session,
    team: dict[str, User],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "manager"}

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(team[state["current"]].id), roles=[])

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def test_dashboard_overview_counts_visible_leads(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/dashboard")
    assert response.status_code == 200
    body = response.json()

    assert body["stats"] == {"total_leads": 3, "hot_leads": 0, "booking_leads": 0, "closing_leads": 1}
    assert list(body["priority_stats"]) == ["Cold", "Warm", "Hot", "Booking", "Closing", "Lost"]
    assert len(body["monthly_leads"]) == 12
    assert body["monthly_leads"][0]["month"] == "Jan"
    assert sum(row["leads"] for row in body["monthly_leads"]) == 3
    assert len(body["recent_leads"]) == 3

    ha_rows = {row["ha_name"]: row for row in body["ha_lead_counts"]}
    assert ha_rows["Hana Ha"]["total_leads"] == 3
    assert "Hadi Ha" not in ha_rows


def test_dashboard_overview_for_ha_has_no_team_rows(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("other_ha")
    body = test_client.get("/api/dashboard").json()
    assert body["stats"]["total_leads"] == 1
    assert body["stats"]["hot_leads"] == 1
    assert body["ha_lead_counts"] == []


def test_dashboard_analytics_for_manager(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/dashboard/analytics")
    assert response.status_code == 200
    body = response.json()

    assert body["total_leads"] == 3
    assert body["leads_this_month"] == 3
    assert body["priority_breakdown"]["Closing"] == 1
    assert body["priority_breakdown"]["Warm"] == 0
    assert body["conversion_rates"] == {"closing_rate": 33.33, "loss_rate": 33.33, "active_rate": 33.33}
    assert len(body["lead_progression"]) == 6
    assert body["lead_progression"][-1]["leads"] == 3

    team_rows = {row["name"]: row for row in body["team_performance"]}
    assert team_rows["Hana Ha"]["conversion_rate"] == 33.33
    assert [row["name"] for row in body["top_performers"]] == ["Hana Ha"]
    assert body["personal_stats"] is None

    assert [row["contact_name"] for row in body["recent_activities"]] == ["Closer"]
    assert body["recent_activities"][0]["activity"] == "Priority changed from Booking to Closing"


def test_dashboard_analytics_for_ha_has_personal_stats_only(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("ha")
    body = test_client.get("/api/dashboard/analytics").json()

    assert body["team_performance"] is None
    assert body["top_performers"] is None
    personal = body["personal_stats"]
    assert personal["total_assigned"] == 3
    assert personal["closing"] == 1
    assert personal["lost"] == 1
    assert personal["conversion_rate"] == 33.33


def test_dashboard_analytics_for_spv_has_team_but_no_top_performers(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("spv")
    body = test_client.get("/api/dashboard/analytics").json()
    assert [row["name"] for row in body["team_performance"]] == ["Hana Ha"]
    assert body["top_performers"] is None
