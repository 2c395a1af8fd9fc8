from __future__ import annotations

import csv
import io
import json
from collections.abc import Callable, Generator
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.auth import AuthUser, get_current_user
from leadcrm.core.config import get_settings
from leadcrm.core.database import Base, get_db
from leadcrm.leads.models import Lead
from leadcrm.main import app
from leadcrm.middleware.rate_limit import reset_rate_limiter
from leadcrm.reporting import api as reporting_api
from leadcrm.reporting import tasks as reporting_tasks
from leadcrm.users.models import ActivityLog, User


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(engine: Engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    reset_rate_limiter()
    get_settings.cache_clear()


def _make_user(session: Session, name: str, role: str, **kwargs: object) -> User:
    user = User(name=name, email=f"{name.lower().replace(' ', '.')}@example.com", is_active=True, **kwargs)
    user.roles = [session.scalar(select(Role).where(Role.name == role))]
    session.add(user)
    session.commit()
    return user


@pytest.fixture()
def team(db_session: Session) -> dict[str, User]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    admin = _make_user(db_session, "Admin", "superadmin")
    manager = _make_user(db_session, "Maya Manager", "manager")
    other_manager = _make_user(db_session, "Omar Manager", "manager")
    spv = _make_user(db_session, "Sari Spv", "spv", manager_id=manager.id)
    ha = _make_user(db_session, "Hana Ha", "ha", manager_id=manager.id, spv_id=spv.id)
    other_ha = _make_user(db_session, "Hadi Ha", "ha", manager_id=other_manager.id)

    db_session.add_all(
        [
            Lead(
                contact_name="Alpha",
                priority="Closing",
                status="Closing",
                assigned_to=ha.id,
                created_by=ha.id,
                manager_id=manager.id,
                spv_id=spv.id,
            ),
            Lead(
                contact_name="Beta",
                priority="Cold",
                status="Respon",
                assigned_to=ha.id,
                created_by=ha.id,
                manager_id=manager.id,
                spv_id=spv.id,
            ),
            Lead(contact_name="Gamma", priority="Hot", status="Hot", created_by=manager.id, manager_id=manager.id),
            Lead(
                contact_name="Delta",
                priority="Booking",
                status="Booking",
                assigned_to=other_ha.id,
                created_by=other_ha.id,
                manager_id=other_manager.id,
            ),
            ActivityLog(user_id=ha.id, action="create", model="Lead", description="Created lead Alpha"),
        ]
    )
    db_session.commit()
    return {
        "admin": admin,
        "manager": manager,
        "other_manager": other_manager,
        "spv": spv,
        "ha": ha,
        "other_ha": other_ha,
    }


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


def test_report_overview_is_scoped_to_visible_leads(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/reports")
    assert response.status_code == 200
    body = response.json()

    stats = body["lead_stats"]
    assert stats["total_leads"] == 3
    assert stats["closing_leads"] == 1
    assert stats["booking_leads"] == 0
    assert stats["conversion_rate"] == 33.33

    performance = body["user_performance"]
    assert performance[0]["name"] == "Hana Ha"
    assert performance[0]["conversion_rate"] == 50.0
    assert performance[-1]["id"] is None
    assert performance[-1]["name"] == "Unassigned Leads"
    assert performance[-1]["email"] == "unassigned@system.local"

    assert len(body["daily_trends"]) == 31
    assert {row["status"] for row in body["status_distribution"]} == {"Closing", "Respon", "Hot"}
    assert body["recent_activities"][0]["description"] == "Created lead Alpha"
    assert "Booking" in body["statuses"]


def test_report_overview_filters_by_user_and_status(
    client: tuple[TestClient, Callable[[str], None]],
    team: dict[str, User],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/reports", params={"user_id": str(team["ha"].id), "status": "Respon"})
    assert response.status_code == 200
    assert response.json()["lead_stats"]["total_leads"] == 1
    assert response.json()["filters"]["status"] == "Respon"


def test_reports_require_permission_and_valid_range(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    backwards = test_client.get("/api/reports", params={"date_from": "2026-10-10", "date_to": "2026-10-01"})
    assert backwards.status_code == 422
    assert backwards.json()["code"] == "report_overview_failed"

    set_actor("ha")
    denied = test_client.get("/api/reports")
    assert denied.status_code == 403
    assert test_client.get("/api/reports/export").status_code == 403


def test_export_leads_csv_uses_fixed_headers_and_filename(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/reports/export", params={"report": "leads", "type": "csv"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="leads_report_' in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:3] == ["ID", "Contact Name", "Email"]
    assert rows[0][-2:] == ["Created At", "Updated At"]
    assert sorted(row[1] for row in rows[1:]) == ["Alpha", "Beta", "Gamma"]


def test_export_users_json_rolls_up_performance(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    set_actor("admin")
    response = test_client.get("/api/reports/export", params={"report": "users", "type": "json"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["report_type"] == "users"

    by_name = {row["name"]: row for row in body["data"]}
    assert by_name["Hana Ha"]["new_leads"] == 1
    assert by_name["Hana Ha"]["converted_leads"] == 1
    assert by_name["Hana Ha"]["conversion_rate"] == "50%"
    assert by_name["Hana Ha"]["role"] == "ha"
    assert by_name["Unassigned Leads"]["role"] == "N/A"
    assert by_name["Unassigned Leads"]["join_date"] == ""


def test_export_activities_json(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    response = test_client.get("/api/reports/export", params={"report": "activities"})
    assert response.status_code == 200
    rows = response.json()["data"]
    assert rows[0]["user_name"] == "Hana Ha"
    assert rows[0]["action"] == "create"


def test_export_rejects_unknown_report_or_type(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    bad_type = test_client.get("/api/reports/export", params={"type": "xlsx"})
    assert bad_type.status_code == 400
    assert bad_type.json()["code"] == "report_export_failed"
    assert bad_type.json()["message"] == "Invalid export type"

    bad_report = test_client.get("/api/reports/export", params={"report": "payroll"})
    assert bad_report.status_code == 400
    assert bad_report.json()["message"] == "Invalid report type"


def test_async_export_is_queued(
    client: tuple[TestClient, Callable[[str], None]],
    team: dict[str, User],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    test_client, _ = client
    calls: list[tuple] = []

    def fake_delay(*args: object) -> SimpleNamespace:
        calls.append(args)
        return SimpleNamespace(id="task-123")

    monkeypatch.setattr(reporting_api.export_report_task, "delay", fake_delay)
    response = test_client.get("/api/reports/export", params={"report": "leads", "type": "csv", "deliver": "async"})
    assert response.status_code == 200
    assert response.json() == {"task_id": "task-123", "status": "queued"}
    assert calls[0][:3] == (str(team["manager"].id), "leads", "csv")


def test_run_export_stores_file_for_actor(
    engine: Engine,
    team: dict[str, User],
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(reporting_tasks, "SessionLocal", sessionmaker(bind=engine, autocommit=False, autoflush=False))
    filters = {"date_from": "2000-01-01", "date_to": "2100-01-01", "user_id": None, "status": None}

    relative = reporting_tasks.run_export(str(team["manager"].id), "leads", "json", filters)
    assert relative.startswith("report_exports/leads_report_")
    stored = json.loads((tmp_path / "storage" / relative).read_text())
    assert sorted(row["contact_name"] for row in stored["data"]) == ["Alpha", "Beta", "Gamma"]
