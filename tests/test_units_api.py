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
from leadcrm.leads.models import Lead
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
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def users(db_session: Session) -> dict[str, User]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    created: dict[str, User] = {}
    for key, role in (("manager", "manager"), ("ha", "ha")):
        user = User(name=key.title(), is_active=True)
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
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "manager"}

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub=str(users[state["current"]].id), roles=[])

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _create_unit(test_client: TestClient, **overrides: object) -> dict:
    payload: dict[str, object] = {
        "project": "Green Residence",
        "unit_type": "Type 36",
        "unit_no": "A-01",
        "price": "500000000",
        "size": "36",
    }
    payload.update(overrides)
    response = test_client.post("/api/units", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_unit_formats_price_and_rejects_duplicates(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    unit = _create_unit(test_client)
    assert unit["full_unit"] == "Green Residence - Type 36 - A-01"
    assert unit["formatted_price"] == "Rp 500.000.000"
    assert unit["status"] == "available"
    assert unit["is_available"] is True

    duplicate = test_client.post(
        "/api/units",
        json={"project": "Green Residence", "unit_type": "Type 36", "unit_no": "A-01"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "unit_create_failed"
    assert duplicate.json()["message"] == "Unit already exists for this project and unit type."

    no_price = _create_unit(test_client, unit_no="A-02", price=None)
    assert no_price["formatted_price"] == "Price not set"


def test_units_manage_permission_required_for_writes(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, set_actor = client
    unit = _create_unit(test_client)

    set_actor("ha")
    denied = test_client.post("/api/units", json={"project": "P", "unit_type": "T", "unit_no": "1"})
    assert denied.status_code == 403
    assert test_client.patch(f"/api/units/{unit['id']}", json={"status": "sold"}).status_code == 403

    listed = test_client.get("/api/units")
    assert listed.status_code == 200
    assert listed.json()["meta"]["per_page"] == 50


def test_list_units_filters_and_lookups(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    _create_unit(test_client, unit_no="B-02")
    _create_unit(test_client, unit_no="B-01")
    _create_unit(test_client, project="Sunrise Hills", unit_type="Type 45", unit_no="C-01", status="sold")

    by_project = test_client.get("/api/units", params={"project": "Green Residence"})
    assert [row["unit_no"] for row in by_project.json()["data"]] == ["B-01", "B-02"]

    sold = test_client.get("/api/units", params={"status": "sold"})
    assert [row["unit_no"] for row in sold.json()["data"]] == ["C-01"]

    assert test_client.get("/api/units/projects").json() == ["Green Residence", "Sunrise Hills"]
    assert test_client.get("/api/units/unit-types", params={"project": "Sunrise Hills"}).json() == ["Type 45"]

    units = test_client.get("/api/units/by-project", params={"project": "Green Residence", "unit_type": "Type 36"})
    assert [row["unit_no"] for row in units.json()] == ["B-01", "B-02"]

    available = test_client.get("/api/leads/lookups/available-units", params={"project": "Sunrise Hills"})
    assert available.status_code == 200
    assert available.json() == []


def test_unit_detail_lists_visible_leads_and_blocks_delete_when_in_use(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
    users: dict[str, User],
) -> None:
    test_client, _ = client
    unit = _create_unit(test_client)
    db_session.add(
        Lead(
            contact_name="Linked Buyer",
            priority="Booking",
            status="Booking",
            project="Green Residence",
            unit_type="Type 36",
            unit_no="A-01",
            created_by=users["manager"].id,
        )
    )
    db_session.commit()

    detail = test_client.get(f"/api/units/{unit['id']}")
    assert detail.status_code == 200
    assert [row["contact_name"] for row in detail.json()["leads"]] == ["Linked Buyer"]

    blocked = test_client.delete(f"/api/units/{unit['id']}")
    assert blocked.status_code == 409
    assert blocked.json()["message"] == "Cannot delete unit with associated leads."

    spare = _create_unit(test_client, unit_no="Z-99")
    assert test_client.delete(f"/api/units/{spare['id']}").status_code == 204
    assert test_client.get(f"/api/units/{spare['id']}").status_code == 404


def test_update_unit_changes_status(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    unit = _create_unit(test_client)
    response = test_client.patch(f"/api/units/{unit['id']}", json={"status": "reserved", "description": "Held"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "reserved"
    assert body["is_available"] is False
    assert body["description"] == "Held"
