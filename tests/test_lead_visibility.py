from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.authz.models import Role
from leadcrm.authz.service import authorization_admin_service
from leadcrm.core.database import Base
from leadcrm.leads.models import Lead
from leadcrm.security.context import AuthContext
from leadcrm.security.errors import HierarchyViolationError
from leadcrm.security.visibility import apply_lead_visibility, can_view_lead, ensure_lead_visible
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


def _user(session: Session, name: str, role: str | None, **kwargs: object) -> User:
    user = User(name=name, is_active=True, **kwargs)
    if role is not None:
        user.roles = [session.scalar(select(Role).where(Role.name == role))]
    session.add(user)
    session.flush()
    return user


def _ctx(user: User) -> AuthContext:
    return AuthContext(
        user_id=user.id,
        name=user.name,
        roles=user.role_names,
        manager_id=user.manager_id,
        spv_id=user.spv_id,
    )


@pytest.fixture()
def org(db_session: Session) -> dict[str, object]:
    authorization_admin_service.seed_roles_and_permissions(db_session)
    admin = _user(db_session, "Admin", "superadmin")
    manager = _user(db_session, "Manager", "manager")
    spv = _user(db_session, "Spv", "spv", manager_id=manager.id)
    ha = _user(db_session, "Ha", "ha", manager_id=manager.id, spv_id=spv.id)
    outsider_ha = _user(db_session, "Outsider", "ha")
    nobody = _user(db_session, "Nobody", None)

    # assigned into the team after creation, so no manager_id/spv_id stamp
    moved = Lead(contact_name="Moved In", priority="Warm", assigned_to=ha.id, created_by=outsider_ha.id)
    stamped = Lead(
        contact_name="Stamped",
        priority="Cold",
        assigned_to=outsider_ha.id,
        created_by=outsider_ha.id,
        manager_id=manager.id,
        spv_id=spv.id,
    )
    created_by_spv = Lead(contact_name="Spv Created", priority="Hot", assigned_to=outsider_ha.id, created_by=spv.id)
    foreign = Lead(contact_name="Foreign", priority="Lost", assigned_to=outsider_ha.id, created_by=outsider_ha.id)
    db_session.add_all([moved, stamped, created_by_spv, foreign])
    db_session.commit()
    return {
        "admin": admin,
        "manager": manager,
        "spv": spv,
        "ha": ha,
        "outsider_ha": outsider_ha,
        "nobody": nobody,
    }


def _visible(session: Session, user: User) -> set[str]:
    stmt = apply_lead_visibility(select(Lead), _ctx(user))
    return {lead.contact_name for lead in session.scalars(stmt).unique().all()}


@pytest.mark.parametrize(
    ("actor", "expected"),
    [
        ("admin", {"Moved In", "Stamped", "Spv Created", "Foreign"}),
        ("manager", {"Moved In", "Stamped"}),
        ("spv", {"Moved In", "Stamped", "Spv Created"}),
        ("ha", {"Moved In"}),
        ("outsider_ha", {"Moved In", "Stamped", "Spv Created", "Foreign"}),
        ("nobody", set()),
    ],
)
def test_sql_filter_and_single_lead_check_agree(
    db_session: Session,
    org: dict[str, User],
    actor: str,
    expected: set[str],
) -> None:
    user = org[actor]
    assert _visible(db_session, user) == expected

    ctx = _ctx(user)
    in_memory = {lead.contact_name for lead in db_session.scalars(select(Lead)).unique().all() if can_view_lead(lead, ctx)}
    assert in_memory == expected


def test_highest_role_wins_for_multi_role_users(db_session: Session, org: dict[str, User]) -> None:
    ha = org["ha"]
    ctx = AuthContext(user_id=ha.id, roles=["ha", "manager"])
    assert ctx.primary_role == "manager"
    # as a manager with no team of their own, only their own creations count
    visible = {lead.contact_name for lead in db_session.scalars(apply_lead_visibility(select(Lead), ctx)).unique().all()}
    assert visible == set()


def test_ensure_lead_visible_raises_hierarchy_violation(db_session: Session, org: dict[str, User]) -> None:
    foreign = db_session.scalar(select(Lead).where(Lead.contact_name == "Foreign"))
    with pytest.raises(HierarchyViolationError):
        ensure_lead_visible(foreign, _ctx(org["manager"]), action="view")

    ensure_lead_visible(foreign, _ctx(org["admin"]), action="view")


def test_unknown_role_sees_nothing(db_session: Session, org: dict[str, User]) -> None:
    ctx = AuthContext(user_id=uuid.uuid4(), roles=["auditor"])
    assert db_session.scalars(apply_lead_visibility(select(Lead), ctx)).unique().all() == []
