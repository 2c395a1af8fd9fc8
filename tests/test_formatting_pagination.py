from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadcrm.core.database import Base
from leadcrm.formatting import as_utc, format_rupiah, percentage, status_label
from leadcrm.inventory.models import ProjectUnit
from leadcrm.pagination import normalize_per_page, paginate


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


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("1000000"), "Rp 1.000.000"),
        (Decimal("350000000.49"), "Rp 350.000.000"),
        (Decimal("999.50"), "Rp 1.000"),
        (0, "Rp 0"),
        (None, "Rp 0"),
    ],
)
def test_format_rupiah(value: Decimal | int | None, expected: str) -> None:
    assert format_rupiah(value) == expected


def test_percentage_rounds_and_handles_empty_denominator() -> None:
    assert percentage(1, 3) == 33.33
    assert percentage(2, 3) == 66.67
    assert percentage(5, 0) == 0.0


def test_status_label_and_utc_normalisation() -> None:
    assert status_label("nego_harga") == "Nego harga"
    assert status_label(None) == ""

    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive).tzinfo is timezone.utc


def test_normalize_per_page_accepts_only_known_sizes() -> None:
    assert normalize_per_page(50) == 50
    assert normalize_per_page(37) == 25
    assert normalize_per_page(None, default=10) == 10


def test_paginate_reports_window(db_session: Session) -> None:
    db_session.add_all(
        [ProjectUnit(project="Green", unit_type="T36", unit_no=f"A-{index:02d}") for index in range(12)]
    )
    db_session.commit()

    stmt = select(ProjectUnit).order_by(ProjectUnit.unit_no.asc())
    rows, meta = paginate(db_session, stmt, page=2, per_page=10)
    assert [row.unit_no for row in rows] == ["A-10", "A-11"]
    assert meta == {"current_page": 2, "last_page": 2, "per_page": 10, "total": 12, "from": 11, "to": 12}

    empty, empty_meta = paginate(db_session, stmt, page=5, per_page=10)
    assert empty == []
    assert empty_meta["from"] is None
    assert empty_meta["to"] is None
