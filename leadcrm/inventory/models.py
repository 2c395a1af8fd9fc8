from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from leadcrm.core.database import Base
from leadcrm.formatting import format_rupiah


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


UNIT_STATUSES: tuple[str, ...] = ("available", "reserved", "sold", "blocked")


class ProjectUnit(Base):
    __tablename__ = "project_units"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_type: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_no: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="available", server_default="available")
    price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    size: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    specifications: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("project", "unit_type", "unit_no", name="uq_project_units_project_type_no"),
        Index("ix_project_units_project_type", "project", "unit_type"),
        Index("ix_project_units_status", "status"),
    )

    @property
    def full_unit(self) -> str:
        return f"{self.project} - {self.unit_type} - {self.unit_no}"

    @property
    def formatted_price(self) -> str:
        if self.price is None:
            return "Price not set"
        return format_rupiah(self.price)

    @property
    def is_available(self) -> bool:
        return self.status == "available"
