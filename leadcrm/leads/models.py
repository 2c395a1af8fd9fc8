from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadcrm.core.database import Base
from leadcrm.users.models import User


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


PRIORITY_COLD = "Cold"
PRIORITY_WARM = "Warm"
PRIORITY_HOT = "Hot"
PRIORITY_BOOKING = "Booking"
PRIORITY_CLOSING = "Closing"
PRIORITY_LOST = "Lost"

PRIORITIES: tuple[str, ...] = (
    PRIORITY_COLD,
    PRIORITY_WARM,
    PRIORITY_HOT,
    PRIORITY_BOOKING,
    PRIORITY_CLOSING,
    PRIORITY_LOST,
)
ATTACHMENT_PRIORITIES = {PRIORITY_BOOKING, PRIORITY_CLOSING}


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=PRIORITY_COLD, server_default=PRIORITY_COLD)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    project: Mapped[str | None] = mapped_column(String(255), nullable=True)
    unit_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    unit_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    estimated_value: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    expected_closing_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contact_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    contact_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_position: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    spv_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    priority_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    assignee: Mapped[User | None] = relationship("User", foreign_keys=[assigned_to], lazy="joined")
    creator: Mapped[User | None] = relationship("User", foreign_keys=[created_by])
    manager: Mapped[User | None] = relationship("User", foreign_keys=[manager_id])
    spv: Mapped[User | None] = relationship("User", foreign_keys=[spv_id])
    histories: Mapped[list[LeadHistory]] = relationship(
        "LeadHistory",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadHistory.created_at.desc()",
    )
    attachments: Mapped[list[LeadAttachment]] = relationship(
        "LeadAttachment",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadAttachment.created_at.desc()",
    )

    __table_args__ = (
        Index("ix_leads_assigned_to", "assigned_to"),
        Index("ix_leads_created_by", "created_by"),
        Index("ix_leads_manager_id", "manager_id"),
        Index("ix_leads_spv_id", "spv_id"),
        Index("ix_leads_priority", "priority"),
        Index("ix_leads_created_at", "created_at"),
        Index("ix_leads_project_unit", "project", "unit_type", "unit_no"),
    )

    @property
    def requires_attachment(self) -> bool:
        return self.priority in ATTACHMENT_PRIORITIES


class LeadHistory(Base):
    __tablename__ = "lead_histories"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    old_priority: Mapped[str | None] = mapped_column(String(16), nullable=True)
    new_priority: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lead: Mapped[Lead] = relationship("Lead", back_populates="histories")
    author: Mapped[User | None] = relationship("User", lazy="joined")

    __table_args__ = (Index("ix_lead_histories_lead_created", "lead_id", "created_at"),)


class LeadAttachment(Base):
    __tablename__ = "lead_attachments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    uploaded_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    lead: Mapped[Lead] = relationship("Lead", back_populates="attachments")
    uploader: Mapped[User | None] = relationship("User", lazy="joined")


class LeadStatus(Base):
    __tablename__ = "statuses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("name", "priority", name="uq_statuses_name_priority"),
        Index("ix_statuses_priority_active", "priority", "is_active"),
    )
