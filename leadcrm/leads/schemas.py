from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from leadcrm.users.schemas import PageMeta, UserSummary

Priority = Literal["Cold", "Warm", "Hot", "Booking", "Closing", "Lost"]
QuickStatus = Literal["new", "contacted", "qualified", "proposal", "negotiation", "closed", "lost"]

LEAD_SOURCES: tuple[str, ...] = (
    "website",
    "referral",
    "social_media",
    "email_marketing",
    "cold_call",
    "event",
    "advertisement",
)


class LeadCreate(BaseModel):
    description: str | None = None
    priority: Priority
    status: str = Field(min_length=1, max_length=50)
    notes: str | None = None
    project: str | None = Field(default=None, max_length=255)
    unit_type: str | None = Field(default=None, max_length=100)
    unit_no: str | None = Field(default=None, max_length=64)
    estimated_value: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    expected_closing_date: date | None = None
    source: str | None = Field(default=None, max_length=64)
    contact_name: str = Field(min_length=1, max_length=255)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=20)
    contact_address: str | None = None
    contact_company: str | None = Field(default=None, max_length=255)
    contact_position: str | None = Field(default=None, max_length=100)
    assigned_to: UUID


class LeadUpdate(BaseModel):
    row_version: int = Field(ge=1)
    description: str | None = None
    priority: Priority | None = None
    status: str | None = Field(default=None, min_length=1, max_length=50)
    notes: str | None = None
    project: str | None = Field(default=None, max_length=255)
    unit_type: str | None = Field(default=None, max_length=100)
    unit_no: str | None = Field(default=None, max_length=64)
    estimated_value: Decimal | None = Field(default=None, ge=0, max_digits=15, decimal_places=2)
    expected_closing_date: date | None = None
    source: str | None = Field(default=None, max_length=64)
    contact_name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=20)
    contact_address: str | None = None
    contact_company: str | None = Field(default=None, max_length=255)
    contact_position: str | None = Field(default=None, max_length=100)
    assigned_to: UUID | None = None


class LeadQuickUpdate(BaseModel):
    priority: Priority
    status: QuickStatus | Literal[""] | None = None
    description: str | None = Field(default=None, max_length=2000)


class LeadHistoryRead(BaseModel):
    id: UUID
    old_priority: str | None
    new_priority: str
    description: str | None
    created_by: UUID | None
    created_by_name: str | None
    created_at: datetime


class LeadAttachmentRead(BaseModel):
    id: UUID
    filename: str
    original_name: str
    file_path: str
    file_size: int
    mime_type: str | None
    uploaded_by: UUID | None
    uploaded_by_name: str | None
    created_at: datetime


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    description: str | None
    priority: str
    status: str | None
    notes: str | None
    project: str | None
    unit_type: str | None
    unit_no: str | None
    estimated_value: Decimal | None
    expected_closing_date: date | None
    source: str | None
    contact_name: str
    contact_email: str | None
    contact_phone: str | None
    contact_address: str | None
    contact_company: str | None
    contact_position: str | None
    assigned_to: UUID | None
    created_by: UUID | None
    manager_id: UUID | None
    spv_id: UUID | None
    priority_changed_at: datetime | None
    row_version: int
    created_at: datetime
    updated_at: datetime
    requires_attachment: bool
    assigned_user: UserSummary | None = None


class LeadDetailRead(LeadRead):
    creator: UserSummary | None = None
    manager: UserSummary | None = None
    spv: UserSummary | None = None
    histories: list[LeadHistoryRead] = Field(default_factory=list)
    attachments: list[LeadAttachmentRead] = Field(default_factory=list)


class LeadPage(BaseModel):
    data: list[LeadRead]
    meta: PageMeta


class AvailableUnitRead(BaseModel):
    unit_no: str
    price: Decimal | None
    size: Decimal | None


class LeadFormOptions(BaseModel):
    priorities: list[str]
    sources: list[str]
    projects: list[str]
    unit_types: list[str]
    assignable_users: list[UserSummary]
