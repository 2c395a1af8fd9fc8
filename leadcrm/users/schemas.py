from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PageMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int
    from_: int | None = Field(default=None, serialization_alias="from")
    to: int | None = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_dict(cls, meta: dict[str, Any]) -> PageMeta:
        return cls(
            current_page=meta["current_page"],
            last_page=meta["last_page"],
            per_page=meta["per_page"],
            total=meta["total"],
            from_=meta["from"],
            to=meta["to"],
        )


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str | None
    phone: str | None
    address: str | None
    employee_id: str | None
    department: str | None
    position: str | None
    join_date: date | None
    leave_date: date | None
    is_active: bool
    notes: str | None
    manager_id: UUID | None
    spv_id: UUID | None
    last_login_at: datetime | None
    last_login_ip: str | None
    created_at: datetime
    updated_at: datetime
    roles: list[str] = Field(default_factory=list)
    primary_role: str
    assigned_leads_count: int = 0


class ActivityLogRead(BaseModel):
    id: UUID
    user_id: UUID | None
    user_name: str | None
    action: str
    model: str | None
    model_id: str | None
    description: str
    properties: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


class UserDetailRead(UserRead):
    manager: UserSummary | None = None
    spv: UserSummary | None = None
    recent_activities: list[ActivityLogRead] = Field(default_factory=list)


class UserPage(BaseModel):
    data: list[UserRead]
    meta: PageMeta


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None
    employee_id: str | None = Field(default=None, max_length=64)
    department: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=255)
    join_date: date | None = None
    manager_id: UUID | None = None
    spv_id: UUID | None = None
    notes: str | None = None
    role: str = Field(min_length=1)


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None
    employee_id: str | None = Field(default=None, max_length=64)
    department: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=255)
    join_date: date | None = None
    leave_date: date | None = None
    is_active: bool | None = None
    manager_id: UUID | None = None
    spv_id: UUID | None = None
    notes: str | None = None
    role: str | None = Field(default=None, min_length=1)


class AssignHARequest(BaseModel):
    ha_id: UUID
    manager_id: UUID | None = None
    spv_id: UUID | None = None


class HACreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None
    employee_id: str | None = Field(default=None, max_length=64)
    join_date: date | None = None
    manager_id: UUID | None = None
    spv_id: UUID | None = None
    notes: str | None = None


class HAUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None
    employee_id: str | None = Field(default=None, max_length=64)
    join_date: date | None = None
    leave_date: date | None = None
    is_active: bool | None = None
    manager_id: UUID | None = None
    spv_id: UUID | None = None
    notes: str | None = None


class HierarchyOptions(BaseModel):
    managers: list[UserSummary]
    supervisors: list[UserSummary]


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    employee_id: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class LoginHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    ip_address: str | None
    user_agent: str | None
    device: str | None
    browser: str | None
    platform: str | None
    is_successful: bool
    failure_reason: str | None
    login_at: datetime
    logout_at: datetime | None
    session_duration: int | None


class LoginHistoryPage(BaseModel):
    data: list[LoginHistoryRead]
    meta: PageMeta


class ActivityLogPage(BaseModel):
    data: list[ActivityLogRead]
    meta: PageMeta
    actions: list[str]
    models: list[str]


class SecurityOverview(BaseModel):
    user: UserRead
    recent_logins: list[LoginHistoryRead]
    recent_activities: list[ActivityLogRead]
