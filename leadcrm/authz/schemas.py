from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    is_system: bool
    created_at: datetime


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    created_at: datetime


class AttachRolePermissionRequest(BaseModel):
    permission_id: UUID


class RolePermissionRead(BaseModel):
    role_id: UUID
    role_name: str
    permission_id: UUID
    permission_name: str
    created_at: datetime


class SyncUserPermissionsRequest(BaseModel):
    permissions: list[str] = Field(default_factory=list)


class UserPermissionsRead(BaseModel):
    user_id: UUID
    name: str
    email: str | None
    roles: list[str]
    permissions: list[str]
