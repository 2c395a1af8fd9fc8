from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

BackupFrequency = Literal["daily", "weekly", "monthly"]


class SystemSettingsRead(BaseModel):
    app_name: str
    timezone: str
    leads_per_page: int
    enable_notifications: bool
    allow_lead_assignment: bool
    require_lead_approval: bool
    max_file_upload_size: str
    allowed_file_types: list[str]
    backup_frequency: BackupFrequency
    session_timeout: int


class SystemSettingsUpdate(BaseModel):
    app_name: str = Field(min_length=1, max_length=255)
    timezone: str | None = Field(default=None, min_length=1, max_length=64)
    leads_per_page: int = Field(ge=5, le=100)
    enable_notifications: bool = True
    allow_lead_assignment: bool = True
    require_lead_approval: bool = False
    max_file_upload_size: str = Field(min_length=1, max_length=16)
    allowed_file_types: list[str] | None = None
    backup_frequency: BackupFrequency
    session_timeout: int = Field(ge=30, le=480)
