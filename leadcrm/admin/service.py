from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcrm.admin.models import AppSetting
from leadcrm.admin.schemas import SystemSettingsRead, SystemSettingsUpdate
from leadcrm.core.config import get_settings
from leadcrm.security.context import AuthContext
from leadcrm.users.activity import activity_log_service

logger = logging.getLogger("leadcrm.admin")


def default_settings() -> dict[str, Any]:
    settings = get_settings()
    return {
        "app_name": settings.app_name,
        "timezone": settings.report_timezone,
        "leads_per_page": 10,
        "enable_notifications": True,
        "allow_lead_assignment": True,
        "require_lead_approval": False,
        "max_file_upload_size": "10MB",
        "allowed_file_types": ["pdf", "doc", "docx", "jpg", "jpeg", "png"],
        "backup_frequency": "daily",
        "session_timeout": 120,
    }


class SystemSettingsService:
    def get_settings(self, session: Session) -> SystemSettingsRead:
        values = default_settings()
        for row in session.scalars(select(AppSetting).where(AppSetting.key.in_(list(values)))).all():
            values[row.key] = row.value
        return SystemSettingsRead(**values)

    def update_settings(self, session: Session, ctx: AuthContext, dto: SystemSettingsUpdate) -> SystemSettingsRead:
        changes = dto.model_dump(exclude_none=True)
        if "allowed_file_types" in changes:
            changes["allowed_file_types"] = [item.strip().lower() for item in changes["allowed_file_types"] if item.strip()]

        existing = {row.key: row for row in session.scalars(select(AppSetting).where(AppSetting.key.in_(list(changes)))).all()}
        for key, value in changes.items():
            row = existing.get(key)
            if row is None:
                session.add(AppSetting(key=key, value=value, updated_by=ctx.user_id))
            else:
                row.value = value
                row.updated_by = ctx.user_id

        activity_log_service.record(
            session,
            ctx,
            action="update_settings",
            description="Updated system settings",
            model="AppSetting",
            model_id=None,
            properties={"settings": changes},
        )
        session.commit()
        logger.info("settings.updated", extra={"user_id": str(ctx.user_id)})
        return self.get_settings(session)


system_settings_service = SystemSettingsService()
