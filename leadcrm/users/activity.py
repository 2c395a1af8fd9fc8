from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcrm.pagination import normalize_per_page, paginate
from leadcrm.security.context import AuthContext
from leadcrm.security.dependencies import require_permission
from leadcrm.security.policies import has_permission
from leadcrm.users.models import ActivityLog, LoginHistory, User
from leadcrm.users.schemas import (
    ActivityLogPage,
    ActivityLogRead,
    LoginHistoryPage,
    LoginHistoryRead,
    PageMeta,
)


logger = logging.getLogger("leadcrm.users")

_BROWSER_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Edge", re.compile(r"Edg(e|A|iOS)?/[\d.]+")),
    ("Opera", re.compile(r"(OPR|Opera)/[\d.]+")),
    ("Chrome", re.compile(r"Chrome/[\d.]+")),
    ("Firefox", re.compile(r"Firefox/[\d.]+")),
    ("Safari", re.compile(r"Safari/[\d.]+")),
)
_PLATFORM_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Windows", re.compile(r"Windows")),
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad")),
    ("Mac", re.compile(r"Macintosh")),
    ("Linux", re.compile(r"Linux")),
)
_MOBILE_RE = re.compile(r"Mobile|Android|iPhone|iPad")


def parse_user_agent(user_agent: str | None) -> dict[str, str]:
    """Split a user agent into coarse ``device``, ``browser`` and ``platform`` labels."""

    ua = user_agent or ""
    browser = next((name for name, pattern in _BROWSER_PATTERNS if pattern.search(ua)), "Unknown")
    platform = next((name for name, pattern in _PLATFORM_PATTERNS if pattern.search(ua)), "Unknown")
    return {
        "device": "Mobile" if _MOBILE_RE.search(ua) else "Desktop",
        "browser": browser,
        "platform": platform,
    }


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def day_end_exclusive(value: date) -> datetime:
    return day_start(value + timedelta(days=1))


def to_activity_read(row: ActivityLog) -> ActivityLogRead:
    return ActivityLogRead(
        id=row.id,
        user_id=row.user_id,
        user_name=row.user.name if row.user is not None else None,
        action=row.action,
        model=row.model,
        model_id=row.model_id,
        description=row.description,
        properties=row.properties,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )


class ActivityLogService:
    def record(
        self,
        session: Session,
        ctx: AuthContext | None,
        *,
        action: str,
        description: str,
        model: str | None = None,
        model_id: uuid.UUID | str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Stage an activity row in the caller's transaction."""

        row = ActivityLog(
            user_id=ctx.user_id if ctx is not None else None,
            action=action,
            model=model,
            model_id=str(model_id) if model_id is not None else None,
            description=description,
            properties=properties,
            ip_address=ctx.ip_address if ctx is not None else None,
            user_agent=ctx.user_agent if ctx is not None else None,
        )
        session.add(row)
        return row

    def recent_for_user(self, session: Session, user_id: uuid.UUID, limit: int = 10) -> list[ActivityLogRead]:
        rows = session.scalars(
            select(ActivityLog)
            .where(ActivityLog.user_id == user_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        ).all()
        return [to_activity_read(row) for row in rows]

    def list_logs(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        user_id: uuid.UUID | None = None,
        action: str | None = None,
        model: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        per_page: int | None = None,
    ) -> ActivityLogPage:
        stmt = select(ActivityLog)
        if user_id is not None:
            if user_id != ctx.user_id:
                require_permission(ctx, "users.manage")
            stmt = stmt.where(ActivityLog.user_id == user_id)
        elif not has_permission(ctx, "users.manage"):
            stmt = stmt.where(ActivityLog.user_id == ctx.user_id)

        if action:
            stmt = stmt.where(ActivityLog.action == action)
        if model:
            stmt = stmt.where(ActivityLog.model == model)
        if date_from is not None:
            stmt = stmt.where(ActivityLog.created_at >= day_start(date_from))
        if date_to is not None:
            stmt = stmt.where(ActivityLog.created_at < day_end_exclusive(date_to))

        rows, meta = paginate(
            session,
            stmt.order_by(ActivityLog.created_at.desc()),
            page=page,
            per_page=normalize_per_page(per_page),
        )
        actions = session.scalars(select(ActivityLog.action).distinct().order_by(ActivityLog.action.asc())).all()
        models = session.scalars(
            select(ActivityLog.model).where(ActivityLog.model.is_not(None)).distinct().order_by(ActivityLog.model.asc())
        ).all()
        return ActivityLogPage(
            data=[to_activity_read(row) for row in rows],
            meta=PageMeta.from_dict(meta),
            actions=list(actions),
            models=[str(item) for item in models],
        )


class LoginHistoryService:
    def record_login(
        self,
        session: Session,
        user: User,
        *,
        ip_address: str | None,
        user_agent: str | None,
        is_successful: bool = True,
        failure_reason: str | None = None,
    ) -> LoginHistoryRead:
        parsed = parse_user_agent(user_agent)
        row = LoginHistory(
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            device=parsed["device"],
            browser=parsed["browser"],
            platform=parsed["platform"],
            is_successful=is_successful,
            failure_reason=failure_reason,
        )
        session.add(row)
        if is_successful:
            user.last_login_at = datetime.now(timezone.utc)
            user.last_login_ip = ip_address
        session.commit()
        session.refresh(row)
        logger.info(
            "user.login_recorded" if is_successful else "user.login_failed",
            extra={"user_id": str(user.id), "status": "successful" if is_successful else "failed"},
        )
        return LoginHistoryRead.model_validate(row)

    def record_logout(self, session: Session, ctx: AuthContext, history_id: uuid.UUID) -> LoginHistoryRead:
        row = session.scalar(
            select(LoginHistory).where(LoginHistory.id == history_id, LoginHistory.user_id == ctx.user_id)
        )
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="login session not found")
        if row.logout_at is None:
            row.logout_at = datetime.now(timezone.utc)
            session.commit()
            session.refresh(row)
        return LoginHistoryRead.model_validate(row)

    def recent_for_user(self, session: Session, user_id: uuid.UUID, limit: int = 10) -> list[LoginHistoryRead]:
        rows = session.scalars(
            select(LoginHistory)
            .where(LoginHistory.user_id == user_id)
            .order_by(LoginHistory.login_at.desc())
            .limit(limit)
        ).all()
        return [LoginHistoryRead.model_validate(row) for row in rows]

    def list_history(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        user_id: uuid.UUID | None = None,
        status_filter: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        per_page: int | None = None,
    ) -> LoginHistoryPage:
        target_id = user_id or ctx.user_id
        if target_id != ctx.user_id:
            require_permission(ctx, "users.manage")

        stmt = select(LoginHistory).where(LoginHistory.user_id == target_id)
        if status_filter == "successful":
            stmt = stmt.where(LoginHistory.is_successful.is_(True))
        elif status_filter == "failed":
            stmt = stmt.where(LoginHistory.is_successful.is_(False))
        if date_from is not None:
            stmt = stmt.where(LoginHistory.login_at >= day_start(date_from))
        if date_to is not None:
            stmt = stmt.where(LoginHistory.login_at < day_end_exclusive(date_to))

        rows, meta = paginate(
            session,
            stmt.order_by(LoginHistory.login_at.desc()),
            page=page,
            per_page=normalize_per_page(per_page),
        )
        return LoginHistoryPage(
            data=[LoginHistoryRead.model_validate(row) for row in rows],
            meta=PageMeta.from_dict(meta),
        )


activity_log_service = ActivityLogService()
login_history_service = LoginHistoryService()
