from __future__ import annotations

import logging
import uuid
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcrm.core.config import get_settings
from leadcrm.formatting import as_utc, percentage, status_label
from leadcrm.leads.models import Lead
from leadcrm.otel import traced_operation
from leadcrm.reporting.schemas import (
    DailyTrend,
    LeadStatistics,
    RecentActivityRow,
    ReportFilters,
    ReportOverview,
    ReportTopPerformer,
    StatusCount,
    UserPerformanceRow,
)
from leadcrm.security.context import AuthContext
from leadcrm.security.visibility import apply_lead_visibility
from leadcrm.users.models import ActivityLog, User
from leadcrm.users.schemas import UserSummary
from leadcrm.users.service import active_clause

logger = logging.getLogger("leadcrm.reports")

UNASSIGNED_NAME = "Unassigned Leads"
UNASSIGNED_EMAIL = "unassigned@system.local"
CONVERTED_PRIORITIES = frozenset({"Booking", "Closing"})


def report_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().report_timezone)


def local_now() -> datetime:
    return datetime.now(report_zone())


def to_local(value: datetime) -> datetime:
    return as_utc(value).astimezone(report_zone())


def range_bounds(date_from: date, date_to: date) -> tuple[datetime, datetime]:
    """UTC bounds covering ``date_from`` through the whole of ``date_to`` in the report timezone."""

    zone = report_zone()
    start = datetime.combine(date_from, time.min, tzinfo=zone)
    end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def priority_counts(leads: Iterable[Lead]) -> dict[str, Any]:
    rows = list(leads)
    counter = Counter(lead.priority for lead in rows)
    return {
        "total_leads": len(rows),
        "cold_leads": counter.get("Cold", 0),
        "warm_leads": counter.get("Warm", 0),
        "hot_leads": counter.get("Hot", 0),
        "booking_leads": counter.get("Booking", 0),
        "closing_leads": counter.get("Closing", 0),
        "lost_leads": counter.get("Lost", 0),
    }


def converted_count(leads: Iterable[Lead]) -> int:
    return sum(1 for lead in leads if lead.priority in CONVERTED_PRIORITIES)


def visible_leads(session: Session, ctx: AuthContext, stmt=None) -> list[Lead]:  # type: ignore[no-untyped-def]
    stmt = apply_lead_visibility(stmt if stmt is not None else select(Lead), ctx)
    return list(session.scalars(stmt.order_by(Lead.created_at.desc())).unique().all())


class ReportService:
    def resolve_filters(
        self,
        *,
        date_from: date | None,
        date_to: date | None,
        user_id: uuid.UUID | None = None,
        status_filter: str | None = None,
        for_export: bool = False,
    ) -> ReportFilters:
        today = local_now().date()
        if date_from is None:
            date_from = today.replace(day=1) if for_export else today - timedelta(days=30)
        if date_to is None:
            date_to = today
        if date_from > date_to:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="date_from must be on or before date_to",
            )
        return ReportFilters(date_from=date_from, date_to=date_to, user_id=user_id, status=status_filter or None)

    def leads_in_range(self, session: Session, ctx: AuthContext, filters: ReportFilters) -> list[Lead]:
        start, end = range_bounds(filters.date_from, filters.date_to)
        stmt = select(Lead).where(Lead.created_at >= start, Lead.created_at < end)
        if filters.user_id is not None:
            stmt = stmt.where(Lead.assigned_to == filters.user_id)
        if filters.status:
            stmt = stmt.where(Lead.status == filters.status)
        return visible_leads(session, ctx, stmt)

    def lead_statistics(self, leads: list[Lead]) -> LeadStatistics:
        counts = priority_counts(leads)
        return LeadStatistics(**counts, conversion_rate=percentage(converted_count(leads), len(leads)))

    def _grouped_by_assignee(self, leads: list[Lead]) -> dict[uuid.UUID | None, list[Lead]]:
        grouped: dict[uuid.UUID | None, list[Lead]] = defaultdict(list)
        for lead in leads:
            grouped[lead.assigned_to].append(lead)
        return grouped

    def user_performance(self, session: Session, leads: list[Lead]) -> list[UserPerformanceRow]:
        grouped = self._grouped_by_assignee(leads)
        user_ids = [user_id for user_id in grouped if user_id is not None]
        users = session.scalars(select(User).where(User.id.in_(user_ids), active_clause())).all() if user_ids else []

        rows = [
            UserPerformanceRow(
                id=user.id,
                name=user.name,
                email=user.email,
                **priority_counts(grouped[user.id]),
                conversion_rate=percentage(converted_count(grouped[user.id]), len(grouped[user.id])),
            )
            for user in users
        ]
        unassigned = grouped.get(None, [])
        if unassigned:
            rows.append(
                UserPerformanceRow(
                    id=None,
                    name=UNASSIGNED_NAME,
                    email=UNASSIGNED_EMAIL,
                    **priority_counts(unassigned),
                    conversion_rate=percentage(converted_count(unassigned), len(unassigned)),
                )
            )
        return sorted(rows, key=lambda row: row.conversion_rate, reverse=True)

    def daily_trends(self, leads: list[Lead], filters: ReportFilters) -> list[DailyTrend]:
        by_day: dict[date, list[Lead]] = defaultdict(list)
        for lead in leads:
            by_day[to_local(lead.created_at).date()].append(lead)

        trends: list[DailyTrend] = []
        current = filters.date_from
        while current <= filters.date_to:
            day_leads = by_day.get(current, [])
            trends.append(
                DailyTrend(
                    date=current,
                    leads=len(day_leads),
                    closing=sum(1 for lead in day_leads if lead.priority == "Closing"),
                    booking=sum(1 for lead in day_leads if lead.priority == "Booking"),
                    formatted_date=f"{current:%b} {current.day}",
                )
            )
            current += timedelta(days=1)
        return trends

    def status_distribution(self, leads: list[Lead]) -> list[StatusCount]:
        counter = Counter(lead.status for lead in leads)
        ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0] or ""))
        return [StatusCount(status=name, count=count, label=status_label(name)) for name, count in ordered]

    def top_performers(self, session: Session, leads: list[Lead], limit: int = 5) -> list[ReportTopPerformer]:
        grouped = self._grouped_by_assignee(leads)
        performers: list[ReportTopPerformer] = []
        for user_id, rows in grouped.items():
            converted = converted_count(rows)
            if user_id is None:
                name, email = UNASSIGNED_NAME, UNASSIGNED_EMAIL
            else:
                user = session.get(User, user_id)
                if user is None:
                    continue
                name, email = user.name, user.email
            performers.append(
                ReportTopPerformer(
                    id=user_id,
                    name=name,
                    email=email,
                    total_leads=len(rows),
                    converted_leads=converted,
                    conversion_rate=percentage(converted, len(rows)),
                )
            )
        performers.sort(key=lambda row: row.converted_leads, reverse=True)
        return performers[:limit]

    def recent_activities(self, session: Session, limit: int = 10) -> list[RecentActivityRow]:
        rows = session.scalars(select(ActivityLog).order_by(ActivityLog.created_at.desc()).limit(limit)).all()
        return [
            RecentActivityRow(
                id=row.id,
                user_name=row.user.name if row.user is not None else "Unknown",
                action=row.action,
                description=row.description,
                created_at=row.created_at,
                formatted_date=f"{to_local(row.created_at):%b %d, %Y %H:%M}",
            )
            for row in rows
        ]

    def filter_options(self, session: Session) -> tuple[list[UserSummary], list[str]]:
        users = session.scalars(select(User).where(active_clause()).order_by(User.name.asc())).all()
        statuses = session.scalars(
            select(Lead.status).where(Lead.status.is_not(None)).distinct().order_by(Lead.status.asc())
        ).all()
        return [UserSummary(id=user.id, name=user.name, email=user.email) for user in users], list(statuses)

    def overview(self, session: Session, ctx: AuthContext, filters: ReportFilters) -> ReportOverview:
        with traced_operation("reports.overview", actor_role=ctx.primary_role):
            leads = self.leads_in_range(session, ctx, filters)
            users, statuses = self.filter_options(session)
            result = ReportOverview(
                lead_stats=self.lead_statistics(leads),
                user_performance=self.user_performance(session, leads),
                daily_trends=self.daily_trends(leads, filters),
                status_distribution=self.status_distribution(leads),
                top_performers=self.top_performers(session, leads),
                recent_activities=self.recent_activities(session),
                users=users,
                statuses=statuses,
                filters=filters,
            )
        logger.info(
            "report.overview",
            extra={"user_id": str(ctx.user_id), "row_count": result.lead_stats.total_leads},
        )
        return result


report_service = ReportService()
