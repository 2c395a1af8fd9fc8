from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date

from sqlalchemy.orm import Session

from leadcrm.formatting import percentage
from leadcrm.leads.models import PRIORITIES, Lead
from leadcrm.leads.service import assignable_users_query, to_lead_read
from leadcrm.otel import traced_operation
from leadcrm.reporting.schemas import (
    ConversionRates,
    DashboardAnalytics,
    DashboardOverview,
    DashboardStats,
    DashboardTopPerformer,
    HALeadCount,
    LeadActivityRow,
    LeadProgressionPoint,
    MonthlyLeadCount,
    PersonalStats,
    TeamPerformanceRow,
)
from leadcrm.reporting.service import local_now, priority_counts, to_local, visible_leads
from leadcrm.security.context import AuthContext
from leadcrm.security.roles import HA, MANAGER, SPV, SUPERADMIN
from leadcrm.users.models import User


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_key(lead: Lead) -> tuple[int, int]:
    created = to_local(lead.created_at)
    return created.year, created.month


class DashboardService:
    """Dashboard figures, always computed over the leads visible to the viewer."""

    def _team(self, session: Session, ctx: AuthContext) -> list[User]:
        if ctx.primary_role not in (SUPERADMIN, MANAGER, SPV):
            return []
        return list(session.scalars(assignable_users_query(ctx).order_by(User.name.asc())).all())

    def overview(self, session: Session, ctx: AuthContext) -> DashboardOverview:
        with traced_operation("dashboard.overview", actor_role=ctx.primary_role):
            leads = visible_leads(session, ctx)
            counts = priority_counts(leads)
            priority_stats = {priority: sum(1 for lead in leads if lead.priority == priority) for priority in PRIORITIES}

            year = local_now().year
            per_month: dict[tuple[int, int], int] = defaultdict(int)
            for lead in leads:
                per_month[_month_key(lead)] += 1
            monthly = [
                MonthlyLeadCount(
                    month=calendar.month_abbr[month],
                    month_full=calendar.month_name[month],
                    leads=per_month.get((year, month), 0),
                )
                for month in range(1, 13)
            ]

            by_assignee: dict[object, list[Lead]] = defaultdict(list)
            for lead in leads:
                by_assignee[lead.assigned_to].append(lead)
            ha_counts = []
            for ha_user in self._team(session, ctx):
                ha_counts_row = priority_counts(by_assignee.get(ha_user.id, []))
                ha_counts.append(
                    HALeadCount(
                        ha_id=ha_user.id,
                        ha_name=ha_user.name,
                        total_leads=ha_counts_row["total_leads"],
                        hot_leads=ha_counts_row["hot_leads"],
                        booking_leads=ha_counts_row["booking_leads"],
                        closing_leads=ha_counts_row["closing_leads"],
                    )
                )

            return DashboardOverview(
                stats=DashboardStats(
                    total_leads=counts["total_leads"],
                    hot_leads=counts["hot_leads"],
                    booking_leads=counts["booking_leads"],
                    closing_leads=counts["closing_leads"],
                ),
                priority_stats=priority_stats,
                recent_leads=[to_lead_read(lead) for lead in leads[:5]],
                monthly_leads=monthly,
                ha_lead_counts=ha_counts,
            )

    def analytics(self, session: Session, ctx: AuthContext) -> DashboardAnalytics:
        with traced_operation("dashboard.analytics", actor_role=ctx.primary_role):
            leads = visible_leads(session, ctx)
            now = local_now()
            this_month = (now.year, now.month)
            counts = priority_counts(leads)
            total = counts["total_leads"]

            by_assignee: dict[object, list[Lead]] = defaultdict(list)
            for lead in leads:
                by_assignee[lead.assigned_to].append(lead)

            team_performance = None
            if ctx.has_role(SUPERADMIN, MANAGER, SPV):
                team_performance = []
                for member in self._team(session, ctx):
                    member_counts = priority_counts(by_assignee.get(member.id, []))
                    team_performance.append(
                        TeamPerformanceRow(
                            id=member.id,
                            name=member.name,
                            **member_counts,
                            conversion_rate=percentage(member_counts["closing_leads"], member_counts["total_leads"]),
                        )
                    )

            per_month: dict[tuple[int, int], int] = defaultdict(int)
            for lead in leads:
                per_month[_month_key(lead)] += 1
            progression = []
            for offset in range(5, -1, -1):
                year, month = _shift_month(now.year, now.month, -offset)
                progression.append(
                    LeadProgressionPoint(
                        month=f"{date(year, month, 1):%b %Y}",
                        leads=per_month.get((year, month), 0),
                    )
                )

            closing = counts["closing_leads"]
            lost = counts["lost_leads"]
            conversion_rates = ConversionRates(
                closing_rate=percentage(closing, total),
                loss_rate=percentage(lost, total),
                active_rate=percentage(total - closing - lost, total),
            )

            top_performers = None
            if ctx.has_role(SUPERADMIN, MANAGER):
                top_performers = self._top_performers(session, ctx, by_assignee)

            personal_stats = None
            if ctx.has_role(HA):
                own = by_assignee.get(ctx.user_id, [])
                own_counts = priority_counts(own)
                personal_stats = PersonalStats(
                    total_assigned=own_counts["total_leads"],
                    this_month=sum(1 for lead in own if _month_key(lead) == this_month),
                    cold=own_counts["cold_leads"],
                    warm=own_counts["warm_leads"],
                    hot=own_counts["hot_leads"],
                    booking=own_counts["booking_leads"],
                    closing=own_counts["closing_leads"],
                    lost=own_counts["lost_leads"],
                    conversion_rate=percentage(own_counts["closing_leads"], own_counts["total_leads"]),
                )

            return DashboardAnalytics(
                total_leads=total,
                leads_this_month=sum(1 for lead in leads if _month_key(lead) == this_month),
                priority_breakdown={priority: sum(1 for lead in leads if lead.priority == priority) for priority in PRIORITIES},
                team_performance=team_performance,
                lead_progression=progression,
                conversion_rates=conversion_rates,
                top_performers=top_performers,
                recent_activities=self._recent_activities(leads),
                personal_stats=personal_stats,
            )

    def _top_performers(
        self,
        session: Session,
        ctx: AuthContext,
        by_assignee: dict[object, list[Lead]],
        limit: int = 5,
    ) -> list[DashboardTopPerformer]:
        rows: list[DashboardTopPerformer] = []
        for member in session.scalars(assignable_users_query(ctx)).all():
            member_counts = priority_counts(by_assignee.get(member.id, []))
            if member_counts["total_leads"] == 0:
                continue
            rows.append(
                DashboardTopPerformer(
                    id=member.id,
                    name=member.name,
                    total_leads=member_counts["total_leads"],
                    closing_leads=member_counts["closing_leads"],
                    booking_leads=member_counts["booking_leads"],
                    conversion_rate=percentage(member_counts["closing_leads"], member_counts["total_leads"]),
                )
            )
        rows.sort(key=lambda row: (row.closing_leads, row.booking_leads), reverse=True)
        return rows[:limit]

    def _recent_activities(self, leads: list[Lead], limit: int = 10) -> list[LeadActivityRow]:
        with_history = [lead for lead in leads if lead.histories]
        with_history.sort(key=lambda lead: to_local(lead.updated_at), reverse=True)
        return [
            LeadActivityRow(
                lead_id=lead.id,
                contact_name=lead.contact_name,
                assigned_to=lead.assignee.name if lead.assignee is not None else None,
                activity=lead.histories[0].description or "Updated",
                updated_at=lead.updated_at,
            )
            for lead in with_history[:limit]
        ]


dashboard_service = DashboardService()
