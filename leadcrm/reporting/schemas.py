from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from leadcrm.leads.schemas import LeadRead
from leadcrm.users.schemas import UserSummary

ReportType = Literal["leads", "users", "activities"]
ExportFormat = Literal["json", "csv"]


class DashboardStats(BaseModel):
    total_leads: int
    hot_leads: int
    booking_leads: int
    closing_leads: int


class MonthlyLeadCount(BaseModel):
    month: str
    month_full: str
    leads: int


class HALeadCount(BaseModel):
    ha_id: UUID
    ha_name: str
    total_leads: int
    hot_leads: int
    booking_leads: int
    closing_leads: int


class DashboardOverview(BaseModel):
    stats: DashboardStats
    priority_stats: dict[str, int]
    recent_leads: list[LeadRead]
    monthly_leads: list[MonthlyLeadCount]
    ha_lead_counts: list[HALeadCount] = Field(default_factory=list)


class PriorityCounts(BaseModel):
    total_leads: int = 0
    cold_leads: int = 0
    warm_leads: int = 0
    hot_leads: int = 0
    booking_leads: int = 0
    closing_leads: int = 0
    lost_leads: int = 0


class TeamPerformanceRow(PriorityCounts):
    id: UUID
    name: str
    conversion_rate: float


class LeadProgressionPoint(BaseModel):
    month: str
    leads: int


class ConversionRates(BaseModel):
    closing_rate: float
    loss_rate: float
    active_rate: float


class DashboardTopPerformer(BaseModel):
    id: UUID
    name: str
    total_leads: int
    closing_leads: int
    booking_leads: int
    conversion_rate: float


class LeadActivityRow(BaseModel):
    lead_id: UUID
    contact_name: str
    assigned_to: str | None
    activity: str
    updated_at: datetime


class PersonalStats(BaseModel):
    total_assigned: int
    this_month: int
    cold: int
    warm: int
    hot: int
    booking: int
    closing: int
    lost: int
    conversion_rate: float


class DashboardAnalytics(BaseModel):
    total_leads: int
    leads_this_month: int
    priority_breakdown: dict[str, int]
    team_performance: list[TeamPerformanceRow] | None = None
    lead_progression: list[LeadProgressionPoint]
    conversion_rates: ConversionRates
    top_performers: list[DashboardTopPerformer] | None = None
    recent_activities: list[LeadActivityRow]
    personal_stats: PersonalStats | None = None


class ReportFilters(BaseModel):
    date_from: date
    date_to: date
    user_id: UUID | None = None
    status: str | None = None


class LeadStatistics(PriorityCounts):
    conversion_rate: float


class UserPerformanceRow(PriorityCounts):
    id: UUID | None
    name: str
    email: str | None
    conversion_rate: float


class DailyTrend(BaseModel):
    date: date
    leads: int
    closing: int
    booking: int
    formatted_date: str


class StatusCount(BaseModel):
    status: str | None
    count: int
    label: str


class ReportTopPerformer(BaseModel):
    id: UUID | None
    name: str
    email: str | None
    total_leads: int
    converted_leads: int
    conversion_rate: float


class RecentActivityRow(BaseModel):
    id: UUID
    user_name: str
    action: str
    description: str | None
    created_at: datetime
    formatted_date: str


class ReportOverview(BaseModel):
    lead_stats: LeadStatistics
    user_performance: list[UserPerformanceRow]
    daily_trends: list[DailyTrend]
    status_distribution: list[StatusCount]
    top_performers: list[ReportTopPerformer]
    recent_activities: list[RecentActivityRow]
    users: list[UserSummary]
    statuses: list[str]
    filters: ReportFilters


class ReportExportRead(BaseModel):
    success: bool = True
    data: list[dict[str, Any]]
    filters: dict[str, Any]
    report_type: ReportType
    generated_at: str


class ExportQueued(BaseModel):
    task_id: str
    status: str = "queued"
