"""Hierarchical lead visibility.

A lead is visible to:

* a superadmin, always;
* a manager, when they created it, it carries their ``manager_id``, or its
  assignee reports to them;
* an spv, when they created it, it carries their ``spv_id``, or its assignee
  is supervised by them;
* an ha, when it is assigned to them or they created it.

Anyone else sees nothing. A user holding several roles is judged by the
highest-precedence one. The same rule backs both the SQL filter used by
listings and aggregates and the in-memory check used for single leads.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, false, or_, select, true
from sqlalchemy.sql import Select

from leadcrm.leads.models import Lead
from leadcrm.metrics import observe_lead_visibility_denied
from leadcrm.security.context import AuthContext
from leadcrm.security.errors import HierarchyViolationError
from leadcrm.security.roles import HA, MANAGER, SPV, SUPERADMIN
from leadcrm.users.models import User


def lead_visibility_clause(ctx: AuthContext) -> ColumnElement[bool]:
    role = ctx.primary_role
    user_id = ctx.user_id

    if role == SUPERADMIN:
        return true()
    if role == MANAGER:
        return or_(
            Lead.created_by == user_id,
            Lead.manager_id == user_id,
            Lead.assigned_to.in_(select(User.id).where(User.manager_id == user_id)),
        )
    if role == SPV:
        return or_(
            Lead.created_by == user_id,
            Lead.spv_id == user_id,
            Lead.assigned_to.in_(select(User.id).where(User.spv_id == user_id)),
        )
    if role == HA:
        return or_(Lead.assigned_to == user_id, Lead.created_by == user_id)
    return false()


def apply_lead_visibility(stmt: Select[Any], ctx: AuthContext) -> Select[Any]:
    return stmt.where(lead_visibility_clause(ctx))


def can_view_lead(lead: Lead, ctx: AuthContext) -> bool:
    role = ctx.primary_role
    user_id = ctx.user_id
    assignee = lead.assignee

    if role == SUPERADMIN:
        return True
    if role == MANAGER:
        return (
            lead.created_by == user_id
            or lead.manager_id == user_id
            or (assignee is not None and assignee.manager_id == user_id)
        )
    if role == SPV:
        return (
            lead.created_by == user_id
            or lead.spv_id == user_id
            or (assignee is not None and assignee.spv_id == user_id)
        )
    if role == HA:
        return lead.assigned_to == user_id or lead.created_by == user_id
    return False


def ensure_lead_visible(lead: Lead, ctx: AuthContext, *, action: str) -> None:
    if can_view_lead(lead, ctx):
        return
    observe_lead_visibility_denied(role=ctx.primary_role, action=action)
    raise HierarchyViolationError("lead", action, "You do not have access to this lead.")
