from __future__ import annotations

from collections.abc import Iterable

SUPERADMIN = "superadmin"
MANAGER = "manager"
SPV = "spv"
HA = "ha"

ROLE_PRECEDENCE: tuple[str, ...] = (SUPERADMIN, MANAGER, SPV, HA)
NO_ROLE = "No Role"

ALL_PERMISSIONS: tuple[str, ...] = (
    "leads.view",
    "leads.view_own",
    "leads.create",
    "leads.edit",
    "leads.delete",
    "users.manage",
    "users.create",
    "reports.view",
    "teams.manage",
    "units.manage",
    "system.metrics.read",
)

DEFAULT_ROLE_PERMISSIONS: dict[str, set[str]] = {
    SUPERADMIN: set(ALL_PERMISSIONS),
    MANAGER: {
        "leads.view",
        "leads.create",
        "leads.edit",
        "users.create",
        "reports.view",
        "teams.manage",
        "units.manage",
    },
    SPV: {"leads.view", "leads.create", "leads.edit", "reports.view"},
    HA: {"leads.view_own", "leads.create", "leads.edit"},
}


def resolve_primary_role(roles: Iterable[str]) -> str | None:
    """Return the highest-precedence known role, or None."""

    role_set = {str(role).lower() for role in roles}
    for role in ROLE_PRECEDENCE:
        if role in role_set:
            return role
    return None
