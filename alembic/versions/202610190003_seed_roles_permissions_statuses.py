"""seed system roles, permissions and lead statuses

Revision ID: 202610190003
Revises: 202610190002
Create Date: 2026-10-19 09:20:00
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa

from leadcrm.leads.statuses import DEFAULT_STATUSES
from leadcrm.security.roles import ALL_PERMISSIONS, DEFAULT_ROLE_PERMISSIONS, ROLE_PRECEDENCE


revision: str = "202610190003"
down_revision: str | None = "202610190002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    now = datetime.now(timezone.utc)

    role_ids = {name: uuid.uuid4() for name in ROLE_PRECEDENCE}
    permission_ids = {name: uuid.uuid4() for name in ALL_PERMISSIONS}

    role_table = sa.table(
        "authz_role",
        sa.column("id", sa.Uuid()),
        sa.column("name", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("is_system", sa.Boolean()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        role_table,
        [
            {"id": role_ids[name], "name": name, "description": None, "is_system": True, "created_at": now}
            for name in ROLE_PRECEDENCE
        ],
    )

    permission_table = sa.table(
        "authz_permission",
        sa.column("id", sa.Uuid()),
        sa.column("name", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        permission_table,
        [
            {"id": permission_ids[name], "name": name, "description": None, "created_at": now}
            for name in ALL_PERMISSIONS
        ],
    )

    role_permission_table = sa.table(
        "authz_role_permission",
        sa.column("role_id", sa.Uuid()),
        sa.column("permission_id", sa.Uuid()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    links: list[dict[str, object]] = []
    for role_name, permission_names in DEFAULT_ROLE_PERMISSIONS.items():
        for permission_name in sorted(permission_names):
            links.append(
                {"role_id": role_ids[role_name], "permission_id": permission_ids[permission_name], "created_at": now}
            )
    op.bulk_insert(role_permission_table, links)

    status_table = sa.table(
        "statuses",
        sa.column("name", sa.String()),
        sa.column("priority", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("color", sa.String()),
        sa.column("is_active", sa.Boolean()),
        sa.column("sort_order", sa.Integer()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        status_table,
        [
            {
                "name": name,
                "priority": priority,
                "description": description,
                "color": color,
                "is_active": True,
                "sort_order": sort_order,
                "created_at": now,
            }
            for name, priority, description, color, sort_order in DEFAULT_STATUSES
        ],
    )


def downgrade() -> None:
    op.execute(sa.text("DELETE FROM statuses"))
    op.execute(sa.text("DELETE FROM authz_role_permission"))
    op.execute(sa.text("DELETE FROM authz_permission"))
    op.execute(sa.text("DELETE FROM authz_role"))
