"""create leads, statuses, project units and settings tables

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 09:10:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="Cold"),
        sa.Column("status", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("project", sa.String(length=255), nullable=True),
        sa.Column("unit_type", sa.String(length=255), nullable=True),
        sa.Column("unit_no", sa.String(length=64), nullable=True),
        sa.Column("estimated_value", sa.Numeric(15, 2), nullable=True),
        sa.Column("expected_closing_date", sa.Date(), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=True),
        sa.Column("contact_name", sa.String(length=255), nullable=False),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=32), nullable=True),
        sa.Column("contact_address", sa.Text(), nullable=True),
        sa.Column("contact_company", sa.String(length=255), nullable=True),
        sa.Column("contact_position", sa.String(length=255), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("manager_id", sa.Uuid(), nullable=True),
        sa.Column("spv_id", sa.Uuid(), nullable=True),
        sa.Column("priority_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["spv_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leads_assigned_to", "leads", ["assigned_to"])
    op.create_index("ix_leads_created_by", "leads", ["created_by"])
    op.create_index("ix_leads_manager_id", "leads", ["manager_id"])
    op.create_index("ix_leads_spv_id", "leads", ["spv_id"])
    op.create_index("ix_leads_priority", "leads", ["priority"])
    op.create_index("ix_leads_created_at", "leads", ["created_at"])
    op.create_index("ix_leads_project_unit", "leads", ["project", "unit_type", "unit_no"])

    op.create_table(
        "lead_histories",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("old_priority", sa.String(length=16), nullable=True),
        sa.Column("new_priority", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_histories_lead_created", "lead_histories", ["lead_id", "created_at"])

    op.create_table(
        "lead_attachments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=512), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("uploaded_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "statuses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", "priority", name="uq_statuses_name_priority"),
    )
    op.create_index("ix_statuses_priority_active", "statuses", ["priority", "is_active"])

    op.create_table(
        "project_units",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project", sa.String(length=255), nullable=False),
        sa.Column("unit_type", sa.String(length=255), nullable=False),
        sa.Column("unit_no", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="available"),
        sa.Column("price", sa.Numeric(15, 2), nullable=True),
        sa.Column("size", sa.Numeric(8, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("specifications", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project", "unit_type", "unit_no", name="uq_project_units_project_type_no"),
    )
    op.create_index("ix_project_units_project_type", "project_units", ["project", "unit_type"])
    op.create_index("ix_project_units_status", "project_units", ["status"])

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_by", sa.Uuid(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_index("ix_project_units_status", table_name="project_units")
    op.drop_index("ix_project_units_project_type", table_name="project_units")
    op.drop_table("project_units")
    op.drop_index("ix_statuses_priority_active", table_name="statuses")
    op.drop_table("statuses")
    op.drop_table("lead_attachments")
    op.drop_index("ix_lead_histories_lead_created", table_name="lead_histories")
    op.drop_table("lead_histories")
    for index_name in (
        "ix_leads_project_unit",
        "ix_leads_created_at",
        "ix_leads_priority",
        "ix_leads_spv_id",
        "ix_leads_manager_id",
        "ix_leads_created_by",
        "ix_leads_assigned_to",
    ):
        op.drop_index(index_name, table_name="leads")
    op.drop_table("leads")
