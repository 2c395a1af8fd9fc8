from __future__ import annotations

import logging
import time
import uuid
from datetime import date, datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import false, or_, select, update
from sqlalchemy.orm import Session

from leadcrm import events, files
from leadcrm.core.config import get_settings
from leadcrm.inventory.models import ProjectUnit
from leadcrm.leads.models import PRIORITIES, Lead, LeadAttachment, LeadHistory
from leadcrm.leads.schemas import (
    LEAD_SOURCES,
    AvailableUnitRead,
    LeadAttachmentRead,
    LeadCreate,
    LeadDetailRead,
    LeadFormOptions,
    LeadHistoryRead,
    LeadPage,
    LeadQuickUpdate,
    LeadRead,
    LeadUpdate,
)
from leadcrm.metrics import observe_lead_created, observe_lead_priority_change, observe_lead_visibility_denied
from leadcrm.otel import traced_operation
from leadcrm.pagination import normalize_per_page, paginate
from leadcrm.security.context import AuthContext
from leadcrm.security.errors import HierarchyViolationError
from leadcrm.security.roles import HA, MANAGER, SPV, SUPERADMIN
from leadcrm.security.visibility import apply_lead_visibility, ensure_lead_visible
from leadcrm.users.activity import day_end_exclusive, day_start, activity_log_service
from leadcrm.users.models import User
from leadcrm.users.schemas import PageMeta, UserSummary
from leadcrm.users.service import has_role_clause


logger = logging.getLogger("leadcrm.leads")

ASSIGNMENT_DENIED = "You cannot assign leads to this user."
ATTACHMENT_DIRECTORY = "lead_attachments"
SHORT_PAGE_SIZE = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _summary(user: User | None) -> UserSummary | None:
    if user is None:
        return None
    return UserSummary(id=user.id, name=user.name, email=user.email)


def to_lead_read(lead: Lead) -> LeadRead:
    return LeadRead.model_validate(lead).model_copy(update={"assigned_user": _summary(lead.assignee)})


def _history_read(row: LeadHistory) -> LeadHistoryRead:
    return LeadHistoryRead(
        id=row.id,
        old_priority=row.old_priority,
        new_priority=row.new_priority,
        description=row.description,
        created_by=row.created_by,
        created_by_name=row.author.name if row.author is not None else None,
        created_at=row.created_at,
    )


def _attachment_read(row: LeadAttachment) -> LeadAttachmentRead:
    return LeadAttachmentRead(
        id=row.id,
        filename=row.filename,
        original_name=row.original_name,
        file_path=row.file_path,
        file_size=row.file_size,
        mime_type=row.mime_type,
        uploaded_by=row.uploaded_by,
        uploaded_by_name=row.uploader.name if row.uploader is not None else None,
        created_at=row.created_at,
    )


def to_lead_detail(lead: Lead) -> LeadDetailRead:
    base = to_lead_read(lead)
    return LeadDetailRead(
        **base.model_dump(),
        creator=_summary(lead.creator),
        manager=_summary(lead.manager),
        spv=_summary(lead.spv),
        histories=[_history_read(row) for row in lead.histories],
        attachments=[_attachment_read(row) for row in lead.attachments],
    )


def assignable_users_query(ctx: AuthContext):  # type: ignore[no-untyped-def]
    """HA users the actor may assign leads to."""

    stmt = select(User).where(has_role_clause(HA))
    role = ctx.primary_role
    if role == SUPERADMIN:
        return stmt
    if role == MANAGER:
        return stmt.where(User.manager_id == ctx.user_id)
    if role == SPV:
        return stmt.where(User.spv_id == ctx.user_id)
    if role == HA:
        return stmt.where(User.id == ctx.user_id)
    return stmt.where(false())


def _snapshot(lead: Lead) -> dict[str, Any]:
    return to_lead_read(lead).model_dump(mode="json", exclude={"assigned_user"})


class LeadService:
    entity_type = "Lead"

    def _load_visible(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, *, action: str) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
        try:
            ensure_lead_visible(lead, ctx, action=action)
        except HierarchyViolationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
        return lead

    def _ensure_assignable(self, session: Session, ctx: AuthContext, user_id: uuid.UUID) -> User:
        assignee = session.scalar(assignable_users_query(ctx).where(User.id == user_id))
        if assignee is None:
            observe_lead_visibility_denied(role=ctx.primary_role, action="assign")
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=ASSIGNMENT_DENIED)
        return assignee

    def _visible_page(self, session: Session, ctx: AuthContext, stmt, *, page: int, per_page: int) -> LeadPage:  # type: ignore[no-untyped-def]
        stmt = apply_lead_visibility(stmt, ctx).order_by(Lead.created_at.desc())
        rows, meta = paginate(session, stmt, page=page, per_page=per_page)
        return LeadPage(data=[to_lead_read(row) for row in rows], meta=PageMeta.from_dict(meta))

    def list_leads(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        *,
        page: int = 1,
        per_page: int | None = None,
    ) -> LeadPage:
        stmt = select(Lead)
        if filters.get("priority"):
            stmt = stmt.where(Lead.priority == filters["priority"])
        if filters.get("status"):
            stmt = stmt.where(Lead.status == filters["status"])
        if filters.get("assigned_to"):
            stmt = stmt.where(Lead.assigned_to == filters["assigned_to"])
        if filters.get("project"):
            stmt = stmt.where(Lead.project == filters["project"])
        if filters.get("unit_type"):
            stmt = stmt.where(Lead.unit_type == filters["unit_type"])
        if isinstance(filters.get("start_date"), date):
            stmt = stmt.where(Lead.created_at >= day_start(filters["start_date"]))
        if isinstance(filters.get("end_date"), date):
            stmt = stmt.where(Lead.created_at < day_end_exclusive(filters["end_date"]))
        if filters.get("search"):
            stmt = self._search_clause(stmt, str(filters["search"]))
        return self._visible_page(session, ctx, stmt, page=page, per_page=normalize_per_page(per_page))

    @staticmethod
    def _search_clause(stmt, q: str):  # type: ignore[no-untyped-def]
        pattern = f"%{q.strip()}%"
        return stmt.where(
            or_(
                Lead.contact_name.ilike(pattern),
                Lead.contact_email.ilike(pattern),
                Lead.project.ilike(pattern),
                Lead.contact_company.ilike(pattern),
            )
        )

    def create_lead(self, session: Session, ctx: AuthContext, dto: LeadCreate) -> LeadDetailRead:
        with traced_operation("leads.create", actor_role=ctx.primary_role) as span:
            self._ensure_assignable(session, ctx, dto.assigned_to)

            payload = dto.model_dump()
            if payload.get("contact_email") is not None:
                payload["contact_email"] = str(payload["contact_email"])
            lead = Lead(
                **payload,
                created_by=ctx.user_id,
                manager_id=ctx.manager_id,
                spv_id=ctx.spv_id,
                priority_changed_at=utcnow(),
            )
            session.add(lead)
            session.flush()
            span.set_attribute("lead_id", str(lead.id))

            session.add(
                LeadHistory(
                    lead_id=lead.id,
                    old_priority=None,
                    new_priority=lead.priority,
                    description="Lead created",
                    created_by=ctx.user_id,
                )
            )
            activity_log_service.record(
                session,
                ctx,
                action="create",
                description=f"Created lead: {lead.contact_name}",
                model=self.entity_type,
                model_id=lead.id,
                properties={"lead_data": _snapshot(lead)},
            )
            session.commit()

        observe_lead_created(lead.priority)
        events.publish(
            events.build_envelope(
                "lead.created",
                ctx.user_id,
                {"lead_id": str(lead.id), "priority": lead.priority, "assigned_to": str(lead.assigned_to)},
            )
        )
        logger.info("lead.created", extra={"lead_id": str(lead.id), "user_id": str(ctx.user_id), "new_priority": lead.priority})
        session.refresh(lead)
        return to_lead_detail(lead)

    def get_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> LeadDetailRead:
        lead = self._load_visible(session, ctx, lead_id, action="view")
        return to_lead_detail(lead)

    def update_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadUpdate) -> LeadDetailRead:
        with traced_operation("leads.update", lead_id=lead_id):
            lead = self._load_visible(session, ctx, lead_id, action="update")

            payload = dto.model_dump(exclude_unset=True)
            row_version = payload.pop("row_version")
            if row_version != lead.row_version:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
            if payload.get("contact_email") is not None:
                payload["contact_email"] = str(payload["contact_email"])
            for key in ("priority", "contact_name", "status", "assigned_to"):
                if key in payload and payload[key] is None:
                    payload.pop(key)

            if "assigned_to" in payload and payload["assigned_to"] != lead.assigned_to:
                assignee = self._ensure_assignable(session, ctx, payload["assigned_to"])
                payload["manager_id"] = assignee.manager_id
                payload["spv_id"] = assignee.spv_id

            old_priority = lead.priority
            new_priority = payload.get("priority", old_priority)
            priority_changed = new_priority != old_priority
            if not payload:
                return to_lead_detail(lead)

            before = _snapshot(lead)
            if priority_changed:
                payload["priority_changed_at"] = utcnow()
            payload["updated_at"] = utcnow()
            payload["row_version"] = Lead.row_version + 1

            result = session.execute(
                update(Lead)
                .where(Lead.id == lead.id, Lead.row_version == row_version)
                .values(**payload)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

            if priority_changed:
                session.add(
                    LeadHistory(
                        lead_id=lead.id,
                        old_priority=old_priority,
                        new_priority=new_priority,
                        description=f"Priority changed from {old_priority} to {new_priority}",
                        created_by=ctx.user_id,
                    )
                )
            session.expire(lead)
            activity_log_service.record(
                session,
                ctx,
                action="update",
                description=f"Updated lead: {lead.contact_name}",
                model=self.entity_type,
                model_id=lead.id,
                properties={"before": before, "after": _snapshot(lead)},
            )
            session.commit()

        self._after_update(ctx, lead, old_priority, new_priority, priority_changed)
        session.refresh(lead)
        return to_lead_detail(lead)

    def quick_update(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, dto: LeadQuickUpdate) -> LeadDetailRead:
        lead = self._load_visible(session, ctx, lead_id, action="update")

        old_priority = lead.priority
        old_status = lead.status
        changes: list[str] = []
        if dto.priority != old_priority:
            changes.append(f"Priority: {old_priority} → {dto.priority}")
            lead.priority = dto.priority
            lead.priority_changed_at = utcnow()
        if dto.status and dto.status != old_status:
            changes.append(f"Status: {old_status} → {dto.status}")
            lead.status = dto.status
        if dto.description and dto.description != lead.description:
            changes.append("Description updated")
            lead.description = dto.description

        if not changes:
            return to_lead_detail(lead)

        lead.row_version = lead.row_version + 1
        session.add(
            LeadHistory(
                lead_id=lead.id,
                old_priority=old_priority,
                new_priority=lead.priority,
                description="Quick Update: " + ", ".join(changes),
                created_by=ctx.user_id,
            )
        )
        activity_log_service.record(
            session,
            ctx,
            action="quick_update",
            description=f"Quick updated lead: {lead.contact_name}",
            model=self.entity_type,
            model_id=lead.id,
            properties={"changes": changes},
        )
        new_priority = lead.priority
        session.commit()

        self._after_update(ctx, lead, old_priority, new_priority, old_priority != new_priority)
        session.refresh(lead)
        return to_lead_detail(lead)

    def _after_update(
        self,
        ctx: AuthContext,
        lead: Lead,
        old_priority: str,
        new_priority: str,
        priority_changed: bool,
    ) -> None:
        events.publish(events.build_envelope("lead.updated", ctx.user_id, {"lead_id": str(lead.id)}))
        if not priority_changed:
            return
        observe_lead_priority_change(old_priority, new_priority)
        events.publish(
            events.build_envelope(
                "lead.priority_changed",
                ctx.user_id,
                {"lead_id": str(lead.id), "old_priority": old_priority, "new_priority": new_priority},
            )
        )
        logger.info(
            "lead.priority_changed",
            extra={"lead_id": str(lead.id), "old_priority": old_priority, "new_priority": new_priority},
        )

    def delete_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID) -> None:
        lead = self._load_visible(session, ctx, lead_id, action="delete")
        stored_paths = [attachment.file_path for attachment in lead.attachments]

        activity_log_service.record(
            session,
            ctx,
            action="delete",
            description=f"Deleted lead: {lead.contact_name}",
            model=self.entity_type,
            model_id=lead.id,
            properties={"lead_data": _snapshot(lead)},
        )
        session.delete(lead)
        session.commit()
        for path in stored_paths:
            files.delete(path)
        events.publish(events.build_envelope("lead.deleted", ctx.user_id, {"lead_id": str(lead_id)}))
        logger.info("lead.deleted", extra={"lead_id": str(lead_id), "user_id": str(ctx.user_id)})

    def leads_by_priority(self, session: Session, ctx: AuthContext, priority: str, *, page: int = 1) -> LeadPage:
        normalized = priority.strip().capitalize()
        if normalized not in PRIORITIES:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid priority")
        stmt = select(Lead).where(Lead.priority == normalized)
        return self._visible_page(session, ctx, stmt, page=page, per_page=SHORT_PAGE_SIZE)

    def leads_by_ha(self, session: Session, ctx: AuthContext, ha_id: uuid.UUID, *, page: int = 1) -> LeadPage:
        ha_user = session.get(User, ha_id)
        if ha_user is None or not ha_user.has_role(HA):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="HA user not found")

        role = ctx.primary_role
        allowed = (
            role == SUPERADMIN
            or (role == MANAGER and ha_user.manager_id == ctx.user_id)
            or (role == SPV and ha_user.spv_id == ctx.user_id)
            or (role == HA and ha_user.id == ctx.user_id)
        )
        if not allowed:
            observe_lead_visibility_denied(role=role, action="by_ha")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have access to this HA's leads.")

        stmt = select(Lead).where(Lead.assigned_to == ha_user.id).order_by(Lead.created_at.desc())
        rows, meta = paginate(session, stmt, page=page, per_page=SHORT_PAGE_SIZE)
        return LeadPage(data=[to_lead_read(row) for row in rows], meta=PageMeta.from_dict(meta))

    def search(self, session: Session, ctx: AuthContext, q: str | None, *, page: int = 1) -> LeadPage:
        stmt = select(Lead)
        if q:
            stmt = self._search_clause(stmt, q)
        return self._visible_page(session, ctx, stmt, page=page, per_page=SHORT_PAGE_SIZE)


class LeadAttachmentService:
    def upload(
        self,
        session: Session,
        ctx: AuthContext,
        lead_id: uuid.UUID,
        *,
        original_name: str | None,
        content: bytes,
        mime_type: str | None,
    ) -> LeadAttachmentRead:
        lead = lead_service._load_visible(session, ctx, lead_id, action="attach")
        settings = get_settings()
        if len(content) > settings.attachment_max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"attachment exceeds {settings.attachment_max_bytes} bytes",
            )

        original = files.safe_filename(original_name)
        allowed = {item.strip().lower().lstrip(".") for item in settings.attachment_allowed_extensions.split(",") if item.strip()}
        extension = PurePosixPath(original).suffix.lower().lstrip(".")
        if allowed and extension not in allowed:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"file type not allowed: {extension or 'none'}")

        filename = f"{int(time.time())}_{original}"
        file_path = files.store_bytes(content, ATTACHMENT_DIRECTORY, filename)
        attachment = LeadAttachment(
            lead_id=lead.id,
            filename=filename,
            original_name=original,
            file_path=file_path,
            file_size=len(content),
            mime_type=mime_type,
            uploaded_by=ctx.user_id,
        )
        session.add(attachment)
        session.commit()
        session.refresh(attachment)
        events.publish(
            events.build_envelope(
                "lead.attachment.uploaded",
                ctx.user_id,
                {"lead_id": str(lead.id), "attachment_id": str(attachment.id), "file_size": attachment.file_size},
            )
        )
        return _attachment_read(attachment)

    def _get_attachment(self, session: Session, lead: Lead, attachment_id: uuid.UUID) -> LeadAttachment:
        attachment = session.get(LeadAttachment, attachment_id)
        if attachment is None or attachment.lead_id != lead.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="attachment not found")
        return attachment

    def download(
        self,
        session: Session,
        ctx: AuthContext,
        lead_id: uuid.UUID,
        attachment_id: uuid.UUID,
    ) -> tuple[LeadAttachmentRead, bytes]:
        lead = lead_service._load_visible(session, ctx, lead_id, action="view")
        attachment = self._get_attachment(session, lead, attachment_id)
        try:
            content = files.get_bytes(attachment.file_path)
        except FileNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="attachment file missing")
        return _attachment_read(attachment), content

    def delete(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, attachment_id: uuid.UUID) -> None:
        lead = lead_service._load_visible(session, ctx, lead_id, action="attach")
        attachment = self._get_attachment(session, lead, attachment_id)
        stored_path = attachment.file_path
        session.delete(attachment)
        session.commit()
        files.delete(stored_path)
        events.publish(
            events.build_envelope(
                "lead.attachment.deleted",
                ctx.user_id,
                {"lead_id": str(lead.id), "attachment_id": str(attachment_id)},
            )
        )


class LeadLookupService:
    def available_units(self, session: Session, project: str | None, unit_type: str | None) -> list[AvailableUnitRead]:
        stmt = select(ProjectUnit).where(ProjectUnit.status == "available")
        if project:
            stmt = stmt.where(ProjectUnit.project == project)
        if unit_type:
            stmt = stmt.where(ProjectUnit.unit_type == unit_type)
        rows = session.scalars(stmt.order_by(ProjectUnit.unit_no.asc())).all()
        return [AvailableUnitRead(unit_no=row.unit_no, price=row.price, size=row.size) for row in rows]

    def unit_types(self, session: Session, project: str | None) -> list[str]:
        if not project:
            return []
        rows = session.scalars(
            select(ProjectUnit.unit_type).where(ProjectUnit.project == project).distinct().order_by(ProjectUnit.unit_type.asc())
        ).all()
        return list(rows)

    def assignable_users(self, session: Session, ctx: AuthContext) -> list[UserSummary]:
        rows = session.scalars(assignable_users_query(ctx).order_by(User.name.asc())).all()
        return [UserSummary(id=row.id, name=row.name, email=row.email) for row in rows]

    def form_options(self, session: Session, ctx: AuthContext) -> LeadFormOptions:
        projects = session.scalars(select(ProjectUnit.project).distinct().order_by(ProjectUnit.project.asc())).all()
        unit_types = session.scalars(select(ProjectUnit.unit_type).distinct().order_by(ProjectUnit.unit_type.asc())).all()
        return LeadFormOptions(
            priorities=list(PRIORITIES),
            sources=list(LEAD_SOURCES),
            projects=list(projects),
            unit_types=list(unit_types),
            assignable_users=self.assignable_users(session, ctx),
        )


lead_service = LeadService()
lead_attachment_service = LeadAttachmentService()
lead_lookup_service = LeadLookupService()
