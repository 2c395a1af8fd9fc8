from __future__ import annotations

import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

ALLOWED_PER_PAGE: tuple[int, ...] = (10, 25, 50, 100)
DEFAULT_PER_PAGE = 25


def normalize_per_page(per_page: int | None, default: int = DEFAULT_PER_PAGE) -> int:
    if per_page in ALLOWED_PER_PAGE:
        return int(per_page)
    return default


def paginate(session: Session, stmt: Select[Any], *, page: int, per_page: int) -> tuple[list[Any], dict[str, Any]]:
    """Run ``stmt`` for one page and return ``(rows, meta)``."""

    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    current_page = max(1, page)
    last_page = max(1, math.ceil(total / per_page))
    offset = (current_page - 1) * per_page
    rows = list(session.scalars(stmt.offset(offset).limit(per_page)).unique().all())

    meta = {
        "current_page": current_page,
        "last_page": last_page,
        "per_page": per_page,
        "total": total,
        "from": offset + 1 if rows else None,
        "to": offset + len(rows) if rows else None,
    }
    return rows, meta
