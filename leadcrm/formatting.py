from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal


def format_rupiah(value: Decimal | float | int | None) -> str:
    """Format an amount as ``Rp 1.000.000`` (no decimals, dot thousands separator)."""

    if value is None:
        return "Rp 0"
    amount = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    grouped = f"{int(amount):,}".replace(",", ".")
    return f"Rp {grouped}"


def status_label(status: str | None) -> str:
    if not status:
        return ""
    text = status.replace("_", " ")
    return text[:1].upper() + text[1:]


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)
