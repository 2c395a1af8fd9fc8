from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadcrm.leads.models import LeadStatus

STATUS_PRIORITIES: tuple[str, ...] = ("cold", "warm", "hot", "booking", "closing", "lost", "cancel", "general")

_COLD = "#6B7280"
_WARM = "#F59E0B"
_HOT = "#EF4444"
_BOOKING = "#3B82F6"
_CLOSING = "#10B981"
_LOST = "#DC2626"
_CANCEL = "#9CA3AF"

# (name, priority, description, color, sort_order)
DEFAULT_STATUSES: tuple[tuple[str, str, str, str, int], ...] = (
    ("Respon", "cold", "Lead memberikan respon awal", _COLD, 1),
    ("Perlu di-Update", "cold", "Lead membutuhkan update informasi", _COLD, 2),
    ("Belum berminat", "cold", "Lead belum menunjukkan minat", _COLD, 3),
    ("Belum respon", "cold", "Lead belum memberikan respon", _COLD, 4),
    ("Tidak difollow up", "cold", "Lead tidak di-follow up", _COLD, 5),
    ("Nomor tidak valid Cold", "cold", "Nomor kontak tidak valid", _COLD, 6),
    ("Tertarik", "warm", "Lead menunjukkan ketertarikan", _WARM, 1),
    ("Tanya Pricelist", "warm", "Lead menanyakan daftar harga", _WARM, 2),
    ("Janji visit", "warm", "Lead berjanji untuk berkunjung", _WARM, 3),
    ("Janji appointment", "warm", "Lead membuat janji temu", _WARM, 4),
    ("Sudah visit", "warm", "Lead sudah melakukan kunjungan", _WARM, 5),
    ("Siap Membeli", "hot", "Lead siap untuk melakukan pembelian", _HOT, 1),
    ("Nego Harga", "hot", "Lead sedang negosiasi harga", _HOT, 2),
    ("BI Checking", "hot", "Sedang proses BI checking", _HOT, 3),
    ("Sudah Appointment", "hot", "Sudah ada appointment", _HOT, 4),
    ("Janji Booking", "hot", "Lead berjanji untuk booking", _HOT, 5),
    ("Booking", "booking", "Lead melakukan booking unit", _BOOKING, 1),
    ("Closing", "closing", "Lead berhasil closing", _CLOSING, 1),
    ("Leads Expired", "lost", "Lead sudah tidak aktif/expired", _LOST, 1),
    ("Promo tidak menarik", "lost", "Promo dianggap tidak menarik", _LOST, 2),
    ("DSR Minus", "lost", "Debt Service Ratio tidak memenuhi", _LOST, 3),
    ("Beli di tempat lain", "lost", "Lead membeli properti di tempat lain", _LOST, 4),
    ("Harga tidak sepakat", "lost", "Tidak ada kesepakatan harga", _LOST, 5),
    ("Terlalu mahal", "lost", "Lead menganggap harga terlalu mahal", _LOST, 6),
    ("Ada keperluan lain", "lost", "Lead memiliki keperluan lain", _LOST, 7),
    ("Produk kurang baik", "lost", "Lead menganggap produk kurang baik", _LOST, 8),
    ("Lingkungan kurang baik", "lost", "Lead menganggap lingkungan kurang baik", _LOST, 9),
    ("Cara bayar tidak menarik", "lost", "Cara pembayaran tidak menarik", _LOST, 10),
    ("Unit tidak tersedia", "lost", "Unit yang diinginkan tidak tersedia", _LOST, 11),
    ("Tertarik produk lain", "lost", "Lead tertarik dengan produk lain", _LOST, 12),
    ("Nomor tidak valid Lost", "lost", "Nomor kontak tidak valid", _LOST, 13),
    ("SLIK tidak rekomen", "lost", "SLIK tidak merekomendasikan", _LOST, 14),
    ("Tidak respon", "lost", "Lead tidak memberikan respon", _LOST, 15),
    ("Cancel", "cancel", "Lead dibatalkan", _CANCEL, 1),
    ("None", "general", "Status umum/default", _COLD, 1),
)


def seed_statuses(session: Session) -> int:
    """Insert or refresh the default status catalog. Returns the number of new rows."""

    existing = {
        (row.name, row.priority): row
        for row in session.scalars(select(LeadStatus)).all()
    }
    created = 0
    for name, priority, description, color, sort_order in DEFAULT_STATUSES:
        row = existing.get((name, priority))
        if row is None:
            session.add(
                LeadStatus(
                    name=name,
                    priority=priority,
                    description=description,
                    color=color,
                    is_active=True,
                    sort_order=sort_order,
                )
            )
            created += 1
            continue
        row.description = description
        row.color = color
        row.is_active = True
        row.sort_order = sort_order
    session.commit()
    return created


def statuses_by_priority(session: Session, priority: str | None = None) -> list[str] | dict[str, list[str]]:
    stmt = select(LeadStatus).where(LeadStatus.is_active.is_(True)).order_by(LeadStatus.sort_order.asc(), LeadStatus.name.asc())
    if priority:
        rows = session.scalars(stmt.where(LeadStatus.priority == priority.lower())).all()
        return [row.name for row in rows]

    grouped: dict[str, list[str]] = defaultdict(list)
    for row in session.scalars(stmt).all():
        grouped[row.priority].append(row.name)
    return dict(grouped)
