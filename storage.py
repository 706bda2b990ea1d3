import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import DB_FILE
from database import get_db_connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PharmacyRecord:
    name: str
    location: str
    phone: str
    whatsapp: str
    latitude: Optional[str] = None
    longitude: Optional[str] = None


@dataclass(frozen=True)
class ScheduleRecord:
    start_date: str  # YYYY-MM-DD
    end_date: str


@dataclass(frozen=True)
class ImportItem:
    pharmacy: PharmacyRecord
    schedule: ScheduleRecord


def pharmacy_key(pharmacy: PharmacyRecord) -> Tuple[str, str]:
    """Identity of a pharmacy across sheet rows: same name at the same place."""
    return pharmacy.name, pharmacy.location


def schedule_key(schedule: ScheduleRecord) -> Tuple[str, str]:
    """Identity of a duty week: its date range."""
    return schedule.start_date, schedule.end_date


PHARMACY_COLUMNS = """
    p.id,
    p.name,
    p.location,
    p.phone,
    p.whatsapp,
    p.latitude,
    p.longitude,
    p.created_at
"""


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning(f"Unparseable timestamp in database: {value!r}")
        return None
    # CURRENT_TIMESTAMP is stored as naive UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_pharmacy(row: sqlite3.Row) -> Dict[str, Any]:
    created_at = _parse_timestamp(row["created_at"])
    return {
        "id": row["id"],
        "name": row["name"],
        "location": row["location"],
        "phone": row["phone"],
        "whatsapp": row["whatsapp"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "createdAt": created_at.isoformat() if created_at else None,
    }


def _upsert_pharmacy(cursor: sqlite3.Cursor, pharmacy: PharmacyRecord) -> int:
    name, location = pharmacy_key(pharmacy)
    cursor.execute(
        """
        INSERT OR IGNORE INTO pharmacies
        (name, location, phone, whatsapp, latitude, longitude)
        VALUES (?, ?, ?, ?, ?, ?)
    """,
        (
            name,
            location,
            pharmacy.phone,
            pharmacy.whatsapp,
            pharmacy.latitude,
            pharmacy.longitude,
        ),
    )
    cursor.execute(
        "SELECT id FROM pharmacies WHERE name = ? AND location = ?",
        (name, location),
    )
    return cursor.fetchone()[0]


def _upsert_schedule(cursor: sqlite3.Cursor, schedule: ScheduleRecord) -> int:
    start_date, end_date = schedule_key(schedule)
    cursor.execute(
        "INSERT OR IGNORE INTO weekly_schedules (start_date, end_date) VALUES (?, ?)",
        (start_date, end_date),
    )
    cursor.execute(
        "SELECT id FROM weekly_schedules WHERE start_date = ? AND end_date = ?",
        (start_date, end_date),
    )
    return cursor.fetchone()[0]


def _link(cursor: sqlite3.Cursor, pharmacy_id: int, schedule_id: int) -> None:
    cursor.execute(
        "INSERT OR IGNORE INTO pharmacy_schedules (pharmacy_id, schedule_id) VALUES (?, ?)",
        (pharmacy_id, schedule_id),
    )


def _table_counts(cursor: sqlite3.Cursor) -> Dict[str, int]:
    counts = {}
    for table in ("pharmacies", "weekly_schedules", "pharmacy_schedules"):
        cursor.execute(f"SELECT COUNT(*) FROM {table}")
        counts[table] = cursor.fetchone()[0]
    return counts


class PharmacyRepository:
    """Pharmacies and their duty weeks, stored in SQLite.

    The dataset is only ever written as a whole through ``replace_all``;
    everything else is a read.
    """

    def __init__(self, db_file: str = DB_FILE):
        self.db_file = db_file

    def replace_all(self, items: Iterable[ImportItem]) -> Dict[str, int]:
        """Replace the whole dataset in a single transaction.

        Pharmacies sharing (name, location) and schedules sharing
        (start_date, end_date) collapse into one row each; duplicate links
        are ignored. On any database error nothing is committed and the
        previous dataset stays in place.
        """
        with get_db_connection(self.db_file) as conn:
            try:
                with conn:
                    cursor = conn.cursor()
                    cursor.execute("DELETE FROM pharmacy_schedules")
                    cursor.execute("DELETE FROM weekly_schedules")
                    cursor.execute("DELETE FROM pharmacies")

                    for item in items:
                        pharmacy_id = _upsert_pharmacy(cursor, item.pharmacy)
                        schedule_id = _upsert_schedule(cursor, item.schedule)
                        _link(cursor, pharmacy_id, schedule_id)

                    counts = _table_counts(cursor)
            except sqlite3.Error as e:
                logger.error(f"Dataset replacement rolled back: {e}")
                raise

        logger.info(
            f"Dataset replaced - Pharmacies: {counts['pharmacies']}, "
            f"Schedules: {counts['weekly_schedules']}, Links: {counts['pharmacy_schedules']}"
        )
        return counts

    def get_current_week(self, on_date: Optional[date] = None) -> List[Dict[str, Any]]:
        """Pharmacies on duty on ``on_date`` (default: today, local time)."""
        day = (on_date or date.today()).isoformat()
        with get_db_connection(self.db_file) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT DISTINCT {PHARMACY_COLUMNS}
                FROM pharmacies p
                JOIN pharmacy_schedules ps ON ps.pharmacy_id = p.id
                JOIN weekly_schedules ws ON ws.id = ps.schedule_id
                WHERE ws.start_date <= ? AND ws.end_date >= ?
                ORDER BY p.name, p.location, p.id
            """,
                (day, day),
            )
            return [_row_to_pharmacy(row) for row in cursor.fetchall()]

    def search(self, query: str) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on name or location."""
        needle = query.lower()
        with get_db_connection(self.db_file) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {PHARMACY_COLUMNS}
                FROM pharmacies p
                WHERE instr(py_lower(p.name), ?) > 0
                   OR instr(py_lower(p.location), ?) > 0
                ORDER BY p.name, p.location, p.id
            """,
                (needle, needle),
            )
            return [_row_to_pharmacy(row) for row in cursor.fetchall()]

    def get_all(self) -> List[Dict[str, Any]]:
        with get_db_connection(self.db_file) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {PHARMACY_COLUMNS} FROM pharmacies p ORDER BY p.name, p.location, p.id"
            )
            return [_row_to_pharmacy(row) for row in cursor.fetchall()]

    def count(self) -> int:
        with get_db_connection(self.db_file) as conn:
            return conn.execute("SELECT COUNT(*) FROM pharmacies").fetchone()[0]

    def last_update_time(self) -> Optional[datetime]:
        """Newest pharmacy creation time, or None when the table is empty."""
        with get_db_connection(self.db_file) as conn:
            value = conn.execute("SELECT MAX(created_at) FROM pharmacies").fetchone()[0]
        return _parse_timestamp(value)

    def table_counts(self) -> Dict[str, int]:
        with get_db_connection(self.db_file) as conn:
            return _table_counts(conn.cursor())
