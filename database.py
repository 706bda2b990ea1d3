import sqlite3
from contextlib import contextmanager

from config import DB_FILE


def _lower(value):
    return value.lower() if value is not None else None


@contextmanager
def get_db_connection(db_file: str = DB_FILE):
    """Context manager for database connections."""
    conn = sqlite3.connect(db_file)
    conn.row_factory = sqlite3.Row  # Enable dict-like access to rows
    conn.execute("PRAGMA foreign_keys = ON")
    # SQLite's LOWER() only folds ASCII, pharmacy names are mostly French
    conn.create_function("py_lower", 1, _lower, deterministic=True)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_file: str = DB_FILE):
    """Initialize the database with all necessary tables."""
    conn = sqlite3.connect(db_file)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS pharmacies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            location TEXT NOT NULL,
            phone TEXT NOT NULL,
            whatsapp TEXT NOT NULL,
            latitude TEXT,
            longitude TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (name, location)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS weekly_schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (start_date, end_date)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS pharmacy_schedules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            pharmacy_id INTEGER NOT NULL,
            schedule_id INTEGER NOT NULL,
            FOREIGN KEY (pharmacy_id) REFERENCES pharmacies (id),
            FOREIGN KEY (schedule_id) REFERENCES weekly_schedules (id),
            UNIQUE (pharmacy_id, schedule_id)
        )
    """)

    # Create indexes for better performance
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_pharmacies_name ON pharmacies(name)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_range ON weekly_schedules(start_date, end_date)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_pharmacy_schedules_schedule_id ON pharmacy_schedules(schedule_id)")

    conn.commit()
    conn.close()
