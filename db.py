"""
LinkupTracker — SQLite database setup.

Creates and manages the local database at ~/LinkupTracker/data/LinkupTracker.db.
Run this file directly to initialize all tables.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

# Database lives in ~/LinkupTracker/data/
DB_DIR = Path.home() / "LinkupTracker" / "data"
DB_PATH = DB_DIR / "LinkupTracker.db"


def get_db(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Return a connection to the LinkupTracker database."""
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db(db_path: Optional[Path] = None) -> None:
    """Create all tables if they do not already exist."""
    conn = get_db(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS glucose_readings (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp     TEXT    NOT NULL,  -- ISO8601 as reported upstream
            glucose_mg_dl REAL    NOT NULL,  -- always canonical mg/dL
            trend         TEXT,              -- e.g. Flat, FortyFiveUp
            source        TEXT    DEFAULT 'librelinkup',
            created_at    TEXT    DEFAULT (datetime('now'))
        )
    """)

    cursor.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_glucose_timestamp ON glucose_readings(timestamp)"
    )

    conn.commit()
    conn.close()


def store_reading(
    conn: sqlite3.Connection,
    timestamp: str,
    mg_dl: float,
    trend: Optional[str],
    source: str = "librelinkup",
) -> bool:
    """Insert a reading unless one is already stored for `timestamp`.

    Returns True if a row was written.
    """
    cursor = conn.execute(
        """
        INSERT OR IGNORE INTO glucose_readings (timestamp, glucose_mg_dl, trend, source)
        VALUES (?, ?, ?, ?)
        """,
        (timestamp, mg_dl, trend, source),
    )
    return cursor.rowcount == 1


if __name__ == "__main__":
    init_db()
    print("Database initialized.")
