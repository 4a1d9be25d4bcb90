"""Database connection and schema management."""

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "parking" / "parking.db"

SCHEMA = """
-- Base tariffs per vehicle category
CREATE TABLE IF NOT EXISTS rates (
    id TEXT PRIMARY KEY,
    name TEXT,
    vehicle_category TEXT NOT NULL,
    rate_type TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    unit TEXT NOT NULL,
    courtesy_minutes INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    config TEXT
);

-- Time-of-day, day-of-week and duration windows
CREATE TABLE IF NOT EXISTS rate_time_windows (
    id TEXT PRIMARY KEY,
    rate_id TEXT NOT NULL,
    window_type TEXT NOT NULL,
    start_time TEXT,
    end_time TEXT,
    start_day INTEGER,
    end_day INTEGER,
    duration_limit_minutes INTEGER,
    extra_rate_id TEXT,
    is_active INTEGER DEFAULT 1,
    metadata TEXT,
    FOREIGN KEY (rate_id) REFERENCES rates(id)
);

-- Pricing rules; seq records creation order for priority ties
CREATE TABLE IF NOT EXISTS pricing_rules (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    rate_id TEXT NOT NULL,
    rule_type TEXT NOT NULL,
    conditions TEXT,
    value_adjustment TEXT,
    priority INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    description TEXT,
    FOREIGN KEY (rate_id) REFERENCES rates(id)
);

-- Rate switch thresholds
CREATE TABLE IF NOT EXISTS rate_thresholds (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    source_rate_id TEXT NOT NULL,
    target_rate_id TEXT NOT NULL,
    threshold_amount TEXT NOT NULL,
    auto_apply INTEGER DEFAULT 0,
    FOREIGN KEY (source_rate_id) REFERENCES rates(id)
);

-- Recorded check-outs with the fee charged
CREATE TABLE IF NOT EXISTS checkouts (
    id INTEGER PRIMARY KEY,
    plate TEXT NOT NULL,
    vehicle_category TEXT,
    rate_id TEXT NOT NULL,
    entry_time TEXT NOT NULL,
    exit_time TEXT NOT NULL,
    elapsed_minutes INTEGER NOT NULL,
    amount TEXT NOT NULL,
    substituted_rate_id TEXT,
    breakdown TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_windows_rate ON rate_time_windows(rate_id);
CREATE INDEX IF NOT EXISTS idx_rules_rate ON pricing_rules(rate_id, priority);
CREATE INDEX IF NOT EXISTS idx_thresholds_source ON rate_thresholds(source_rate_id);
CREATE INDEX IF NOT EXISTS idx_checkouts_exit ON checkouts(exit_time);
"""


def get_db_path() -> Path:
    """Get the database path, creating parent directories if needed.

    PARKING_DB_PATH overrides the default location.
    """
    db_path = Path(os.environ.get("PARKING_DB_PATH") or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Get a database connection with row factory enabled."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()


def get_stats(db_path: Path | None = None) -> dict:
    """Get database statistics."""
    with get_connection(db_path) as conn:
        stats = {}

        # Rates, by type
        row = conn.execute("SELECT COUNT(*) as count FROM rates").fetchone()
        stats["rates"] = {"count": row["count"]}
        rows = conn.execute(
            "SELECT rate_type, COUNT(*) as count FROM rates GROUP BY rate_type"
        ).fetchall()
        stats["rates_by_type"] = {row["rate_type"]: row["count"] for row in rows}

        for table in ("rate_time_windows", "pricing_rules", "rate_thresholds"):
            row = conn.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
            stats[table] = {"count": row["count"]}

        # Check-outs
        row = conn.execute(
            "SELECT COUNT(*) as count, MIN(exit_time) as earliest, MAX(exit_time) as latest FROM checkouts"
        ).fetchone()
        stats["checkouts"] = {
            "count": row["count"],
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        return stats
