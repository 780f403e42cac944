# bookkeeper/db.py
"""
Database connection and initialization helpers.
This file is the single source of truth for opening the SQLite connection.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from .core import config

logger = logging.getLogger(__name__)

# Override with BOOKKEEPER_DB_PATH to run tests against a throwaway copy
DB_PATH: Path = config.DB_PATH

# Seconds a connection waits on a locked database before giving up
DEFAULT_BUSY_TIMEOUT = 5.0


def get_connection(timeout: Optional[float] = None) -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(DB_PATH),
        timeout=DEFAULT_BUSY_TIMEOUT if timeout is None else timeout,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


# --------- system_settings key/value ---------

def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM system_settings WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO system_settings (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)",
        (key, value),
    )


def delete_meta(conn: sqlite3.Connection, key: str) -> None:
    conn.execute("DELETE FROM system_settings WHERE key = ?", (key,))


def initialise_database() -> None:
    """Create database tables if they don't exist."""
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS recurring_payments (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL CHECK (kind IN ('income', 'expense')),
            category TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            amount TEXT NOT NULL,
            frequency TEXT NOT NULL,
            anchor_day_of_month INTEGER,
            start_date TEXT NOT NULL,
            end_date TEXT,
            next_due_date TEXT NOT NULL,
            payments_processed INTEGER NOT NULL DEFAULT 0,
            payment_limit INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT 1,
            customer_id TEXT,
            customer_name TEXT,
            interaction_id TEXT,
            interaction_title TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cur.execute("""
        CREATE INDEX IF NOT EXISTS idx_recurring_payments_due
        ON recurring_payments (is_active, next_due_date)
    """)

    # Ledger rows are append-only; no uniqueness on (recurring_payment_id, date)
    cur.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            category TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            amount TEXT NOT NULL,
            date TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'manual',
            customer_id TEXT,
            customer_name TEXT,
            interaction_id TEXT,
            interaction_title TEXT,
            recurring_payment_id TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # System settings table, also holds the processor lease
    cur.execute("""
        CREATE TABLE IF NOT EXISTS system_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # --- Migrations ---
    # Databases created before linkage titles were tracked lack these columns.
    for table in ("recurring_payments", "transactions"):
        cols = [r[1] for r in cur.execute(f"PRAGMA table_info('{table}')").fetchall()]
        for column in ("customer_name", "interaction_title"):
            if column not in cols:
                logger.info("Adding column %s.%s", table, column)
                cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} TEXT")

    conn.commit()
    conn.close()
