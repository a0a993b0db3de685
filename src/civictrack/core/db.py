"""SQLite database manager for the reference record store.

Owns the connection lifecycle and schema creation.  The store, audit
writer and notification sink all receive the connection from here;
none of them opens its own.

* WAL mode, foreign keys enforced.
* ``CREATE ... IF NOT EXISTS`` — idempotent, safe on every start.
* ``report_status_history`` rejects ``UPDATE`` at the engine level.  Rows
  only disappear through ``ON DELETE CASCADE`` together with their report.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import structlog

logger = structlog.get_logger()

SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS actors (
    id           TEXT PRIMARY KEY,
    full_name    TEXT NOT NULL DEFAULT '',
    role         TEXT NOT NULL CHECK (role IN ('admin', 'worker', 'citizen')),
    is_active    INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS reports (
    id                  TEXT PRIMARY KEY,
    title               TEXT NOT NULL,
    citizen_id          TEXT NOT NULL,
    assigned_worker_id  TEXT,
    status              TEXT NOT NULL DEFAULT 'pending'
                        CHECK (status IN ('pending', 'acknowledged', 'in_progress', 'resolved', 'closed')),
    priority            TEXT NOT NULL DEFAULT 'medium'
                        CHECK (priority IN ('low', 'medium', 'high')),
    notes               TEXT NOT NULL DEFAULT '',
    created_utc         TEXT NOT NULL,
    updated_utc         TEXT NOT NULL,
    resolved_utc        TEXT
);

CREATE TABLE IF NOT EXISTS report_status_history (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    report_id    TEXT NOT NULL REFERENCES reports(id) ON DELETE CASCADE,
    old_status   TEXT,
    new_status   TEXT NOT NULL,
    changed_by   TEXT NOT NULL,
    notes        TEXT NOT NULL DEFAULT '',
    created_utc  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_report ON report_status_history(report_id, seq);

CREATE TABLE IF NOT EXISTS bulk_operation_history (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    operation_type  TEXT NOT NULL
                    CHECK (operation_type IN ('status_update', 'priority_update', 'worker_assignment', 'delete')),
    performed_by    TEXT NOT NULL,
    report_ids      TEXT NOT NULL,
    details         TEXT NOT NULL,
    success_count   INTEGER NOT NULL DEFAULT 0,
    failure_count   INTEGER NOT NULL DEFAULT 0,
    errors          TEXT NOT NULL DEFAULT '[]',
    created_utc     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    recipient_id  TEXT NOT NULL,
    kind          TEXT NOT NULL,
    title         TEXT NOT NULL,
    message       TEXT NOT NULL,
    report_id     TEXT,
    is_read       INTEGER NOT NULL DEFAULT 0,
    created_utc   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TRIGGER IF NOT EXISTS status_history_no_update
    BEFORE UPDATE ON report_status_history
    BEGIN
        SELECT RAISE(ABORT, 'report_status_history is append-only: UPDATE blocked');
    END;
"""


def open_db(db_path: Path | str) -> sqlite3.Connection:
    """Open (or create) the database and make sure the schema exists.

    ``":memory:"`` is accepted for throwaway stores.
    """
    target = str(db_path)
    if target != ":memory:":
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(target, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if target != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.executescript(_SCHEMA_SQL)
    conn.execute(
        "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )

    logger.debug("database_opened", path=target, schema_version=SCHEMA_VERSION)
    return conn
