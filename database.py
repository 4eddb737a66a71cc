"""
SQLite database layer for the progress ledger.

Uses raw sqlite3 with WAL mode and parameterized queries.
A schema_version table handles migrations.

The tables are small keyed document stores: each row holds a JSON document
under a composite key, plus whatever columns are needed for locking or
ordering.
"""

from __future__ import annotations

import fcntl
import sqlite3
from datetime import datetime
from pathlib import Path

from flask import current_app, g

DEFAULT_DB_PATH = str(Path(__file__).parent / "progress_ledger.db")


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Student progress documents. course_id '' = not scoped to a course.
CREATE TABLE IF NOT EXISTS progress (
    student_id TEXT NOT NULL,
    course_id TEXT NOT NULL DEFAULT '',
    data TEXT NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL DEFAULT '',
    PRIMARY KEY(student_id, course_id)
);

-- Per-course settings documents ('perks', 'xpConfig')
CREATE TABLE IF NOT EXISTS course_settings (
    course_id TEXT NOT NULL,
    name TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    updated_at TEXT NOT NULL DEFAULT '',
    PRIMARY KEY(course_id, name)
);

-- Perk redemption requests
CREATE TABLE IF NOT EXISTS perk_requests (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    student_name TEXT NOT NULL DEFAULT '',
    perk_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'denied')),
    requested_at TEXT NOT NULL DEFAULT '',
    resolved_at TEXT NOT NULL DEFAULT '',
    resolved_by TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_perk_requests_course_status
    ON perk_requests(course_id, status, requested_at);
"""


MIGRATIONS: list[tuple[int, str]] = [
    # Version 1 = base schema.
    # Migration 2: Audit log
    (2, """
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            actor TEXT NOT NULL DEFAULT '',
            action TEXT NOT NULL,
            course_id TEXT NOT NULL DEFAULT '',
            detail TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL DEFAULT ''
        );
        CREATE INDEX IF NOT EXISTS idx_audit_log_course ON audit_log(course_id, created_at);
    """),
    # Migration 3: Leaderboard scans by course
    (3, """
        CREATE INDEX IF NOT EXISTS idx_progress_course ON progress(course_id);
    """),
]


def get_db() -> sqlite3.Connection:
    """Return a DB connection from Flask g, creating if needed.

    One connection per application context; threads that touch the store
    each push their own context.
    """
    if "db" not in g:
        db_url = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
        timeout = current_app.config.get("DB_BUSY_TIMEOUT", 5.0)
        g.db = sqlite3.connect(db_url, timeout=timeout)
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA journal_mode=WAL")
        g.db.execute("PRAGMA foreign_keys=ON")
    return g.db


def close_db(e=None) -> None:
    """Teardown handler — close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db() -> None:
    """Execute schema DDL to create all tables and record version 1."""
    db = get_db()
    db.executescript(SCHEMA)
    row = db.execute("SELECT 1 FROM schema_version WHERE version = 1").fetchone()
    if row is None:
        db.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (1, ?)",
            (datetime.now().isoformat(),),
        )
        db.commit()


def run_migrations() -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking to prevent race conditions when multiple
    workers start simultaneously.
    """
    db_url = current_app.config.get("DATABASE", DEFAULT_DB_PATH)
    lock_file = None
    if db_url != ":memory:":
        lock_path = Path(db_url).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        db = get_db()
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version not in applied:
                try:
                    db.executescript(sql)
                except sqlite3.OperationalError as e:
                    err_msg = str(e).lower()
                    if "duplicate column" not in err_msg and "already exists" not in err_msg:
                        raise
                db.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now().isoformat()),
                )
                db.commit()
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def current_schema_version() -> int:
    """Highest applied migration version, 0 on an empty database."""
    row = get_db().execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
    return row["v"] or 0


def init_app(app) -> None:
    """Register teardown and bring the schema up to date."""
    app.teardown_appcontext(close_db)
    with app.app_context():
        init_db()
        run_migrations()
