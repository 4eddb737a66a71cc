"""
Audit logging — records teacher-side actions on a course.

Events are written to both the audit_log table and structured logging.
Perk approvals, catalog edits and multiplier events all land here.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from database import get_db

logger = logging.getLogger(__name__)


def log_event(action: str, actor: Optional[str] = None, course_id: Optional[str] = None,
              detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line.

    Best-effort: a failed insert is logged and never aborts the caller.
    """
    now = datetime.now(timezone.utc).isoformat()

    db = None
    try:
        db = get_db()
        db.execute(
            "INSERT INTO audit_log (actor, action, course_id, detail, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (actor or "", action, course_id or "", detail, now),
        )
        db.commit()
    except sqlite3.Error:
        if db is not None and db.in_transaction:
            db.rollback()
        logger.exception("audit write failed for %s", action, extra={"course_id": course_id})

    logger.info("audit: %s actor=%s detail=%s", action, actor, detail, extra={"course_id": course_id})


def recent_events(course_id: Optional[str] = None, limit: int = 50) -> list[dict]:
    """Newest audit entries, optionally for one course."""
    db = get_db()
    if course_id is None:
        rows = db.execute(
            "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
    else:
        rows = db.execute(
            "SELECT * FROM audit_log WHERE course_id=? ORDER BY id DESC LIMIT ?",
            (course_id, limit),
        ).fetchall()
    return [dict(r) for r in rows]
