"""
DB-backed store classes for the progress ledger.

Each class wraps one keyed document table. Reads return dataclasses from
progress.py (or plain dicts for settings documents); writes commit before
returning. sqlite3 failures surface as TransientIOError with the cause
chained; nothing partial is left committed.
"""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar

from flask import current_app, g
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    wait_random_exponential,
)

from database import get_db
from errors import ConflictError, NotFoundError, TransientIOError, WriteConflict
from progress import PerkRequest, StudentProgressRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WRITE_ATTEMPTS = 8


@contextmanager
def storage_errors(operation: str, **context: Any) -> Iterator[None]:
    """Translate sqlite3 failures into TransientIOError and roll back the open transaction."""
    try:
        yield
    except sqlite3.Error as e:
        db = g.get("db")
        if db is not None and db.in_transaction:
            db.rollback()
        logger.exception("Storage failure during %s", operation, extra=context)
        raise TransientIOError(f"{operation} failed: {e}") from e


@contextmanager
def immediate_transaction() -> Iterator[sqlite3.Connection]:
    """BEGIN IMMEDIATE on the context connection; commit on success, roll back on any error."""
    db = get_db()
    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
    db.commit()


def _course_key(course_id: Optional[str]) -> str:
    return course_id or ""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Student progress ─────────────────────────────────────────────────


def _stop_after_configured_attempts(retry_state) -> bool:
    attempts = current_app.config.get("PROGRESS_WRITE_ATTEMPTS", DEFAULT_WRITE_ATTEMPTS)
    return retry_state.attempt_number >= attempts


class ProgressStoreDB:
    """DB-backed StudentProgressRecord, written by optimistic compare-and-swap.

    Every row carries a ``version``. A write only lands if the version it read
    is still current; otherwise the whole read-mutate-write is replayed.
    """

    def __init__(self, student_id: str, course_id: Optional[str] = None):
        self.student_id = student_id
        self.course_id = course_id

    def _row(self):
        db = get_db()
        return db.execute(
            "SELECT data, version FROM progress WHERE student_id=? AND course_id=?",
            (self.student_id, _course_key(self.course_id)),
        ).fetchone()

    def _to_record(self, row) -> StudentProgressRecord:
        if row is None:
            return StudentProgressRecord(student_id=self.student_id, course_id=self.course_id)
        return StudentProgressRecord.from_document(
            self.student_id, self.course_id, json.loads(row["data"]), version=row["version"],
        )

    def get(self) -> StudentProgressRecord:
        """Current record, or a zeroed default (version 0) if none was ever written."""
        with storage_errors("progress read", student_id=self.student_id, course_id=self.course_id):
            return self._to_record(self._row())

    def exists(self) -> bool:
        with storage_errors("progress read", student_id=self.student_id, course_id=self.course_id):
            return self._row() is not None

    def _write(self, record: StudentProgressRecord) -> None:
        """Write ``record`` if its version is still current. Raises WriteConflict otherwise."""
        db = get_db()
        data = json.dumps(record.to_document())
        now = _now_iso()
        if record.version == 0:
            try:
                db.execute(
                    "INSERT INTO progress (student_id, course_id, data, version, updated_at) "
                    "VALUES (?, ?, ?, 1, ?)",
                    (self.student_id, _course_key(self.course_id), data, now),
                )
            except sqlite3.IntegrityError:
                db.rollback()
                raise WriteConflict("progress record created concurrently")
        else:
            cur = db.execute(
                "UPDATE progress SET data=?, version=version+1, updated_at=? "
                "WHERE student_id=? AND course_id=? AND version=?",
                (data, now, self.student_id, _course_key(self.course_id), record.version),
            )
            if cur.rowcount == 0:
                db.rollback()
                raise WriteConflict(f"progress version {record.version} is stale")
        db.commit()
        record.version += 1

    @retry(
        retry=retry_if_exception_type(WriteConflict),
        wait=wait_random_exponential(multiplier=0.005, max=0.1),
        stop=_stop_after_configured_attempts,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def update(self, mutate: Callable[[StudentProgressRecord], T]) -> tuple[StudentProgressRecord, T]:
        """Read the record, apply ``mutate`` to it, and write it back atomically.

        ``mutate`` may run more than once and must only touch the record it is
        given. Its return value is handed back alongside the stored record.
        Exceptions raised by ``mutate`` abort the update without writing.
        """
        with storage_errors("progress update", student_id=self.student_id, course_id=self.course_id):
            record = self._to_record(self._row())
            outcome = mutate(record)
            self._write(record)
        return record, outcome

    @staticmethod
    def list_for_course(course_id: Optional[str] = None) -> list[StudentProgressRecord]:
        """Every stored record for ``course_id`` (None = records not scoped to a course)."""
        with storage_errors("progress scan", course_id=course_id):
            rows = get_db().execute(
                "SELECT student_id, data, version FROM progress WHERE course_id=?",
                (_course_key(course_id),),
            ).fetchall()
        return [
            StudentProgressRecord.from_document(
                r["student_id"], course_id, json.loads(r["data"]), version=r["version"],
            )
            for r in rows
        ]

    def _increment_perk_usage(self, perk_id: str) -> int:
        """Bump ``perk_usage[perk_id]`` inside the caller's open transaction. Returns the new count."""
        record = self._to_record(self._row())
        record.perk_usage[perk_id] = int(record.perk_usage.get(perk_id, 0)) + 1
        record.last_updated = _now_iso()
        db = get_db()
        data = json.dumps(record.to_document())
        if record.version == 0:
            db.execute(
                "INSERT INTO progress (student_id, course_id, data, version, updated_at) "
                "VALUES (?, ?, ?, 1, ?)",
                (self.student_id, _course_key(self.course_id), data, record.last_updated),
            )
        else:
            db.execute(
                "UPDATE progress SET data=?, version=version+1, updated_at=? "
                "WHERE student_id=? AND course_id=?",
                (data, record.last_updated, self.student_id, _course_key(self.course_id)),
            )
        return record.perk_usage[perk_id]


# ── Course settings documents ────────────────────────────────────────


class CourseSettingsDB:
    """Per-course JSON documents keyed by name ('perks', 'xpConfig'). Last writer wins."""

    def __init__(self, course_id: str):
        self.course_id = course_id

    def get(self, name: str) -> Optional[dict]:
        with storage_errors("settings read", course_id=self.course_id):
            row = get_db().execute(
                "SELECT data FROM course_settings WHERE course_id=? AND name=?",
                (self.course_id, name),
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def put(self, name: str, doc: dict) -> None:
        """Replace the whole document."""
        with storage_errors("settings write", course_id=self.course_id):
            db = get_db()
            db.execute(
                "INSERT INTO course_settings (course_id, name, data, updated_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(course_id, name) DO UPDATE SET data=excluded.data, updated_at=excluded.updated_at",
                (self.course_id, name, json.dumps(doc), _now_iso()),
            )
            db.commit()

    def merge(self, name: str, updates: dict) -> dict:
        """Shallow-merge ``updates`` into the stored document and return the result."""
        with storage_errors("settings merge", course_id=self.course_id):
            with immediate_transaction() as db:
                row = db.execute(
                    "SELECT data FROM course_settings WHERE course_id=? AND name=?",
                    (self.course_id, name),
                ).fetchone()
                doc = json.loads(row["data"]) if row else {}
                doc.update(updates)
                db.execute(
                    "INSERT INTO course_settings (course_id, name, data, updated_at) VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(course_id, name) DO UPDATE SET data=excluded.data, "
                    "updated_at=excluded.updated_at",
                    (self.course_id, name, json.dumps(doc), _now_iso()),
                )
        return doc


# ── Perk redemption requests ─────────────────────────────────────────


class PerkRequestStoreDB:
    """DB-backed perk redemption requests for one course."""

    def __init__(self, course_id: str):
        self.course_id = course_id

    def _row_to_request(self, r) -> PerkRequest:
        return PerkRequest(
            id=r["id"],
            course_id=r["course_id"],
            student_id=r["student_id"],
            student_name=r["student_name"],
            perk_id=r["perk_id"],
            status=r["status"],
            requested_at=r["requested_at"],
            resolved_at=r["resolved_at"] or None,
            resolved_by=r["resolved_by"] or None,
        )

    def create(self, student_id: str, perk_id: str, student_name: str, requested_at: str) -> PerkRequest:
        request = PerkRequest(
            id=f"pr_{secrets.token_hex(8)}",
            course_id=self.course_id,
            student_id=student_id,
            student_name=student_name,
            perk_id=perk_id,
            requested_at=requested_at,
        )
        with storage_errors("perk request create", student_id=student_id, course_id=self.course_id):
            db = get_db()
            db.execute(
                "INSERT INTO perk_requests (id, course_id, student_id, student_name, perk_id, status, requested_at) "
                "VALUES (?, ?, ?, ?, ?, 'pending', ?)",
                (request.id, self.course_id, student_id, student_name, perk_id, requested_at),
            )
            db.commit()
        return request

    def get(self, request_id: str) -> Optional[PerkRequest]:
        with storage_errors("perk request read", course_id=self.course_id):
            r = get_db().execute(
                "SELECT * FROM perk_requests WHERE id=? AND course_id=?",
                (request_id, self.course_id),
            ).fetchone()
        return self._row_to_request(r) if r else None

    def list(self, status: Optional[str] = None) -> list[PerkRequest]:
        """Requests for the course, oldest first, optionally filtered by status."""
        sql = "SELECT * FROM perk_requests WHERE course_id=?"
        params: list = [self.course_id]
        if status is not None:
            sql += " AND status=?"
            params.append(status)
        sql += " ORDER BY requested_at, id"
        with storage_errors("perk request list", course_id=self.course_id):
            rows = get_db().execute(sql, params).fetchall()
        return [self._row_to_request(r) for r in rows]

    def resolve(self, request_id: str, status: str, resolved_by: Optional[str],
                resolved_at: str) -> tuple[PerkRequest, Optional[int]]:
        """Move a pending request to ``status`` in one transaction.

        An approval also increments the student's course-scoped usage counter
        for the perk inside the same transaction. Returns the resolved request
        and the new usage count (None for denials).
        """
        with storage_errors("perk request resolve", course_id=self.course_id):
            with immediate_transaction() as db:
                r = db.execute(
                    "SELECT * FROM perk_requests WHERE id=? AND course_id=?",
                    (request_id, self.course_id),
                ).fetchone()
                if r is None:
                    raise NotFoundError(f"perk request {request_id!r} not found")
                if r["status"] != "pending":
                    raise ConflictError(f"perk request {request_id!r} is already {r['status']}")

                db.execute(
                    "UPDATE perk_requests SET status=?, resolved_at=?, resolved_by=? "
                    "WHERE id=? AND course_id=? AND status='pending'",
                    (status, resolved_at, resolved_by or "", request_id, self.course_id),
                )
                usage = None
                if status == "approved":
                    usage = ProgressStoreDB(r["student_id"], self.course_id)._increment_perk_usage(r["perk_id"])

        request = self._row_to_request(r)
        request.status = status
        request.resolved_at = resolved_at
        request.resolved_by = resolved_by
        return request, usage
