"""Tests for audit.py — audit trail writes and reads."""

import sqlite3

from audit import log_event, recent_events
from database import get_db
from multipliers import get_active_multiplier, set_active_multiplier


class TestLogEvent:
    def test_writes_row(self, app, course_id):
        with app.app_context():
            log_event("perks.save", actor="t1", course_id=course_id, detail="3 perks")
            event = recent_events(course_id)[0]
            assert event["action"] == "perks.save"
            assert event["actor"] == "t1"
            assert event["created_at"].endswith("+00:00")

    def test_filters_by_course(self, app, course_id):
        with app.app_context():
            log_event("a", course_id=course_id)
            log_event("b", course_id="chem-201")
            assert [e["action"] for e in recent_events(course_id)] == ["a"]
            assert len(recent_events()) == 2

    def test_failed_write_leaves_no_open_transaction(self, app, course_id, now):
        app.config["DB_BUSY_TIMEOUT"] = 0.1
        blocker = sqlite3.connect(app.config["DATABASE"], timeout=0)
        try:
            with app.app_context():
                get_db()
                blocker.execute("BEGIN IMMEDIATE")
                log_event("multiplier.set", course_id=course_id)
                assert get_db().in_transaction is False
                blocker.rollback()

                set_active_multiplier(course_id, 2, 30, now=now)
                assert get_active_multiplier(course_id, now=now).value == 2.0
                assert [e["action"] for e in recent_events(course_id)] == ["multiplier.set"]
        finally:
            blocker.close()
