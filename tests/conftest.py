"""
Test fixtures for the progress ledger.

Provides app and db fixtures with file-based SQLite, plus a fixed clock.
"""

from __future__ import annotations

import pytest
from datetime import datetime, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Wednesday 18 March 2026, mid-afternoon UTC
WEDNESDAY = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "DB_BUSY_TIMEOUT": 10.0,
        "APPLY_STREAK_MULTIPLIER_ON_AWARD": False,
    })

    with app.app_context():
        from database import init_db, run_migrations

        init_db()
        run_migrations()

        yield app


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def now():
    return WEDNESDAY


@pytest.fixture
def course_id():
    return "bio-101"


@pytest.fixture
def seeded_course(app, course_id):
    """Three students with different XP in one course, plus a teacher record."""
    from db_stores import ProgressStoreDB

    def set_xp(xp):
        def mutate(record):
            record.total_xp = xp
        return mutate

    with app.app_context():
        ProgressStoreDB("alice", course_id).update(set_xp(1600))
        ProgressStoreDB("bob", course_id).update(set_xp(300))
        ProgressStoreDB("carol", course_id).update(set_xp(5000))
        ProgressStoreDB("ms-teacher", course_id).update(set_xp(9999))
        ProgressStoreDB("dave", None).update(set_xp(42))
    return course_id
