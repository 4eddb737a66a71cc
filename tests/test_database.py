"""Tests for database.py — schema creation, pragmas, migrations."""

import sqlite3

import pytest

from database import MIGRATIONS, current_schema_version, get_db, init_db, run_migrations


class TestSchema:
    """Verify all tables are created correctly."""

    def test_tables_exist(self, app):
        with app.app_context():
            db = get_db()
            tables = [r["name"] for r in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()]
            for t in ["audit_log", "course_settings", "perk_requests", "progress", "schema_version"]:
                assert t in tables, f"Table {t} not found"

    def test_wal_mode(self, app):
        with app.app_context():
            db = get_db()
            mode = db.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode == "wal"

    def test_foreign_keys_enabled(self, app):
        with app.app_context():
            db = get_db()
            fk = db.execute("PRAGMA foreign_keys").fetchone()[0]
            assert fk == 1

    def test_progress_key_is_student_and_course(self, db):
        db.execute("INSERT INTO progress (student_id, course_id, data) VALUES ('s1', '', '{}')")
        db.execute("INSERT INTO progress (student_id, course_id, data) VALUES ('s1', 'bio-101', '{}')")
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO progress (student_id, course_id, data) VALUES ('s1', 'bio-101', '{}')")
        db.rollback()

    def test_request_status_checked(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO perk_requests (id, course_id, student_id, perk_id, status) "
                "VALUES ('pr_1', 'c', 's', 'p', 'lost')"
            )
        db.rollback()


class TestMigrations:
    def test_all_migrations_applied(self, app):
        with app.app_context():
            assert current_schema_version() == max(v for v, _ in MIGRATIONS)

    def test_rerun_is_idempotent(self, app):
        with app.app_context():
            init_db()
            run_migrations()
            db = get_db()
            versions = [r["version"] for r in db.execute("SELECT version FROM schema_version").fetchall()]
            assert len(versions) == len(set(versions))
            assert 1 in versions

    def test_fresh_database(self, tmp_path):
        from app import create_app

        app = create_app({"DATABASE": str(tmp_path / "fresh.db")})
        with app.app_context():
            assert current_schema_version() == max(v for v, _ in MIGRATIONS)
            index = get_db().execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name='idx_progress_course'"
            ).fetchone()
            assert index is not None


class TestCLI:
    def test_init_db_command(self, app):
        result = app.test_cli_runner().invoke(args=["init-db"])
        assert result.exit_code == 0
        assert "schema version" in result.output

    def test_leaderboard_command(self, app, seeded_course):
        result = app.test_cli_runner().invoke(args=["leaderboard", "--course", seeded_course, "--limit", "2"])
        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert len(lines) == 2
        assert "ms-teacher" in lines[0]
        assert "carol" in lines[1]
