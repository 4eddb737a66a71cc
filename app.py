"""
Progress Ledger — Flask application host

XP, levels, business-day streaks, badges, perks and multiplier events for a
gamified classroom. The app object carries configuration, the per-context
database connection and logging; the ledger itself is plain functions
(ledger.py, perks.py, redemptions.py, multipliers.py) called inside an
application context.
"""

from __future__ import annotations

import os
from typing import Any

import click
from flask import Flask

import database


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    if test_config is not None:
        app.config.from_object(config_by_name["testing"])
        app.config.update(test_config)
    else:
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    app.secret_key = app.config.get("SECRET_KEY", os.environ.get('SECRET_KEY', 'dev-key-change-in-production'))

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown, create and migrate the schema
    database.init_app(app)

    @app.cli.command("init-db")
    def init_db_command() -> None:
        """Create tables and apply pending migrations."""
        database.init_db()
        database.run_migrations()
        click.echo(f"Database ready (schema version {database.current_schema_version()}).")

    @app.cli.command("leaderboard")
    @click.option("--course", "course_id", default=None, help="Course id (omit for global records).")
    @click.option("--limit", default=10, show_default=True)
    def leaderboard_command(course_id: str | None, limit: int) -> None:
        """Print the top students by XP."""
        from ledger import get_leaderboard
        for rank, entry in enumerate(get_leaderboard(course_id, limit=limit), start=1):
            click.echo(f"{rank:>3}. {entry.student_id:<24} {entry.total_xp:>7} XP  "
                       f"L{entry.level} {entry.tier_name}  streak {entry.current_streak}")

    return app
