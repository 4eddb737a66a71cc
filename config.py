"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE_PATH", str(BASE_DIR / "progress_ledger.db"))

    # Seconds a writer waits on a locked database before sqlite gives up
    DB_BUSY_TIMEOUT = float(os.environ.get("DB_BUSY_TIMEOUT", "5"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Progress writes: total attempts (first try included) on version conflict
    PROGRESS_WRITE_ATTEMPTS = int(os.environ.get("PROGRESS_WRITE_ATTEMPTS", "8"))

    # Also scale awards by the course's streak tier (off: event multiplier only)
    APPLY_STREAK_MULTIPLIER_ON_AWARD = _env_bool("APPLY_STREAK_MULTIPLIER_ON_AWARD")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.PROGRESS_WRITE_ATTEMPTS < 1:
            errors.append("PROGRESS_WRITE_ATTEMPTS must be at least 1.")

        if cls.DATABASE == ":memory:":
            warnings.warn("DATABASE is in-memory; progress will not survive a restart.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    LOG_LEVEL = "WARNING"
    PROGRESS_WRITE_ATTEMPTS = 20


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
