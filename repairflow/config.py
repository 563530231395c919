"""
Repairflow — Maintenance Issue Workflow
Environment configuration for the application factory.

Usage:
    app.config.from_object(config[os.getenv("APP_ENV", "development")])

Every workflow knob below can be overridden by an environment variable of
the same name.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_LOCAL_SQLITE = "sqlite:///" + os.path.join(basedir, "instance", "repairflow.db")


def _database_url(var: str, fallback: str | None) -> str | None:
    raw = os.getenv(var)
    if not raw:
        return fallback
    # Heroku-style URLs use the postgres:// scheme SQLAlchemy 2 no longer accepts
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://"):]
    return raw


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Flask-Limiter storage; memory:// keeps counters per process
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    ISSUES_RATE_LIMIT = os.getenv("ISSUES_RATE_LIMIT", "60/minute")

    # Comma-separated origins, or "*"
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Requests slower than this are logged at WARNING
    SLOW_REQUEST_MS = _int_env("SLOW_REQUEST_MS", 1000)

    # Versioned writes re-run against the fresh row this many times
    TRANSITION_WRITE_ATTEMPTS = _int_env("TRANSITION_WRITE_ATTEMPTS", 3)
    # Pending accruals handled per `flask reconcile-debt` run
    DEBT_RECONCILE_BATCH_SIZE = _int_env("DEBT_RECONCILE_BATCH_SIZE", 100)
    # Failed applications before an accrual is parked as "failed"
    DEBT_RECONCILE_MAX_ATTEMPTS = _int_env("DEBT_RECONCILE_MAX_ATTEMPTS", 10)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", _LOCAL_SQLITE)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """PostgreSQL-backed deployment; DATABASE_URL and SECRET_KEY are mandatory."""

    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", None)
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": _int_env("DB_POOL_SIZE", 5),
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    @classmethod
    def validate(cls) -> None:
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
