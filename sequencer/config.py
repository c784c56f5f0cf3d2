"""
Pro-Move Sequencer
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'sequencer_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default):
    return os.getenv(name, "true" if default else "false").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name, default):
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# Default need-score configuration handed to the ranking function.
# Weights are normalised by RankingConfig, so they need not sum to 1.
DEFAULT_RANKING = {
    "weights": {"C": 0.55, "R": 0.25, "E": 0.15, "D": 0.05, "M": 0.10},
    "cooldown_weeks": 4,
    "min_distinct_domains": 2,
    "recency_horizon_weeks": 16,
    "confidence_prior": 0.70,
    "eb_k": 20,
    "trim_pct": 0.05,
    "eval_cap": 0.25,
    "priority_cap": 5,
    "retest_boost": 0.10,
    "retest_min_weeks": 2,
    "retest_max_weeks": 4,
}


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Rate limiting (Flask-Limiter)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    ROLLOVER_RATE_LIMIT = os.getenv("ROLLOVER_RATE_LIMIT", "10/minute")

    # Rollover feature gate + organization calendar
    ROLLOVER_ENABLED = _env_bool("ROLLOVER_ENABLED", True)
    ROLLOVER_TIMEZONE = os.getenv("ROLLOVER_TIMEZONE", "America/Chicago")

    # A tick only runs once some site of the org has reached this cycle
    SEQUENCER_GATE_MIN_CYCLE = _env_int("SEQUENCER_GATE_MIN_CYCLE", 4)

    # Deadline for the ranking calls of one (org, role) tick, seconds
    TICK_TIMEOUT_SECONDS = _env_int("TICK_TIMEOUT_SECONDS", 30)

    # Per-staff reconciliation pool size (1 = inline)
    RECONCILE_MAX_WORKERS = _env_int("RECONCILE_MAX_WORKERS", 4)

    # Requests slower than this are logged at WARNING
    SLOW_REQUEST_MS = _env_int("SLOW_REQUEST_MS", 1000)

    RANKING = DEFAULT_RANKING


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite gets a StaticPool from Flask-SQLAlchemy; pool sizing
    # options do not apply to it.
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    ROLLOVER_ENABLED = True
    SEQUENCER_GATE_MIN_CYCLE = 1
    TICK_TIMEOUT_SECONDS = 5
    RECONCILE_MAX_WORKERS = 1


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
