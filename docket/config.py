"""
Docket: Case Timeline Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'docket_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Packaged template catalog (practice-area phase sequences)
_DEFAULT_TEMPLATES = os.path.join(os.path.dirname(__file__), "data", "timeline_templates.yaml")

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _normalize_db_url(raw: str) -> str:
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    return raw.replace("postgres://", "postgresql://", 1) if raw else raw


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

    # Redis (rate-limit storage; memory:// when unset)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    RATELIMIT_STORAGE_URI = REDIS_URL

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging (unset: JSON/INFO in production, readable/DEBUG otherwise)
    LOG_LEVEL = os.getenv("LOG_LEVEL") or None
    LOG_FORMAT = os.getenv("LOG_FORMAT") or None

    # Timeline engine
    TIMELINE_TEMPLATES_PATH = os.getenv("TIMELINE_TEMPLATES_PATH", _DEFAULT_TEMPLATES)
    # Case type used when neither an exact nor an alias match exists (None = strict)
    TIMELINE_FALLBACK_CASE_TYPE = os.getenv("TIMELINE_FALLBACK_CASE_TYPE") or None
    TIMELINE_CONFLICT_RETRIES = int(os.getenv("TIMELINE_CONFLICT_RETRIES", "3"))
    TIMELINE_LOCK_TIMEOUT_SECONDS = float(os.getenv("TIMELINE_LOCK_TIMEOUT_SECONDS", "10"))
    TIMELINE_WRITE_RATE_LIMIT = os.getenv("TIMELINE_WRITE_RATE_LIMIT", "120/minute")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(os.getenv("DATABASE_URL", "")) or _SQLITE_DEV
    # SQLite files don't take pool sizing arguments
    SQLALCHEMY_ENGINE_OPTIONS = (
        Config.SQLALCHEMY_ENGINE_OPTIONS if os.getenv("DATABASE_URL") else {"pool_pre_ping": True}
    )
    TIMELINE_FALLBACK_CASE_TYPE = os.getenv("TIMELINE_FALLBACK_CASE_TYPE", "General")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = "memory://"
    TIMELINE_FALLBACK_CASE_TYPE = None
    TIMELINE_LOCK_TIMEOUT_SECONDS = 5.0


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(os.getenv("DATABASE_URL", "")) or None
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
