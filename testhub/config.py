"""
TestHub UAT Review Engine
Environment configuration.

``create_app`` picks one of the classes below by name (argument or the
APP_ENV variable) and loads an instance of it.  Everything deployment
specific comes from the environment; the defaults run a local SQLite
instance with no setup.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_LOCAL_SQLITE = "sqlite:///" + os.path.join(basedir, "instance", "testhub_uat.db")


def _database_url(default=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or default


class Config:
    """Settings shared by every environment."""

    # Per-process random key outside production; sessions are not used for auth
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Checklist imports are the largest bodies we accept
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024

    # Portals run on their own branded origin
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "true").lower() != "false"
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    PORTAL_RATE_LIMIT = os.getenv("PORTAL_RATE_LIMIT", "120/minute")
    INTERNAL_RATE_LIMIT = os.getenv("INTERNAL_RATE_LIMIT", "300/minute")

    # Reviewer links are {UAT_BASE_URL}/r/<token>, PM links {UAT_BASE_URL}/p/<token>
    UAT_BASE_URL = os.getenv("UAT_BASE_URL", "https://testhub.us").rstrip("/")
    # 9 random bytes -> 12 URL-safe characters
    UAT_TOKEN_BYTES = int(os.getenv("UAT_TOKEN_BYTES", "9"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_LOCAL_SQLITE)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    RATELIMIT_ENABLED = False
    UAT_BASE_URL = "https://uat.example.test"


class ProductionConfig(Config):
    """PostgreSQL only; refuses to start half-configured."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Production config requires: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
