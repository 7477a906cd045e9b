"""
CRM Field Automation Backend
Configuration classes, selected by APP_ENV through ``config[name]``.

Environment variables:
    DATABASE_URL, SECRET_KEY, JWT_SECRET_KEY, JWT_ACCESS_EXPIRES,
    CORS_ORIGINS, REDIS_URL, LOGIN_RATE_LIMIT, WRITE_RATE_LIMIT,
    PACKAGE_REFRESH_SECONDS, ENCRYPTION_KEY (comma-separated for rotation)
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'crm_dev.db')}"
_SQLITE_MEMORY = "sqlite:///:memory:"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _database_url(default=None):
    # Heroku-style postgres:// URLs are not accepted by SQLAlchemy 2.0
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Settings shared by every environment."""

    # Per-process random key when SECRET_KEY is unset; tokens die on restart
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")  # None → SECRET_KEY is used
    JWT_ACCESS_EXPIRES = _env_int("JWT_ACCESS_EXPIRES", 3600)

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "10/minute")
    WRITE_RATE_LIMIT = os.getenv("WRITE_RATE_LIMIT", "60/minute")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    PACKAGE_REFRESH_SECONDS = _env_int("PACKAGE_REFRESH_SECONDS", 300)
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")

    MAX_CONTENT_LENGTH = 2 * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(SQLITE_DEV)
    # SQLite rejects the pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = (
        {} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else Config.SQLALCHEMY_ENGINE_OPTIONS
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_MEMORY)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    JWT_SECRET_KEY = "test-jwt-secret-key-with-enough-length-for-hs256"
    RATELIMIT_ENABLED = False
    # Fixed key so ciphertext in tests is decryptable across app instances
    ENCRYPTION_KEY = "x9VbR0V1cXp8h1Qe6tY6rQ3wJ9m1K2n3p4s5u6v7w8Y="


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, present in (
                ("DATABASE_URL", bool(self.SQLALCHEMY_DATABASE_URI)),
                ("SECRET_KEY", bool(os.getenv("SECRET_KEY"))),
            ) if not present
        ]
        if missing:
            raise RuntimeError(f"Production requires environment variable(s): {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
