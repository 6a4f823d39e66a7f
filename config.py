"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret key,
token lifetimes and notification settings. It uses environment variables for sensitive information and defaults for
development. In production, make sure to set the appropriate environment variables and secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'premium_freight.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for session (in-app) mutations
    WTF_CSRF_ENABLED = True

    # App UI name (used in templates and e-mails)
    APP_NAME = "Premium Freight"

    # Base URL used to build the approve/reject links placed in e-mails
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")

    # Token lifetimes in hours (0 disables expiry)
    ACTION_TOKEN_TTL_HOURS = _env_int("ACTION_TOKEN_TTL_HOURS", 72)
    BULK_TOKEN_TTL_HOURS = _env_int("BULK_TOKEN_TTL_HOURS", 168)

    # Highest approval level an order may require (cost bands top out at 8)
    MAX_APPROVAL_LEVEL = _env_int("MAX_APPROVAL_LEVEL", 8)

    # Reason stored when an order is rejected through an e-mail link
    EMAIL_REJECTION_REASON = os.environ.get("EMAIL_REJECTION_REASON", "Rejected via email")

    MAIL_SENDER = os.environ.get("MAIL_SENDER", "premium-freight@localhost")

    # SMTP delivery; without MAIL_SERVER mails are only logged
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_TIMEOUT = _env_int("MAIL_TIMEOUT", 30)

    # Number of reverse proxies in front of the app whose X-Forwarded-* headers
    # are trusted (0 = use the socket address)
    TRUSTED_PROXY_COUNT = _env_int("TRUSTED_PROXY_COUNT", 0)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_JSON = _env_bool("LOG_JSON", False)


class TestConfig(Config):
    """Configuration used by the test-suite (in-memory DB, no CSRF)."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    PUBLIC_BASE_URL = "http://testserver"
    LOG_JSON = False
    MAIL_SERVER = None
    TRUSTED_PROXY_COUNT = 0
