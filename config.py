"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "citizenship.db"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    # Daily question quota (answered items per calendar day)
    DAILY_QUESTION_LIMIT_FREE = int(os.environ.get("DAILY_QUESTION_LIMIT_FREE", "5"))
    DAILY_QUESTION_LIMIT_PREMIUM = int(os.environ.get("DAILY_QUESTION_LIMIT_PREMIUM", "20"))
    STREAK_PROTECTION_DAYS = int(os.environ.get("STREAK_PROTECTION_DAYS", "3"))
    PROGRESS_HISTORY_WINDOW = int(os.environ.get("PROGRESS_HISTORY_WINDOW", "20"))

    LEADERBOARD_LIMIT = int(os.environ.get("LEADERBOARD_LIMIT", "10"))

    # Text-to-speech providers
    ELEVENLABS_API_KEY = os.environ.get("ELEVENLABS_API_KEY", "")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    TTS_TIMEOUT_SECONDS = float(os.environ.get("TTS_TIMEOUT_SECONDS", "30"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Email (newsletter delivery)
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")  # "log" or "smtp"
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "newsletter@example.com")
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5001")

    # Rate limiting (in-memory unless REDIS_URL is set)
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")
        if cls.EMAIL_BACKEND not in ("log", "smtp"):
            errors.append(f"EMAIL_BACKEND must be 'log' or 'smtp', got {cls.EMAIL_BACKEND!r}.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    EMAIL_BACKEND = "log"


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
