from __future__ import annotations

import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


class Config:
    """Runtime configuration read from the environment (after `load_dotenv`)."""

    def __init__(self):
        self.ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.ENV in {"prod", "production"}
        self.APP_VERSION = _env_str("APP_VERSION", "1.0.0")
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///talenthr.db")
        self.ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ["http://localhost:5173"])

        # 7 days
        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 10080))
        self.AUTH_COOKIE_NAME = _env_str("AUTH_COOKIE_NAME", "talenthr_session")
        self.GOOGLE_CLIENT_ID = _env_str("GOOGLE_CLIENT_ID", "")
        self.AUTH_ALLOW_TEST_TOKENS = _env_bool("AUTH_ALLOW_TEST_TOKENS", False)

        self.RATE_LIMIT_GLOBAL = max(1, _env_int("RATE_LIMIT_GLOBAL", 600))
        self.RATE_LIMIT_DEFAULT = max(1, _env_int("RATE_LIMIT_DEFAULT", 240))
        self.RATE_LIMIT_LOGIN = max(1, _env_int("RATE_LIMIT_LOGIN", 20))
        self.RATE_LIMIT_PUBLIC_APPLY = max(1, _env_int("RATE_LIMIT_PUBLIC_APPLY", 5))

        self.APP_TIMEZONE = _env_str("APP_TIMEZONE", "UTC")
        self.WORKDAY_START_HOUR = max(0, min(23, _env_int("WORKDAY_START_HOUR", 9)))
        self.LATE_GRACE_MINUTES = max(0, _env_int("LATE_GRACE_MINUTES", 15))
        self.WORKING_DAYS_PER_MONTH = max(1, _env_int("WORKING_DAYS_PER_MONTH", 22))
        self.OVERTIME_MULTIPLIER = max(1.0, _env_float("OVERTIME_MULTIPLIER", 1.5))

        self.SEED_TENANT_NAME = _env_str("SEED_TENANT_NAME", "")
        self.SEED_ADMIN_EMAIL = _env_str("SEED_ADMIN_EMAIL", "").lower()
        self.SEED_ADMIN_PASSWORD = _env_str("SEED_ADMIN_PASSWORD", "")

        self.REDIS_URL = _env_str("REDIS_URL", "")
        self.CELERY_RESULT_BACKEND = _env_str("CELERY_RESULT_BACKEND", "")
        self.CELERY_CONCURRENCY = max(1, _env_int("CELERY_CONCURRENCY", 4))
        self.CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
        self.NOTIFY_WEBHOOK_URL = _env_str("NOTIFY_WEBHOOK_URL", "")
        self.MAX_EXPORT_ROWS = max(1, _env_int("MAX_EXPORT_ROWS", 10000))

        self.ENABLE_COMPRESSION = _env_bool("ENABLE_COMPRESSION", True)
        self.COMPRESSION_MIN_SIZE = max(0, _env_int("COMPRESSION_MIN_SIZE", 500))
        self.COMPRESSION_LEVEL = max(1, min(9, _env_int("COMPRESSION_LEVEL", 6)))

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION and self.AUTH_ALLOW_TEST_TOKENS:
            raise RuntimeError("AUTH_ALLOW_TEST_TOKENS must be disabled in production")
        if self.SEED_ADMIN_EMAIL and not self.SEED_ADMIN_PASSWORD:
            raise RuntimeError("SEED_ADMIN_PASSWORD is required when SEED_ADMIN_EMAIL is set")
        try:
            ZoneInfo(self.APP_TIMEZONE)
        except (ZoneInfoNotFoundError, ValueError):
            raise RuntimeError(f"APP_TIMEZONE is not a known time zone: {self.APP_TIMEZONE}")
        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            self.LOG_LEVEL = "INFO"
