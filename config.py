from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    booking_api_key: str
    admin_api_key: str
    isolation_level: str
    admission_timeout_seconds: Optional[float]
    default_page_size: int
    max_page_size: int
    log_level: str
    auto_create_schema: bool


def _clean(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _clean(os.getenv(name, ""))
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_int_env(name: str, default: int) -> int:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise RuntimeError(f"Environment variable {name} must be positive, got {value}")
    return value


def _get_timeout_env(name: str, default: float) -> Optional[float]:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from exc
    # 0 disables the admission deadline.
    return value if value > 0 else None


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Resource Booking API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        booking_api_key=_get_required_env("BOOKING_API_KEY"),
        admin_api_key=_get_required_env("ADMIN_API_KEY"),
        isolation_level=_clean(os.getenv("DB_ISOLATION_LEVEL", "")) or "READ COMMITTED",
        admission_timeout_seconds=_get_timeout_env("ADMISSION_TIMEOUT_SECONDS", 5.0),
        default_page_size=_get_int_env("DEFAULT_PAGE_SIZE", 10),
        max_page_size=_get_int_env("MAX_PAGE_SIZE", 100),
        log_level=(_clean(os.getenv("LOG_LEVEL", "")) or "INFO").upper(),
        auto_create_schema=_clean(os.getenv("AUTO_CREATE_SCHEMA", "")).lower() in {"1", "true", "yes"},
    )
