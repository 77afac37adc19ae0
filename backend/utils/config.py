"""Environment-driven application settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional


DEFAULT_CARNIVAL_PERIODS: dict[int, tuple[date, date]] = {
    2025: (date(2025, 2, 28), date(2025, 3, 5)),
    2026: (date(2026, 2, 13), date(2026, 2, 18)),
    2027: (date(2027, 2, 5), date(2027, 2, 10)),
}


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_carnival_periods(raw: Optional[str]) -> dict[int, tuple[date, date]]:
    """Parse ``{"2028": ["2028-02-25", "2028-03-01"]}`` style JSON."""
    if not raw:
        return dict(DEFAULT_CARNIVAL_PERIODS)
    parsed = json.loads(raw)
    periods: dict[int, tuple[date, date]] = {}
    for year, bounds in parsed.items():
        start, end = (date.fromisoformat(item) for item in bounds)
        periods[int(year)] = (start, end)
    return periods


@dataclass(frozen=True)
class Settings:
    app_name: str = "Hostel Reservation Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_reload: bool = False

    database_path: Path = Path("data/hostel.db")
    redis_url: Optional[str] = None
    hostel_timezone: str = "America/Sao_Paulo"
    backend_timeout_seconds: float = 2.0

    availability_cache_ttl_seconds: int = 60

    hold_ttl_seconds: int = 600
    hold_record_retention_seconds: int = 3600
    hold_sweep_interval_seconds: float = 30.0
    lock_ttl_seconds: int = 5
    lock_retry_interval_seconds: float = 0.01

    max_allocation_attempts: int = 3
    max_rooms_in_split: int = 4
    max_allocation_alternatives: int = 3

    base_price_per_bed: Decimal = Decimal("60.00")
    currency: str = "BRL"
    carnival_min_nights: int = 5
    enforce_carnival_min_nights: bool = True
    carnival_periods: dict[int, tuple[date, date]] = field(
        default_factory=lambda: dict(DEFAULT_CARNIVAL_PERIODS)
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    defaults = Settings()
    return Settings(
        app_name=_env_str("APP_NAME", defaults.app_name),
        app_version=_env_str("APP_VERSION", defaults.app_version),
        log_level=_env_str("LOG_LEVEL", defaults.log_level),
        api_host=_env_str("API_HOST", defaults.api_host),
        api_port=_env_int("API_PORT", defaults.api_port),
        api_reload=_env_bool("API_RELOAD", defaults.api_reload),
        database_path=Path(_env_str("DATABASE_PATH", str(defaults.database_path))),
        redis_url=os.getenv("REDIS_URL") or None,
        hostel_timezone=_env_str("HOSTEL_TIMEZONE", defaults.hostel_timezone),
        backend_timeout_seconds=_env_float(
            "BACKEND_TIMEOUT_SECONDS", defaults.backend_timeout_seconds
        ),
        availability_cache_ttl_seconds=_env_int(
            "AVAILABILITY_CACHE_TTL_SECONDS", defaults.availability_cache_ttl_seconds
        ),
        hold_ttl_seconds=_env_int("HOLD_TTL_SECONDS", defaults.hold_ttl_seconds),
        hold_record_retention_seconds=_env_int(
            "HOLD_RECORD_RETENTION_SECONDS", defaults.hold_record_retention_seconds
        ),
        hold_sweep_interval_seconds=_env_float(
            "HOLD_SWEEP_INTERVAL_SECONDS", defaults.hold_sweep_interval_seconds
        ),
        lock_ttl_seconds=_env_int("LOCK_TTL_SECONDS", defaults.lock_ttl_seconds),
        lock_retry_interval_seconds=_env_float(
            "LOCK_RETRY_INTERVAL_SECONDS", defaults.lock_retry_interval_seconds
        ),
        max_allocation_attempts=_env_int(
            "MAX_ALLOCATION_ATTEMPTS", defaults.max_allocation_attempts
        ),
        max_rooms_in_split=_env_int("MAX_ROOMS_IN_SPLIT", defaults.max_rooms_in_split),
        max_allocation_alternatives=_env_int(
            "MAX_ALLOCATION_ALTERNATIVES", defaults.max_allocation_alternatives
        ),
        base_price_per_bed=Decimal(
            _env_str("BASE_PRICE_PER_BED", str(defaults.base_price_per_bed))
        ),
        currency=_env_str("CURRENCY", defaults.currency),
        carnival_min_nights=_env_int("CARNIVAL_MIN_NIGHTS", defaults.carnival_min_nights),
        enforce_carnival_min_nights=_env_bool(
            "ENFORCE_CARNIVAL_MIN_NIGHTS", defaults.enforce_carnival_min_nights
        ),
        carnival_periods=_parse_carnival_periods(os.getenv("CARNIVAL_PERIODS")),
    )
