"""Domain-level validation rules for stay requests and engine configuration."""

from __future__ import annotations

from datetime import date

from backend.domain.errors import ValidationError
from backend.domain.models import DateRange
from backend.utils.config import Settings


def validate_engine_config(config: Settings) -> None:
    if config.backend_timeout_seconds <= 0:
        raise ValueError("backend_timeout_seconds must be > 0")
    if config.availability_cache_ttl_seconds <= 0:
        raise ValueError("availability_cache_ttl_seconds must be > 0")
    if config.hold_ttl_seconds <= 0:
        raise ValueError("hold_ttl_seconds must be > 0")
    if config.hold_record_retention_seconds < 0:
        raise ValueError("hold_record_retention_seconds must be >= 0")
    if config.hold_sweep_interval_seconds <= 0:
        raise ValueError("hold_sweep_interval_seconds must be > 0")
    if config.lock_ttl_seconds <= 0:
        raise ValueError("lock_ttl_seconds must be > 0")
    # A lease is renewed right before each write, and the renewal plus the
    # write are each bounded by backend_timeout_seconds.
    if config.lock_ttl_seconds <= 2 * config.backend_timeout_seconds:
        raise ValueError("lock_ttl_seconds must be > 2 * backend_timeout_seconds")
    if config.lock_retry_interval_seconds <= 0:
        raise ValueError("lock_retry_interval_seconds must be > 0")
    if config.max_allocation_attempts <= 0:
        raise ValueError("max_allocation_attempts must be > 0")
    if config.max_rooms_in_split <= 0:
        raise ValueError("max_rooms_in_split must be > 0")
    if config.max_allocation_alternatives < 0:
        raise ValueError("max_allocation_alternatives must be >= 0")
    if config.base_price_per_bed <= 0:
        raise ValueError("base_price_per_bed must be > 0")
    if config.carnival_min_nights <= 0:
        raise ValueError("carnival_min_nights must be > 0")
    for year, (start, end) in config.carnival_periods.items():
        if start > end:
            raise ValueError(f"carnival period for {year} ends before it starts")


def validate_stay_request(
    date_range: DateRange,
    requested_beds: int,
    *,
    today: date,
    max_beds: int,
) -> None:
    """Reject past check-ins and bed counts outside ``[1, max_beds]``."""
    if date_range.check_in < today:
        raise ValidationError("Check-in date cannot be in the past")
    if not 1 <= requested_beds <= max_beds:
        raise ValidationError(f"Requested beds must be between 1 and {max_beds}")
