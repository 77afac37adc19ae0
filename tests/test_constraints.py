"""Tests for engine configuration and stay request validation.

Covers every branch of validate_engine_config() and validate_stay_request().
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from backend.domain.catalog import ROOM_CATALOG, RoomCatalog, validate_catalog
from backend.domain.constraints import validate_engine_config, validate_stay_request
from backend.domain.errors import ValidationError
from backend.domain.models import DateRange, Room, RoomType
from backend.utils.config import Settings


def valid_config(**overrides) -> Settings:
    """Return a valid baseline Settings, optionally overriding fields."""
    return replace(Settings(), **overrides)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    """A fully valid config must not raise."""
    validate_engine_config(valid_config())


# --- Engine configuration ---

@pytest.mark.parametrize(
    "overrides",
    [
        {"backend_timeout_seconds": 0},
        {"availability_cache_ttl_seconds": 0},
        {"hold_ttl_seconds": -1},
        {"hold_record_retention_seconds": -1},
        {"hold_sweep_interval_seconds": 0},
        {"lock_ttl_seconds": 0},
        {"lock_ttl_seconds": 4, "backend_timeout_seconds": 2.0},
        {"lock_retry_interval_seconds": 0},
        {"max_allocation_attempts": 0},
        {"max_rooms_in_split": 0},
        {"max_allocation_alternatives": -1},
        {"base_price_per_bed": Decimal("0")},
        {"carnival_min_nights": 0},
    ],
)
def test_invalid_engine_config_raises(overrides) -> None:
    with pytest.raises(ValueError):
        validate_engine_config(valid_config(**overrides))


def test_inverted_carnival_period_raises() -> None:
    config = valid_config(carnival_periods={2027: (date(2027, 2, 10), date(2027, 2, 5))})
    with pytest.raises(ValueError):
        validate_engine_config(config)


# --- Stay requests ---

def test_check_in_today_is_accepted() -> None:
    stay = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 11))
    validate_stay_request(stay, 1, today=date(2027, 4, 10), max_beds=38)


def test_check_in_in_the_past_raises() -> None:
    stay = DateRange(check_in=date(2027, 4, 9), check_out=date(2027, 4, 11))
    with pytest.raises(ValidationError, match="past"):
        validate_stay_request(stay, 1, today=date(2027, 4, 10), max_beds=38)


@pytest.mark.parametrize("beds", [0, -3, 39])
def test_requested_beds_out_of_range_raises(beds: int) -> None:
    stay = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 11))
    with pytest.raises(ValidationError):
        validate_stay_request(stay, beds, today=date(2027, 4, 1), max_beds=38)


def test_check_out_must_follow_check_in() -> None:
    with pytest.raises(ValidationError):
        DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 10))


# --- Catalog ---

def test_default_catalog_has_one_flexible_room() -> None:
    catalog = RoomCatalog()
    assert catalog.total_capacity == 38
    assert [room.room_id for room in catalog.rooms if room.is_flexible] == ["room_flexible_7"]
    assert "room_mixto_12a" in catalog
    assert catalog.get("missing") is None


def test_catalog_without_flexible_room_raises() -> None:
    rooms = tuple(room for room in ROOM_CATALOG if not room.is_flexible)
    with pytest.raises(ValueError):
        validate_catalog(rooms)


def test_catalog_with_duplicate_ids_raises() -> None:
    duplicate = Room(
        room_id="room_mixto_7",
        display_name="Copy",
        capacity=4,
        base_type=RoomType.MIXED,
    )
    with pytest.raises(ValueError):
        validate_catalog(ROOM_CATALOG + (duplicate,))
