from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from backend.domain.catalog import RoomCatalog
from backend.domain.errors import ValidationError
from backend.domain.models import (
    AllocationPlan,
    AllocationStrategy,
    DateRange,
    RoomAllocation,
    RoomType,
)
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.data_repository import DataRepository
from backend.repository.kv_store import InMemoryKeyValueStore
from backend.services.availability_service import AvailabilityService
from backend.services.hold_service import HoldService
from backend.services.pricing_service import PricingService
from backend.utils.clock import ManualClock
from backend.utils.config import get_settings


HOSTEL_TZ = ZoneInfo("America/Sao_Paulo")
STAY = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 13))


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        redis_url=None,
        hostel_timezone="America/Sao_Paulo",
        availability_cache_ttl_seconds=60,
    )


def _build_engine(tmp_path, filename: str, now: datetime):
    settings = _build_test_settings(tmp_path, filename)
    clock = ManualClock(now)
    catalog = RoomCatalog()
    repository = DataRepository(settings)
    repository.initialize_database()
    store = InMemoryKeyValueStore(clock=clock)
    cache = AvailabilityCache(store, settings)
    hold_service = HoldService(store, repository, cache, catalog, settings, clock)
    service = AvailabilityService(repository, hold_service, cache, catalog, settings, clock)
    return service, repository, hold_service, cache, clock


def _seed_reservation(repository: DataRepository, room_id: str, beds: int, stay: DateRange) -> str:
    room = RoomCatalog().get(room_id)
    assert room is not None
    plan = AllocationPlan(
        allocations=(RoomAllocation(room_id, beds, room.capacity, room.base_type),),
        total_beds=beds,
        strategy=AllocationStrategy.SINGLE,
        score=0,
        waste=room.capacity - beds,
    )
    pricing = PricingService(settings=get_settings()).price(stay, beds)
    return repository.record_reservation(plan, pricing, "guest-seed", stay)


def _sao_paulo_midnight(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=HOSTEL_TZ)


def test_empty_hostel_is_fully_available(tmp_path) -> None:
    service, *_ = _build_engine(tmp_path, "empty.db", _sao_paulo_midnight(2027, 4, 7))

    result = service.check_availability(STAY, 20)

    assert result.is_available is True
    assert result.total_available_beds == 38
    assert result.conflicts == ()
    assert {room.room_id: room.available for room in result.rooms} == {
        "room_mixto_12a": 12,
        "room_mixto_12b": 12,
        "room_mixto_7": 7,
        "room_flexible_7": 7,
    }


def test_flexible_room_stays_female_beyond_threshold(tmp_path) -> None:
    service, *_ = _build_engine(tmp_path, "flex72.db", _sao_paulo_midnight(2027, 4, 7))

    flexible = service.check_availability(STAY, 1).room("room_flexible_7")

    assert flexible is not None
    assert flexible.effective_type is RoomType.FEMALE


def test_flexible_room_converts_to_mixed_at_threshold_when_empty(tmp_path) -> None:
    service, *_ = _build_engine(tmp_path, "flex48.db", _sao_paulo_midnight(2027, 4, 8))

    flexible = service.check_availability(STAY, 1).room("room_flexible_7")

    assert flexible is not None
    assert flexible.effective_type is RoomType.MIXED


def test_flexible_room_with_occupants_never_converts(tmp_path) -> None:
    service, repository, *_ = _build_engine(
        tmp_path, "flex_occupied.db", _sao_paulo_midnight(2027, 4, 9)
    )
    _seed_reservation(repository, "room_flexible_7", 2, STAY)

    flexible = service.check_availability(STAY, 1).room("room_flexible_7")

    assert flexible is not None
    assert flexible.effective_type is RoomType.FEMALE
    assert flexible.occupied == 2
    assert flexible.available == 5


def test_reservations_outside_window_do_not_count(tmp_path) -> None:
    service, repository, *_ = _build_engine(tmp_path, "outside.db", _sao_paulo_midnight(2027, 4, 7))
    # Checks out the day the queried stay checks in.
    _seed_reservation(
        repository,
        "room_mixto_12a",
        12,
        DateRange(check_in=date(2027, 4, 8), check_out=date(2027, 4, 10)),
    )

    result = service.check_availability(STAY, 1)

    room = result.room("room_mixto_12a")
    assert room is not None
    assert room.available == 12


def test_cancelled_reservation_frees_beds(tmp_path) -> None:
    service, repository, _, cache, _ = _build_engine(
        tmp_path, "cancelled.db", _sao_paulo_midnight(2027, 4, 7)
    )
    reservation_id = _seed_reservation(repository, "room_mixto_7", 7, STAY)
    assert service.check_availability(STAY, 1).total_available_beds == 31

    repository.update_reservation_status(reservation_id, "CANCELLED")
    cache.invalidate_all()

    assert service.check_availability(STAY, 1).total_available_beds == 38


def test_insufficient_availability_returns_conflicts_and_suggestions(tmp_path) -> None:
    service, repository, *_ = _build_engine(tmp_path, "full.db", _sao_paulo_midnight(2027, 4, 7))
    _seed_reservation(repository, "room_mixto_12a", 12, STAY)
    _seed_reservation(repository, "room_mixto_12b", 10, STAY)

    result = service.check_availability(STAY, 20)

    assert result.is_available is False
    assert result.total_available_beds == 16
    assert result.conflicts == ("Only 16 beds available, but 20 beds requested",)
    assert 1 <= len(result.suggestions) <= 3
    assert any("Maximum 7 beds" in suggestion for suggestion in result.suggestions)
    assert any("Reduce the group to 16" in suggestion for suggestion in result.suggestions)


def test_exclude_reservation_ignores_its_own_beds(tmp_path) -> None:
    service, repository, *_ = _build_engine(tmp_path, "exclude.db", _sao_paulo_midnight(2027, 4, 7))
    reservation_id = _seed_reservation(repository, "room_mixto_12a", 12, STAY)

    with_booking = service.check_availability(STAY, 1)
    without_booking = service.check_availability(STAY, 1, exclude_reservation_id=reservation_id)

    assert with_booking.total_available_beds == 26
    assert without_booking.total_available_beds == 38


def test_active_holds_count_and_hold_creation_invalidates_cache(tmp_path) -> None:
    service, _, hold_service, *_ = _build_engine(
        tmp_path, "holds.db", _sao_paulo_midnight(2027, 4, 7)
    )
    assert service.check_availability(STAY, 1).total_available_beds == 38

    hold_service.create_hold(
        [RoomAllocation("room_mixto_12b", 5, 12, RoomType.MIXED)],
        STAY,
        ttl_seconds=600,
    )

    room = service.check_availability(STAY, 1).room("room_mixto_12b")
    assert room is not None
    assert room.occupied == 5
    assert room.available == 7


def test_expired_hold_stops_occupying_before_sweep(tmp_path) -> None:
    service, _, hold_service, _, clock = _build_engine(
        tmp_path, "expired.db", _sao_paulo_midnight(2027, 4, 7)
    )
    hold_service.create_hold(
        [RoomAllocation("room_mixto_7", 7, 7, RoomType.MIXED)],
        STAY,
        ttl_seconds=30,
    )
    assert service.check_availability(STAY, 1).total_available_beds == 31

    # Past both the hold expiry and the cache TTL.
    clock.advance(seconds=61)

    assert service.check_availability(STAY, 1).total_available_beds == 38


def test_validation_errors(tmp_path) -> None:
    service, *_ = _build_engine(tmp_path, "validation.db", _sao_paulo_midnight(2027, 4, 7))

    with pytest.raises(ValidationError):
        service.check_availability(
            DateRange(check_in=date(2027, 4, 6), check_out=date(2027, 4, 8)),
            1,
        )
    with pytest.raises(ValidationError):
        service.check_availability(STAY, 0)
    with pytest.raises(ValidationError):
        service.check_availability(STAY, 39)


def test_check_in_today_in_hostel_timezone_is_allowed(tmp_path) -> None:
    # 01:00 UTC on Apr 10 is still Apr 9 in Sao Paulo.
    service, *_ = _build_engine(
        tmp_path, "today.db", datetime(2027, 4, 10, 1, 0, tzinfo=ZoneInfo("UTC"))
    )
    result = service.check_availability(
        DateRange(check_in=date(2027, 4, 9), check_out=date(2027, 4, 10)),
        1,
    )
    assert result.is_available is True


def test_check_date_shifts_scans_forward(tmp_path) -> None:
    service, repository, *_ = _build_engine(tmp_path, "shifts.db", _sao_paulo_midnight(2027, 4, 7))
    _seed_reservation(
        repository,
        "room_mixto_12a",
        12,
        DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 11)),
    )

    results = service.check_date_shifts(STAY, 30, days_to_check=3)

    assert list(results) == ["2027-04-10", "2027-04-11", "2027-04-12"]
    assert results["2027-04-10"].is_available is False
    assert results["2027-04-11"].is_available is True

    with pytest.raises(ValidationError):
        service.check_date_shifts(STAY, 1, days_to_check=0)


def test_room_availability_and_booking_validation(tmp_path) -> None:
    service, repository, *_ = _build_engine(tmp_path, "validate.db", _sao_paulo_midnight(2027, 4, 7))
    _seed_reservation(repository, "room_mixto_7", 4, STAY)

    room = service.get_room_availability("room_mixto_7", STAY)
    assert room is not None
    assert room.available == 3
    assert service.get_room_availability("missing", STAY) is None

    assert service.validate_booking("room_mixto_7", 3, STAY).is_valid is True

    too_many = service.validate_booking("room_mixto_7", 4, STAY)
    assert too_many.is_valid is False
    assert too_many.errors == ("Room Mixto 7 only has 3 beds available",)

    over_capacity = service.validate_booking("room_mixto_7", 8, STAY)
    assert over_capacity.is_valid is False
    assert "capacity of 7 beds" in over_capacity.errors[0]

    unknown = service.validate_booking("missing", 1, STAY)
    assert unknown.errors == ("Invalid room ID",)
