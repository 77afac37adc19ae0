"""Availability calculator over confirmed reservations plus live holds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from backend.domain.catalog import RoomCatalog
from backend.domain.constraints import validate_stay_request
from backend.domain.errors import ValidationError
from backend.domain.models import AvailabilityResult, DateRange, RoomOccupancy
from backend.domain.occupancy import (
    RoomLoad,
    build_room_occupancy,
    hours_until_check_in,
    tally_room_loads,
)
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.data_repository import DataRepository
from backend.services.hold_service import HoldService
from backend.utils.clock import Clock, SystemClock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

MAX_SUGGESTIONS = 3


@dataclass(frozen=True)
class BookingValidation:
    is_valid: bool
    errors: tuple[str, ...]


def generate_suggestions(rooms: Sequence[RoomOccupancy], requested_beds: int) -> list[str]:
    """Alternatives offered when the request cannot be covered."""
    suggestions: list[str] = []
    ranked = sorted(
        (room for room in rooms if room.available > 0),
        key=lambda room: room.available,
        reverse=True,
    )

    if len(ranked) > 1:
        first, second = ranked[0], ranked[1]
        if first.available + second.available >= requested_beds:
            suggestions.append(
                f"Consider splitting the group across {first.display_name} "
                f"({first.available} beds) and {second.display_name} ({second.available} beds)"
            )

    max_single = max((room.available for room in rooms), default=0)
    if 0 < max_single < requested_beds:
        suggestions.append(
            f"Maximum {max_single} beds available in a single room. "
            "Consider reducing group size or selecting different dates."
        )

    total_available = sum(room.available for room in rooms)
    if 0 < total_available < requested_beds and total_available != max_single:
        suggestions.append(
            f"Reduce the group to {total_available} beds to fit across all rooms."
        )
    return suggestions[:MAX_SUGGESTIONS]


class AvailabilityService:
    """Computes per-room free beds for a stay window.

    Results are pure reads; the only shared state touched is the short-lived
    load cache, which hold transitions invalidate.
    """

    def __init__(
        self,
        repository: DataRepository,
        hold_service: HoldService,
        cache: AvailabilityCache,
        catalog: Optional[RoomCatalog] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._hold_service = hold_service
        self._cache = cache
        self._catalog = catalog or RoomCatalog()
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._timezone = ZoneInfo(self._settings.hostel_timezone)

    @property
    def catalog(self) -> RoomCatalog:
        return self._catalog

    def _room_loads(
        self,
        date_range: DateRange,
        exclude_reservation_id: Optional[str],
    ) -> dict[str, RoomLoad]:
        generation = self._cache.generation()
        cached = self._cache.get(date_range, exclude_reservation_id, generation)
        if cached is not None:
            logger.debug(
                "Availability cache hit | check_in=%s | check_out=%s",
                date_range.check_in,
                date_range.check_out,
            )
            return cached

        reservations = self._repository.fetch_confirmed_reservations(
            date_range,
            exclude_id=exclude_reservation_id,
        )
        holds = self._hold_service.list_active_holds(date_range)
        loads = tally_room_loads(
            self._catalog.rooms,
            reservations,
            holds,
            date_range=date_range,
            now=self._clock.now(),
        )
        self._cache.put(date_range, loads, exclude_reservation_id, generation)
        logger.debug(
            "Availability computed | check_in=%s | check_out=%s | reservations=%s | holds=%s",
            date_range.check_in,
            date_range.check_out,
            len(reservations),
            len(holds),
        )
        return loads

    def room_snapshot(
        self,
        date_range: DateRange,
        exclude_reservation_id: Optional[str] = None,
    ) -> tuple[RoomOccupancy, ...]:
        loads = self._room_loads(date_range, exclude_reservation_id)
        hours_until = hours_until_check_in(date_range.check_in, self._clock.now(), self._timezone)
        return build_room_occupancy(self._catalog.rooms, loads, hours_until=hours_until)

    def check_availability(
        self,
        date_range: DateRange,
        requested_beds: int,
        exclude_reservation_id: Optional[str] = None,
    ) -> AvailabilityResult:
        today = self._clock.now().astimezone(self._timezone).date()
        validate_stay_request(
            date_range,
            requested_beds,
            today=today,
            max_beds=self._catalog.total_capacity,
        )

        rooms = self.room_snapshot(date_range, exclude_reservation_id)
        total_available = sum(room.available for room in rooms)
        if total_available >= requested_beds:
            return AvailabilityResult(
                is_available=True,
                rooms=rooms,
                total_available_beds=total_available,
                requested_beds=requested_beds,
                date_range=date_range,
            )

        logger.info(
            "Insufficient availability | check_in=%s | check_out=%s | requested=%s | available=%s",
            date_range.check_in,
            date_range.check_out,
            requested_beds,
            total_available,
        )
        return AvailabilityResult(
            is_available=False,
            rooms=rooms,
            total_available_beds=total_available,
            requested_beds=requested_beds,
            date_range=date_range,
            conflicts=(
                f"Only {total_available} beds available, but {requested_beds} beds requested",
            ),
            suggestions=tuple(generate_suggestions(rooms, requested_beds)),
        )

    def check_date_shifts(
        self,
        date_range: DateRange,
        requested_beds: int,
        days_to_check: int = 7,
    ) -> dict[str, AvailabilityResult]:
        """Availability for the same stay length shifted forward day by day."""
        if days_to_check < 1:
            raise ValidationError("days_to_check must be at least 1")
        results: dict[str, AvailabilityResult] = {}
        for offset in range(days_to_check):
            shifted = date_range.shifted(offset)
            results[shifted.check_in.isoformat()] = self.check_availability(shifted, requested_beds)
        return results

    def get_room_availability(
        self,
        room_id: str,
        date_range: DateRange,
    ) -> Optional[RoomOccupancy]:
        result = self.check_availability(date_range, 1)
        return result.room(room_id)

    def validate_booking(
        self,
        room_id: str,
        beds_count: int,
        date_range: DateRange,
        exclude_reservation_id: Optional[str] = None,
    ) -> BookingValidation:
        room = self._catalog.get(room_id)
        if room is None:
            return BookingValidation(is_valid=False, errors=("Invalid room ID",))

        errors: list[str] = []
        if beds_count > room.capacity:
            errors.append(f"Room {room.display_name} has capacity of {room.capacity} beds")

        result = self.check_availability(
            date_range,
            min(max(beds_count, 1), self._catalog.total_capacity),
            exclude_reservation_id,
        )
        occupancy = result.room(room_id)
        available = occupancy.available if occupancy is not None else 0
        if available < beds_count:
            errors.append(f"Room {room.display_name} only has {available} beds available")

        return BookingValidation(is_valid=not errors, errors=tuple(errors))
