"""Room allocation: single-room and split strategies, scored and ranked."""

from __future__ import annotations

from typing import Optional, Sequence

from backend.domain.errors import ValidationError
from backend.domain.models import (
    AllocationPlan,
    AllocationPreferences,
    AllocationResult,
    AllocationStrategy,
    DateRange,
    RoomAllocation,
    RoomOccupancy,
)
from backend.services.availability_service import (
    AvailabilityService,
    BookingValidation,
    generate_suggestions,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

LARGE_ROOM_CAPACITY = 12


def _validate_inputs(requested_beds: int, preferences: AllocationPreferences) -> None:
    if requested_beds < 1:
        raise ValidationError("Requested beds must be at least 1")
    if preferences.max_rooms_in_split < 1:
        raise ValidationError("max_rooms_in_split must be at least 1")


def _prefer_type(
    rooms: Sequence[RoomOccupancy],
    preferences: AllocationPreferences,
) -> list[RoomOccupancy]:
    """Narrow to the preferred room type, falling back when nothing matches."""
    if preferences.room_type_preference is None:
        return list(rooms)
    preferred = [room for room in rooms if room.effective_type == preferences.room_type_preference]
    return preferred or list(rooms)


def single_room_score(capacity: int, requested_beds: int) -> int:
    waste = capacity - requested_beds
    return 100 - 5 * waste + (10 if capacity >= LARGE_ROOM_CAPACITY else 0)


def multi_room_score(waste: int, rooms_used: int) -> int:
    return 80 - 3 * waste - 5 * rooms_used


def find_single_room_allocation(
    requested_beds: int,
    rooms: Sequence[RoomOccupancy],
    preferences: AllocationPreferences,
) -> Optional[AllocationPlan]:
    eligible = _prefer_type(
        [room for room in rooms if room.available >= requested_beds],
        preferences,
    )
    if not eligible:
        return None

    selected = min(
        eligible,
        key=lambda room: (
            room.capacity - requested_beds,
            0 if room.capacity >= LARGE_ROOM_CAPACITY else 1,
            room.room_id,
        ),
    )
    return AllocationPlan(
        allocations=(
            RoomAllocation(
                room_id=selected.room_id,
                beds_assigned=requested_beds,
                capacity=selected.capacity,
                effective_type=selected.effective_type,
                display_name=selected.display_name,
            ),
        ),
        total_beds=requested_beds,
        strategy=AllocationStrategy.SINGLE,
        score=single_room_score(selected.capacity, requested_beds),
        waste=selected.capacity - requested_beds,
    )


def generate_room_combinations(
    rooms: Sequence[RoomOccupancy],
    target_beds: int,
    max_rooms: int,
) -> list[tuple[RoomOccupancy, ...]]:
    """Bounded backtracking over rooms sorted by descending availability.

    A subset is recorded as soon as its combined availability covers the
    target, so no recorded subset contains a redundant trailing room.
    Results are ordered by ascending combined waste, then subset size.
    """
    ordered = sorted(
        (room for room in rooms if room.available > 0),
        key=lambda room: (-room.available, room.room_id),
    )
    combinations: list[tuple[RoomOccupancy, ...]] = []

    def backtrack(start: int, current: list[RoomOccupancy], current_beds: int) -> None:
        if current_beds >= target_beds:
            combinations.append(tuple(current))
            return
        if len(current) >= max_rooms:
            return
        for index in range(start, len(ordered)):
            room = ordered[index]
            current.append(room)
            backtrack(index + 1, current, current_beds + room.available)
            current.pop()

    backtrack(0, [], 0)
    return sorted(
        combinations,
        key=lambda combo: (sum(room.capacity for room in combo) - target_beds, len(combo)),
    )


def _plan_from_combination(
    combination: Sequence[RoomOccupancy],
    requested_beds: int,
) -> AllocationPlan:
    allocations: list[RoomAllocation] = []
    remaining = requested_beds
    for room in combination:
        beds = min(remaining, room.available)
        allocations.append(
            RoomAllocation(
                room_id=room.room_id,
                beds_assigned=beds,
                capacity=room.capacity,
                effective_type=room.effective_type,
                display_name=room.display_name,
            )
        )
        remaining -= beds
    waste = sum(room.capacity for room in combination) - requested_beds
    return AllocationPlan(
        allocations=tuple(allocations),
        total_beds=requested_beds,
        strategy=AllocationStrategy.MULTI,
        score=multi_room_score(waste, len(combination)),
        waste=waste,
    )


def find_multi_room_allocations(
    requested_beds: int,
    rooms: Sequence[RoomOccupancy],
    preferences: AllocationPreferences,
) -> list[AllocationPlan]:
    """Split plans across two or more rooms, best first."""
    if not preferences.allow_split:
        return []
    candidate_pools = [_prefer_type(rooms, preferences)]
    if preferences.room_type_preference is not None:
        candidate_pools.append(list(rooms))

    for pool in candidate_pools:
        combinations = [
            combo
            for combo in generate_room_combinations(
                pool,
                requested_beds,
                preferences.max_rooms_in_split,
            )
            if len(combo) >= 2
        ]
        if combinations:
            return [_plan_from_combination(combo, requested_beds) for combo in combinations]
    return []


def rank_plans(
    plans: Sequence[AllocationPlan],
    prefer_single_room: bool = False,
) -> list[AllocationPlan]:
    """Higher score first; ties go to fewer rooms, then larger total capacity."""
    return sorted(
        plans,
        key=lambda plan: (
            0 if prefer_single_room and plan.strategy is AllocationStrategy.SINGLE else 1,
            -plan.score,
            plan.rooms_used,
            -plan.total_capacity,
        ),
    )


def allocate_from_snapshot(
    requested_beds: int,
    rooms: Sequence[RoomOccupancy],
    preferences: Optional[AllocationPreferences] = None,
    max_alternatives: int = 3,
) -> AllocationResult:
    """Pure allocation over an availability snapshot; performs no locking."""
    resolved = preferences or AllocationPreferences()
    _validate_inputs(requested_beds, resolved)

    candidates: list[AllocationPlan] = []
    single = find_single_room_allocation(requested_beds, rooms, resolved)
    if single is not None:
        candidates.append(single)
    candidates.extend(find_multi_room_allocations(requested_beds, rooms, resolved))

    if not candidates:
        return AllocationResult(
            success=False,
            requested_beds=requested_beds,
            conflicts=("No suitable room allocation found",),
            suggestions=tuple(generate_suggestions(rooms, requested_beds)),
        )

    ranked = rank_plans(candidates, prefer_single_room=resolved.prefer_single_room)
    return AllocationResult(
        success=True,
        requested_beds=requested_beds,
        plan=ranked[0],
        alternatives=tuple(ranked[1 : 1 + max_alternatives]),
    )


class RoomAllocationService:
    """Turns live availability into ranked allocation plans."""

    def __init__(
        self,
        availability_service: AvailabilityService,
        settings: Optional[Settings] = None,
    ) -> None:
        self._availability_service = availability_service
        self._settings = settings or get_settings()

    def default_preferences(self) -> AllocationPreferences:
        return AllocationPreferences(max_rooms_in_split=self._settings.max_rooms_in_split)

    def allocate(
        self,
        requested_beds: int,
        date_range: DateRange,
        preferences: Optional[AllocationPreferences] = None,
        exclude_reservation_id: Optional[str] = None,
    ) -> AllocationResult:
        availability = self._availability_service.check_availability(
            date_range,
            requested_beds,
            exclude_reservation_id,
        )
        if not availability.is_available:
            return AllocationResult(
                success=False,
                requested_beds=requested_beds,
                conflicts=availability.conflicts,
                suggestions=availability.suggestions,
            )

        result = allocate_from_snapshot(
            requested_beds,
            availability.rooms,
            preferences or self.default_preferences(),
            max_alternatives=self._settings.max_allocation_alternatives,
        )
        if result.success and result.plan is not None:
            logger.info(
                "Allocation selected | strategy=%s | rooms=%s | score=%s | waste=%s | alternatives=%s",
                result.plan.strategy.value,
                [item.room_id for item in result.plan.allocations],
                result.plan.score,
                result.plan.waste,
                len(result.alternatives),
            )
        else:
            logger.info("Allocation failed | requested=%s", requested_beds)
        return result

    def validate_allocation(
        self,
        plan: AllocationPlan,
        date_range: DateRange,
        exclude_reservation_id: Optional[str] = None,
    ) -> BookingValidation:
        errors: list[str] = []
        for allocation in plan.allocations:
            validation = self._availability_service.validate_booking(
                allocation.room_id,
                allocation.beds_assigned,
                date_range,
                exclude_reservation_id,
            )
            errors.extend(validation.errors)
        return BookingValidation(is_valid=not errors, errors=tuple(errors))

    def reallocate(
        self,
        reservation_id: str,
        new_beds_count: int,
        date_range: DateRange,
    ) -> AllocationResult:
        """Allocate a modified booking, ignoring the beds it currently holds."""
        return self.allocate(
            new_beds_count,
            date_range,
            AllocationPreferences(
                allow_split=True,
                max_rooms_in_split=self._settings.max_rooms_in_split,
            ),
            exclude_reservation_id=reservation_id,
        )
