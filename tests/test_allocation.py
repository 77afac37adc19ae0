from __future__ import annotations

import pytest

from backend.domain.errors import ValidationError
from backend.domain.models import (
    AllocationPlan,
    AllocationPreferences,
    AllocationStrategy,
    RoomAllocation,
    RoomOccupancy,
    RoomType,
)
from backend.services.allocation_service import (
    allocate_from_snapshot,
    find_single_room_allocation,
    generate_room_combinations,
    multi_room_score,
    rank_plans,
    single_room_score,
)


def _room(
    room_id: str,
    capacity: int,
    occupied: int = 0,
    effective_type: RoomType = RoomType.MIXED,
) -> RoomOccupancy:
    return RoomOccupancy(
        room_id=room_id,
        display_name=room_id.upper(),
        capacity=capacity,
        occupied=occupied,
        available=max(0, capacity - occupied),
        effective_type=effective_type,
    )


def _hostel() -> list[RoomOccupancy]:
    return [
        _room("room_mixto_12a", 12),
        _room("room_mixto_12b", 12),
        _room("room_mixto_7", 7),
        _room("room_flexible_7", 7, effective_type=RoomType.FEMALE),
    ]


def test_scores_follow_published_formulas() -> None:
    assert single_room_score(12, 10) == 100
    assert single_room_score(7, 5) == 90
    assert multi_room_score(0, 2) == 70
    assert multi_room_score(4, 2) == 58


def test_single_room_preferred_when_it_fits() -> None:
    rooms = [_room("A", 12), _room("B", 7)]

    result = allocate_from_snapshot(10, rooms)

    assert result.success is True
    assert result.plan is not None
    assert result.plan.strategy is AllocationStrategy.SINGLE
    assert [item.room_id for item in result.plan.allocations] == ["A"]
    assert result.plan.waste == 2
    assert result.plan.score == 100


def test_split_used_when_no_single_room_fits() -> None:
    rooms = [_room("A", 5), _room("B", 5)]

    result = allocate_from_snapshot(10, rooms)

    assert result.success is True
    assert result.plan is not None
    assert result.plan.strategy is AllocationStrategy.MULTI
    assert result.plan.waste == 0
    assert sorted(item.beds_assigned for item in result.plan.allocations) == [5, 5]
    assert result.plan.score == 70


def test_twenty_beds_split_across_the_two_large_rooms() -> None:
    result = allocate_from_snapshot(20, _hostel())

    assert result.success is True
    assert result.plan is not None
    plan = result.plan
    assert plan.strategy is AllocationStrategy.MULTI
    assert {item.room_id: item.beds_assigned for item in plan.allocations} == {
        "room_mixto_12a": 12,
        "room_mixto_12b": 8,
    }
    assert plan.waste == 4
    assert plan.total_beds == 20


def test_single_room_picks_least_waste_then_large_room() -> None:
    rooms = [_room("big", 12), _room("small", 7)]
    plan = find_single_room_allocation(7, rooms, AllocationPreferences())
    assert plan is not None
    assert plan.allocations[0].room_id == "small"

    tie = [_room("twelve", 12, occupied=0), _room("also_twelve", 12)]
    plan = find_single_room_allocation(12, tie, AllocationPreferences())
    assert plan is not None
    assert plan.allocations[0].room_id == "also_twelve"


def test_partially_occupied_room_uses_available_beds() -> None:
    rooms = [_room("A", 12, occupied=8), _room("B", 7, occupied=2)]

    result = allocate_from_snapshot(6, rooms)

    assert result.plan is not None
    assert result.plan.strategy is AllocationStrategy.MULTI
    assert {item.room_id: item.beds_assigned for item in result.plan.allocations} == {
        "B": 5,
        "A": 1,
    }


def test_combinations_stop_once_target_is_covered() -> None:
    rooms = [_room("A", 12), _room("B", 12), _room("C", 7)]

    combos = generate_room_combinations(rooms, 12, max_rooms=3)

    room_sets = [tuple(room.room_id for room in combo) for combo in combos]
    assert ("A",) in room_sets
    assert ("B",) in room_sets
    assert ("A", "B", "C") not in room_sets
    assert all(len(combo) <= 3 for combo in combos)


def test_max_rooms_in_split_bounds_search() -> None:
    rooms = [_room("A", 5), _room("B", 5), _room("C", 5)]

    result = allocate_from_snapshot(
        15,
        rooms,
        AllocationPreferences(max_rooms_in_split=2),
    )

    assert result.success is False
    assert result.conflicts == ("No suitable room allocation found",)


def test_split_disabled_returns_failure_with_suggestions() -> None:
    rooms = [_room("A", 5), _room("B", 5)]

    result = allocate_from_snapshot(10, rooms, AllocationPreferences(allow_split=False))

    assert result.success is False
    assert result.plan is None
    assert result.suggestions
    assert "splitting" in result.suggestions[0]


def test_room_type_preference_narrows_single_room_choice() -> None:
    rooms = [
        _room("mixed", 7),
        _room("female", 7, effective_type=RoomType.FEMALE),
    ]

    result = allocate_from_snapshot(
        5,
        rooms,
        AllocationPreferences(room_type_preference=RoomType.FEMALE),
    )

    assert result.plan is not None
    assert result.plan.allocations[0].room_id == "female"
    assert result.plan.allocations[0].effective_type is RoomType.FEMALE


def test_room_type_preference_falls_back_when_nothing_matches() -> None:
    rooms = [_room("A", 12), _room("B", 7)]

    result = allocate_from_snapshot(
        5,
        rooms,
        AllocationPreferences(room_type_preference=RoomType.FEMALE),
    )

    assert result.success is True
    assert result.plan is not None
    assert result.plan.allocations[0].room_id == "B"


def test_prefer_single_room_puts_single_plan_first() -> None:
    single = AllocationPlan(
        allocations=(RoomAllocation("A", 4, 12, RoomType.MIXED),),
        total_beds=4,
        strategy=AllocationStrategy.SINGLE,
        score=70,
        waste=8,
    )
    multi = AllocationPlan(
        allocations=(
            RoomAllocation("B", 2, 2, RoomType.MIXED),
            RoomAllocation("C", 2, 2, RoomType.MIXED),
        ),
        total_beds=4,
        strategy=AllocationStrategy.MULTI,
        score=70,
        waste=0,
    )

    assert rank_plans([multi, single])[0] is single
    assert rank_plans([multi, single], prefer_single_room=True)[0] is single

    better_multi = AllocationPlan(
        allocations=multi.allocations,
        total_beds=4,
        strategy=AllocationStrategy.MULTI,
        score=75,
        waste=0,
    )
    assert rank_plans([single, better_multi])[0] is better_multi
    assert rank_plans([better_multi, single], prefer_single_room=True)[0] is single


def test_alternatives_are_capped() -> None:
    result = allocate_from_snapshot(20, _hostel(), max_alternatives=1)
    assert result.success is True
    assert len(result.alternatives) == 1
    assert result.plan is not None
    assert result.alternatives[0].score <= result.plan.score


def test_invalid_allocation_inputs_raise() -> None:
    with pytest.raises(ValidationError):
        allocate_from_snapshot(0, _hostel())
    with pytest.raises(ValidationError):
        allocate_from_snapshot(5, _hostel(), AllocationPreferences(max_rooms_in_split=0))
