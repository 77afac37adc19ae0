"""Pure occupancy arithmetic and the flexible-room conversion rule.

Occupancy is never stored as a counter. It is always recomputed from the
occupying reservations plus the live holds that overlap the query window.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable
from zoneinfo import ZoneInfo

from backend.domain.models import (
    ConfirmedReservation,
    DateRange,
    Hold,
    Room,
    RoomOccupancy,
    RoomType,
)


@dataclass(frozen=True)
class RoomLoad:
    """Beds taken in one room and how many bookings/holds take them."""

    occupied: int = 0
    occupants: int = 0


def tally_room_loads(
    rooms: Iterable[Room],
    reservations: Iterable[ConfirmedReservation],
    holds: Iterable[Hold],
    *,
    date_range: DateRange,
    now: datetime,
) -> dict[str, RoomLoad]:
    occupied = {room.room_id: 0 for room in rooms}
    occupants = dict.fromkeys(occupied, 0)

    for reservation in reservations:
        if reservation.room_id not in occupied:
            continue
        if not reservation.is_occupying or not reservation.date_range.overlaps(date_range):
            continue
        occupied[reservation.room_id] += reservation.beds_count
        occupants[reservation.room_id] += 1

    for hold in holds:
        if hold.room_id not in occupied:
            continue
        if not hold.is_occupying(now) or not hold.date_range.overlaps(date_range):
            continue
        occupied[hold.room_id] += hold.beds_count
        occupants[hold.room_id] += 1

    return {
        room_id: RoomLoad(occupied=occupied[room_id], occupants=occupants[room_id])
        for room_id in occupied
    }


def hours_until_check_in(check_in: date, now: datetime, tz: ZoneInfo) -> int:
    """Whole hours from ``now`` until check-in day starts, truncated toward zero."""
    check_in_at = datetime.combine(check_in, time.min, tzinfo=tz)
    return math.trunc((check_in_at - now).total_seconds() / 3600)


def effective_room_type(room: Room, *, hours_until: int, occupants: int) -> RoomType:
    """Query-time room type; never mutates the catalog."""
    if not room.is_flexible or room.auto_convert_threshold_hours is None:
        return room.base_type
    if occupants == 0 and hours_until <= room.auto_convert_threshold_hours:
        return RoomType.MIXED
    return room.base_type


def build_room_occupancy(
    rooms: Iterable[Room],
    loads: dict[str, RoomLoad],
    *,
    hours_until: int,
) -> tuple[RoomOccupancy, ...]:
    snapshot: list[RoomOccupancy] = []
    for room in rooms:
        load = loads.get(room.room_id, RoomLoad())
        snapshot.append(
            RoomOccupancy(
                room_id=room.room_id,
                display_name=room.display_name,
                capacity=room.capacity,
                occupied=load.occupied,
                available=max(0, room.capacity - load.occupied),
                effective_type=effective_room_type(
                    room,
                    hours_until=hours_until,
                    occupants=load.occupants,
                ),
                is_flexible=room.is_flexible,
            )
        )
    return tuple(snapshot)
