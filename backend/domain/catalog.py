"""Static room catalog for the property, loaded once at startup."""

from __future__ import annotations

from backend.domain.models import Room, RoomType


ROOM_CATALOG: tuple[Room, ...] = (
    Room(
        room_id="room_mixto_12a",
        display_name="Mixto 12A",
        capacity=12,
        base_type=RoomType.MIXED,
    ),
    Room(
        room_id="room_mixto_12b",
        display_name="Mixto 12B",
        capacity=12,
        base_type=RoomType.MIXED,
    ),
    Room(
        room_id="room_mixto_7",
        display_name="Mixto 7",
        capacity=7,
        base_type=RoomType.MIXED,
    ),
    Room(
        room_id="room_flexible_7",
        display_name="Flexible 7",
        capacity=7,
        base_type=RoomType.FEMALE,
        is_flexible=True,
        auto_convert_threshold_hours=48,
    ),
)


class RoomCatalog:
    """Immutable lookup over the configured rooms."""

    def __init__(self, rooms: tuple[Room, ...] = ROOM_CATALOG) -> None:
        validate_catalog(rooms)
        self._rooms = rooms
        self._by_id = {room.room_id: room for room in rooms}

    @property
    def rooms(self) -> tuple[Room, ...]:
        return self._rooms

    @property
    def total_capacity(self) -> int:
        return sum(room.capacity for room in self._rooms)

    def get(self, room_id: str) -> Room | None:
        return self._by_id.get(room_id)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._by_id


def validate_catalog(rooms: tuple[Room, ...]) -> None:
    if not rooms:
        raise ValueError("room catalog must not be empty")
    room_ids = [room.room_id for room in rooms]
    if len(set(room_ids)) != len(room_ids):
        raise ValueError("room ids must be unique")
    for room in rooms:
        if room.capacity <= 0:
            raise ValueError(f"room {room.room_id} capacity must be > 0")
        if room.is_flexible and room.auto_convert_threshold_hours is None:
            raise ValueError(f"flexible room {room.room_id} needs a conversion threshold")
    flexible_count = sum(1 for room in rooms if room.is_flexible)
    if flexible_count != 1:
        raise ValueError("room catalog must contain exactly one flexible room")
