"""Short-lived cache of per-room load snapshots keyed by stay window."""

from __future__ import annotations

import json
from datetime import date
from typing import Optional

from backend.domain.errors import ValidationError
from backend.domain.models import DateRange
from backend.domain.occupancy import RoomLoad
from backend.repository.kv_store import KeyValueStore
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

CACHE_PREFIX = "availability:"
GENERATION_KEY = "availability-generation"


class AvailabilityCache:
    """Caches raw room loads, never the flexible-room decision.

    The effective room type depends on the query instant, so it is derived
    from the cached loads on every read.

    Entries are keyed by the cache generation a reader saw before loading.
    Every invalidation bumps the generation, so a load that raced a hold
    transition lands under a key no later read asks for.
    """

    def __init__(self, store: KeyValueStore, settings: Optional[Settings] = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    @staticmethod
    def key_for(
        date_range: DateRange,
        exclude_reservation_id: Optional[str] = None,
        generation: int = 0,
    ) -> str:
        key = (
            f"{CACHE_PREFIX}{generation}:"
            f"{date_range.check_in.isoformat()}:{date_range.check_out.isoformat()}"
        )
        if exclude_reservation_id:
            key += f":exclude:{exclude_reservation_id}"
        return key

    def generation(self) -> int:
        raw = self._store.get(GENERATION_KEY)
        return int(raw) if raw is not None else 0

    def get(
        self,
        date_range: DateRange,
        exclude_reservation_id: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> Optional[dict[str, RoomLoad]]:
        if generation is None:
            generation = self.generation()
        raw = self._store.get(self.key_for(date_range, exclude_reservation_id, generation))
        if raw is None:
            return None
        payload = json.loads(raw)
        return {
            room_id: RoomLoad(occupied=int(values[0]), occupants=int(values[1]))
            for room_id, values in payload.items()
        }

    def put(
        self,
        date_range: DateRange,
        loads: dict[str, RoomLoad],
        exclude_reservation_id: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> None:
        """Store ``loads`` under ``generation``, the one read before loading them."""
        if generation is None:
            generation = self.generation()
        payload = {room_id: [load.occupied, load.occupants] for room_id, load in loads.items()}
        self._store.set(
            self.key_for(date_range, exclude_reservation_id, generation),
            json.dumps(payload, sort_keys=True),
            self._settings.availability_cache_ttl_seconds,
        )

    def _bump_generation(self) -> int:
        return self._store.incr(GENERATION_KEY)

    def invalidate_overlapping(self, date_range: DateRange) -> int:
        generation = self._bump_generation()
        removed = 0
        for key in self._store.keys_matching(CACHE_PREFIX):
            parts = key[len(CACHE_PREFIX):].split(":")
            try:
                cached_range = DateRange(
                    check_in=date.fromisoformat(parts[1]),
                    check_out=date.fromisoformat(parts[2]),
                )
            except (IndexError, ValueError, ValidationError):
                self._store.delete(key)
                continue
            if cached_range.overlaps(date_range) and self._store.delete(key):
                removed += 1
        logger.debug(
            "Availability cache invalidated | check_in=%s | check_out=%s | keys=%s | generation=%s",
            date_range.check_in,
            date_range.check_out,
            removed,
            generation,
        )
        return removed

    def invalidate_all(self) -> int:
        generation = self._bump_generation()
        removed = sum(1 for key in self._store.keys_matching(CACHE_PREFIX) if self._store.delete(key))
        logger.debug("Availability cache cleared | keys=%s | generation=%s", removed, generation)
        return removed
