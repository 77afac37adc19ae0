"""Hold manager: time-boxed, all-or-nothing claims on room beds."""

from __future__ import annotations

import json
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional, Sequence
from uuid import uuid4

from backend.domain.catalog import RoomCatalog
from backend.domain.errors import (
    AllocationConflictError,
    BackendUnavailableError,
    LockLostError,
    ValidationError,
)
from backend.domain.models import DateRange, Hold, HoldSet, HoldStatus, RoomAllocation
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.data_repository import DataRepository
from backend.repository.kv_store import KeyValueStore, StoreLock
from backend.utils.clock import Clock, SystemClock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

HOLD_PREFIX = "hold:"
LOCK_PREFIX = "lock:room:"


class HoldService:
    """Creates, confirms, releases, and expires holds.

    Every claim and state transition runs under a per-room lease from the
    store's token-checked ``lock``. Leases are always acquired in room-id
    order so concurrent multi-room claims cannot deadlock.
    """

    def __init__(
        self,
        store: KeyValueStore,
        repository: DataRepository,
        availability_cache: AvailabilityCache,
        catalog: Optional[RoomCatalog] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._cache = availability_cache
        self._catalog = catalog or RoomCatalog()
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()

    # -- locking ---------------------------------------------------------

    @contextmanager
    def _room_lock(self, room_id: str) -> Iterator[StoreLock]:
        """Hold the room's lease; callers renew it before every write.

        Renewing fails with ``LockLostError`` if the lease ran out while the
        caller was reading, so no write is ever made on an expired lock.
        """
        lock = self._store.lock(
            f"{LOCK_PREFIX}{room_id}",
            timeout=self._settings.lock_ttl_seconds,
            sleep=self._settings.lock_retry_interval_seconds,
            blocking_timeout=self._settings.backend_timeout_seconds,
        )
        if not lock.acquire():
            raise BackendUnavailableError(f"Timed out waiting for lock on room {room_id}")
        try:
            yield lock
        finally:
            try:
                lock.release()
            except LockLostError:
                logger.warning("Room lock expired before release | room_id=%s", room_id)

    @contextmanager
    def _locked_rooms(self, room_ids: Iterable[str]) -> Iterator[dict[str, StoreLock]]:
        with ExitStack() as stack:
            locks = {
                room_id: stack.enter_context(self._room_lock(room_id))
                for room_id in sorted(set(room_ids))
            }
            yield locks

    # -- persistence -----------------------------------------------------

    def _save(self, hold: Hold) -> None:
        self._store.set(
            f"{HOLD_PREFIX}{hold.hold_id}",
            json.dumps(hold.to_dict()),
            self._record_ttl(hold),
        )

    def _record_ttl(self, hold: Hold) -> float:
        retention = float(self._settings.hold_record_retention_seconds)
        if hold.status is HoldStatus.ACTIVE:
            remaining = (hold.expires_at - self._clock.now()).total_seconds()
            return max(1.0, remaining + retention)
        return max(1.0, retention)

    def get_hold(self, hold_id: str) -> Optional[Hold]:
        raw = self._store.get(f"{HOLD_PREFIX}{hold_id}")
        if raw is None:
            return None
        return Hold.from_dict(json.loads(raw))

    def list_holds(
        self,
        date_range: Optional[DateRange] = None,
        status: Optional[HoldStatus] = None,
    ) -> list[Hold]:
        holds: list[Hold] = []
        for key in self._store.keys_matching(HOLD_PREFIX):
            hold = self.get_hold(key[len(HOLD_PREFIX):])
            if hold is None:
                continue
            if date_range is not None and not hold.date_range.overlaps(date_range):
                continue
            if status is not None and hold.status is not status:
                continue
            holds.append(hold)
        return sorted(holds, key=lambda item: (item.created_at, item.hold_id))

    def list_active_holds(self, date_range: DateRange) -> list[Hold]:
        now = self._clock.now()
        return [hold for hold in self.list_holds(date_range) if hold.is_occupying(now)]

    def get_hold_set(self, hold_set_id: str) -> Optional[HoldSet]:
        members = tuple(hold for hold in self.list_holds() if hold.hold_set_id == hold_set_id)
        if not members:
            return None
        return HoldSet(
            hold_set_id=hold_set_id,
            holds=members,
            date_range=members[0].date_range,
            expires_at=min(hold.expires_at for hold in members),
        )

    # -- claims ----------------------------------------------------------

    def _validate_allocations(self, allocations: Sequence[RoomAllocation]) -> None:
        if not allocations:
            raise ValidationError("At least one room allocation is required")
        seen: set[str] = set()
        for allocation in allocations:
            room = self._catalog.get(allocation.room_id)
            if room is None:
                raise ValidationError(f"Unknown room id {allocation.room_id}")
            if allocation.room_id in seen:
                raise ValidationError(f"Room {allocation.room_id} appears more than once")
            if not 1 <= allocation.beds_assigned <= room.capacity:
                raise ValidationError(
                    f"Room {room.display_name} has capacity of {room.capacity} beds"
                )
            seen.add(allocation.room_id)

    def create_hold(
        self,
        room_allocations: Sequence[RoomAllocation],
        date_range: DateRange,
        ttl_seconds: Optional[float] = None,
        guest_ref: Optional[str] = None,
    ) -> HoldSet:
        """Claim every allocation or none of them.

        Raises ``AllocationConflictError`` when any room cannot take its beds;
        claims already made for this call are deleted and the overlapping
        cache windows invalidated before the error propagates, so a retry
        reads fresh loads.
        """
        self._validate_allocations(room_allocations)
        ttl = self._settings.hold_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValidationError("Hold ttl must be positive")

        hold_set_id = f"HOLDSET-{uuid4().hex[:12].upper()}"
        claimed: list[Hold] = []
        with self._locked_rooms(allocation.room_id for allocation in room_allocations) as locks:
            now = self._clock.now()
            expires_at = now + timedelta(seconds=ttl)
            try:
                reservations = self._repository.fetch_confirmed_reservations(date_range)
                active_holds = self.list_active_holds(date_range)
                for allocation in room_allocations:
                    hold = self._claim(
                        allocation,
                        date_range,
                        lock=locks[allocation.room_id],
                        hold_set_id=hold_set_id,
                        confirmed_beds=sum(
                            item.beds_count
                            for item in reservations
                            if item.room_id == allocation.room_id and item.is_occupying
                        ),
                        room_holds=[
                            item for item in active_holds if item.room_id == allocation.room_id
                        ],
                        now=now,
                        expires_at=expires_at,
                        guest_ref=guest_ref,
                    )
                    claimed.append(hold)
            except Exception:
                self._rollback(claimed)
                self._cache.invalidate_overlapping(date_range)
                raise

        self._cache.invalidate_overlapping(date_range)
        logger.info(
            "Hold set created | hold_set_id=%s | rooms=%s | beds=%s | expires_at=%s",
            hold_set_id,
            [hold.room_id for hold in claimed],
            sum(hold.beds_count for hold in claimed),
            expires_at.isoformat(),
        )
        return HoldSet(
            hold_set_id=hold_set_id,
            holds=tuple(claimed),
            date_range=date_range,
            expires_at=expires_at,
        )

    def _claim(
        self,
        allocation: RoomAllocation,
        date_range: DateRange,
        *,
        lock: StoreLock,
        hold_set_id: str,
        confirmed_beds: int,
        room_holds: list[Hold],
        now: datetime,
        expires_at: datetime,
        guest_ref: Optional[str],
    ) -> Hold:
        room = self._catalog.get(allocation.room_id)
        if room is None:
            raise ValidationError(f"Unknown room id {allocation.room_id}")
        held_beds = sum(hold.beds_count for hold in room_holds)
        if confirmed_beds + held_beds + allocation.beds_assigned > room.capacity:
            logger.warning(
                "Claim conflict | room_id=%s | requested=%s | confirmed=%s | held=%s | capacity=%s",
                room.room_id,
                allocation.beds_assigned,
                confirmed_beds,
                held_beds,
                room.capacity,
            )
            raise AllocationConflictError(
                f"Room {room.display_name} no longer has {allocation.beds_assigned} free beds",
                room_id=room.room_id,
            )

        taken = {number for hold in room_holds for number in hold.bed_numbers}
        free_numbers = [number for number in range(1, room.capacity + 1) if number not in taken]
        hold = Hold(
            hold_id=f"HOLD-{uuid4().hex[:12].upper()}",
            hold_set_id=hold_set_id,
            room_id=room.room_id,
            beds_count=allocation.beds_assigned,
            date_range=date_range,
            created_at=now,
            expires_at=expires_at,
            bed_numbers=tuple(free_numbers[: allocation.beds_assigned]),
            guest_ref=guest_ref,
        )
        lock.reacquire()
        if not self._store.set_if_absent(
            f"{HOLD_PREFIX}{hold.hold_id}",
            json.dumps(hold.to_dict()),
            self._record_ttl(hold),
        ):
            raise AllocationConflictError(f"Hold id collision for room {room.room_id}", room.room_id)
        return hold

    def _rollback(self, claimed: list[Hold]) -> None:
        for hold in claimed:
            self._store.delete(f"{HOLD_PREFIX}{hold.hold_id}")
        if claimed:
            logger.warning(
                "Partial claim rolled back | hold_set_id=%s | released_rooms=%s",
                claimed[0].hold_set_id,
                [hold.room_id for hold in claimed],
            )

    # -- transitions -----------------------------------------------------

    def confirm_hold(self, hold_id: str, outcome: str = "paid") -> bool:
        """``active -> confirmed``; repeating with the same outcome is a no-op."""
        hold = self.get_hold(hold_id)
        if hold is None:
            return False
        with self._room_lock(hold.room_id) as lock:
            confirmed = self._confirm_locked(hold_id, outcome, lock)
        # A refused confirm may still have expired the hold.
        self._cache.invalidate_overlapping(hold.date_range)
        return confirmed

    def _confirm_locked(self, hold_id: str, outcome: str, lock: StoreLock) -> bool:
        hold = self.get_hold(hold_id)
        if hold is None:
            return False
        if hold.status is HoldStatus.CONFIRMED:
            return hold.outcome == outcome
        if not self._is_confirmable(hold):
            return False
        lock.reacquire()
        self._save(replace(hold, status=HoldStatus.CONFIRMED, outcome=outcome))
        logger.info("Hold confirmed | hold_id=%s | outcome=%s", hold_id, outcome)
        return True

    def _is_confirmable(self, hold: Hold) -> bool:
        if hold.status is not HoldStatus.ACTIVE:
            return False
        if hold.is_expired(self._clock.now()):
            self._save(replace(hold, status=HoldStatus.EXPIRED))
            logger.info("Hold expired on confirm | hold_id=%s", hold.hold_id)
            return False
        return True

    def confirm_hold_set(
        self,
        hold_set_id: str,
        outcome: str = "paid",
        on_confirmed: Optional[Callable[[HoldSet], None]] = None,
    ) -> bool:
        """Confirm every member or none of them.

        ``on_confirmed`` runs after the members are marked confirmed while
        their room locks are still held, so no claim can slip into the
        rooms before it returns. It only runs when at least one member
        actually transitioned. If it raises, those members go back to
        ``active`` and the error propagates.
        """
        hold_set = self.get_hold_set(hold_set_id)
        if hold_set is None:
            return False
        try:
            with self._locked_rooms(hold.room_id for hold in hold_set.holds) as locks:
                current = [self.get_hold(hold.hold_id) for hold in hold_set.holds]
                confirmable = all(
                    hold is not None
                    and (
                        (hold.status is HoldStatus.CONFIRMED and hold.outcome == outcome)
                        or self._is_confirmable(hold)
                    )
                    for hold in current
                )
                if confirmable:
                    transitioned = [
                        hold
                        for hold in current
                        if hold is not None and hold.status is HoldStatus.ACTIVE
                    ]
                    for hold in transitioned:
                        locks[hold.room_id].reacquire()
                        self._save(replace(hold, status=HoldStatus.CONFIRMED, outcome=outcome))
                    if on_confirmed is not None and transitioned:
                        for lock in locks.values():
                            lock.reacquire()
                        try:
                            on_confirmed(hold_set)
                        except Exception:
                            for hold in transitioned:
                                locks[hold.room_id].reacquire()
                                self._save(hold)
                            logger.warning(
                                "Hold set confirmation reverted | hold_set_id=%s",
                                hold_set_id,
                            )
                            raise
        finally:
            self._cache.invalidate_overlapping(hold_set.date_range)
        if confirmable:
            logger.info("Hold set confirmed | hold_set_id=%s | outcome=%s", hold_set_id, outcome)
        else:
            logger.warning("Hold set not confirmable | hold_set_id=%s", hold_set_id)
        return confirmable

    def release_hold(self, hold_id: str) -> bool:
        """``active -> released``; unknown or already-terminal holds return False."""
        hold = self.get_hold(hold_id)
        if hold is None:
            return False
        with self._room_lock(hold.room_id) as lock:
            released = self._release_locked(hold_id, lock)
        if released:
            self._cache.invalidate_overlapping(hold.date_range)
        return released

    def _release_locked(self, hold_id: str, lock: StoreLock) -> bool:
        hold = self.get_hold(hold_id)
        if hold is None or hold.status is not HoldStatus.ACTIVE:
            return False
        lock.reacquire()
        self._save(replace(hold, status=HoldStatus.RELEASED))
        logger.info("Hold released | hold_id=%s | room_id=%s", hold_id, hold.room_id)
        return True

    def release_hold_set(self, hold_set_id: str) -> bool:
        hold_set = self.get_hold_set(hold_set_id)
        if hold_set is None:
            return False
        with self._locked_rooms(hold.room_id for hold in hold_set.holds) as locks:
            results = [
                self._release_locked(hold.hold_id, locks[hold.room_id])
                for hold in hold_set.holds
            ]
        if any(results):
            self._cache.invalidate_overlapping(hold_set.date_range)
        return any(results)

    def sweep_expired(self) -> int:
        """Mark every active hold past its ``expires_at`` as expired."""
        now = self._clock.now()
        candidates = [hold for hold in self.list_holds(status=HoldStatus.ACTIVE) if hold.is_expired(now)]
        expired = 0
        for candidate in candidates:
            with self._room_lock(candidate.room_id) as lock:
                hold = self.get_hold(candidate.hold_id)
                if hold is None or not hold.is_expired(self._clock.now()):
                    continue
                lock.reacquire()
                self._save(replace(hold, status=HoldStatus.EXPIRED))
            self._cache.invalidate_overlapping(hold.date_range)
            expired += 1
        if expired:
            logger.info("Expired holds swept | count=%s", expired)
        return expired


class HoldSweeper:
    """Runs ``sweep_expired`` on a fixed period in a background thread."""

    def __init__(self, hold_service: HoldService, interval_seconds: float) -> None:
        self._hold_service = hold_service
        self._interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="hold-sweeper", daemon=True)
        self._thread.start()
        logger.info("Hold sweeper started | interval_seconds=%s", self._interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("Hold sweeper stopped")

    def run_once(self) -> int:
        try:
            return self._hold_service.sweep_expired()
        except BackendUnavailableError:
            logger.exception("Hold sweep failed; retrying next tick")
            return 0

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:  # pragma: no cover - keep the sweeper alive
                logger.exception("Unexpected hold sweep failure")
