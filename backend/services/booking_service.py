"""Booking pipeline: availability -> allocation -> pricing -> hold -> confirm."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from backend.domain.catalog import RoomCatalog
from backend.domain.errors import (
    AllocationConflictError,
    HoldNotFoundError,
    NoAvailabilityError,
    ValidationError,
)
from backend.domain.models import (
    AllocationPlan,
    AllocationPreferences,
    AllocationResult,
    AllocationStrategy,
    AvailabilityResult,
    DateRange,
    HoldSet,
    PricingResult,
    RoomAllocation,
)
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.data_repository import DataRepository
from backend.repository.kv_store import KeyValueStore
from backend.services.allocation_service import (
    RoomAllocationService,
    multi_room_score,
    single_room_score,
)
from backend.services.availability_service import AvailabilityService
from backend.services.hold_service import HoldService
from backend.services.pricing_service import PricingService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

BOOKING_PREFIX = "booking:"
RECORDING_MARKER = "__recording__"


@dataclass(frozen=True)
class Quote:
    date_range: DateRange
    availability: AvailabilityResult
    allocation: AllocationResult
    pricing: PricingResult

    @property
    def plan(self) -> AllocationPlan:
        if self.allocation.plan is None:
            raise NoAvailabilityError("No suitable room allocation found")
        return self.allocation.plan


@dataclass(frozen=True)
class ReservationDraft:
    quote: Quote
    hold_set: HoldSet
    attempts: int


@dataclass(frozen=True)
class ConfirmedBooking:
    reservation_id: str
    hold_set_id: str
    plan: AllocationPlan
    pricing: PricingResult


class BookingWorkflowService:
    """Coordinates the engine the way an HTTP handler would.

    Any ``AllocationConflictError`` from the claim step re-runs the whole
    pipeline, never the stale plan.
    """

    def __init__(
        self,
        repository: DataRepository,
        store: KeyValueStore,
        availability_cache: AvailabilityCache,
        availability_service: AvailabilityService,
        allocation_service: RoomAllocationService,
        pricing_service: PricingService,
        hold_service: HoldService,
        catalog: Optional[RoomCatalog] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._repository = repository
        self._store = store
        self._cache = availability_cache
        self._availability_service = availability_service
        self._allocation_service = allocation_service
        self._pricing_service = pricing_service
        self._hold_service = hold_service
        self._catalog = catalog or RoomCatalog()
        self._settings = settings or get_settings()

    def quote(
        self,
        date_range: DateRange,
        requested_beds: int,
        preferences: Optional[AllocationPreferences] = None,
        base_price_per_bed: Optional[Decimal] = None,
        exclude_reservation_id: Optional[str] = None,
    ) -> Quote:
        availability = self._availability_service.check_availability(
            date_range,
            requested_beds,
            exclude_reservation_id,
        )
        if not availability.is_available:
            raise NoAvailabilityError(
                availability.conflicts[0],
                conflicts=availability.conflicts,
                suggestions=availability.suggestions,
            )

        allocation = self._allocation_service.allocate(
            requested_beds,
            date_range,
            preferences,
            exclude_reservation_id,
        )
        if not allocation.success or allocation.plan is None:
            raise NoAvailabilityError(
                "No suitable room allocation found",
                conflicts=allocation.conflicts,
                suggestions=allocation.suggestions,
            )

        pricing = self._pricing_service.price(
            date_range,
            allocation.plan.total_beds,
            base_price_per_bed,
        )
        return Quote(
            date_range=date_range,
            availability=availability,
            allocation=allocation,
            pricing=pricing,
        )

    def reserve(
        self,
        date_range: DateRange,
        requested_beds: int,
        preferences: Optional[AllocationPreferences] = None,
        guest_ref: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
    ) -> ReservationDraft:
        if self._settings.enforce_carnival_min_nights:
            self._pricing_service.ensure_carnival_min_nights(date_range)

        attempt = 0
        while True:
            attempt += 1
            quote = self.quote(date_range, requested_beds, preferences)
            try:
                hold_set = self._hold_service.create_hold(
                    quote.plan.allocations,
                    date_range,
                    ttl_seconds=ttl_seconds,
                    guest_ref=guest_ref,
                )
            except AllocationConflictError as exc:
                if attempt >= self._settings.max_allocation_attempts:
                    logger.warning(
                        "Hold claim retries exhausted | attempts=%s | room_id=%s",
                        attempt,
                        exc.room_id,
                    )
                    raise
                logger.warning(
                    "Hold claim lost a race; re-running pipeline | attempt=%s | room_id=%s",
                    attempt,
                    exc.room_id,
                )
                continue
            return ReservationDraft(quote=quote, hold_set=hold_set, attempts=attempt)

    def confirm(self, hold_set_id: str, outcome: str, guest_ref: str) -> ConfirmedBooking:
        """Confirm the hold set, then record the reservation.

        Recording happens inside the hold manager's confirmation while the
        rooms are still locked; a failed write puts the holds back to active.
        """
        booking_key = f"{BOOKING_PREFIX}{hold_set_id}"
        existing = self._store.get(booking_key)
        hold_set = self._hold_service.get_hold_set(hold_set_id)
        if hold_set is None:
            raise HoldNotFoundError(f"Hold set {hold_set_id} not found")

        plan = self._plan_from_hold_set(hold_set)
        pricing = self._pricing_service.price(hold_set.date_range, plan.total_beds)
        if existing is not None and existing != RECORDING_MARKER:
            if self._hold_service.confirm_hold_set(hold_set_id, outcome):
                return ConfirmedBooking(existing, hold_set_id, plan, pricing)
            raise AllocationConflictError(f"Hold set {hold_set_id} was confirmed with another outcome")

        retention = self._settings.hold_record_retention_seconds or self._settings.hold_ttl_seconds
        if not self._store.set_if_absent(booking_key, RECORDING_MARKER, retention):
            raise AllocationConflictError(f"Hold set {hold_set_id} is already being confirmed")

        recorded: list[str] = []

        def record(confirmed: HoldSet) -> None:
            recorded.append(
                self._repository.record_reservation(
                    plan,
                    pricing,
                    guest_ref,
                    confirmed.date_range,
                )
            )

        try:
            confirmed = self._hold_service.confirm_hold_set(
                hold_set_id,
                outcome,
                on_confirmed=record,
            )
        except Exception:
            self._store.delete(booking_key)
            raise
        if not confirmed:
            self._store.delete(booking_key)
            raise AllocationConflictError(
                f"Hold set {hold_set_id} is no longer active; re-run availability"
            )
        if not recorded:
            self._store.delete(booking_key)
            raise AllocationConflictError(
                f"Hold set {hold_set_id} was already confirmed without a stored reservation"
            )

        reservation_id = recorded[0]
        self._store.set(booking_key, reservation_id, retention)
        self._cache.invalidate_overlapping(hold_set.date_range)
        logger.info(
            "Booking confirmed | reservation_id=%s | hold_set_id=%s | total_cents=%s",
            reservation_id,
            hold_set_id,
            pricing.total_price_cents,
        )
        return ConfirmedBooking(
            reservation_id=reservation_id,
            hold_set_id=hold_set_id,
            plan=plan,
            pricing=pricing,
        )

    def cancel(self, hold_set_id: str) -> bool:
        return self._hold_service.release_hold_set(hold_set_id)

    def cancel_reservation(self, reservation_id: str) -> bool:
        cancelled = self._repository.update_reservation_status(reservation_id, "CANCELLED")
        if cancelled:
            self._cache.invalidate_all()
            logger.info("Reservation cancelled | reservation_id=%s", reservation_id)
        return cancelled

    def _plan_from_hold_set(self, hold_set: HoldSet) -> AllocationPlan:
        allocations: list[RoomAllocation] = []
        for hold in hold_set.holds:
            room = self._catalog.get(hold.room_id)
            if room is None:
                raise ValidationError(f"Hold {hold.hold_id} references unknown room {hold.room_id}")
            allocations.append(
                RoomAllocation(
                    room_id=room.room_id,
                    beds_assigned=hold.beds_count,
                    capacity=room.capacity,
                    effective_type=room.base_type,
                    display_name=room.display_name,
                )
            )
        total_beds = sum(item.beds_assigned for item in allocations)
        waste = sum(item.capacity for item in allocations) - total_beds
        if len(allocations) == 1:
            strategy = AllocationStrategy.SINGLE
            score = single_room_score(allocations[0].capacity, total_beds)
        else:
            strategy = AllocationStrategy.MULTI
            score = multi_room_score(waste, len(allocations))
        return AllocationPlan(
            allocations=tuple(allocations),
            total_beds=total_beds,
            strategy=strategy,
            score=score,
            waste=waste,
        )
