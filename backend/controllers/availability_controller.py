"""HTTP controller layer for availability, allocation, and pricing."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from backend.controllers.dependencies import (
    get_allocation_service,
    get_availability_service,
    get_pricing_service,
    to_http_exception,
)
from backend.domain.errors import HostelEngineError
from backend.domain.models import (
    AllocationPlan,
    AllocationPreferences,
    AvailabilityResult,
    DateRange,
    RoomType,
)
from backend.services.allocation_service import RoomAllocationService
from backend.services.availability_service import AvailabilityService
from backend.services.pricing_service import PricingService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["availability"])


class StayWindowRequest(BaseModel):
    check_in: date
    check_out: date

    @field_validator("check_out")
    @classmethod
    def validate_check_out_after_check_in(cls, value: date, info: ValidationInfo) -> date:
        check_in = info.data.get("check_in")
        if check_in is not None and value <= check_in:
            raise ValueError("check_out must be after check_in")
        return value

    def to_date_range(self) -> DateRange:
        return DateRange(check_in=self.check_in, check_out=self.check_out)


class AvailabilityRequest(StayWindowRequest):
    requested_beds: int = Field(ge=1)
    exclude_reservation_id: str | None = None


class AvailabilityScanRequest(StayWindowRequest):
    requested_beds: int = Field(ge=1)
    days_to_check: int = Field(default=7, ge=1, le=31)


class RoomOccupancyResponse(BaseModel):
    room_id: str
    display_name: str
    capacity: int = Field(gt=0)
    occupied: int = Field(ge=0)
    available: int = Field(ge=0)
    effective_type: RoomType
    is_flexible: bool


class AvailabilityResponse(BaseModel):
    is_available: bool
    check_in: date
    check_out: date
    requested_beds: int
    total_available_beds: int = Field(ge=0)
    rooms: list[RoomOccupancyResponse]
    conflicts: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class PreferencesRequest(BaseModel):
    prefer_single_room: bool = False
    room_type_preference: RoomType | None = None
    allow_split: bool = True
    max_rooms_in_split: int = Field(default=4, ge=1, le=4)

    def to_domain(self) -> AllocationPreferences:
        return AllocationPreferences(
            prefer_single_room=self.prefer_single_room,
            room_type_preference=self.room_type_preference,
            allow_split=self.allow_split,
            max_rooms_in_split=self.max_rooms_in_split,
        )


class AllocationRequest(StayWindowRequest):
    requested_beds: int = Field(ge=1)
    preferences: PreferencesRequest = Field(default_factory=PreferencesRequest)


class RoomAllocationResponse(BaseModel):
    room_id: str
    display_name: str
    beds_assigned: int = Field(gt=0)
    capacity: int = Field(gt=0)
    effective_type: RoomType


class AllocationPlanResponse(BaseModel):
    strategy: str
    score: int
    waste: int
    total_beds: int
    allocations: list[RoomAllocationResponse]


class AllocationResponse(BaseModel):
    success: bool
    requested_beds: int
    plan: AllocationPlanResponse | None = None
    alternatives: list[AllocationPlanResponse] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class PricingQuoteRequest(StayWindowRequest):
    beds_count: int = Field(ge=1)
    base_price_per_bed: Decimal | None = Field(default=None, gt=0)


class PricingResponse(BaseModel):
    base_price_per_bed: Decimal
    season: str
    season_multiplier: Decimal
    nights: int = Field(gt=0)
    beds_count: int = Field(gt=0)
    subtotal: Decimal
    group_discount_rate: Decimal
    group_discount_tier: str
    discount_amount: Decimal
    total_price: Decimal
    currency: str
    carnival_min_nights_met: bool


def availability_to_response(result: AvailabilityResult) -> AvailabilityResponse:
    return AvailabilityResponse(
        is_available=result.is_available,
        check_in=result.date_range.check_in,
        check_out=result.date_range.check_out,
        requested_beds=result.requested_beds,
        total_available_beds=result.total_available_beds,
        rooms=[
            RoomOccupancyResponse(
                room_id=room.room_id,
                display_name=room.display_name,
                capacity=room.capacity,
                occupied=room.occupied,
                available=room.available,
                effective_type=room.effective_type,
                is_flexible=room.is_flexible,
            )
            for room in result.rooms
        ],
        conflicts=list(result.conflicts),
        suggestions=list(result.suggestions),
    )


def plan_to_response(plan: AllocationPlan) -> AllocationPlanResponse:
    return AllocationPlanResponse(
        strategy=plan.strategy.value,
        score=plan.score,
        waste=plan.waste,
        total_beds=plan.total_beds,
        allocations=[
            RoomAllocationResponse(
                room_id=item.room_id,
                display_name=item.display_name,
                beds_assigned=item.beds_assigned,
                capacity=item.capacity,
                effective_type=item.effective_type,
            )
            for item in plan.allocations
        ],
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/rooms", response_model=list[RoomOccupancyResponse])
async def list_rooms(
    service: AvailabilityService = Depends(get_availability_service),
) -> list[RoomOccupancyResponse]:
    """Static catalog view; occupancy fields describe an empty hostel."""
    return [
        RoomOccupancyResponse(
            room_id=room.room_id,
            display_name=room.display_name,
            capacity=room.capacity,
            occupied=0,
            available=room.capacity,
            effective_type=room.base_type,
            is_flexible=room.is_flexible,
        )
        for room in service.catalog.rooms
    ]


@router.post(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def check_availability(
    payload: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        result = service.check_availability(
            payload.to_date_range(),
            payload.requested_beds,
            payload.exclude_reservation_id,
        )
        return availability_to_response(result)
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected availability failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check availability",
        ) from exc


@router.post(
    "/availability/scan",
    response_model=dict[str, AvailabilityResponse],
    status_code=status.HTTP_200_OK,
)
def scan_availability(
    payload: AvailabilityScanRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> dict[str, AvailabilityResponse]:
    try:
        results = service.check_date_shifts(
            payload.to_date_range(),
            payload.requested_beds,
            payload.days_to_check,
        )
        return {key: availability_to_response(value) for key, value in results.items()}
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/allocations",
    response_model=AllocationResponse,
    status_code=status.HTTP_200_OK,
)
def allocate(
    payload: AllocationRequest,
    service: RoomAllocationService = Depends(get_allocation_service),
) -> AllocationResponse:
    """Preview allocation; nothing is held."""
    try:
        result = service.allocate(
            payload.requested_beds,
            payload.to_date_range(),
            payload.preferences.to_domain(),
        )
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    return AllocationResponse(
        success=result.success,
        requested_beds=result.requested_beds,
        plan=plan_to_response(result.plan) if result.plan is not None else None,
        alternatives=[plan_to_response(plan) for plan in result.alternatives],
        conflicts=list(result.conflicts),
        suggestions=list(result.suggestions),
    )


@router.post(
    "/pricing/quote",
    response_model=PricingResponse,
    status_code=status.HTTP_200_OK,
)
def price_stay(
    payload: PricingQuoteRequest,
    service: PricingService = Depends(get_pricing_service),
) -> PricingResponse:
    try:
        date_range = payload.to_date_range()
        result = service.price(date_range, payload.beds_count, payload.base_price_per_bed)
        carnival = service.validate_carnival_booking(date_range)
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    return PricingResponse(
        base_price_per_bed=result.base_price_per_bed,
        season=result.season.value,
        season_multiplier=result.season_multiplier,
        nights=result.nights,
        beds_count=result.beds_count,
        subtotal=result.subtotal,
        group_discount_rate=result.group_discount_rate,
        group_discount_tier=result.group_discount_tier,
        discount_amount=result.discount_amount,
        total_price=result.total_price,
        currency=result.currency,
        carnival_min_nights_met=carnival.is_valid,
    )
