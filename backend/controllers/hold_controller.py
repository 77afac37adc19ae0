"""HTTP controller layer for holds and booking confirmation."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.controllers.availability_controller import (
    AllocationPlanResponse,
    PreferencesRequest,
    StayWindowRequest,
    plan_to_response,
)
from backend.controllers.dependencies import (
    get_booking_service,
    get_hold_service,
    to_http_exception,
)
from backend.domain.errors import HostelEngineError
from backend.domain.models import DateRange, Hold, HoldStatus
from backend.services.booking_service import BookingWorkflowService
from backend.services.hold_service import HoldService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/holds", tags=["holds"])


class CreateHoldRequest(StayWindowRequest):
    requested_beds: int = Field(ge=1)
    guest_ref: str | None = Field(default=None, max_length=128)
    ttl_seconds: int | None = Field(default=None, gt=0, le=3600)
    preferences: PreferencesRequest = Field(default_factory=PreferencesRequest)


class HoldResponse(BaseModel):
    hold_id: str
    hold_set_id: str
    room_id: str
    beds_count: int
    bed_numbers: list[int]
    check_in: date
    check_out: date
    created_at: datetime
    expires_at: datetime
    status: HoldStatus
    outcome: str | None = None


class HoldSetResponse(BaseModel):
    hold_set_id: str
    expires_at: datetime
    total_beds: int
    holds: list[HoldResponse]
    plan: AllocationPlanResponse
    pricing: dict[str, Any]
    attempts: int


class ConfirmHoldRequest(BaseModel):
    outcome: str = Field(default="paid", min_length=1, max_length=64)
    guest_ref: str = Field(min_length=1, max_length=128)


class ConfirmHoldResponse(BaseModel):
    reservation_id: str
    hold_set_id: str
    total_price: str
    currency: str


class ReleaseHoldResponse(BaseModel):
    hold_set_id: str
    released: bool


class SweepResponse(BaseModel):
    expired: int = Field(ge=0)


def hold_to_response(hold: Hold) -> HoldResponse:
    return HoldResponse(
        hold_id=hold.hold_id,
        hold_set_id=hold.hold_set_id,
        room_id=hold.room_id,
        beds_count=hold.beds_count,
        bed_numbers=list(hold.bed_numbers),
        check_in=hold.date_range.check_in,
        check_out=hold.date_range.check_out,
        created_at=hold.created_at,
        expires_at=hold.expires_at,
        status=hold.status,
        outcome=hold.outcome,
    )


@router.post(
    "",
    response_model=HoldSetResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_hold(
    payload: CreateHoldRequest,
    service: BookingWorkflowService = Depends(get_booking_service),
) -> HoldSetResponse:
    """Run availability, allocation, and pricing, then claim the beds."""
    try:
        draft = service.reserve(
            payload.to_date_range(),
            payload.requested_beds,
            payload.preferences.to_domain(),
            guest_ref=payload.guest_ref,
            ttl_seconds=payload.ttl_seconds,
        )
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected hold creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create hold",
        ) from exc
    return HoldSetResponse(
        hold_set_id=draft.hold_set.hold_set_id,
        expires_at=draft.hold_set.expires_at,
        total_beds=draft.hold_set.total_beds,
        holds=[hold_to_response(hold) for hold in draft.hold_set.holds],
        plan=plan_to_response(draft.quote.plan),
        pricing=draft.quote.pricing.to_dict(),
        attempts=draft.attempts,
    )


@router.get("", response_model=list[HoldResponse])
def list_holds(
    check_in: date | None = None,
    check_out: date | None = None,
    hold_status: HoldStatus | None = None,
    service: HoldService = Depends(get_hold_service),
) -> list[HoldResponse]:
    try:
        date_range = None
        if check_in is not None and check_out is not None:
            date_range = DateRange(check_in=check_in, check_out=check_out)
        holds = service.list_holds(date_range, hold_status)
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    return [hold_to_response(hold) for hold in holds]


@router.post("/sweep", response_model=SweepResponse)
def sweep_expired_holds(
    service: HoldService = Depends(get_hold_service),
) -> SweepResponse:
    try:
        return SweepResponse(expired=service.sweep_expired())
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{hold_set_id}/confirm", response_model=ConfirmHoldResponse)
def confirm_hold_set(
    hold_set_id: str,
    payload: ConfirmHoldRequest,
    service: BookingWorkflowService = Depends(get_booking_service),
) -> ConfirmHoldResponse:
    try:
        booking = service.confirm(hold_set_id, payload.outcome, payload.guest_ref)
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    return ConfirmHoldResponse(
        reservation_id=booking.reservation_id,
        hold_set_id=booking.hold_set_id,
        total_price=str(booking.pricing.total_price),
        currency=booking.pricing.currency,
    )


@router.post("/{hold_set_id}/release", response_model=ReleaseHoldResponse)
def release_hold_set(
    hold_set_id: str,
    service: BookingWorkflowService = Depends(get_booking_service),
) -> ReleaseHoldResponse:
    try:
        released = service.cancel(hold_set_id)
    except HostelEngineError as exc:
        raise to_http_exception(exc) from exc
    return ReleaseHoldResponse(hold_set_id=hold_set_id, released=released)
