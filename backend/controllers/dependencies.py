"""Shared FastAPI dependency providers and error mapping for the controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from backend.domain.errors import (
    AllocationConflictError,
    BackendUnavailableError,
    HoldNotFoundError,
    HostelEngineError,
    NoAvailabilityError,
    ValidationError,
)
from backend.services.allocation_service import RoomAllocationService
from backend.services.availability_service import AvailabilityService
from backend.services.booking_service import BookingWorkflowService
from backend.services.hold_service import HoldService
from backend.services.pricing_service import PricingService


def _service_from_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _service_from_state(request, "availability_service", "Availability service")


def get_allocation_service(request: Request) -> RoomAllocationService:
    return _service_from_state(request, "allocation_service", "Allocation service")


def get_pricing_service(request: Request) -> PricingService:
    return _service_from_state(request, "pricing_service", "Pricing service")


def get_hold_service(request: Request) -> HoldService:
    return _service_from_state(request, "hold_service", "Hold service")


def get_booking_service(request: Request) -> BookingWorkflowService:
    return _service_from_state(request, "booking_service", "Booking service")


def to_http_exception(exc: HostelEngineError) -> HTTPException:
    """Translate an engine error into the matching HTTP status."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NoAvailabilityError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(exc),
                "conflicts": list(exc.conflicts),
                "suggestions": list(exc.suggestions),
            },
        )
    if isinstance(exc, AllocationConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "room_id": exc.room_id, "retryable": True},
        )
    if isinstance(exc, HoldNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, BackendUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
