"""Error taxonomy shared by the inventory and allocation engine."""

from __future__ import annotations

from typing import Iterable, Optional


class HostelEngineError(Exception):
    """Base class for every failure raised by the engine."""


class ValidationError(HostelEngineError):
    """Raised for bad input. Never retried; surfaced verbatim to the caller."""


class CarnivalMinNightsNotMetError(ValidationError):
    """Raised when a stay touching carnival is shorter than the minimum."""

    def __init__(self, required_nights: int, actual_nights: int) -> None:
        self.required_nights = required_nights
        self.actual_nights = actual_nights
        super().__init__(
            f"Carnival bookings require a minimum of {required_nights} nights. "
            f"Current booking: {actual_nights} nights."
        )


class NoAvailabilityError(HostelEngineError):
    """Raised when total free capacity cannot cover the request."""

    def __init__(
        self,
        message: str,
        conflicts: Iterable[str] = (),
        suggestions: Iterable[str] = (),
    ) -> None:
        self.conflicts = tuple(conflicts)
        self.suggestions = tuple(suggestions)
        super().__init__(message)


class AllocationConflictError(HostelEngineError):
    """Raised when a plan could not be claimed because of a concurrent hold.

    The only error callers are expected to retry, by re-running the
    pipeline from availability onward.
    """

    def __init__(self, message: str, room_id: Optional[str] = None) -> None:
        self.room_id = room_id
        super().__init__(message)


class BackendUnavailableError(HostelEngineError):
    """Raised when the shared store or reservation store is unreachable."""


class LockLostError(BackendUnavailableError):
    """Raised when a room lock expired or changed owner while it was held."""


class HoldNotFoundError(HostelEngineError):
    """Raised when an operation addresses a hold set that does not exist."""
