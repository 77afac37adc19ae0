"""Domain models for availability, allocation, holds, and pricing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional

from backend.domain.errors import ValidationError


class RoomType(str, Enum):
    MIXED = "mixed"
    FEMALE = "female"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class AllocationStrategy(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


class Season(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CARNIVAL = "carnival"


# Reservation statuses that count as occupying beds.
OCCUPYING_RESERVATION_STATUSES = frozenset({"PENDING_PAYMENT", "CONFIRMED", "CHECKED_IN"})


@dataclass(frozen=True)
class Room:
    room_id: str
    display_name: str
    capacity: int
    base_type: RoomType
    is_flexible: bool = False
    auto_convert_threshold_hours: Optional[int] = None


@dataclass(frozen=True)
class DateRange:
    """Half-open stay interval ``[check_in, check_out)``."""

    check_in: date
    check_out: date

    def __post_init__(self) -> None:
        if self.check_in >= self.check_out:
            raise ValidationError("Check-out date must be after check-in date")

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def overlaps(self, other: "DateRange") -> bool:
        return self.check_in < other.check_out and other.check_in < self.check_out

    def iter_nights(self) -> Iterator[date]:
        for offset in range(self.nights):
            yield self.check_in + timedelta(days=offset)

    def shifted(self, days: int) -> "DateRange":
        return DateRange(
            check_in=self.check_in + timedelta(days=days),
            check_out=self.check_out + timedelta(days=days),
        )


@dataclass(frozen=True)
class ConfirmedReservation:
    """Read-only projection of a reservation held by the booking store."""

    reservation_id: str
    room_id: str
    beds_count: int
    date_range: DateRange
    status: str

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_RESERVATION_STATUSES


@dataclass(frozen=True)
class Hold:
    hold_id: str
    hold_set_id: str
    room_id: str
    beds_count: int
    date_range: DateRange
    created_at: datetime
    expires_at: datetime
    status: HoldStatus = HoldStatus.ACTIVE
    bed_numbers: tuple[int, ...] = ()
    outcome: Optional[str] = None
    guest_ref: Optional[str] = None

    def is_occupying(self, now: datetime) -> bool:
        return self.status is HoldStatus.ACTIVE and now <= self.expires_at

    def is_expired(self, now: datetime) -> bool:
        return self.status is HoldStatus.ACTIVE and now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "hold_id": self.hold_id,
            "hold_set_id": self.hold_set_id,
            "room_id": self.room_id,
            "beds_count": self.beds_count,
            "check_in": self.date_range.check_in.isoformat(),
            "check_out": self.date_range.check_out.isoformat(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
            "bed_numbers": list(self.bed_numbers),
            "outcome": self.outcome,
            "guest_ref": self.guest_ref,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Hold":
        return cls(
            hold_id=payload["hold_id"],
            hold_set_id=payload["hold_set_id"],
            room_id=payload["room_id"],
            beds_count=int(payload["beds_count"]),
            date_range=DateRange(
                check_in=date.fromisoformat(payload["check_in"]),
                check_out=date.fromisoformat(payload["check_out"]),
            ),
            created_at=datetime.fromisoformat(payload["created_at"]),
            expires_at=datetime.fromisoformat(payload["expires_at"]),
            status=HoldStatus(payload["status"]),
            bed_numbers=tuple(int(item) for item in payload.get("bed_numbers", [])),
            outcome=payload.get("outcome"),
            guest_ref=payload.get("guest_ref"),
        )


@dataclass(frozen=True)
class HoldSet:
    """All holds claimed together by one ``create_hold`` call."""

    hold_set_id: str
    holds: tuple[Hold, ...]
    date_range: DateRange
    expires_at: datetime

    @property
    def hold_ids(self) -> list[str]:
        return [hold.hold_id for hold in self.holds]

    @property
    def total_beds(self) -> int:
        return sum(hold.beds_count for hold in self.holds)


@dataclass(frozen=True)
class RoomOccupancy:
    room_id: str
    display_name: str
    capacity: int
    occupied: int
    available: int
    effective_type: RoomType
    is_flexible: bool = False


@dataclass(frozen=True)
class AvailabilityResult:
    is_available: bool
    rooms: tuple[RoomOccupancy, ...]
    total_available_beds: int
    requested_beds: int
    date_range: DateRange
    conflicts: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def available_rooms(self) -> list[RoomOccupancy]:
        return [room for room in self.rooms if room.available > 0]

    def room(self, room_id: str) -> Optional[RoomOccupancy]:
        return next((room for room in self.rooms if room.room_id == room_id), None)


@dataclass(frozen=True)
class AllocationPreferences:
    prefer_single_room: bool = False
    room_type_preference: Optional[RoomType] = None
    allow_split: bool = True
    max_rooms_in_split: int = 4


@dataclass(frozen=True)
class RoomAllocation:
    room_id: str
    beds_assigned: int
    capacity: int
    effective_type: RoomType
    display_name: str = ""


@dataclass(frozen=True)
class AllocationPlan:
    allocations: tuple[RoomAllocation, ...]
    total_beds: int
    strategy: AllocationStrategy
    score: int
    waste: int

    @property
    def rooms_used(self) -> int:
        return len(self.allocations)

    @property
    def total_capacity(self) -> int:
        return sum(allocation.capacity for allocation in self.allocations)


@dataclass(frozen=True)
class AllocationResult:
    success: bool
    requested_beds: int
    plan: Optional[AllocationPlan] = None
    alternatives: tuple[AllocationPlan, ...] = ()
    conflicts: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class NightlyRate:
    night: date
    season: Season
    multiplier: Decimal
    amount_cents: int


@dataclass(frozen=True)
class PricingResult:
    """Price of a stay; money is kept in integer minor units (cents)."""

    base_price_per_bed_cents: int
    season: Season
    season_multiplier: Decimal
    nights: int
    beds_count: int
    subtotal_cents: int
    group_discount_rate: Decimal
    group_discount_tier: str
    total_price_cents: int
    currency: str = "BRL"
    nightly: tuple[NightlyRate, ...] = field(default_factory=tuple)

    @property
    def base_price_per_bed(self) -> Decimal:
        return _cents_to_decimal(self.base_price_per_bed_cents)

    @property
    def subtotal(self) -> Decimal:
        return _cents_to_decimal(self.subtotal_cents)

    @property
    def discount_amount(self) -> Decimal:
        return _cents_to_decimal(self.subtotal_cents - self.total_price_cents)

    @property
    def total_price(self) -> Decimal:
        return _cents_to_decimal(self.total_price_cents)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_price_per_bed": str(self.base_price_per_bed),
            "season": self.season.value,
            "season_multiplier": str(self.season_multiplier),
            "nights": self.nights,
            "beds_count": self.beds_count,
            "subtotal": str(self.subtotal),
            "group_discount_rate": str(self.group_discount_rate),
            "group_discount_tier": self.group_discount_tier,
            "discount_amount": str(self.discount_amount),
            "total_price": str(self.total_price),
            "currency": self.currency,
        }


def _cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))
