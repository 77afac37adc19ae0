"""Seasonal pricing and group discounts, computed in integer cents."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from backend.domain.errors import CarnivalMinNightsNotMetError, ValidationError
from backend.domain.models import DateRange, NightlyRate, PricingResult, Season
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


# Multipliers in percent so per-night arithmetic stays integral.
SEASON_MULTIPLIER_PERCENT: dict[Season, int] = {
    Season.HIGH: 150,
    Season.MEDIUM: 100,
    Season.LOW: 80,
    Season.CARNIVAL: 200,
}

SEASON_MONTHS: dict[Season, frozenset[int]] = {
    Season.HIGH: frozenset({12, 1, 2, 3}),
    Season.MEDIUM: frozenset({4, 5, 10, 11}),
    Season.LOW: frozenset({6, 7, 8, 9}),
}


@dataclass(frozen=True)
class DiscountTier:
    min_beds: int
    max_beds: Optional[int]
    discount_percent: int
    name: str

    def matches(self, beds_count: int) -> bool:
        return beds_count >= self.min_beds and (
            self.max_beds is None or beds_count <= self.max_beds
        )


GROUP_DISCOUNT_TIERS: tuple[DiscountTier, ...] = (
    DiscountTier(min_beds=26, max_beds=45, discount_percent=20, name="Large Group (26+ beds)"),
    DiscountTier(min_beds=16, max_beds=25, discount_percent=15, name="Medium Group (16-25 beds)"),
    DiscountTier(min_beds=7, max_beds=15, discount_percent=10, name="Small Group (7-15 beds)"),
)

INDIVIDUAL_TIER = DiscountTier(min_beds=1, max_beds=6, discount_percent=0, name="Individual (1-6 beds)")
NO_DISCOUNT_TIER = DiscountTier(
    min_beds=46, max_beds=None, discount_percent=0, name="No group discount (46+ beds)"
)


@dataclass(frozen=True)
class CarnivalValidation:
    is_valid: bool
    errors: tuple[str, ...]
    required_nights: int
    actual_nights: int


def _divide_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero, for non-negative values."""
    return (2 * numerator + denominator) // (2 * denominator)


def to_cents(amount: Decimal | int | float | str) -> int:
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def multiplier_for(season: Season) -> Decimal:
    return (Decimal(SEASON_MULTIPLIER_PERCENT[season]) / Decimal(100)).quantize(Decimal("0.01"))


def discount_tier_for(beds_count: int) -> DiscountTier:
    for tier in GROUP_DISCOUNT_TIERS:
        if tier.matches(beds_count):
            return tier
    if NO_DISCOUNT_TIER.matches(beds_count):
        return NO_DISCOUNT_TIER
    return INDIVIDUAL_TIER


def group_discount_rate(beds_count: int) -> Decimal:
    return (Decimal(discount_tier_for(beds_count).discount_percent) / Decimal(100)).quantize(
        Decimal("0.01")
    )


class PricingService:
    """Prices a stay night by night; pure apart from reading settings."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def carnival_period(self, year: int) -> Optional[tuple[date, date]]:
        return self._settings.carnival_periods.get(year)

    def is_carnival_date(self, night: date) -> bool:
        period = self.carnival_period(night.year)
        if period is None:
            return False
        start, end = period
        return start <= night <= end

    def intersects_carnival(self, date_range: DateRange) -> bool:
        return any(self.is_carnival_date(night) for night in date_range.iter_nights())

    def season_info(self, night: date) -> Season:
        if self.is_carnival_date(night):
            return Season.CARNIVAL
        for season, months in SEASON_MONTHS.items():
            if night.month in months:
                return season
        return Season.MEDIUM

    def validate_carnival_booking(self, date_range: DateRange) -> CarnivalValidation:
        required = self._settings.carnival_min_nights
        actual = date_range.nights
        errors: tuple[str, ...] = ()
        if self.intersects_carnival(date_range) and actual < required:
            errors = (str(CarnivalMinNightsNotMetError(required, actual)),)
        return CarnivalValidation(
            is_valid=not errors,
            errors=errors,
            required_nights=required,
            actual_nights=actual,
        )

    def ensure_carnival_min_nights(self, date_range: DateRange) -> None:
        validation = self.validate_carnival_booking(date_range)
        if not validation.is_valid:
            raise CarnivalMinNightsNotMetError(
                validation.required_nights,
                validation.actual_nights,
            )

    def price(
        self,
        date_range: DateRange,
        beds_count: int,
        base_price_per_bed: Decimal | int | float | str | None = None,
    ) -> PricingResult:
        """Sum per-night season prices, then apply the group discount once.

        Short carnival stays are priced, not rejected; the minimum-stay rule
        is enforced separately by ``ensure_carnival_min_nights``.
        """
        if beds_count < 1:
            raise ValidationError("Beds count must be at least 1")
        base = self._settings.base_price_per_bed if base_price_per_bed is None else base_price_per_bed
        base_cents = to_cents(base)
        if base_cents <= 0:
            raise ValidationError("Base price per bed must be positive")

        nightly: list[NightlyRate] = []
        scaled_total = 0
        for night in date_range.iter_nights():
            season = self.season_info(night)
            scaled = base_cents * SEASON_MULTIPLIER_PERCENT[season] * beds_count
            scaled_total += scaled
            nightly.append(
                NightlyRate(
                    night=night,
                    season=season,
                    multiplier=multiplier_for(season),
                    amount_cents=_divide_half_up(scaled, 100),
                )
            )

        subtotal_cents = _divide_half_up(scaled_total, 100)
        tier = discount_tier_for(beds_count)
        total_cents = _divide_half_up(subtotal_cents * (100 - tier.discount_percent), 100)

        seasons = {rate.season for rate in nightly}
        headline = Season.CARNIVAL if Season.CARNIVAL in seasons else nightly[0].season

        result = PricingResult(
            base_price_per_bed_cents=base_cents,
            season=headline,
            season_multiplier=multiplier_for(headline),
            nights=date_range.nights,
            beds_count=beds_count,
            subtotal_cents=subtotal_cents,
            group_discount_rate=group_discount_rate(beds_count),
            group_discount_tier=tier.name,
            total_price_cents=total_cents,
            currency=self._settings.currency,
            nightly=tuple(nightly),
        )
        logger.debug(
            "Stay priced | nights=%s | beds=%s | season=%s | subtotal_cents=%s | total_cents=%s",
            result.nights,
            beds_count,
            headline.value,
            subtotal_cents,
            total_cents,
        )
        return result
