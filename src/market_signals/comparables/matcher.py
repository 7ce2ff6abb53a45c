"""Tiered comparable-transaction matching.

Given a listing descriptor, candidate sales from the same area are
narrowed in strict tier order and the first tier with enough comparables
wins:

1. Same building, same bedrooms, size within the tight band.
2. Same area, same property type, same bedrooms, size within the tight band.
3. Same area, same property type, size within the loose band.
4. Same area only.

Statistics for the winning tier include a time-weighted average price per
sqm where each transaction's weight halves every ``half_life_days`` (with
a floor), so newer sales always count at least as much as older ones.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from market_signals.storage.repos import ComparableTransactionDTO

logger = logging.getLogger(__name__)

DEFAULT_MIN_COMPARABLES = 3
DEFAULT_SIZE_TOLERANCE = 0.15
DEFAULT_LOOSE_SIZE_TOLERANCE = 0.30
DEFAULT_HALF_LIFE_DAYS = 180.0
MIN_RECENCY_WEIGHT = 0.1
FRESH_DATA_DAYS = 90

TIER_CONFIDENCE = {1: 0.95, 2: 0.80, 3: 0.60, 4: 0.40}
TIER_DESCRIPTIONS = {
    1: "Same building, bedrooms, similar size",
    2: "Same area, type, bedrooms, similar size",
    3: "Same area and property type",
    4: "Same area only (fallback)",
}
FRESH_RECENCY_SCORE = {1: 0.90, 2: 0.85, 3: 0.75, 4: 0.65}
STALE_RECENCY_SCORE = {1: 0.60, 2: 0.55, 3: 0.45, 4: 0.35}

_PROPERTY_TYPE_FAMILIES = {
    "apartment": "unit",
    "studio": "unit",
    "penthouse": "unit",
    "duplex": "unit",
    "flat": "unit",
    "unit": "unit",
    "villa": "villa",
    "townhouse": "villa",
}


def normalize_property_type(value: str | None) -> str | None:
    """Collapse portal property types onto the registry's families."""
    if not value:
        return None
    key = value.strip().lower()
    return _PROPERTY_TYPE_FAMILIES.get(key, key)


def _same_text(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()  # type: ignore[union-attr]


def months_before(day: date, months: int) -> date:
    """Calendar-aware ``day`` minus ``months`` (day clamped to month end)."""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def recency_weight(age_days: int, *, half_life_days: float = DEFAULT_HALF_LIFE_DAYS) -> float:
    """Exponential decay weight by transaction age, floored at MIN_RECENCY_WEIGHT."""
    weight = 0.5 ** (max(age_days, 0) / half_life_days)
    return max(MIN_RECENCY_WEIGHT, weight)


@dataclass(frozen=True)
class ListingDescriptor:
    """What the matcher needs to know about a subject listing."""

    area: str
    property_type: str | None = None
    bedrooms: int | None = None
    size_sqm: float | None = None
    building_name: str | None = None


@dataclass(frozen=True)
class ComparableSet:
    """Best-available comparables for a listing. Not persisted."""

    match_tier: int
    match_description: str
    confidence_score: float
    comparable_count: int
    median_price: float
    median_price_per_sqm: float
    time_weighted_avg_psm: float
    avg_size_sqm: float | None
    latest_transaction_date: date
    price_range_min_psm: float
    price_range_max_psm: float
    recency_score: float


class ComparableMatcher:
    """Selects comparable transactions with tiered fallback.

    Example:
        ```python
        matcher = ComparableMatcher(min_comparables=3)
        comps = matcher.match(
            ListingDescriptor(area="Dubai Marina", property_type="Apartment", bedrooms=2, size_sqm=110),
            candidates,
            reference_date=date.today(),
        )
        if comps is not None:
            print(comps.match_tier, comps.time_weighted_avg_psm)
        ```
    """

    def __init__(
        self,
        *,
        min_comparables: int = DEFAULT_MIN_COMPARABLES,
        size_tolerance: float = DEFAULT_SIZE_TOLERANCE,
        loose_size_tolerance: float = DEFAULT_LOOSE_SIZE_TOLERANCE,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
        lookback_months: int = 24,
    ) -> None:
        self._min_comparables = min_comparables
        self._size_tolerance = size_tolerance
        self._loose_size_tolerance = loose_size_tolerance
        self._half_life_days = half_life_days
        self._lookback_months = lookback_months

    @property
    def lookback_months(self) -> int:
        return self._lookback_months

    def match(
        self,
        listing: ListingDescriptor,
        candidates: Sequence[ComparableTransactionDTO],
        *,
        reference_date: date,
    ) -> ComparableSet | None:
        """Return the first tier with enough comparables, or None."""
        since = months_before(reference_date, self._lookback_months)
        pool = [
            c
            for c in candidates
            if _same_text(c.area_name, listing.area)
            and since <= c.transaction_date <= reference_date
            and c.effective_psm is not None
        ]

        for tier, predicate in self._tiers(listing):
            selected = [c for c in pool if predicate(c)]
            if len(selected) >= self._min_comparables:
                return self._summarize(tier, selected, reference_date)

        logger.debug(
            "No comparable tier reached %d transactions for area=%s type=%s beds=%s",
            self._min_comparables,
            listing.area,
            listing.property_type,
            listing.bedrooms,
        )
        return None

    def _tiers(
        self, listing: ListingDescriptor
    ) -> list[tuple[int, Callable[[ComparableTransactionDTO], bool]]]:
        family = normalize_property_type(listing.property_type)

        def bedrooms_match(c: ComparableTransactionDTO) -> bool:
            return listing.bedrooms is None or c.bedrooms == listing.bedrooms

        def size_within(c: ComparableTransactionDTO, tolerance: float) -> bool:
            if not listing.size_sqm or listing.size_sqm <= 0:
                return True
            if not c.size_sqm:
                return False
            low = listing.size_sqm * (1 - tolerance)
            high = listing.size_sqm * (1 + tolerance)
            return low <= c.size_sqm <= high

        def same_type(c: ComparableTransactionDTO) -> bool:
            return family is not None and normalize_property_type(c.property_type) == family

        tiers: list[tuple[int, Callable[[ComparableTransactionDTO], bool]]] = []
        if listing.building_name:
            tiers.append(
                (
                    1,
                    lambda c: _same_text(c.building_name, listing.building_name)
                    and bedrooms_match(c)
                    and size_within(c, self._size_tolerance),
                )
            )
        if family is not None:
            tiers.append(
                (2, lambda c: same_type(c) and bedrooms_match(c) and size_within(c, self._size_tolerance))
            )
            tiers.append((3, lambda c: same_type(c) and size_within(c, self._loose_size_tolerance)))
        tiers.append((4, lambda c: True))
        return tiers

    def _summarize(
        self,
        tier: int,
        comps: Sequence[ComparableTransactionDTO],
        reference_date: date,
    ) -> ComparableSet:
        prices = np.asarray([c.price for c in comps], dtype=float)
        psm = np.asarray([c.effective_psm for c in comps], dtype=float)
        weights = np.asarray(
            [
                recency_weight(
                    (reference_date - c.transaction_date).days,
                    half_life_days=self._half_life_days,
                )
                for c in comps
            ],
            dtype=float,
        )
        sizes = [c.size_sqm for c in comps if c.size_sqm]
        latest = max(c.transaction_date for c in comps)
        fresh = (reference_date - latest).days <= FRESH_DATA_DAYS

        return ComparableSet(
            match_tier=tier,
            match_description=TIER_DESCRIPTIONS[tier],
            confidence_score=TIER_CONFIDENCE[tier],
            comparable_count=len(comps),
            median_price=float(np.median(prices)),
            median_price_per_sqm=float(np.median(psm)),
            time_weighted_avg_psm=float(np.average(psm, weights=weights)),
            avg_size_sqm=float(np.mean(sizes)) if sizes else None,
            latest_transaction_date=latest,
            price_range_min_psm=float(psm.min()),
            price_range_max_psm=float(psm.max()),
            recency_score=(FRESH_RECENCY_SCORE if fresh else STALE_RECENCY_SCORE)[tier],
        )
