"""Tests for the tiered comparable matcher."""

from datetime import date, timedelta

import pytest

from market_signals.comparables.matcher import (
    MIN_RECENCY_WEIGHT,
    ComparableMatcher,
    ListingDescriptor,
    months_before,
    normalize_property_type,
    recency_weight,
)
from market_signals.storage.repos import ComparableTransactionDTO

REFERENCE = date(2026, 6, 30)


def create_comp(
    external_id: str,
    *,
    psm: float = 10_000.0,
    size: float | None = 100.0,
    area: str = "Dubai Marina",
    building: str | None = None,
    property_type: str | None = "apartment",
    bedrooms: int | None = 2,
    days_ago: int = 30,
) -> ComparableTransactionDTO:
    """Create a comparable transaction for testing."""
    return ComparableTransactionDTO(
        external_id=external_id,
        area_name=area,
        building_name=building,
        property_type=property_type,
        bedrooms=bedrooms,
        size_sqm=size,
        price=psm * (size or 100.0),
        price_per_sqm=psm,
        transaction_date=REFERENCE - timedelta(days=days_ago),
    )


def create_listing(**overrides) -> ListingDescriptor:
    fields = {
        "area": "Dubai Marina",
        "property_type": "Apartment",
        "bedrooms": 2,
        "size_sqm": 100.0,
        "building_name": "Marina Gate",
    }
    fields.update(overrides)
    return ListingDescriptor(**fields)


class TestHelpers:
    def test_months_before_clamps_day(self):
        assert months_before(date(2026, 3, 31), 1) == date(2026, 2, 28)

    def test_months_before_crosses_year(self):
        assert months_before(date(2026, 1, 15), 24) == date(2024, 1, 15)
        assert months_before(date(2026, 2, 10), 3) == date(2025, 11, 10)

    def test_normalize_property_type(self):
        assert normalize_property_type("Apartment") == "unit"
        assert normalize_property_type(" flat ") == "unit"
        assert normalize_property_type("Townhouse") == "villa"
        assert normalize_property_type("Office") == "office"
        assert normalize_property_type(None) is None

    def test_recency_weight_halves_and_floors(self):
        assert recency_weight(0) == pytest.approx(1.0)
        assert recency_weight(180, half_life_days=180) == pytest.approx(0.5)
        assert recency_weight(10_000) == MIN_RECENCY_WEIGHT

    def test_recency_weight_monotonic(self):
        weights = [recency_weight(d) for d in range(0, 800, 20)]
        assert all(a >= b for a, b in zip(weights, weights[1:], strict=False))


class TestTierSelection:
    """Tests for strict tier fallback."""

    def test_tier_one_same_building(self):
        comps = [create_comp(f"b{i}", building="marina gate") for i in range(3)]
        comps += [create_comp(f"a{i}") for i in range(10)]

        result = ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE)

        assert result is not None
        assert result.match_tier == 1
        assert result.comparable_count == 3
        assert result.confidence_score == pytest.approx(0.95)

    def test_tier_two_when_building_short(self):
        comps = [create_comp(f"b{i}", building="Marina Gate") for i in range(2)]
        comps += [create_comp(f"a{i}") for i in range(3)]

        result = ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE)

        assert result is not None
        assert result.match_tier == 2
        # building comps also satisfy the area/type/bedroom tier
        assert result.comparable_count == 5

    def test_tier_three_ignores_bedrooms_and_uses_loose_band(self):
        comps = [create_comp(f"c{i}", bedrooms=3, size=125.0) for i in range(3)]

        result = ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE)

        assert result is not None
        assert result.match_tier == 3

    def test_tier_four_area_fallback(self):
        comps = [create_comp(f"v{i}", property_type="villa", size=400.0) for i in range(4)]

        result = ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE)

        assert result is not None
        assert result.match_tier == 4
        assert result.confidence_score == pytest.approx(0.40)

    def test_no_tier_reaches_minimum(self):
        comps = [create_comp("x1"), create_comp("x2")]

        assert ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE) is None

    def test_other_areas_and_old_sales_excluded(self):
        comps = [create_comp(f"o{i}", area="Downtown") for i in range(5)]
        comps += [create_comp(f"old{i}", days_ago=800) for i in range(5)]

        matcher = ComparableMatcher(lookback_months=24)

        assert matcher.match(create_listing(), comps, reference_date=REFERENCE) is None

    def test_area_match_is_case_insensitive(self):
        comps = [create_comp(f"c{i}", area="DUBAI MARINA") for i in range(3)]

        result = ComparableMatcher().match(create_listing(), comps, reference_date=REFERENCE)

        assert result is not None


class TestStatistics:
    """Tests for the winning tier's summary statistics."""

    def test_medians_and_range(self):
        comps = [
            create_comp("a", psm=9_000.0),
            create_comp("b", psm=10_000.0),
            create_comp("c", psm=12_000.0),
        ]

        result = ComparableMatcher().match(
            create_listing(building_name=None), comps, reference_date=REFERENCE
        )

        assert result is not None
        assert result.median_price_per_sqm == pytest.approx(10_000.0)
        assert result.median_price == pytest.approx(1_000_000.0)
        assert result.price_range_min_psm == pytest.approx(9_000.0)
        assert result.price_range_max_psm == pytest.approx(12_000.0)
        assert result.avg_size_sqm == pytest.approx(100.0)

    def test_time_weighting_favors_recent_sales(self):
        comps = [
            create_comp("new", psm=12_000.0, days_ago=0),
            create_comp("mid", psm=10_000.0, days_ago=180),
            create_comp("old", psm=8_000.0, days_ago=360),
        ]

        result = ComparableMatcher(half_life_days=180).match(
            create_listing(building_name=None), comps, reference_date=REFERENCE
        )

        assert result is not None
        expected = (12_000 * 1.0 + 10_000 * 0.5 + 8_000 * 0.25) / 1.75
        assert result.time_weighted_avg_psm == pytest.approx(expected)
        assert result.time_weighted_avg_psm > result.median_price_per_sqm

    def test_recency_score_fresh_and_stale(self):
        fresh = [create_comp(f"f{i}", days_ago=10) for i in range(3)]
        stale = [create_comp(f"s{i}", days_ago=200) for i in range(3)]
        listing = create_listing(building_name=None)
        matcher = ComparableMatcher()

        fresh_result = matcher.match(listing, fresh, reference_date=REFERENCE)
        stale_result = matcher.match(listing, stale, reference_date=REFERENCE)

        assert fresh_result is not None and stale_result is not None
        assert fresh_result.recency_score == pytest.approx(0.85)
        assert stale_result.recency_score == pytest.approx(0.55)
        assert fresh_result.latest_transaction_date == REFERENCE - timedelta(days=10)
