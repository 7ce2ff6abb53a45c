"""Tests for per-listing pricing opportunity detection."""

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from market_signals.alerter.formatter import format_body
from market_signals.config import PricingSettings
from market_signals.detector.cache import LookupCache
from market_signals.detector.models import SignalType
from market_signals.detector.pricing import PricingOpportunityDetector, listing_psm, summarize_liquidity
from market_signals.storage.readers import AreaYield
from market_signals.storage.repos import ComparableTransactionDTO, ListingDTO

REFERENCE = date(2026, 6, 30)


def create_listing(
    listing_id: str = "L1",
    *,
    asking_price: float = 800_000.0,
    size_sqm: float | None = 100.0,
    area: str = "Dubai Marina",
    property_type: str = "apartment",
    bedrooms: int | None = 2,
) -> ListingDTO:
    """Create an active sale listing for testing."""
    return ListingDTO(
        portal="bayut",
        listing_id=listing_id,
        area_name=area,
        property_type=property_type,
        asking_price=asking_price,
        size_sqm=size_sqm,
        bedrooms=bedrooms,
        listing_url=f"https://example.test/{listing_id}",
    )


def create_comps(count: int, *, psm: float = 10_000.0, days_ago: int = 10) -> list[ComparableTransactionDTO]:
    return [
        ComparableTransactionDTO(
            external_id=f"c{i}",
            area_name="Dubai Marina",
            property_type="apartment",
            bedrooms=2,
            size_sqm=100.0,
            price=psm * 100,
            price_per_sqm=psm,
            transaction_date=REFERENCE - timedelta(days=days_ago),
        )
        for i in range(count)
    ]


class FakeMarketReader:
    """In-memory MarketReader that counts comparable lookups."""

    def __init__(
        self,
        listings: list[ListingDTO],
        comps: list[ComparableTransactionDTO],
        days_on_market: list[int] | None = None,
    ) -> None:
        self.listings = listings
        self.comps = comps
        self.days_on_market = days_on_market or []
        self.comparable_calls = 0
        self.dom_calls = 0

    async def active_sale_listings(self, org_id: str) -> list[ListingDTO]:
        return self.listings

    async def comparable_transactions(self, org_id: str, *, area_name: str, since: date):
        self.comparable_calls += 1
        return [c for c in self.comps if c.area_name.lower() == area_name.lower()]

    async def area_days_on_market(self, org_id: str, *, area_name: str, property_type: str | None):
        self.dom_calls += 1
        return self.days_on_market


class FakeSnapshotReader:
    def __init__(self, area_yield: AreaYield | None = None) -> None:
        self._area_yield = area_yield or AreaYield()

    async def area_yield(self, org_id: str, *, geo_id: str, segment: str | None) -> AreaYield:
        return self._area_yield


class FakeSignalRepository:
    def __init__(self) -> None:
        self.upserted = []

    async def upsert_many(self, dtos, *, batch_size: int = 50) -> int:
        self.upserted.extend(dtos)
        return len(dtos)


def create_detector(market, snapshots=None, repo=None, cache=None) -> PricingOpportunityDetector:
    return PricingOpportunityDetector(
        market,
        snapshots or FakeSnapshotReader(),
        repo or FakeSignalRepository(),
        settings=PricingSettings(),
        cache=cache,
    )


class TestSummarizeLiquidity:
    def test_profile(self):
        liquidity = summarize_liquidity([10, 20, 70, 100])

        assert liquidity is not None
        assert liquidity.listing_count == 4
        assert liquidity.avg_days_on_market == pytest.approx(50.0)
        assert liquidity.median_days_on_market == pytest.approx(45.0)
        assert liquidity.p75_days_on_market == pytest.approx(77.5)
        assert liquidity.fresh_listings_count == 2
        assert liquidity.stale_listings_count == 2
        assert liquidity.liquidity_score == pytest.approx(0.625)

    def test_empty(self):
        assert summarize_liquidity([]) is None

    def test_very_slow_market_floors_dom_component(self):
        liquidity = summarize_liquidity([400, 500])

        assert liquidity is not None
        assert liquidity.liquidity_score == pytest.approx(0.0)


class TestListingPsm:
    def test_prefers_explicit_psm(self):
        listing = create_listing()
        listing.price_per_sqm = 7_500.0
        assert listing_psm(listing) == 7_500.0

    def test_derived_from_size(self):
        assert listing_psm(create_listing()) == pytest.approx(8_000.0)

    def test_unknown_size(self):
        assert listing_psm(create_listing(size_sqm=None)) == 0.0


class TestEvaluateListing:
    """Tests for scoring a single listing."""

    @pytest.mark.asyncio
    async def test_discounted_listing_is_fair_deal(self):
        market = FakeMarketReader([create_listing()], create_comps(40))
        detector = create_detector(market)

        signal = await detector.evaluate_listing("org_test", create_listing(), reference_date=REFERENCE)

        assert signal is not None
        assert signal.type == SignalType.PRICING_OPPORTUNITY.value
        assert signal.geo_type == "area"
        assert signal.geo_id == "dubai_marina"
        assert signal.timeframe == "current"
        assert signal.metric == "price_per_sqm"
        assert signal.current_value == pytest.approx(8_000.0)
        assert signal.prev_value == pytest.approx(10_000.0)
        assert signal.delta_pct == pytest.approx(-0.20)
        assert signal.severity == "normal"
        assert signal.confidence_score == pytest.approx(0.80)

        evidence = signal.evidence
        assert evidence["composite_score"] == 69
        assert evidence["rating"] == "fair_deal"
        assert evidence["match_tier"] == 2
        assert evidence["comparable_count"] == 40
        assert evidence["psm_discount_pct"] == pytest.approx(20.0)
        assert evidence["savings"] == 200_000
        assert evidence["yield_analysis"] is None
        assert evidence["liquidity_analysis"] is None
        assert evidence["score_breakdown"]["recency"] == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_delta_pct_is_a_fraction_like_other_signals(self):
        detector = create_detector(FakeMarketReader([create_listing()], create_comps(40)))

        signal = await detector.evaluate_listing("org_test", create_listing(), reference_date=REFERENCE)

        assert signal is not None
        assert abs(signal.delta_pct) <= 1.0
        assert format_body(signal, 0.6) == (
            "price_per_sqm changed by -20.0% (current). Confidence: 80%. Relevance: 60%."
        )

    @pytest.mark.asyncio
    async def test_stale_comparables_score_lower(self):
        market = FakeMarketReader([], create_comps(40, days_ago=200))
        detector = create_detector(market)

        signal = await detector.evaluate_listing("org_test", create_listing(), reference_date=REFERENCE)

        assert signal is not None
        assert signal.evidence["composite_score"] == 66

    @pytest.mark.asyncio
    async def test_overpriced_listing_below_floor(self):
        market = FakeMarketReader([], create_comps(40))
        detector = create_detector(market)

        signal = await detector.evaluate_listing(
            "org_test", create_listing(asking_price=1_200_000.0), reference_date=REFERENCE
        )

        assert signal is None

    @pytest.mark.asyncio
    async def test_no_comparables(self):
        market = FakeMarketReader([], create_comps(2))
        detector = create_detector(market)

        assert await detector.evaluate_listing("org_test", create_listing(), reference_date=REFERENCE) is None

    @pytest.mark.asyncio
    async def test_yield_and_liquidity_recorded(self):
        market = FakeMarketReader([], create_comps(40), days_on_market=[10, 20, 70, 100])
        snapshots = FakeSnapshotReader(AreaYield(median_rent_annual=60_000.0, gross_yield=0.06))
        detector = create_detector(market, snapshots)

        signal = await detector.evaluate_listing("org_test", create_listing(), reference_date=REFERENCE)

        assert signal is not None
        yield_analysis = signal.evidence["yield_analysis"]
        assert yield_analysis["listing_gross_yield_pct"] == pytest.approx(7.5)
        assert yield_analysis["premium_pp"] == pytest.approx(1.5)
        assert signal.evidence["liquidity_analysis"]["liquidity_score"] == pytest.approx(0.62)

    @pytest.mark.asyncio
    async def test_signal_key_identifies_listing(self):
        market = FakeMarketReader([], create_comps(40))
        detector = create_detector(market)

        first = await detector.evaluate_listing("org_test", create_listing("A"), reference_date=REFERENCE)
        second = await detector.evaluate_listing("org_test", create_listing("B"), reference_date=REFERENCE)

        assert first is not None and second is not None
        assert first.signal_key != second.signal_key
        assert first.signal_key.endswith("|A")


class TestDetect:
    @pytest.mark.asyncio
    async def test_area_lookups_are_cached(self):
        listings = [create_listing(f"L{i}") for i in range(5)]
        market = FakeMarketReader(listings, create_comps(40))
        repo = FakeSignalRepository()
        cache = LookupCache()
        detector = create_detector(market, repo=repo, cache=cache)

        summary = await detector.detect("org_test", reference_date=REFERENCE)

        assert summary.analyzed == 5
        assert summary.created == 5
        assert summary.skipped == 0
        assert market.comparable_calls == 1
        assert market.dom_calls == 1
        assert cache.hits > 0
        assert len(repo.upserted) == 5

    @pytest.mark.asyncio
    async def test_skips_counted(self):
        listings = [
            create_listing("cheap"),
            create_listing("pricey", asking_price=1_200_000.0),
            create_listing("elsewhere", area="Downtown"),
            create_listing("no_price", asking_price=0.0),
        ]
        market = FakeMarketReader(listings, create_comps(40))
        repo = FakeSignalRepository()
        detector = create_detector(market, repo=repo)

        summary = await detector.detect("org_test", reference_date=REFERENCE)

        assert summary.analyzed == 4
        assert summary.skipped == 3
        assert [s.evidence["listing_id"] for s in repo.upserted] == ["cheap"]

    @pytest.mark.asyncio
    async def test_no_listings(self):
        repo = FakeSignalRepository()
        detector = create_detector(FakeMarketReader([], []), repo=repo)

        summary = await detector.detect("org_test", reference_date=REFERENCE)

        assert summary.analyzed == 0
        assert repo.upserted == []

    @pytest.mark.asyncio
    async def test_default_reference_date_is_utc(self):
        detector = create_detector(FakeMarketReader([create_listing()], []))
        late_evening = datetime(2026, 6, 30, 23, 30, tzinfo=UTC)

        with (
            patch("market_signals.detector.pricing.datetime") as mock_datetime,
            patch.object(detector, "evaluate_listing", AsyncMock(return_value=None)) as evaluate,
        ):
            mock_datetime.now.return_value = late_evening
            await detector.detect("org_test")

        mock_datetime.now.assert_called_once_with(UTC)
        assert evaluate.await_args.kwargs["reference_date"] == date(2026, 6, 30)
