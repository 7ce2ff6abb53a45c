"""Tests for the snapshot aggregator."""

import logging
from datetime import date, timedelta

import pytest

from market_signals.config import SnapshotSettings
from market_signals.ingestion.models import (
    RawPortalListingModel,
    RawRegistryTransactionModel,
    RawRentalContractModel,
)
from market_signals.ingestion.reader import RawPortalRow, RawRental, RawSale, SqlRawObservationReader
from market_signals.snapshots.aggregator import (
    METRIC_GROSS_YIELD,
    METRIC_MEDIAN_PRICE,
    METRIC_MEDIAN_PRICE_PSF,
    METRIC_MEDIAN_RENT,
    SnapshotAggregator,
    aggregate_portal_rows,
    aggregate_truth_rows,
    previous_quarter_start,
    quarter_bounds,
    select_portal_dates,
    select_quarters,
)
from market_signals.storage.repos import MetricSnapshotRepository, PortalSnapshotRepository

AS_OF = date(2026, 6, 20)
PREV_WEEK = AS_OF - timedelta(days=7)


def create_portal_row(
    *,
    listing_id: str = "L1",
    as_of_date: date = AS_OF,
    geo_id: str = "marina",
    segment: str = "apartment",
    is_active: bool = True,
    had_price_cut: bool = False,
    days_on_market: int | None = 10,
) -> RawPortalRow:
    """Create a RawPortalRow for testing."""
    return RawPortalRow(
        portal="bayut",
        listing_id=listing_id,
        as_of_date=as_of_date,
        geo_type="community",
        geo_id=geo_id,
        geo_name="Dubai Marina",
        segment=segment,
        is_active=is_active,
        had_price_cut=had_price_cut,
        days_on_market=days_on_market,
    )


def create_sale(
    external_id: str, day: date, price: float, area: float | None = 100.0, geo_id: str = "marina"
) -> RawSale:
    return RawSale(
        external_id=external_id,
        transaction_date=day,
        geo_type="community",
        geo_id=geo_id,
        geo_name="Dubai Marina",
        segment="apartment",
        sale_price=price,
        area_sqm=area,
    )


def create_rental(external_id: str, day: date, rent: float) -> RawRental:
    return RawRental(
        external_id=external_id,
        contract_start=day,
        geo_type="community",
        geo_id="marina",
        geo_name="Dubai Marina",
        segment="apartment",
        annual_rent=rent,
    )


class TestDateHelpers:
    """Tests for quarter and WoW date selection."""

    def test_quarter_bounds(self):
        assert quarter_bounds(date(2026, 5, 10)) == (date(2026, 4, 1), date(2026, 6, 30))
        assert quarter_bounds(date(2026, 11, 2)) == (date(2026, 10, 1), date(2026, 12, 31))
        assert quarter_bounds(date(2026, 1, 1)) == (date(2026, 1, 1), date(2026, 3, 31))

    def test_previous_quarter_start_crosses_year(self):
        assert previous_quarter_start(date(2026, 1, 1)) == date(2025, 10, 1)

    def test_select_portal_dates_with_prior_week(self):
        dates = [AS_OF, PREV_WEEK, AS_OF - timedelta(days=3)]
        assert select_portal_dates(dates) == [PREV_WEEK, AS_OF]

    def test_select_portal_dates_without_prior_week(self):
        assert select_portal_dates([AS_OF, AS_OF - timedelta(days=3)]) == [AS_OF]

    def test_select_portal_dates_empty(self):
        assert select_portal_dates([]) == []

    def test_select_quarters(self):
        days = [date(2026, 2, 1), date(2026, 5, 1), date(2025, 8, 1)]
        assert select_quarters(days) == [date(2026, 1, 1), date(2026, 4, 1)]

    def test_select_quarters_gap(self):
        days = [date(2025, 8, 1), date(2026, 5, 1)]
        assert select_quarters(days) == [date(2026, 4, 1)]


class TestAggregatePortalRows:
    """Tests for WoW portal aggregation."""

    def test_counts_active_cuts_and_stale(self):
        rows = [
            create_portal_row(listing_id="A", had_price_cut=True, days_on_market=70),
            create_portal_row(listing_id="B", had_price_cut=True, days_on_market=5),
            create_portal_row(listing_id="C", days_on_market=60),
            create_portal_row(listing_id="D", is_active=False, had_price_cut=True, days_on_market=90),
        ]

        snapshots = aggregate_portal_rows("org", rows, stale_days_threshold=60)

        assert len(snapshots) == 1
        snap = snapshots[0]
        assert snap.active_listings == 3
        assert snap.price_cuts_count == 2
        assert snap.stale_listings_count == 2
        assert snap.timeframe == "WoW"
        assert snap.evidence["row_count"] == 4
        assert snap.evidence["wow_prev"] is None

    def test_two_dates_produce_one_snapshot_each(self):
        rows = [
            create_portal_row(listing_id="A", as_of_date=PREV_WEEK),
            create_portal_row(listing_id="A", as_of_date=AS_OF),
            create_portal_row(listing_id="B", as_of_date=AS_OF),
        ]

        snapshots = aggregate_portal_rows("org", rows)

        by_date = {s.as_of_date: s for s in snapshots}
        assert by_date[PREV_WEEK].active_listings == 1
        assert by_date[AS_OF].active_listings == 2
        assert by_date[AS_OF].evidence["wow_prev"] == PREV_WEEK.isoformat()

    def test_intermediate_dates_ignored(self):
        rows = [
            create_portal_row(listing_id="A", as_of_date=AS_OF - timedelta(days=2)),
            create_portal_row(listing_id="A", as_of_date=AS_OF),
        ]

        snapshots = aggregate_portal_rows("org", rows)

        assert [s.as_of_date for s in snapshots] == [AS_OF]


class TestAggregateTruthRows:
    """Tests for QoQ official-data aggregation."""

    def test_medians_and_derived_yield(self):
        q2 = date(2026, 5, 1)
        sales = [
            create_sale("s1", q2, 1_000_000, 100),
            create_sale("s2", q2, 2_000_000, 100),
            create_sale("s3", q2, 1_500_000, None),
        ]
        rentals = [create_rental("r1", q2, 90_000), create_rental("r2", q2, 110_000)]

        snapshots = aggregate_truth_rows("org", sales, rentals)

        by_metric = {s.metric: s for s in snapshots}
        assert by_metric[METRIC_MEDIAN_PRICE_PSF].value == pytest.approx(15_000)
        assert by_metric[METRIC_MEDIAN_PRICE_PSF].sample_size == 2
        assert by_metric[METRIC_MEDIAN_PRICE].value == pytest.approx(1_500_000)
        assert by_metric[METRIC_MEDIAN_PRICE].sample_size == 3
        assert by_metric[METRIC_MEDIAN_RENT].value == pytest.approx(100_000)
        assert by_metric[METRIC_GROSS_YIELD].value == pytest.approx(100_000 / 1_500_000)
        assert by_metric[METRIC_GROSS_YIELD].sample_size == 2
        assert by_metric[METRIC_GROSS_YIELD].source == "derived"
        assert all(s.window_start == date(2026, 4, 1) for s in snapshots)
        assert all(s.window_end == date(2026, 6, 30) for s in snapshots)

    def test_no_yield_without_rentals(self):
        snapshots = aggregate_truth_rows("org", [create_sale("s1", date(2026, 5, 1), 1_000_000)], [])

        assert METRIC_GROSS_YIELD not in {s.metric for s in snapshots}

    def test_two_quarters_are_kept_apart(self):
        sales = [
            create_sale("s1", date(2026, 2, 1), 1_000_000),
            create_sale("s2", date(2026, 5, 1), 1_080_000),
        ]

        snapshots = aggregate_truth_rows("org", sales, [])

        psf = sorted(
            (s for s in snapshots if s.metric == METRIC_MEDIAN_PRICE_PSF), key=lambda s: s.window_end
        )
        assert [s.value for s in psf] == [pytest.approx(10_000), pytest.approx(10_800)]


class TestSnapshotAggregator:
    """Tests for persisting snapshots from the raw tables."""

    @pytest.fixture
    def aggregator(self, async_session):
        return SnapshotAggregator(
            SqlRawObservationReader(async_session),
            MetricSnapshotRepository(async_session),
            PortalSnapshotRepository(async_session),
            settings=SnapshotSettings(),
        )

    @pytest.mark.asyncio
    async def test_portal_cold_start_writes_snapshot_and_warns(
        self, async_session, aggregator, org_id, caplog
    ):
        for i in range(3):
            async_session.add(
                RawPortalListingModel(
                    org_id=org_id,
                    portal="bayut",
                    listing_id=f"L{i}",
                    as_of_date=AS_OF,
                    geo_type="community",
                    geo_id="marina",
                    segment="apartment",
                    is_active=True,
                    had_price_cut=False,
                    days_on_market=5,
                )
            )
        await async_session.flush()

        with caplog.at_level(logging.WARNING):
            written = await aggregator.compute_portal_snapshots(org_id, as_of=AS_OF)

        assert written == 1
        assert "no WoW comparison possible yet" in caplog.text
        stored = await PortalSnapshotRepository(async_session).list_for_timeframe(org_id, "WoW")
        assert stored[0].active_listings == 3

    @pytest.mark.asyncio
    async def test_portal_rerun_is_idempotent(self, async_session, aggregator, org_id):
        async_session.add(
            RawPortalListingModel(
                org_id=org_id,
                portal="bayut",
                listing_id="L1",
                as_of_date=AS_OF,
                geo_type="community",
                geo_id="marina",
                segment="apartment",
                is_active=True,
                had_price_cut=True,
                days_on_market=5,
            )
        )
        await async_session.flush()

        await aggregator.compute_portal_snapshots(org_id, as_of=AS_OF)
        await aggregator.compute_portal_snapshots(org_id, as_of=AS_OF)

        stored = await PortalSnapshotRepository(async_session).list_for_timeframe(org_id, "WoW")
        assert len(stored) == 1

    @pytest.mark.asyncio
    async def test_truth_snapshots_from_raw_tables(self, async_session, aggregator, org_id):
        for i, (day, price) in enumerate([(date(2026, 2, 10), 1_000_000), (date(2026, 5, 10), 1_080_000)]):
            async_session.add(
                RawRegistryTransactionModel(
                    org_id=org_id,
                    external_id=f"s{i}",
                    transaction_date=day,
                    geo_type="community",
                    geo_id="marina",
                    segment="apartment",
                    sale_price=price,
                    area_sqm=100.0,
                )
            )
        async_session.add(
            RawRentalContractModel(
                org_id=org_id,
                external_id="r1",
                contract_start=date(2026, 5, 1),
                geo_type="community",
                geo_id="marina",
                segment="apartment",
                annual_rent=80_000,
            )
        )
        await async_session.flush()

        written = await aggregator.compute_truth_snapshots(org_id, as_of=AS_OF)

        # Q1: psf + price; Q2: psf + price + rent + yield
        assert written == 6
        stored = await MetricSnapshotRepository(async_session).list_for_timeframe(org_id, "QoQ")
        assert stored[0].window_end == date(2026, 6, 30)

    @pytest.mark.asyncio
    async def test_no_rows_returns_zero(self, aggregator, org_id):
        assert await aggregator.compute_truth_snapshots(org_id, as_of=AS_OF) == 0
        assert await aggregator.compute_portal_snapshots(org_id, as_of=AS_OF) == 0
