"""Tests for storage repositories and the SQL read interfaces."""

import json
from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from market_signals.storage.models import (
    ComparableTransactionModel,
    InvestorHoldingModel,
    InvestorModel,
    MarketSignalModel,
    PortalListingModel,
)
from market_signals.storage.readers import (
    SqlExposureLookup,
    SqlInvestorDirectory,
    SqlMarketReader,
    SqlSnapshotReader,
    pair_metric_snapshots,
)
from market_signals.storage.repos import (
    ComparableTransactionDTO,
    MetricSnapshotDTO,
    MetricSnapshotRepository,
    NotificationDTO,
    NotificationRepository,
    PortalSnapshotDTO,
    PortalSnapshotRepository,
    SignalDTO,
    SignalRepository,
    SignalTargetDTO,
    SignalTargetRepository,
    dump_json,
    load_json,
)

# ============================================================================
# Helpers
# ============================================================================


def create_metric(
    org_id: str,
    *,
    metric: str = "median_price_psf",
    value: float = 1000.0,
    window: tuple[date, date] = (date(2026, 4, 1), date(2026, 6, 30)),
    segment: str = "apartment",
) -> MetricSnapshotDTO:
    return MetricSnapshotDTO(
        org_id=org_id,
        source="registry",
        metric=metric,
        geo_type="community",
        geo_id="marina",
        geo_name="Dubai Marina",
        segment=segment,
        timeframe="QoQ",
        window_start=window[0],
        window_end=window[1],
        value=value,
        sample_size=30,
        evidence={"row_count": 30},
    )


def create_signal(org_id: str, key: str, *, value: float = 1080.0) -> SignalDTO:
    return SignalDTO(
        org_id=org_id,
        signal_key=key,
        type="price_change",
        source_type="official",
        source="registry",
        geo_type="community",
        geo_id="marina",
        segment="apartment",
        metric="median_price_psf",
        timeframe="QoQ",
        current_value=value,
        confidence_score=0.85,
        severity="watch",
        evidence={"sample_size": 30},
    )


# ============================================================================
# Tests
# ============================================================================


class TestJsonHelpers:
    def test_round_trip_is_sorted(self):
        assert dump_json({"b": 1, "a": date(2026, 1, 1)}) == '{"a": "2026-01-01", "b": 1}'

    def test_load_non_object(self):
        assert load_json("[1, 2]") == {}
        assert load_json(None) == {}


class TestMetricSnapshotRepository:
    """Tests for metric snapshot upserts."""

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_window(self, async_session: AsyncSession, org_id) -> None:
        repo = MetricSnapshotRepository(async_session)

        await repo.upsert_many([create_metric(org_id, value=1000.0)])
        await repo.upsert_many([create_metric(org_id, value=1050.0)])

        stored = await repo.list_for_timeframe(org_id, "QoQ")
        assert len(stored) == 1
        assert stored[0].value == pytest.approx(1050.0)
        assert stored[0].evidence == {"row_count": 30}

    @pytest.mark.asyncio
    async def test_duplicate_keys_in_one_batch(self, async_session: AsyncSession, org_id) -> None:
        repo = MetricSnapshotRepository(async_session)

        written = await repo.upsert_many(
            [create_metric(org_id, value=1.0), create_metric(org_id, value=2.0)]
        )

        assert written == 1
        assert (await repo.list_for_timeframe(org_id, "QoQ"))[0].value == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_get_latest_with_segment_case_insensitive(
        self, async_session: AsyncSession, org_id
    ) -> None:
        repo = MetricSnapshotRepository(async_session)
        await repo.upsert_many(
            [
                create_metric(org_id, metric="gross_yield", value=0.05, window=(date(2026, 1, 1), date(2026, 3, 31))),
                create_metric(org_id, metric="gross_yield", value=0.06),
            ]
        )

        latest = await repo.get_latest(org_id, metric="gross_yield", geo_id="marina", segment="Apartment")

        assert latest is not None
        assert latest.value == pytest.approx(0.06)

    @pytest.mark.asyncio
    async def test_orgs_are_isolated(self, async_session: AsyncSession, org_id) -> None:
        repo = MetricSnapshotRepository(async_session)
        await repo.upsert_many([create_metric("other_org")])

        assert await repo.list_for_timeframe(org_id, "QoQ") == []


class TestPortalSnapshotRepository:
    @pytest.mark.asyncio
    async def test_upsert_by_day(self, async_session: AsyncSession, org_id) -> None:
        repo = PortalSnapshotRepository(async_session)

        def snapshot(active: int) -> PortalSnapshotDTO:
            return PortalSnapshotDTO(
                org_id=org_id,
                portal="bayut",
                geo_type="community",
                geo_id="marina",
                segment="apartment",
                timeframe="WoW",
                as_of_date=date(2026, 6, 20),
                active_listings=active,
                price_cuts_count=1,
                stale_listings_count=2,
            )

        await repo.upsert_many([snapshot(30)])
        await repo.upsert_many([snapshot(35)])

        stored = await repo.list_for_timeframe(org_id, "WoW")
        assert len(stored) == 1
        assert stored[0].active_listings == 35


class TestSignalRepository:
    """Tests for signal upserts keyed by (org_id, signal_key)."""

    @pytest.mark.asyncio
    async def test_created_counts_only_new_keys(self, async_session: AsyncSession, org_id) -> None:
        repo = SignalRepository(async_session)

        first = await repo.upsert_many([create_signal(org_id, "a"), create_signal(org_id, "b")])
        second = await repo.upsert_many([create_signal(org_id, "b"), create_signal(org_id, "c")])

        assert first == 2
        assert second == 1
        assert await repo.count(org_id) == 3

    @pytest.mark.asyncio
    async def test_upsert_preserves_status(self, async_session: AsyncSession, org_id) -> None:
        repo = SignalRepository(async_session)
        await repo.upsert_many([create_signal(org_id, "a")])
        model = (await async_session.execute(
            MarketSignalModel.__table__.select().where(MarketSignalModel.signal_key == "a")
        )).first()
        await async_session.execute(
            MarketSignalModel.__table__.update()
            .where(MarketSignalModel.id == model.id)
            .values(status="acknowledged")
        )

        await repo.upsert_many([create_signal(org_id, "a", value=1200.0)])

        stored = await repo.get_by_key(org_id, "a")
        assert stored is not None
        assert stored.status == "acknowledged"
        assert stored.current_value == pytest.approx(1200.0)

    @pytest.mark.asyncio
    async def test_list_unmapped_excludes_targeted(self, async_session: AsyncSession, org_id) -> None:
        repo = SignalRepository(async_session)
        await repo.upsert_many([create_signal(org_id, k) for k in ("a", "b", "c")])
        a = await repo.get_by_key(org_id, "a")
        await SignalTargetRepository(async_session).upsert_many(
            [SignalTargetDTO(org_id=org_id, signal_id=a.id, investor_id="inv", relevance_score=0.5)]
        )

        unmapped = await repo.list_unmapped(org_id, limit=10)
        after_first = await repo.list_unmapped(org_id, limit=10, after_id=unmapped[0].id)

        assert [s.signal_key for s in unmapped] == ["b", "c"]
        assert [s.signal_key for s in after_first] == ["c"]


class TestSignalTargetRepository:
    @pytest.mark.asyncio
    async def test_upsert_refreshes_score(self, async_session: AsyncSession, org_id) -> None:
        repo = SignalTargetRepository(async_session)

        await repo.upsert_many(
            [SignalTargetDTO(org_id=org_id, signal_id=1, investor_id="inv", relevance_score=0.4)]
        )
        await repo.upsert_many(
            [
                SignalTargetDTO(
                    org_id=org_id,
                    signal_id=1,
                    investor_id="inv",
                    relevance_score=0.7,
                    reason={"matched": ["area"]},
                )
            ]
        )

        targets = await repo.list_by_status(org_id)
        assert len(targets) == 1
        assert targets[0].relevance_score == pytest.approx(0.7)
        assert targets[0].reason == {"matched": ["area"]}

    @pytest.mark.asyncio
    async def test_empty_upsert(self, async_session: AsyncSession) -> None:
        assert await SignalTargetRepository(async_session).upsert_many([]) == 0


class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_insert_if_absent(self, async_session: AsyncSession, org_id) -> None:
        repo = NotificationRepository(async_session)

        def note(key: str) -> NotificationDTO:
            return NotificationDTO(
                org_id=org_id,
                recipient_user_id="user_1",
                notification_key=key,
                entity_type="market_signal",
                entity_id="1",
                title="t",
                body="b",
            )

        first = await repo.insert_if_absent([note("k1"), note("k2"), note("k1")])
        second = await repo.insert_if_absent([note("k2"), note("k3")])

        assert first == 2
        assert second == 1
        assert await repo.count(org_id) == 3


class TestReaders:
    """Tests for the SQL-backed read interfaces."""

    @pytest.mark.asyncio
    async def test_metric_pairs_use_previous_window(self, async_session: AsyncSession, org_id) -> None:
        repo = MetricSnapshotRepository(async_session)
        await repo.upsert_many(
            [
                create_metric(org_id, value=1000.0, window=(date(2026, 1, 1), date(2026, 3, 31))),
                create_metric(org_id, value=1080.0),
                create_metric(org_id, metric="median_price", value=1_000_000.0),
            ]
        )

        pairs = await SqlSnapshotReader(async_session).metric_snapshot_pairs(org_id)

        by_metric = {p.current.metric: p for p in pairs}
        assert by_metric["median_price_psf"].current.value == pytest.approx(1080.0)
        assert by_metric["median_price_psf"].previous.value == pytest.approx(1000.0)
        assert by_metric["median_price"].previous is None

    def test_pair_metric_snapshots_empty(self):
        assert pair_metric_snapshots([]) == []

    @pytest.mark.asyncio
    async def test_area_yield_falls_back_to_any_segment(self, async_session: AsyncSession, org_id) -> None:
        await MetricSnapshotRepository(async_session).upsert_many(
            [create_metric(org_id, metric="gross_yield", value=0.061, segment="villa")]
        )

        area = await SqlSnapshotReader(async_session).area_yield(
            org_id, geo_id="marina", segment="apartment"
        )

        assert area.gross_yield == pytest.approx(0.061)
        assert area.median_rent_annual is None

    @pytest.mark.asyncio
    async def test_market_reader(self, async_session: AsyncSession, org_id) -> None:
        async_session.add_all(
            [
                PortalListingModel(
                    org_id=org_id,
                    portal="bayut",
                    listing_id="L1",
                    area_name="Dubai Marina",
                    property_type="Apartment",
                    asking_price=900_000,
                    size_sqm=100,
                    days_on_market=12,
                ),
                PortalListingModel(
                    org_id=org_id,
                    portal="bayut",
                    listing_id="L2",
                    area_name="Dubai Marina",
                    property_type="Apartment",
                    asking_price=950_000,
                    listing_type="rent",
                    days_on_market=40,
                ),
                ComparableTransactionModel(
                    org_id=org_id,
                    external_id="T1",
                    area_name="DUBAI MARINA",
                    price=1_000_000,
                    size_sqm=100,
                    transaction_date=date(2026, 5, 1),
                ),
                ComparableTransactionModel(
                    org_id=org_id,
                    external_id="T0",
                    area_name="Dubai Marina",
                    price=1_000_000,
                    transaction_date=date(2023, 5, 1),
                ),
            ]
        )
        await async_session.flush()
        reader = SqlMarketReader(async_session)

        listings = await reader.active_sale_listings(org_id)
        comps = await reader.comparable_transactions(
            org_id, area_name="dubai marina", since=date(2024, 6, 30)
        )
        dom = await reader.area_days_on_market(
            org_id, area_name="Dubai Marina", property_type="apartment"
        )

        assert [lst.listing_id for lst in listings] == ["L1"]
        assert [c.external_id for c in comps] == ["T1"]
        assert comps[0].effective_psm == pytest.approx(10_000.0)
        assert sorted(dom) == [12, 40]

    @pytest.mark.asyncio
    async def test_investor_directory_and_exposure(self, async_session: AsyncSession, org_id) -> None:
        async_session.add_all(
            [
                InvestorModel(id="inv_a", org_id=org_id, name="A", mandate_json=json.dumps({"open": True})),
                InvestorModel(id="inv_b", org_id=org_id, name="B", mandate_json=None),
                InvestorModel(id="inv_c", org_id=org_id, name="C", mandate_json="{}"),
                InvestorHoldingModel(org_id=org_id, investor_id="inv_a", geo_id="marina", label="Unit 12"),
            ]
        )
        await async_session.flush()

        investors = await SqlInvestorDirectory(async_session).investors_with_mandate(org_id)
        lookup = SqlExposureLookup(async_session)
        exposed = await lookup.get_exposure(org_id, investor_id="inv_a", geo_id="marina")
        not_exposed = await lookup.get_exposure(org_id, investor_id="inv_a", geo_id="jvc")

        assert [inv.id for inv in investors] == ["inv_a"]
        assert exposed.has_exposure
        assert exposed.details["holdings"] == ["Unit 12"]
        assert not not_exposed.has_exposure


class TestDTOs:
    def test_comparable_effective_psm_prefers_recorded_value(self):
        comp = ComparableTransactionDTO(
            external_id="T",
            area_name="a",
            price=1_000_000,
            transaction_date=date(2026, 1, 1),
            size_sqm=100,
            price_per_sqm=9_000,
        )
        assert comp.effective_psm == 9_000

    def test_comparable_effective_psm_unknown(self):
        comp = ComparableTransactionDTO(
            external_id="T", area_name="a", price=1_000_000, transaction_date=date(2026, 1, 1)
        )
        assert comp.effective_psm is None
