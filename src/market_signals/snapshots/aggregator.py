"""Snapshot aggregation from raw observation rows.

Reduces raw per-day rows into periodic aggregate snapshots:

- Portal (WoW): per (portal, geo, segment) inventory counts for the latest
  observed day and, when present, the day exactly one week earlier.
- Truth (QoQ): per (geo, segment) medians of registry sales and rental
  contracts for the latest observed quarter and, when present, the quarter
  before it, plus the derived gross yield.

A single available date or quarter is a cold start: snapshots are still
written and a warning is logged, since no comparison is possible yet.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

import numpy as np

from market_signals.storage.repos import MetricSnapshotDTO, PortalSnapshotDTO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from market_signals.config import SnapshotSettings
    from market_signals.ingestion.reader import (
        RawObservationReader,
        RawPortalRow,
        RawRental,
        RawSale,
    )
    from market_signals.storage.repos import MetricSnapshotRepository, PortalSnapshotRepository

logger = logging.getLogger(__name__)

PORTAL_TIMEFRAME = "WoW"
TRUTH_TIMEFRAME = "QoQ"
WOW_DAYS = 7

SOURCE_REGISTRY = "registry"
SOURCE_RENTAL = "rental"
SOURCE_DERIVED = "derived"

METRIC_MEDIAN_PRICE_PSF = "median_price_psf"
METRIC_MEDIAN_PRICE = "median_price"
METRIC_MEDIAN_RENT = "median_rent_annual"
METRIC_GROSS_YIELD = "gross_yield"


# ============================================================================
# Date helpers
# ============================================================================


def quarter_bounds(day: date) -> tuple[date, date]:
    """First and last day of the calendar quarter containing ``day``."""
    first_month = 3 * ((day.month - 1) // 3) + 1
    start = date(day.year, first_month, 1)
    if first_month == 10:
        end = date(day.year, 12, 31)
    else:
        end = date(day.year, first_month + 3, 1) - timedelta(days=1)
    return start, end


def previous_quarter_start(quarter_start: date) -> date:
    return quarter_bounds(quarter_start - timedelta(days=1))[0]


def select_portal_dates(dates: Sequence[date]) -> list[date]:
    """Latest date plus the date one week earlier when it was observed."""
    if not dates:
        return []
    available = set(dates)
    latest = max(available)
    prev = latest - timedelta(days=WOW_DAYS)
    return [prev, latest] if prev in available else [latest]


def select_quarters(days: Sequence[date]) -> list[date]:
    """Start dates of the latest quarter plus the previous one when observed."""
    if not days:
        return []
    starts = {quarter_bounds(d)[0] for d in days}
    latest = max(starts)
    prev = previous_quarter_start(latest)
    return [prev, latest] if prev in starts else [latest]


def _median(values: Sequence[float]) -> float:
    return float(np.median(np.asarray(values, dtype=float)))


def _first_name(names: Sequence[str | None]) -> str | None:
    return next((n for n in names if n), None)


# ============================================================================
# Pure aggregation
# ============================================================================


def aggregate_portal_rows(
    org_id: str,
    rows: Sequence[RawPortalRow],
    *,
    stale_days_threshold: int = 60,
) -> list[PortalSnapshotDTO]:
    """Aggregate raw portal rows into WoW snapshots for the selected dates."""
    selected = select_portal_dates([r.as_of_date for r in rows])
    if not selected:
        return []
    latest = selected[-1]
    prev = selected[0] if len(selected) == 2 else None

    groups: dict[tuple[str, str, str, str, date], list[RawPortalRow]] = defaultdict(list)
    for row in rows:
        if row.as_of_date in selected:
            groups[(row.portal, row.geo_type, row.geo_id, row.segment, row.as_of_date)].append(row)

    snapshots = []
    for (portal, geo_type, geo_id, segment, as_of_date), group in groups.items():
        active = [r for r in group if r.is_active]
        snapshots.append(
            PortalSnapshotDTO(
                org_id=org_id,
                portal=portal,
                geo_type=geo_type,
                geo_id=geo_id,
                geo_name=_first_name([r.geo_name for r in group]),
                segment=segment,
                timeframe=PORTAL_TIMEFRAME,
                as_of_date=as_of_date,
                active_listings=len(active),
                price_cuts_count=sum(1 for r in active if r.had_price_cut),
                stale_listings_count=sum(
                    1 for r in active if (r.days_on_market or 0) >= stale_days_threshold
                ),
                evidence={
                    "raw_table": "raw_portal_listings",
                    "row_count": len(group),
                    "stale_days_threshold": stale_days_threshold,
                    "wow_anchor": latest.isoformat(),
                    "wow_prev": prev.isoformat() if prev else None,
                },
            )
        )
    return snapshots


@dataclass
class _TruthBucket:
    geo_names: list[str | None]
    sale_prices: list[float]
    sale_psm: list[float]
    rents: list[float]

    @classmethod
    def empty(cls) -> _TruthBucket:
        return cls(geo_names=[], sale_prices=[], sale_psm=[], rents=[])


def aggregate_truth_rows(
    org_id: str,
    sales: Sequence[RawSale],
    rentals: Sequence[RawRental],
) -> list[MetricSnapshotDTO]:
    """Aggregate registry sales and rental contracts into QoQ metric snapshots."""
    quarters = select_quarters(
        [s.transaction_date for s in sales] + [r.contract_start for r in rentals]
    )
    if not quarters:
        return []

    buckets: dict[tuple[str, str, str, date], _TruthBucket] = defaultdict(_TruthBucket.empty)
    for sale in sales:
        q_start = quarter_bounds(sale.transaction_date)[0]
        if q_start not in quarters or sale.sale_price <= 0:
            continue
        bucket = buckets[(sale.geo_type, sale.geo_id, sale.segment, q_start)]
        bucket.geo_names.append(sale.geo_name)
        bucket.sale_prices.append(sale.sale_price)
        if sale.area_sqm and sale.area_sqm > 0:
            bucket.sale_psm.append(sale.sale_price / sale.area_sqm)
    for rental in rentals:
        q_start = quarter_bounds(rental.contract_start)[0]
        if q_start not in quarters or rental.annual_rent <= 0:
            continue
        bucket = buckets[(rental.geo_type, rental.geo_id, rental.segment, q_start)]
        bucket.geo_names.append(rental.geo_name)
        bucket.rents.append(rental.annual_rent)

    snapshots: list[MetricSnapshotDTO] = []
    for (geo_type, geo_id, segment, q_start), bucket in buckets.items():
        window_start, window_end = quarter_bounds(q_start)
        geo_name = _first_name(bucket.geo_names)

        def make(source: str, metric: str, value: float, sample_size: int, table: str) -> MetricSnapshotDTO:
            return MetricSnapshotDTO(
                org_id=org_id,
                source=source,
                metric=metric,
                geo_type=geo_type,
                geo_id=geo_id,
                geo_name=geo_name,
                segment=segment,
                timeframe=TRUTH_TIMEFRAME,
                window_start=window_start,
                window_end=window_end,
                value=value,
                sample_size=sample_size,
                evidence={"raw_table": table, "row_count": sample_size},
            )

        median_price = _median(bucket.sale_prices) if bucket.sale_prices else None
        median_rent = _median(bucket.rents) if bucket.rents else None

        if bucket.sale_psm:
            snapshots.append(
                make(
                    SOURCE_REGISTRY,
                    METRIC_MEDIAN_PRICE_PSF,
                    _median(bucket.sale_psm),
                    len(bucket.sale_psm),
                    "raw_registry_transactions",
                )
            )
        if median_price is not None:
            snapshots.append(
                make(
                    SOURCE_REGISTRY,
                    METRIC_MEDIAN_PRICE,
                    median_price,
                    len(bucket.sale_prices),
                    "raw_registry_transactions",
                )
            )
        if median_rent is not None:
            snapshots.append(
                make(SOURCE_RENTAL, METRIC_MEDIAN_RENT, median_rent, len(bucket.rents), "raw_rental_contracts")
            )
        if median_rent is not None and median_price:
            derived = make(
                SOURCE_DERIVED,
                METRIC_GROSS_YIELD,
                median_rent / median_price,
                min(len(bucket.rents), len(bucket.sale_prices)),
                "raw_registry_transactions+raw_rental_contracts",
            )
            derived.evidence.update({"median_rent_annual": median_rent, "median_price": median_price})
            snapshots.append(derived)
    return snapshots


# ============================================================================
# Aggregator
# ============================================================================


class SnapshotAggregator:
    """Computes and persists Truth and Portal snapshots for one org.

    Example:
        ```python
        aggregator = SnapshotAggregator(
            SqlRawObservationReader(session),
            MetricSnapshotRepository(session),
            PortalSnapshotRepository(session),
            settings=settings.snapshots,
        )
        written = await aggregator.compute_portal_snapshots("org_1")
        ```
    """

    def __init__(
        self,
        raw_reader: RawObservationReader,
        metric_repo: MetricSnapshotRepository,
        portal_repo: PortalSnapshotRepository,
        *,
        settings: SnapshotSettings,
    ) -> None:
        self._raw = raw_reader
        self._metric_repo = metric_repo
        self._portal_repo = portal_repo
        self._settings = settings

    async def compute_portal_snapshots(self, org_id: str, *, as_of: date | None = None) -> int:
        """Aggregate the trailing portal window. Returns snapshots written."""
        until = as_of or datetime.now(UTC).date()
        since = until - timedelta(days=self._settings.portal_lookback_days)
        rows = await self._raw.list_portal_rows(org_id, since=since, until=until)
        if not rows:
            logger.info("No raw portal rows for org=%s in %s..%s", org_id, since, until)
            return 0

        selected = select_portal_dates([r.as_of_date for r in rows])
        if len(selected) < 2:
            logger.warning(
                "Only one portal snapshot date available for org=%s (%s); no WoW comparison possible yet",
                org_id,
                selected[0],
            )

        snapshots = aggregate_portal_rows(
            org_id, rows, stale_days_threshold=self._settings.stale_days_threshold
        )
        written = await self._portal_repo.upsert_many(snapshots, batch_size=self._settings.batch_size)
        logger.info(
            "Portal snapshots computed: org=%s dates=%s rows=%d snapshots=%d",
            org_id,
            [d.isoformat() for d in selected],
            len(rows),
            written,
        )
        return written

    async def compute_truth_snapshots(self, org_id: str, *, as_of: date | None = None) -> int:
        """Aggregate the trailing official-data window. Returns snapshots written."""
        until = as_of or datetime.now(UTC).date()
        since = until - timedelta(days=self._settings.truth_lookback_days)
        sales = await self._raw.list_sales(org_id, since=since, until=until)
        rentals = await self._raw.list_rentals(org_id, since=since, until=until)
        if not sales and not rentals:
            logger.info("No raw registry or rental rows for org=%s in %s..%s", org_id, since, until)
            return 0

        quarters = select_quarters(
            [s.transaction_date for s in sales] + [r.contract_start for r in rentals]
        )
        if len(quarters) < 2:
            logger.warning(
                "Only one quarter of official data available for org=%s (%s); no QoQ comparison possible yet",
                org_id,
                quarters[0],
            )

        snapshots = aggregate_truth_rows(org_id, sales, rentals)
        written = await self._metric_repo.upsert_many(snapshots, batch_size=self._settings.batch_size)
        logger.info(
            "Truth snapshots computed: org=%s quarters=%s sales=%d rentals=%d snapshots=%d",
            org_id,
            [q.isoformat() for q in quarters],
            len(sales),
            len(rentals),
            written,
        )
        return written
