"""Read interfaces consumed by the detectors, mapper and publisher.

Each interface is a ``Protocol`` so stages can be exercised with in-memory
fakes; the ``Sql*`` classes are the database-backed implementations.
Nothing here touches the raw ingestion tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from market_signals.storage.repos import (
    ComparableTransactionDTO,
    ComparableTransactionRepository,
    InvestorDTO,
    InvestorHoldingRepository,
    InvestorRepository,
    ListingDTO,
    MetricSnapshotDTO,
    MetricSnapshotRepository,
    OrgUserRepository,
    PortalListingRepository,
    PortalSnapshotDTO,
    PortalSnapshotRepository,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

TRUTH_TIMEFRAME = "QoQ"
PORTAL_TIMEFRAME = "WoW"
PORTAL_COMPARISON_DAYS = 7


@dataclass(frozen=True)
class MetricSnapshotPair:
    current: MetricSnapshotDTO
    previous: MetricSnapshotDTO | None


@dataclass(frozen=True)
class PortalSnapshotPair:
    current: PortalSnapshotDTO
    previous: PortalSnapshotDTO | None


@dataclass(frozen=True)
class AreaYield:
    """Latest official rent/yield figures for an area."""

    median_rent_annual: float | None = None
    gross_yield: float | None = None


@dataclass(frozen=True)
class Exposure:
    has_exposure: bool
    details: dict[str, Any] = field(default_factory=dict)


def pair_metric_snapshots(snapshots: Sequence[MetricSnapshotDTO]) -> list[MetricSnapshotPair]:
    """Pair each group's newest window with the window before it.

    Args:
        snapshots: Snapshots of one timeframe, newest window first.
    """
    grouped: dict[tuple[str, ...], list[MetricSnapshotDTO]] = {}
    for snap in snapshots:
        grouped.setdefault(snap.group_key, []).append(snap)
    pairs = []
    for rows in grouped.values():
        current = rows[0]
        previous = next((r for r in rows[1:] if r.window_end < current.window_end), None)
        pairs.append(MetricSnapshotPair(current=current, previous=previous))
    return pairs


def pair_portal_snapshots(snapshots: Sequence[PortalSnapshotDTO]) -> list[PortalSnapshotPair]:
    """Pair each group's newest day with the day exactly one week earlier.

    Args:
        snapshots: Snapshots of one timeframe, newest day first.
    """
    grouped: dict[tuple[str, ...], list[PortalSnapshotDTO]] = {}
    for snap in snapshots:
        grouped.setdefault(snap.group_key, []).append(snap)
    pairs = []
    for rows in grouped.values():
        current = rows[0]
        anchor = current.as_of_date - timedelta(days=PORTAL_COMPARISON_DAYS)
        previous = next((r for r in rows[1:] if r.as_of_date == anchor), None)
        pairs.append(PortalSnapshotPair(current=current, previous=previous))
    return pairs


class SnapshotReader(Protocol):
    """Snapshot-only view used by the signal detectors."""

    async def metric_snapshot_pairs(self, org_id: str) -> list[MetricSnapshotPair]: ...

    async def portal_snapshot_pairs(self, org_id: str) -> list[PortalSnapshotPair]: ...

    async def area_yield(self, org_id: str, *, geo_id: str, segment: str | None) -> AreaYield: ...


class MarketReader(Protocol):
    """Current inventory and comparable sales used for pricing analysis."""

    async def active_sale_listings(self, org_id: str) -> list[ListingDTO]: ...

    async def comparable_transactions(
        self, org_id: str, *, area_name: str, since: date
    ) -> list[ComparableTransactionDTO]: ...

    async def area_days_on_market(
        self, org_id: str, *, area_name: str, property_type: str | None
    ) -> list[int]: ...


class InvestorDirectory(Protocol):
    async def investors_with_mandate(self, org_id: str) -> list[InvestorDTO]: ...

    async def get_investors(self, org_id: str, ids: Sequence[str]) -> dict[str, InvestorDTO]: ...


class ExposureLookup(Protocol):
    async def get_exposure(self, org_id: str, *, investor_id: str, geo_id: str) -> Exposure: ...


class RecipientDirectory(Protocol):
    async def recipients_for(self, org_id: str, investor: InvestorDTO | None) -> list[str]: ...


class SqlSnapshotReader:
    """SnapshotReader backed by the snapshot tables."""

    def __init__(self, session: AsyncSession) -> None:
        self._metrics = MetricSnapshotRepository(session)
        self._portal = PortalSnapshotRepository(session)

    async def metric_snapshot_pairs(self, org_id: str) -> list[MetricSnapshotPair]:
        return pair_metric_snapshots(await self._metrics.list_for_timeframe(org_id, TRUTH_TIMEFRAME))

    async def portal_snapshot_pairs(self, org_id: str) -> list[PortalSnapshotPair]:
        return pair_portal_snapshots(await self._portal.list_for_timeframe(org_id, PORTAL_TIMEFRAME))

    async def area_yield(self, org_id: str, *, geo_id: str, segment: str | None) -> AreaYield:
        rent = await self._latest(org_id, "median_rent_annual", geo_id, segment)
        gross = await self._latest(org_id, "gross_yield", geo_id, segment)
        return AreaYield(
            median_rent_annual=rent.value if rent else None,
            gross_yield=gross.value if gross else None,
        )

    async def _latest(
        self, org_id: str, metric: str, geo_id: str, segment: str | None
    ) -> MetricSnapshotDTO | None:
        # Fall back to any segment in the area when the exact segment has no data.
        if segment is not None:
            snap = await self._metrics.get_latest(org_id, metric=metric, geo_id=geo_id, segment=segment)
            if snap is not None:
                return snap
        return await self._metrics.get_latest(org_id, metric=metric, geo_id=geo_id)


class SqlMarketReader:
    """MarketReader backed by the portal inventory and comparables tables."""

    def __init__(self, session: AsyncSession) -> None:
        self._listings = PortalListingRepository(session)
        self._comparables = ComparableTransactionRepository(session)

    async def active_sale_listings(self, org_id: str) -> list[ListingDTO]:
        return await self._listings.list_active_for_sale(org_id)

    async def comparable_transactions(
        self, org_id: str, *, area_name: str, since: date
    ) -> list[ComparableTransactionDTO]:
        return await self._comparables.list_for_area(org_id, area_name=area_name, since=since)

    async def area_days_on_market(
        self, org_id: str, *, area_name: str, property_type: str | None
    ) -> list[int]:
        return await self._listings.list_days_on_market(
            org_id, area_name=area_name, property_type=property_type
        )


class SqlInvestorDirectory:
    def __init__(self, session: AsyncSession) -> None:
        self._repo = InvestorRepository(session)

    async def investors_with_mandate(self, org_id: str) -> list[InvestorDTO]:
        return await self._repo.list_with_mandate(org_id)

    async def get_investors(self, org_id: str, ids: Sequence[str]) -> dict[str, InvestorDTO]:
        return await self._repo.get_many(org_id, ids)


class SqlExposureLookup:
    def __init__(self, session: AsyncSession) -> None:
        self._repo = InvestorHoldingRepository(session)

    async def get_exposure(self, org_id: str, *, investor_id: str, geo_id: str) -> Exposure:
        holdings = await self._repo.list_for_geo(org_id, investor_id=investor_id, geo_id=geo_id)
        if not holdings:
            return Exposure(has_exposure=False)
        return Exposure(has_exposure=True, details={"geo_id": geo_id, "holdings": holdings})


class SqlRecipientDirectory:
    """Investor's assigned agent plus every org user holding a notified role."""

    def __init__(self, session: AsyncSession, *, roles: Sequence[str]) -> None:
        self._users = OrgUserRepository(session)
        self._roles = tuple(roles)
        self._role_users: dict[str, list[str]] = {}

    async def recipients_for(self, org_id: str, investor: InvestorDTO | None) -> list[str]:
        if org_id not in self._role_users:
            self._role_users[org_id] = await self._users.list_user_ids_by_roles(org_id, self._roles)
        recipients: list[str] = []
        if investor is not None and investor.assigned_agent_id:
            recipients.append(investor.assigned_agent_id)
        for user_id in self._role_users[org_id]:
            if user_id not in recipients:
                recipients.append(user_id)
        return recipients
