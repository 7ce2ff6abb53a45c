"""Repository pattern implementations for data access.

This module provides data access abstractions for snapshots, signals,
signal targets and notifications (written by the pipeline) and for the
reference tables the pipeline reads (portal inventory, comparable
transactions, investors, holdings and org users).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import exists, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from market_signals.storage.models import (
    ComparableTransactionModel,
    InvestorHoldingModel,
    InvestorModel,
    MarketMetricSnapshotModel,
    MarketSignalModel,
    MarketSignalTargetModel,
    NotificationModel,
    OrgUserModel,
    PortalListingModel,
    PortalListingSnapshotModel,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def dump_json(payload: dict[str, Any] | None) -> str:
    return json.dumps(payload or {}, sort_keys=True, default=str)


def load_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    value = json.loads(raw)
    return value if isinstance(value, dict) else {}


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterable[Sequence[dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def _dedupe(rows: Iterable[dict[str, Any]], key_cols: Sequence[str]) -> list[dict[str, Any]]:
    # A single ON CONFLICT DO UPDATE statement may not touch the same row twice.
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[c] for c in key_cols)] = row
    return list(by_key.values())


# ============================================================================
# Snapshots
# ============================================================================


@dataclass
class MetricSnapshotDTO:
    """Data transfer object for official-data metric snapshots."""

    org_id: str
    source: str
    metric: str
    geo_type: str
    geo_id: str
    segment: str
    timeframe: str
    window_start: date
    window_end: date
    value: float
    sample_size: int
    geo_name: str | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @property
    def group_key(self) -> tuple[str, str, str, str, str, str]:
        return (self.source, self.metric, self.geo_type, self.geo_id, self.segment, self.timeframe)

    @classmethod
    def from_model(cls, model: MarketMetricSnapshotModel) -> MetricSnapshotDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            source=model.source,
            metric=model.metric,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            timeframe=model.timeframe,
            window_start=model.window_start,
            window_end=model.window_end,
            value=model.value,
            sample_size=model.sample_size,
            evidence=load_json(model.evidence_json),
        )


@dataclass
class PortalSnapshotDTO:
    """Data transfer object for portal inventory snapshots."""

    org_id: str
    portal: str
    geo_type: str
    geo_id: str
    segment: str
    timeframe: str
    as_of_date: date
    active_listings: int
    price_cuts_count: int
    stale_listings_count: int
    geo_name: str | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @property
    def group_key(self) -> tuple[str, str, str, str, str]:
        return (self.portal, self.geo_type, self.geo_id, self.segment, self.timeframe)

    @classmethod
    def from_model(cls, model: PortalListingSnapshotModel) -> PortalSnapshotDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            portal=model.portal,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            timeframe=model.timeframe,
            as_of_date=model.as_of_date,
            active_listings=model.active_listings,
            price_cuts_count=model.price_cuts_count,
            stale_listings_count=model.stale_listings_count,
            evidence=load_json(model.evidence_json),
        )


class MetricSnapshotRepository:
    """Repository for official-data metric snapshots."""

    _KEY = ["org_id", "source", "metric", "geo_type", "geo_id", "segment", "timeframe", "window_end"]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, dtos: Sequence[MetricSnapshotDTO], *, batch_size: int = 100) -> int:
        """Upsert snapshots by their window key. Returns the number of rows written."""
        now = datetime.now(UTC)
        rows = _dedupe(
            (
                {
                    "org_id": d.org_id,
                    "source": d.source,
                    "metric": d.metric,
                    "geo_type": d.geo_type,
                    "geo_id": d.geo_id,
                    "geo_name": d.geo_name,
                    "segment": d.segment,
                    "timeframe": d.timeframe,
                    "window_start": d.window_start,
                    "window_end": d.window_end,
                    "value": d.value,
                    "sample_size": d.sample_size,
                    "evidence_json": dump_json(d.evidence),
                    "created_at": now,
                }
                for d in dtos
            ),
            self._KEY,
        )
        for chunk in _chunks(rows, batch_size):
            stmt = _insert_for(self.session, MarketMetricSnapshotModel).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=self._KEY,
                set_={
                    "geo_name": stmt.excluded.geo_name,
                    "window_start": stmt.excluded.window_start,
                    "value": stmt.excluded.value,
                    "sample_size": stmt.excluded.sample_size,
                    "evidence_json": stmt.excluded.evidence_json,
                },
            )
            await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_for_timeframe(self, org_id: str, timeframe: str) -> list[MetricSnapshotDTO]:
        """All snapshots for a timeframe, newest window first."""
        result = await self.session.execute(
            select(MarketMetricSnapshotModel)
            .where(
                MarketMetricSnapshotModel.org_id == org_id,
                MarketMetricSnapshotModel.timeframe == timeframe,
            )
            .order_by(MarketMetricSnapshotModel.window_end.desc(), MarketMetricSnapshotModel.id)
        )
        return [MetricSnapshotDTO.from_model(m) for m in result.scalars().all()]

    async def get_latest(
        self, org_id: str, *, metric: str, geo_id: str, segment: str | None = None
    ) -> MetricSnapshotDTO | None:
        """Most recent snapshot of a metric for a geo, optionally narrowed to a segment."""
        query = select(MarketMetricSnapshotModel).where(
            MarketMetricSnapshotModel.org_id == org_id,
            MarketMetricSnapshotModel.metric == metric,
            MarketMetricSnapshotModel.geo_id == geo_id,
        )
        if segment is not None:
            query = query.where(func.lower(MarketMetricSnapshotModel.segment) == segment.lower())
        result = await self.session.execute(
            query.order_by(MarketMetricSnapshotModel.window_end.desc()).limit(1)
        )
        model = result.scalar_one_or_none()
        return MetricSnapshotDTO.from_model(model) if model else None


class PortalSnapshotRepository:
    """Repository for portal inventory snapshots."""

    _KEY = ["org_id", "portal", "geo_type", "geo_id", "segment", "timeframe", "as_of_date"]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, dtos: Sequence[PortalSnapshotDTO], *, batch_size: int = 100) -> int:
        """Upsert snapshots by their day key. Returns the number of rows written."""
        now = datetime.now(UTC)
        rows = _dedupe(
            (
                {
                    "org_id": d.org_id,
                    "portal": d.portal,
                    "geo_type": d.geo_type,
                    "geo_id": d.geo_id,
                    "geo_name": d.geo_name,
                    "segment": d.segment,
                    "timeframe": d.timeframe,
                    "as_of_date": d.as_of_date,
                    "active_listings": d.active_listings,
                    "price_cuts_count": d.price_cuts_count,
                    "stale_listings_count": d.stale_listings_count,
                    "evidence_json": dump_json(d.evidence),
                    "created_at": now,
                }
                for d in dtos
            ),
            self._KEY,
        )
        for chunk in _chunks(rows, batch_size):
            stmt = _insert_for(self.session, PortalListingSnapshotModel).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=self._KEY,
                set_={
                    "geo_name": stmt.excluded.geo_name,
                    "active_listings": stmt.excluded.active_listings,
                    "price_cuts_count": stmt.excluded.price_cuts_count,
                    "stale_listings_count": stmt.excluded.stale_listings_count,
                    "evidence_json": stmt.excluded.evidence_json,
                },
            )
            await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_for_timeframe(self, org_id: str, timeframe: str) -> list[PortalSnapshotDTO]:
        """All snapshots for a timeframe, newest day first."""
        result = await self.session.execute(
            select(PortalListingSnapshotModel)
            .where(
                PortalListingSnapshotModel.org_id == org_id,
                PortalListingSnapshotModel.timeframe == timeframe,
            )
            .order_by(PortalListingSnapshotModel.as_of_date.desc(), PortalListingSnapshotModel.id)
        )
        return [PortalSnapshotDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Signals
# ============================================================================


@dataclass
class SignalDTO:
    """Data transfer object for market signals."""

    org_id: str
    signal_key: str
    type: str
    source_type: str
    source: str
    geo_type: str
    geo_id: str
    metric: str
    timeframe: str
    current_value: float
    confidence_score: float
    severity: str
    geo_name: str | None = None
    segment: str | None = None
    prev_value: float | None = None
    delta_value: float | None = None
    delta_pct: float | None = None
    evidence: dict[str, Any] = field(default_factory=dict)
    status: str = "new"
    id: int | None = None

    @classmethod
    def from_model(cls, model: MarketSignalModel) -> SignalDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            signal_key=model.signal_key,
            type=model.type,
            source_type=model.source_type,
            source=model.source,
            geo_type=model.geo_type,
            geo_id=model.geo_id,
            geo_name=model.geo_name,
            segment=model.segment,
            metric=model.metric,
            timeframe=model.timeframe,
            current_value=model.current_value,
            prev_value=model.prev_value,
            delta_value=model.delta_value,
            delta_pct=model.delta_pct,
            confidence_score=model.confidence_score,
            severity=model.severity,
            status=model.status,
            evidence=load_json(model.evidence_json),
        )


class SignalRepository:
    """Repository for market signals, keyed by (org_id, signal_key)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def existing_keys(self, org_id: str, keys: Sequence[str]) -> set[str]:
        if not keys:
            return set()
        result = await self.session.execute(
            select(MarketSignalModel.signal_key).where(
                MarketSignalModel.org_id == org_id,
                MarketSignalModel.signal_key.in_(list(keys)),
            )
        )
        return {row[0] for row in result.all()}

    async def upsert_many(self, dtos: Sequence[SignalDTO], *, batch_size: int = 50) -> int:
        """Upsert signals by key, refreshing values and evidence.

        Operator-owned columns (status, acknowledgement, dismissal) and the
        key itself are never rewritten on conflict.

        Returns:
            Number of signals that did not exist before this call.
        """
        now = datetime.now(UTC)
        rows = _dedupe(
            (
                {
                    "org_id": d.org_id,
                    "signal_key": d.signal_key,
                    "type": d.type,
                    "source_type": d.source_type,
                    "source": d.source,
                    "geo_type": d.geo_type,
                    "geo_id": d.geo_id,
                    "geo_name": d.geo_name,
                    "segment": d.segment,
                    "metric": d.metric,
                    "timeframe": d.timeframe,
                    "current_value": d.current_value,
                    "prev_value": d.prev_value,
                    "delta_value": d.delta_value,
                    "delta_pct": d.delta_pct,
                    "confidence_score": d.confidence_score,
                    "severity": d.severity,
                    "status": d.status,
                    "evidence_json": dump_json(d.evidence),
                    "created_at": now,
                    "updated_at": now,
                }
                for d in dtos
            ),
            ["org_id", "signal_key"],
        )
        created = 0
        for chunk in _chunks(rows, batch_size):
            org_ids = {row["org_id"] for row in chunk}
            existing: set[str] = set()
            for org_id in org_ids:
                existing |= await self.existing_keys(
                    org_id, [row["signal_key"] for row in chunk if row["org_id"] == org_id]
                )
            created += sum(1 for row in chunk if row["signal_key"] not in existing)

            stmt = _insert_for(self.session, MarketSignalModel).values(list(chunk))
            stmt = stmt.on_conflict_do_update(
                index_elements=["org_id", "signal_key"],
                set_={
                    "type": stmt.excluded.type,
                    "source_type": stmt.excluded.source_type,
                    "source": stmt.excluded.source,
                    "geo_name": stmt.excluded.geo_name,
                    "current_value": stmt.excluded.current_value,
                    "prev_value": stmt.excluded.prev_value,
                    "delta_value": stmt.excluded.delta_value,
                    "delta_pct": stmt.excluded.delta_pct,
                    "confidence_score": stmt.excluded.confidence_score,
                    "severity": stmt.excluded.severity,
                    "evidence_json": stmt.excluded.evidence_json,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await self.session.execute(stmt)
        await self.session.flush()
        return created

    async def get_by_key(self, org_id: str, signal_key: str) -> SignalDTO | None:
        result = await self.session.execute(
            select(MarketSignalModel).where(
                MarketSignalModel.org_id == org_id,
                MarketSignalModel.signal_key == signal_key,
            )
        )
        model = result.scalar_one_or_none()
        return SignalDTO.from_model(model) if model else None

    async def get_many(self, org_id: str, ids: Sequence[int]) -> dict[int, SignalDTO]:
        if not ids:
            return {}
        result = await self.session.execute(
            select(MarketSignalModel).where(
                MarketSignalModel.org_id == org_id,
                MarketSignalModel.id.in_(list(ids)),
            )
        )
        return {m.id: SignalDTO.from_model(m) for m in result.scalars().all()}

    async def list_unmapped(
        self, org_id: str, *, limit: int, after_id: int | None = None
    ) -> list[SignalDTO]:
        """Signals with no target rows yet, in ascending id order after a cursor."""
        has_target = exists().where(
            MarketSignalTargetModel.org_id == org_id,
            MarketSignalTargetModel.signal_id == MarketSignalModel.id,
        )
        query = select(MarketSignalModel).where(MarketSignalModel.org_id == org_id, ~has_target)
        if after_id is not None:
            query = query.where(MarketSignalModel.id > after_id)
        result = await self.session.execute(query.order_by(MarketSignalModel.id).limit(limit))
        return [SignalDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, org_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(MarketSignalModel).where(MarketSignalModel.org_id == org_id)
        )
        return int(result.scalar_one())


# ============================================================================
# Signal targets
# ============================================================================


@dataclass
class SignalTargetDTO:
    """Data transfer object for signal-to-investor mappings."""

    org_id: str
    signal_id: int
    investor_id: str
    relevance_score: float
    reason: dict[str, Any] = field(default_factory=dict)
    status: str = "new"
    id: int | None = None

    @classmethod
    def from_model(cls, model: MarketSignalTargetModel) -> SignalTargetDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            signal_id=model.signal_id,
            investor_id=model.investor_id,
            relevance_score=model.relevance_score,
            reason=load_json(model.reason_json),
            status=model.status,
        )


class SignalTargetRepository:
    """Repository for signal targets, unique per (org, signal, investor)."""

    _KEY = ["org_id", "signal_id", "investor_id"]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, dtos: Sequence[SignalTargetDTO]) -> int:
        """Upsert targets, refreshing score and reason. Returns the number of rows written."""
        if not dtos:
            return 0
        now = datetime.now(UTC)
        rows = _dedupe(
            (
                {
                    "org_id": d.org_id,
                    "signal_id": d.signal_id,
                    "investor_id": d.investor_id,
                    "relevance_score": d.relevance_score,
                    "reason_json": dump_json(d.reason),
                    "status": d.status,
                    "created_at": now,
                    "updated_at": now,
                }
                for d in dtos
            ),
            self._KEY,
        )
        stmt = _insert_for(self.session, MarketSignalTargetModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=self._KEY,
            set_={
                "relevance_score": stmt.excluded.relevance_score,
                "reason_json": stmt.excluded.reason_json,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_by_status(self, org_id: str, status: str = "new") -> list[SignalTargetDTO]:
        result = await self.session.execute(
            select(MarketSignalTargetModel)
            .where(
                MarketSignalTargetModel.org_id == org_id,
                MarketSignalTargetModel.status == status,
            )
            .order_by(MarketSignalTargetModel.id)
        )
        return [SignalTargetDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, org_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(MarketSignalTargetModel)
            .where(MarketSignalTargetModel.org_id == org_id)
        )
        return int(result.scalar_one())


# ============================================================================
# Notifications
# ============================================================================


@dataclass
class NotificationDTO:
    """Data transfer object for recorded notifications."""

    org_id: str
    recipient_user_id: str
    notification_key: str
    entity_type: str
    entity_id: str
    title: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_model(cls, model: NotificationModel) -> NotificationDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            recipient_user_id=model.recipient_user_id,
            notification_key=model.notification_key,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            title=model.title,
            body=model.body,
            metadata=load_json(model.metadata_json),
        )


class NotificationRepository:
    """Repository for notifications, deduplicated by notification_key."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def existing_keys(self, keys: Sequence[str]) -> set[str]:
        if not keys:
            return set()
        result = await self.session.execute(
            select(NotificationModel.notification_key).where(
                NotificationModel.notification_key.in_(list(keys))
            )
        )
        return {row[0] for row in result.all()}

    async def insert_if_absent(self, dtos: Sequence[NotificationDTO], *, batch_size: int = 100) -> int:
        """Insert notifications whose key is not yet recorded.

        Returns:
            Number of rows actually inserted.
        """
        now = datetime.now(UTC)
        rows = _dedupe(
            (
                {
                    "org_id": d.org_id,
                    "recipient_user_id": d.recipient_user_id,
                    "notification_key": d.notification_key,
                    "entity_type": d.entity_type,
                    "entity_id": d.entity_id,
                    "title": d.title,
                    "body": d.body,
                    "metadata_json": dump_json(d.metadata),
                    "created_at": now,
                }
                for d in dtos
            ),
            ["notification_key"],
        )
        inserted = 0
        for chunk in _chunks(rows, batch_size):
            existing = await self.existing_keys([row["notification_key"] for row in chunk])
            fresh = [row for row in chunk if row["notification_key"] not in existing]
            if not fresh:
                continue
            stmt = _insert_for(self.session, NotificationModel).values(fresh)
            stmt = stmt.on_conflict_do_nothing(index_elements=["notification_key"])
            await self.session.execute(stmt)
            inserted += len(fresh)
        await self.session.flush()
        return inserted

    async def list_for_recipient(self, org_id: str, recipient_user_id: str) -> list[NotificationDTO]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(
                NotificationModel.org_id == org_id,
                NotificationModel.recipient_user_id == recipient_user_id,
            )
            .order_by(NotificationModel.id)
        )
        return [NotificationDTO.from_model(m) for m in result.scalars().all()]

    async def count(self, org_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(NotificationModel).where(NotificationModel.org_id == org_id)
        )
        return int(result.scalar_one())


# ============================================================================
# Reference data: listings and comparable transactions
# ============================================================================


@dataclass
class ListingDTO:
    """Data transfer object for current portal listings."""

    portal: str
    listing_id: str
    area_name: str
    property_type: str
    asking_price: float | None
    size_sqm: float | None = None
    price_per_sqm: float | None = None
    bedrooms: int | None = None
    building_name: str | None = None
    listing_url: str | None = None
    listing_type: str = "sale"
    is_active: bool = True
    listed_date: date | None = None
    days_on_market: int | None = None

    @classmethod
    def from_model(cls, model: PortalListingModel) -> ListingDTO:
        return cls(
            portal=model.portal,
            listing_id=model.listing_id,
            listing_url=model.listing_url,
            area_name=model.area_name,
            building_name=model.building_name,
            property_type=model.property_type,
            bedrooms=model.bedrooms,
            size_sqm=model.size_sqm,
            asking_price=model.asking_price,
            price_per_sqm=model.price_per_sqm,
            listing_type=model.listing_type,
            is_active=model.is_active,
            listed_date=model.listed_date,
            days_on_market=model.days_on_market,
        )


class PortalListingRepository:
    """Repository for current portal inventory."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active_for_sale(self, org_id: str) -> list[ListingDTO]:
        result = await self.session.execute(
            select(PortalListingModel)
            .where(
                PortalListingModel.org_id == org_id,
                PortalListingModel.is_active.is_(True),
                PortalListingModel.listing_type == "sale",
                PortalListingModel.asking_price > 0,
            )
            .order_by(PortalListingModel.id)
        )
        return [ListingDTO.from_model(m) for m in result.scalars().all()]

    async def list_days_on_market(
        self, org_id: str, *, area_name: str, property_type: str | None = None
    ) -> list[int]:
        """Days on market of active listings in an area (case-insensitive)."""
        query = select(PortalListingModel.days_on_market).where(
            PortalListingModel.org_id == org_id,
            PortalListingModel.is_active.is_(True),
            func.lower(PortalListingModel.area_name) == area_name.lower(),
            PortalListingModel.days_on_market.is_not(None),
        )
        if property_type is not None:
            query = query.where(func.lower(PortalListingModel.property_type) == property_type.lower())
        result = await self.session.execute(query)
        return [int(row[0]) for row in result.all()]


@dataclass(frozen=True)
class ComparableTransactionDTO:
    """Historical sale considered as a comparable."""

    external_id: str
    area_name: str
    price: float
    transaction_date: date
    building_name: str | None = None
    property_type: str | None = None
    bedrooms: int | None = None
    size_sqm: float | None = None
    price_per_sqm: float | None = None

    @property
    def effective_psm(self) -> float | None:
        if self.price_per_sqm is not None and self.price_per_sqm > 0:
            return self.price_per_sqm
        if self.size_sqm:
            return self.price / self.size_sqm
        return None

    @classmethod
    def from_model(cls, model: ComparableTransactionModel) -> ComparableTransactionDTO:
        return cls(
            external_id=model.external_id,
            area_name=model.area_name,
            building_name=model.building_name,
            property_type=model.property_type,
            bedrooms=model.bedrooms,
            size_sqm=model.size_sqm,
            price=model.price,
            price_per_sqm=model.price_per_sqm,
            transaction_date=model.transaction_date,
        )


class ComparableTransactionRepository:
    """Repository for comparable sale transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_area(
        self, org_id: str, *, area_name: str, since: date
    ) -> list[ComparableTransactionDTO]:
        result = await self.session.execute(
            select(ComparableTransactionModel)
            .where(
                ComparableTransactionModel.org_id == org_id,
                func.lower(ComparableTransactionModel.area_name) == area_name.lower(),
                ComparableTransactionModel.transaction_date >= since,
                ComparableTransactionModel.price > 0,
            )
            .order_by(ComparableTransactionModel.transaction_date.desc())
        )
        return [ComparableTransactionDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Investors, holdings and org users
# ============================================================================


@dataclass
class InvestorDTO:
    """Investor with a decoded mandate document."""

    id: str
    org_id: str
    name: str
    mandate: dict[str, Any] = field(default_factory=dict)
    assigned_agent_id: str | None = None

    @classmethod
    def from_model(cls, model: InvestorModel) -> InvestorDTO:
        return cls(
            id=model.id,
            org_id=model.org_id,
            name=model.name,
            mandate=load_json(model.mandate_json),
            assigned_agent_id=model.assigned_agent_id,
        )


class InvestorRepository:
    """Repository for investors and their mandates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_with_mandate(self, org_id: str) -> list[InvestorDTO]:
        result = await self.session.execute(
            select(InvestorModel)
            .where(InvestorModel.org_id == org_id, InvestorModel.mandate_json.is_not(None))
            .order_by(InvestorModel.id)
        )
        investors = [InvestorDTO.from_model(m) for m in result.scalars().all()]
        return [inv for inv in investors if inv.mandate]

    async def get_many(self, org_id: str, ids: Sequence[str]) -> dict[str, InvestorDTO]:
        if not ids:
            return {}
        result = await self.session.execute(
            select(InvestorModel).where(InvestorModel.org_id == org_id, InvestorModel.id.in_(list(ids)))
        )
        return {m.id: InvestorDTO.from_model(m) for m in result.scalars().all()}


class InvestorHoldingRepository:
    """Repository for existing investor positions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_for_geo(self, org_id: str, *, investor_id: str, geo_id: str) -> list[str]:
        """Labels of holdings the investor has in a geo (empty when none)."""
        result = await self.session.execute(
            select(InvestorHoldingModel.id, InvestorHoldingModel.label).where(
                InvestorHoldingModel.org_id == org_id,
                InvestorHoldingModel.investor_id == investor_id,
                InvestorHoldingModel.geo_id == geo_id,
            )
        )
        return [label or str(holding_id) for holding_id, label in result.all()]


class OrgUserRepository:
    """Repository for org membership."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_user_ids_by_roles(self, org_id: str, roles: Sequence[str]) -> list[str]:
        if not roles:
            return []
        result = await self.session.execute(
            select(OrgUserModel.user_id)
            .where(OrgUserModel.org_id == org_id, OrgUserModel.role.in_(list(roles)))
            .order_by(OrgUserModel.user_id)
        )
        return [row[0] for row in result.all()]
