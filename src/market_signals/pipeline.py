"""Market signals pipeline orchestrator.

This module provides the SignalsPipeline class that runs every stage of the
signal pipeline for one org, in order:

    truth snapshots -> portal snapshots -> truth detection -> portal detection
    -> pricing-opportunity detection -> investor mapping -> notifications

Each stage runs in its own session and through ``run_stage``, so a failing
stage is rolled back and recorded in ``PipelineResult.errors`` while later
stages still run. Re-running on unchanged inputs writes no new rows.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from market_signals.alerter.publisher import NotificationPublisher
from market_signals.config import Settings, get_settings
from market_signals.detector.cache import LookupCache
from market_signals.detector.portal import PortalSignalDetector
from market_signals.detector.pricing import PricingOpportunityDetector
from market_signals.detector.truth import TruthSignalDetector
from market_signals.ingestion.reader import SqlRawObservationReader
from market_signals.mapper.investor import InvestorMapper
from market_signals.snapshots.aggregator import SnapshotAggregator
from market_signals.storage.database import DatabaseManager
from market_signals.storage.readers import (
    SqlExposureLookup,
    SqlInvestorDirectory,
    SqlMarketReader,
    SqlRecipientDirectory,
    SqlSnapshotReader,
)
from market_signals.storage.repos import (
    MetricSnapshotRepository,
    NotificationRepository,
    PortalSnapshotRepository,
    SignalRepository,
    SignalTargetRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from market_signals.detector.models import DetectionSummary
    from market_signals.mapper.investor import MappingSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StageOutcome(Generic[T]):
    """Value of a completed stage, or the error message of a failed one."""

    name: str
    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_stage(name: str, operation: Callable[[], Awaitable[T]]) -> StageOutcome[T]:
    """Run one stage, converting any exception into a failed outcome."""
    logger.info("Stage %s: starting", name)
    try:
        value = await operation()
    except Exception as e:
        message = f"{name} failed: {e}"
        logger.error("Stage %s", message, exc_info=True)
        return StageOutcome(name=name, error=message)
    return StageOutcome(name=name, value=value)


@dataclass
class SnapshotCounts:
    truth_count: int = 0
    portal_count: int = 0


@dataclass
class SignalCounts:
    truth_created: int = 0
    portal_created: int = 0
    pricing_created: int = 0
    pricing_analyzed: int = 0
    pricing_skipped: int = 0


@dataclass
class MappingCounts:
    signals_processed: int = 0
    targets_created: int = 0
    targets_skipped: int = 0


@dataclass
class NotificationCounts:
    sent: int = 0
    skipped: int = 0


@dataclass
class PipelineResult:
    """Per-stage counts for one org run plus the errors of failed stages."""

    org_id: str
    snapshots: SnapshotCounts = field(default_factory=SnapshotCounts)
    signals: SignalCounts = field(default_factory=SignalCounts)
    mappings: MappingCounts = field(default_factory=MappingCounts)
    notifications: NotificationCounts = field(default_factory=NotificationCounts)
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


class SignalsPipeline:
    """Runs the full signal pipeline for an org.

    Example:
        ```python
        from market_signals.config import get_settings
        from market_signals.pipeline import SignalsPipeline

        pipeline = SignalsPipeline(get_settings())
        result = await pipeline.run("org_1")
        print(result.signals.truth_created, result.errors)
        await pipeline.close()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        db_manager: DatabaseManager | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Database manager. Built from settings.database if omitted.
            dry_run: If True, every stage rolls back instead of committing.
                Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._db_manager = db_manager or DatabaseManager(
            self._settings.database.url,
            pool_size=self._settings.database.pool_size,
        )

    @property
    def db_manager(self) -> DatabaseManager:
        return self._db_manager

    @asynccontextmanager
    async def _session_scope(self) -> AsyncIterator[AsyncSession]:
        """Session committed on success, rolled back on failure or in dry-run."""
        if not self._dry_run:
            async with self._db_manager.get_async_session() as session:
                yield session
            return
        session = self._db_manager.session_factory()()
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()

    async def run(self, org_id: str, *, as_of: date | None = None) -> PipelineResult:
        """Run every stage for one org. Never raises for stage failures."""
        started = time.monotonic()
        result = PipelineResult(org_id=org_id)
        cache = LookupCache()
        logger.info("Starting signals pipeline for org=%s dry_run=%s", org_id, self._dry_run)

        outcome = await run_stage(
            "compute_truth_snapshots", lambda: self._truth_snapshots(org_id, as_of)
        )
        if outcome.ok:
            result.snapshots.truth_count = outcome.value or 0
        self._collect(result, outcome)

        outcome = await run_stage(
            "compute_portal_snapshots", lambda: self._portal_snapshots(org_id, as_of)
        )
        if outcome.ok:
            result.snapshots.portal_count = outcome.value or 0
        self._collect(result, outcome)

        detection = await run_stage("detect_truth_signals", lambda: self._detect_truth(org_id))
        if detection.ok and detection.value is not None:
            result.signals.truth_created = detection.value.created
        self._collect(result, detection)

        detection = await run_stage("detect_portal_signals", lambda: self._detect_portal(org_id))
        if detection.ok and detection.value is not None:
            result.signals.portal_created = detection.value.created
        self._collect(result, detection)

        detection = await run_stage(
            "detect_pricing_opportunities", lambda: self._detect_pricing(org_id, cache, as_of)
        )
        if detection.ok and detection.value is not None:
            result.signals.pricing_created = detection.value.created
            result.signals.pricing_analyzed = detection.value.analyzed
            result.signals.pricing_skipped = detection.value.skipped
        self._collect(result, detection)

        mapping = await run_stage("map_signals_to_investors", lambda: self._map(org_id))
        if mapping.ok and mapping.value is not None:
            result.mappings = mapping.value
        self._collect(result, mapping)

        publishing = await run_stage("publish_notifications", lambda: self._publish(org_id))
        if publishing.ok and publishing.value is not None:
            result.notifications = publishing.value
        self._collect(result, publishing)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Signals pipeline finished for org=%s in %dms: truth=%d portal=%d pricing=%d "
            "targets=%d notifications=%d errors=%d",
            org_id,
            result.duration_ms,
            result.signals.truth_created,
            result.signals.portal_created,
            result.signals.pricing_created,
            result.mappings.targets_created,
            result.notifications.sent,
            len(result.errors),
        )
        return result

    @staticmethod
    def _collect(result: PipelineResult, outcome: StageOutcome[Any]) -> None:
        if outcome.error is not None:
            result.errors.append(outcome.error)

    def _aggregator(self, session: AsyncSession) -> SnapshotAggregator:
        return SnapshotAggregator(
            SqlRawObservationReader(session),
            MetricSnapshotRepository(session),
            PortalSnapshotRepository(session),
            settings=self._settings.snapshots,
        )

    async def _truth_snapshots(self, org_id: str, as_of: date | None) -> int:
        async with self._session_scope() as session:
            return await self._aggregator(session).compute_truth_snapshots(org_id, as_of=as_of)

    async def _portal_snapshots(self, org_id: str, as_of: date | None) -> int:
        async with self._session_scope() as session:
            return await self._aggregator(session).compute_portal_snapshots(org_id, as_of=as_of)

    async def _detect_truth(self, org_id: str) -> DetectionSummary:
        async with self._session_scope() as session:
            detector = TruthSignalDetector(
                SqlSnapshotReader(session),
                SignalRepository(session),
                settings=self._settings.truth,
            )
            return await detector.detect(org_id)

    async def _detect_portal(self, org_id: str) -> DetectionSummary:
        async with self._session_scope() as session:
            detector = PortalSignalDetector(
                SqlSnapshotReader(session),
                SignalRepository(session),
                settings=self._settings.portal,
            )
            return await detector.detect(org_id)

    async def _detect_pricing(
        self, org_id: str, cache: LookupCache, as_of: date | None
    ) -> DetectionSummary:
        async with self._session_scope() as session:
            detector = PricingOpportunityDetector(
                SqlMarketReader(session),
                SqlSnapshotReader(session),
                SignalRepository(session),
                settings=self._settings.pricing,
                cache=cache,
            )
            return await detector.detect(org_id, reference_date=as_of)

    async def _map(self, org_id: str) -> MappingCounts:
        counts = MappingCounts()
        async with self._session_scope() as session:
            mapper = InvestorMapper(
                SqlInvestorDirectory(session),
                SqlExposureLookup(session),
                SignalRepository(session),
                SignalTargetRepository(session),
                settings=self._settings.mapping,
                thresholds=self._settings.thresholds_snapshot(),
            )
            cursor: int | None = None
            while True:
                page: MappingSummary = await mapper.map_signals(org_id, cursor=cursor)
                counts.signals_processed += page.signals_processed
                counts.targets_created += page.targets_created
                counts.targets_skipped += page.targets_skipped
                if page.next_cursor is None:
                    break
                cursor = page.next_cursor
        return counts

    async def _publish(self, org_id: str) -> NotificationCounts:
        async with self._session_scope() as session:
            publisher = NotificationPublisher(
                SignalRepository(session),
                SignalTargetRepository(session),
                NotificationRepository(session),
                SqlInvestorDirectory(session),
                SqlRecipientDirectory(session, roles=self._settings.notifications.recipient_roles),
                batch_size=self._settings.notifications.batch_size,
            )
            summary = await publisher.publish(org_id)
        return NotificationCounts(sent=summary.sent, skipped=summary.skipped)

    async def close(self) -> None:
        await self._db_manager.dispose_async()
