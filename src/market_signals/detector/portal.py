"""Portal inventory (WoW) signal detection.

Compares each portal snapshot with the same group's snapshot one week
earlier and emits supply_spike, discounting_spike and staleness_rise
signals. Groups with too few active listings are skipped so thin areas do
not produce noise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from market_signals.detector.models import (
    DetectionSummary,
    SignalType,
    SourceType,
    build_signal_key,
)
from market_signals.storage.repos import SignalDTO

if TYPE_CHECKING:
    from market_signals.config import PortalSignalSettings
    from market_signals.storage.readers import PortalSnapshotPair, SnapshotReader
    from market_signals.storage.repos import SignalRepository

logger = logging.getLogger(__name__)

TIMEFRAME = "WoW"
SUPPLY_CONFIDENCE = 0.55
COUNT_CONFIDENCE = 0.5


def portal_severity(delta_pct: float) -> str:
    if delta_pct >= 0.25:
        return "urgent"
    if delta_pct >= 0.15:
        return "watch"
    return "info"


def count_delta_pct(current: int, prev: int) -> float:
    """WoW change of a count; growth from zero counts as 100%."""
    if prev > 0:
        return (current - prev) / prev
    return 1.0 if current > 0 else 0.0


@dataclass(frozen=True)
class _Measure:
    signal_type: SignalType
    metric: str
    current: int
    prev: int
    delta_pct: float | None
    threshold: float
    confidence: float


class PortalSignalDetector:
    """Detects week-over-week inventory shifts per portal, geo and segment."""

    def __init__(
        self,
        reader: SnapshotReader,
        signal_repo: SignalRepository,
        *,
        settings: PortalSignalSettings,
    ) -> None:
        self._reader = reader
        self._signal_repo = signal_repo
        self._settings = settings

    def evaluate_pair(self, org_id: str, pair: PortalSnapshotPair) -> list[SignalDTO]:
        current, prev = pair.current, pair.previous
        if prev is None:
            return []
        if current.active_listings < self._settings.min_active_listings:
            logger.debug(
                "Skipping thin portal group %s/%s/%s: active=%d",
                current.portal,
                current.geo_id,
                current.segment,
                current.active_listings,
            )
            return []

        s = self._settings
        measures = [
            _Measure(
                signal_type=SignalType.SUPPLY_SPIKE,
                metric="active_listings",
                current=current.active_listings,
                prev=prev.active_listings,
                delta_pct=(
                    (current.active_listings - prev.active_listings) / prev.active_listings
                    if prev.active_listings > 0
                    else None
                ),
                threshold=s.supply_spike_wow_pct,
                confidence=SUPPLY_CONFIDENCE,
            ),
            _Measure(
                signal_type=SignalType.DISCOUNTING_SPIKE,
                metric="price_cuts_count",
                current=current.price_cuts_count,
                prev=prev.price_cuts_count,
                delta_pct=count_delta_pct(current.price_cuts_count, prev.price_cuts_count),
                threshold=s.discounting_spike_wow_pct,
                confidence=COUNT_CONFIDENCE,
            ),
            _Measure(
                signal_type=SignalType.STALENESS_RISE,
                metric="stale_listings_count",
                current=current.stale_listings_count,
                prev=prev.stale_listings_count,
                delta_pct=count_delta_pct(current.stale_listings_count, prev.stale_listings_count),
                threshold=s.staleness_rise_wow_pct,
                confidence=COUNT_CONFIDENCE,
            ),
        ]

        anchor = current.as_of_date.isoformat()
        signals = []
        for m in measures:
            if m.delta_pct is None or m.delta_pct < m.threshold:
                continue
            signals.append(
                SignalDTO(
                    org_id=org_id,
                    signal_key=build_signal_key(
                        source_type=SourceType.PORTAL.value,
                        source=current.portal,
                        signal_type=m.signal_type.value,
                        geo_type=current.geo_type,
                        geo_id=current.geo_id,
                        segment=current.segment,
                        timeframe=TIMEFRAME,
                        anchor=anchor,
                    ),
                    type=m.signal_type.value,
                    source_type=SourceType.PORTAL.value,
                    source=current.portal,
                    geo_type=current.geo_type,
                    geo_id=current.geo_id,
                    geo_name=current.geo_name,
                    segment=current.segment,
                    metric=m.metric,
                    timeframe=TIMEFRAME,
                    current_value=float(m.current),
                    prev_value=float(m.prev),
                    delta_value=float(m.current - m.prev),
                    delta_pct=m.delta_pct,
                    confidence_score=m.confidence,
                    severity=portal_severity(m.delta_pct),
                    evidence={
                        "snapshot_current_id": current.id,
                        "snapshot_prev_id": prev.id,
                        "portal": current.portal,
                    },
                )
            )
        return signals

    async def detect(self, org_id: str) -> DetectionSummary:
        """Evaluate every snapshot pair and upsert the resulting signals."""
        summary = DetectionSummary()
        signals: list[SignalDTO] = []
        pairs = await self._reader.portal_snapshot_pairs(org_id)
        if pairs and all(p.previous is None for p in pairs):
            logger.warning(
                "No prior-week portal snapshots for org=%s; WoW detection needs a second week of data",
                org_id,
            )
        for pair in pairs:
            summary.analyzed += 1
            found = self.evaluate_pair(org_id, pair)
            if not found:
                summary.skipped += 1
            signals.extend(found)

        if signals:
            summary.created = await self._signal_repo.upsert_many(
                signals, batch_size=self._settings.signal_batch_size
            )
            summary.upserted = len(signals)
        logger.info(
            "Portal detection: org=%s pairs=%d signals=%d new=%d",
            org_id,
            summary.analyzed,
            summary.upserted,
            summary.created,
        )
        return summary
