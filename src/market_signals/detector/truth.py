"""Official-data (truth) signal detection.

Compares each metric snapshot with the previous quarter's snapshot of the
same group and emits price_change, rent_change and yield_opportunity
signals.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from market_signals.detector.models import (
    DetectionSummary,
    SignalType,
    SourceType,
    build_signal_key,
)
from market_signals.storage.repos import SignalDTO

if TYPE_CHECKING:
    from market_signals.config import TruthSignalSettings
    from market_signals.storage.readers import MetricSnapshotPair, SnapshotReader
    from market_signals.storage.repos import MetricSnapshotDTO, SignalRepository

logger = logging.getLogger(__name__)

TIMEFRAME = "QoQ"
DERIVED_SOURCE = "derived"

METRIC_SIGNAL_TYPES = {
    "median_price_psf": SignalType.PRICE_CHANGE,
    "median_rent_annual": SignalType.RENT_CHANGE,
}
YIELD_METRIC = "gross_yield"

URGENT_DELTA = 0.12
WATCH_DELTA = 0.06


def truth_severity(delta_pct: float) -> str:
    magnitude = abs(delta_pct)
    if magnitude >= URGENT_DELTA:
        return "urgent"
    if magnitude >= WATCH_DELTA:
        return "watch"
    return "info"


class TruthSignalDetector:
    """Detects QoQ changes in official sale/rent medians and high-yield areas.

    Rules:
    - price_change / rent_change: |delta_pct| >= threshold and the current
      snapshot's sample size meets the minimum.
    - yield_opportunity: current gross yield >= floor, regardless of delta.

    Confidence is ``high_confidence`` when the current sample size meets the
    minimum and ``low_confidence`` otherwise.
    """

    def __init__(
        self,
        reader: SnapshotReader,
        signal_repo: SignalRepository,
        *,
        settings: TruthSignalSettings,
    ) -> None:
        self._reader = reader
        self._signal_repo = signal_repo
        self._settings = settings

    def evaluate_pair(self, org_id: str, pair: MetricSnapshotPair) -> list[SignalDTO]:
        current, prev = pair.current, pair.previous
        s = self._settings
        sample_ok = current.sample_size >= s.min_sample_size
        confidence = s.high_confidence if sample_ok else s.low_confidence
        signals: list[SignalDTO] = []

        signal_type = METRIC_SIGNAL_TYPES.get(current.metric)
        if signal_type is not None and prev is not None and prev.value != 0:
            delta_pct = (current.value - prev.value) / prev.value
            threshold = (
                s.price_change_pct if signal_type is SignalType.PRICE_CHANGE else s.rent_change_pct
            )
            if abs(delta_pct) >= threshold and sample_ok:
                signals.append(
                    self._build(
                        org_id,
                        current,
                        prev,
                        signal_type=signal_type,
                        source=current.source,
                        delta_pct=delta_pct,
                        confidence=confidence,
                        severity=truth_severity(delta_pct),
                    )
                )

        if current.metric == YIELD_METRIC and current.value >= s.yield_opportunity_min:
            delta_pct = (current.value - prev.value) / prev.value if prev and prev.value else None
            signals.append(
                self._build(
                    org_id,
                    current,
                    prev,
                    signal_type=SignalType.YIELD_OPPORTUNITY,
                    source=DERIVED_SOURCE,
                    delta_pct=delta_pct,
                    confidence=confidence,
                    severity="watch",
                )
            )
        return signals

    def _build(
        self,
        org_id: str,
        current: MetricSnapshotDTO,
        prev: MetricSnapshotDTO | None,
        *,
        signal_type: SignalType,
        source: str,
        delta_pct: float | None,
        confidence: float,
        severity: str,
    ) -> SignalDTO:
        anchor = current.window_end.isoformat()
        evidence: dict[str, object] = {
            "snapshot_current_id": current.id,
            "snapshot_prev_id": prev.id if prev else None,
            "sample_size": current.sample_size,
            "window_current": [current.window_start.isoformat(), current.window_end.isoformat()],
        }
        if prev is not None:
            evidence["window_prev"] = [prev.window_start.isoformat(), prev.window_end.isoformat()]

        return SignalDTO(
            org_id=org_id,
            signal_key=build_signal_key(
                source_type=SourceType.OFFICIAL.value,
                source=source,
                signal_type=signal_type.value,
                geo_type=current.geo_type,
                geo_id=current.geo_id,
                segment=current.segment,
                timeframe=TIMEFRAME,
                anchor=anchor,
            ),
            type=signal_type.value,
            source_type=SourceType.OFFICIAL.value,
            source=source,
            geo_type=current.geo_type,
            geo_id=current.geo_id,
            geo_name=current.geo_name,
            segment=current.segment,
            metric=current.metric,
            timeframe=TIMEFRAME,
            current_value=current.value,
            prev_value=prev.value if prev else None,
            delta_value=current.value - prev.value if prev else None,
            delta_pct=delta_pct,
            confidence_score=confidence,
            severity=severity,
            evidence=evidence,
        )

    async def detect(self, org_id: str) -> DetectionSummary:
        """Evaluate every snapshot pair and upsert the resulting signals."""
        summary = DetectionSummary()
        signals: list[SignalDTO] = []
        for pair in await self._reader.metric_snapshot_pairs(org_id):
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
            "Truth detection: org=%s pairs=%d signals=%d new=%d",
            org_id,
            summary.analyzed,
            summary.upserted,
            summary.created,
        )
        return summary
