"""Snapshot aggregation - raw rows to periodic aggregates."""

from market_signals.snapshots.aggregator import (
    SnapshotAggregator,
    aggregate_portal_rows,
    aggregate_truth_rows,
    quarter_bounds,
)

__all__ = [
    "SnapshotAggregator",
    "aggregate_portal_rows",
    "aggregate_truth_rows",
    "quarter_bounds",
]
