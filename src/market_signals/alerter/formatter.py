"""Notification message formatter.

This module turns a mapped signal into the short title and body stored on
each notification row, and builds the deterministic key that keeps
notifications unique per recipient, signal and investor.
"""

from __future__ import annotations

from market_signals.detector.models import SourceType
from market_signals.storage.repos import SignalDTO

OFFICIAL_PREFIX = "Market Truth:"
PORTAL_PREFIX = "Inventory Signal:"
NOT_AVAILABLE = "N/A"

SIGNAL_TYPE_LABELS = {
    "price_change": "Price change",
    "rent_change": "Rent change",
    "yield_opportunity": "Yield opportunity",
    "supply_spike": "Supply spike",
    "discounting_spike": "Discounting spike",
    "staleness_rise": "Staleness rise",
    "pricing_opportunity": "Pricing opportunity",
}


def format_signal_type(signal_type: str) -> str:
    """Human-readable label for a signal type; unknown types pass through."""
    return SIGNAL_TYPE_LABELS.get(signal_type, signal_type)


def format_pct(value: float | None, decimals: int) -> str:
    """Format a fraction as a percentage, e.g. 0.081 -> '8.1%'."""
    if value is None:
        return NOT_AVAILABLE
    return f"{value * 100:.{decimals}f}%"


def format_title(signal: SignalDTO) -> str:
    prefix = OFFICIAL_PREFIX if signal.source_type == SourceType.OFFICIAL.value else PORTAL_PREFIX
    place = signal.geo_name or signal.geo_id
    return f"{prefix} {format_signal_type(signal.type)} in {place} ({signal.segment})"


def format_body(signal: SignalDTO, relevance_score: float | None) -> str:
    return (
        f"{signal.metric} changed by {format_pct(signal.delta_pct, 1)} ({signal.timeframe}). "
        f"Confidence: {format_pct(signal.confidence_score, 0)}. "
        f"Relevance: {format_pct(relevance_score, 0)}."
    )


def build_notification_key(org_id: str, recipient_user_id: str, signal_id: int, investor_id: str) -> str:
    return f"{org_id}|{recipient_user_id}|{signal_id}|{investor_id}"
