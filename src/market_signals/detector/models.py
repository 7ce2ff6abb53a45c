"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SignalType(str, Enum):
    """Kinds of market events the detectors emit."""

    PRICE_CHANGE = "price_change"
    RENT_CHANGE = "rent_change"
    YIELD_OPPORTUNITY = "yield_opportunity"
    SUPPLY_SPIKE = "supply_spike"
    DISCOUNTING_SPIKE = "discounting_spike"
    STALENESS_RISE = "staleness_rise"
    PRICING_OPPORTUNITY = "pricing_opportunity"


class SourceType(str, Enum):
    OFFICIAL = "official"
    PORTAL = "portal"


SIGNAL_KEY_SEPARATOR = "|"


def build_signal_key(
    *,
    source_type: str,
    source: str,
    signal_type: str,
    geo_type: str,
    geo_id: str,
    segment: str | None,
    timeframe: str,
    anchor: str,
) -> str:
    """Deterministic identity for a snapshot-derived signal.

    Equal inputs always give equal keys; any differing component gives a
    different key.
    """
    return SIGNAL_KEY_SEPARATOR.join(
        [source_type, source, signal_type, geo_type, geo_id, segment or "", timeframe, anchor]
    )


def build_listing_signal_key(*, portal: str, area: str, property_type: str, listing_id: str) -> str:
    """Identity for a pricing-opportunity signal: one per listing."""
    return SIGNAL_KEY_SEPARATOR.join(
        [
            SourceType.PORTAL.value,
            portal,
            SignalType.PRICING_OPPORTUNITY.value,
            "area",
            area,
            property_type,
            "listing",
            listing_id,
        ]
    )


def area_geo_id(area_name: str) -> str:
    """Geo id used for area-level signals (lowercase, spaces to underscores)."""
    return "_".join(area_name.strip().lower().split())


@dataclass
class DetectionSummary:
    """Counts reported by a detector run."""

    analyzed: int = 0
    created: int = 0
    upserted: int = 0
    skipped: int = 0
