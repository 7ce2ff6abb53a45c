"""Comparable matching - tiered fallback selection of historical sales."""

from market_signals.comparables.matcher import (
    ComparableMatcher,
    ComparableSet,
    ListingDescriptor,
    normalize_property_type,
    recency_weight,
)

__all__ = [
    "ComparableMatcher",
    "ComparableSet",
    "ListingDescriptor",
    "normalize_property_type",
    "recency_weight",
]
