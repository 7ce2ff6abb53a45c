"""Signal detection layer - truth, portal and pricing-opportunity detectors."""

from market_signals.detector.cache import LookupCache
from market_signals.detector.models import (
    DetectionSummary,
    SignalType,
    SourceType,
    build_listing_signal_key,
    build_signal_key,
)
from market_signals.detector.portal import PortalSignalDetector
from market_signals.detector.pricing import PricingOpportunityDetector, summarize_liquidity
from market_signals.detector.scorer import CompositeScorer, ScoreBreakdown
from market_signals.detector.truth import TruthSignalDetector

__all__ = [
    "CompositeScorer",
    "DetectionSummary",
    "LookupCache",
    "PortalSignalDetector",
    "PricingOpportunityDetector",
    "ScoreBreakdown",
    "SignalType",
    "SourceType",
    "TruthSignalDetector",
    "build_listing_signal_key",
    "build_signal_key",
    "summarize_liquidity",
]
