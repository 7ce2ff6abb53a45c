"""Composite pricing-opportunity scorer.

This module provides the CompositeScorer class that combines six
sub-scores, each normalized to [0, 1], into a 0-100 composite with fixed
weights, and maps the composite onto rating and severity buckets.

Scoring Formula:
    composite = round(100 * sum(sub_score[f] * weight[f] for f in factors))

Factors and default weights:
    price          0.30  listing PSM discount vs comparable PSM
    yield          0.20  listing implied gross yield vs area average
    match_quality  0.15  comparable tier plus sample-size bonus
    sentiment      0.15  neutral placeholder
    liquidity      0.10  area liquidity score
    recency        0.10  freshness of comparable data
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "price": 0.30,
    "yield": 0.20,
    "match_quality": 0.15,
    "sentiment": 0.15,
    "liquidity": 0.10,
    "recency": 0.10,
}

# Reserved for a future market-sentiment model; replace this constant to wire one in.
NEUTRAL_SENTIMENT_SCORE = 0.5
NEUTRAL_SCORE = 0.5
DEFAULT_AREA_GROSS_YIELD = 0.055

MATCH_TIER_BASE = {1: 0.95, 2: 0.80, 3: 0.60, 4: 0.40, 0: 0.10}
SAMPLE_SIZE_BONUSES = ((50, 0.05), (20, 0.03), (10, 0.01))

RATING_BUCKETS = (
    (85, "exceptional_opportunity"),
    (70, "strong_buy"),
    (55, "fair_deal"),
    (40, "market_price"),
)
SEVERITY_BUCKETS = ((85, "urgent"), (70, "high"), (55, "normal"))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def price_score(discount_pct: float) -> float:
    """Piecewise-linear score of a listing's discount to comparables.

    Args:
        discount_pct: (reference_psm - listing_psm) / reference_psm * 100.
            Positive means the listing is cheaper than its comparables.
    """
    d = discount_pct
    if d >= 30:
        return 1.0
    if d >= 20:
        return 0.85 + (d - 20) * 0.015
    if d >= 10:
        return 0.70 + (d - 10) * 0.015
    if d >= 0:
        return 0.50 + d * 0.02
    if d >= -10:
        return 0.25 + (d + 10) * 0.025
    if d >= -20:
        return 0.10 + (d + 20) * 0.015
    return 0.0


def yield_premium_score(premium_pp: float) -> float:
    """Score of a listing's gross yield premium over the area (percentage points)."""
    p = premium_pp
    if p >= 2:
        return 1.0
    if p >= 1:
        return 0.7 + 0.15 * p
    if p >= -1:
        return 0.5 + 0.2 * p
    if p >= -2:
        return 0.1 + (p + 2) * 0.1
    return 0.1


def match_quality_score(tier: int | None, comparable_count: int) -> float:
    """Base score by comparable tier plus a sample-size bonus, capped at 1.0."""
    base = MATCH_TIER_BASE.get(tier if tier is not None else 0, NEUTRAL_SCORE)
    for min_count, bonus in SAMPLE_SIZE_BONUSES:
        if comparable_count >= min_count:
            base += bonus
            break
    return min(1.0, base)


def rating_for(composite: int) -> str:
    for threshold, label in RATING_BUCKETS:
        if composite >= threshold:
            return label
    return "overpriced"


def severity_for(composite: int) -> str:
    for threshold, label in SEVERITY_BUCKETS:
        if composite >= threshold:
            return label
    return "low"


@dataclass(frozen=True)
class PriceAnalysis:
    score: float
    reference_psm: float | None
    discount_pct: float | None


@dataclass(frozen=True)
class YieldAnalysis:
    score: float
    listing_gross_yield_pct: float | None = None
    area_gross_yield_pct: float | None = None
    premium_pp: float | None = None
    median_rent_annual: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": round(self.score, 2),
            "listing_gross_yield_pct": _round_opt(self.listing_gross_yield_pct, 2),
            "area_gross_yield_pct": _round_opt(self.area_gross_yield_pct, 2),
            "premium_pp": _round_opt(self.premium_pp, 2),
            "median_rent_annual": self.median_rent_annual,
        }


def _round_opt(value: float | None, digits: int) -> float | None:
    return round(value, digits) if value is not None else None


def analyze_price(
    listing_psm: float,
    *,
    median_psm: float,
    time_weighted_psm: float | None,
) -> PriceAnalysis:
    """Price sub-score against the time-weighted (else median) comparable PSM."""
    if median_psm <= 0:
        return PriceAnalysis(score=NEUTRAL_SCORE, reference_psm=None, discount_pct=None)
    reference = time_weighted_psm if time_weighted_psm and time_weighted_psm > 0 else median_psm
    discount = (reference - listing_psm) / reference * 100
    return PriceAnalysis(score=price_score(discount), reference_psm=reference, discount_pct=discount)


def analyze_yield(
    asking_price: float | None,
    *,
    median_rent_annual: float | None,
    area_gross_yield: float | None,
    default_area_yield: float = DEFAULT_AREA_GROSS_YIELD,
) -> YieldAnalysis:
    """Yield sub-score from the area median rent applied to the asking price."""
    if not median_rent_annual or not asking_price or asking_price <= 0:
        return YieldAnalysis(score=NEUTRAL_SCORE, median_rent_annual=median_rent_annual)
    listing_yield_pct = median_rent_annual / asking_price * 100
    area_yield_pct = (area_gross_yield if area_gross_yield is not None else default_area_yield) * 100
    premium = listing_yield_pct - area_yield_pct
    return YieldAnalysis(
        score=yield_premium_score(premium),
        listing_gross_yield_pct=listing_yield_pct,
        area_gross_yield_pct=area_yield_pct,
        premium_pp=premium,
        median_rent_annual=median_rent_annual,
    )


@dataclass(frozen=True)
class ScoreBreakdown:
    """Sub-scores, composite and buckets for one listing."""

    price: float
    yield_: float
    match_quality: float
    sentiment: float
    liquidity: float
    recency: float
    composite: int
    rating: str
    severity: str
    weights: dict[str, float] = field(default_factory=dict)

    def sub_scores(self) -> dict[str, float]:
        return {
            "price": self.price,
            "yield": self.yield_,
            "match_quality": self.match_quality,
            "sentiment": self.sentiment,
            "liquidity": self.liquidity,
            "recency": self.recency,
        }

    def to_dict(self) -> dict[str, float]:
        return {name: round(value, 2) for name, value in self.sub_scores().items()}


class CompositeScorer:
    """Combines sub-scores into a composite with fixed weights.

    Example:
        ```python
        scorer = CompositeScorer()
        breakdown = scorer.score(
            price=0.85, yield_=0.5, match_quality=0.83, liquidity=0.5, recency=0.85
        )
        print(breakdown.composite, breakdown.rating)
        ```
    """

    def __init__(self, weights: dict[str, float] | None = None) -> None:
        """Initialize the scorer.

        Args:
            weights: Weights per factor. Defaults to DEFAULT_WEIGHTS. Must
                cover every factor and sum to 1.0.

        Raises:
            ValueError: If factors are missing or weights do not sum to 1.0.
        """
        self._weights = dict(weights or DEFAULT_WEIGHTS)
        missing = set(DEFAULT_WEIGHTS) - set(self._weights)
        if missing:
            raise ValueError(f"Missing score weights: {sorted(missing)}")
        total = sum(self._weights[name] for name in DEFAULT_WEIGHTS)
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Score weights must sum to 1.0 (got {total:.4f})")

    @property
    def weights(self) -> dict[str, float]:
        return dict(self._weights)

    def score(
        self,
        *,
        price: float,
        yield_: float,
        match_quality: float,
        liquidity: float | None,
        recency: float | None,
        sentiment: float = NEUTRAL_SENTIMENT_SCORE,
    ) -> ScoreBreakdown:
        """Compute the composite for a set of sub-scores.

        Missing liquidity or recency inputs count as neutral. Sub-scores are
        clamped to [0, 1] so the composite always lands in [0, 100].
        """
        subs = {
            "price": price,
            "yield": yield_,
            "match_quality": match_quality,
            "sentiment": sentiment,
            "liquidity": NEUTRAL_SCORE if liquidity is None else liquidity,
            "recency": NEUTRAL_SCORE if recency is None else recency,
        }
        subs = {name: min(1.0, max(0.0, value)) for name, value in subs.items()}
        weighted = sum(subs[name] * self._weights[name] for name in DEFAULT_WEIGHTS)
        composite = min(100, max(0, _round_half_up(weighted * 100)))

        return ScoreBreakdown(
            price=subs["price"],
            yield_=subs["yield"],
            match_quality=subs["match_quality"],
            sentiment=subs["sentiment"],
            liquidity=subs["liquidity"],
            recency=subs["recency"],
            composite=composite,
            rating=rating_for(composite),
            severity=severity_for(composite),
            weights=self.weights,
        )
