"""Per-listing pricing opportunity detection.

Each active sale listing is compared against historical comparable
transactions, scored with the CompositeScorer, and emitted as a
pricing_opportunity signal when the composite clears the configured floor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

import numpy as np

from market_signals.comparables.matcher import (
    ComparableMatcher,
    ComparableSet,
    ListingDescriptor,
    months_before,
)
from market_signals.detector.cache import LookupCache
from market_signals.detector.models import (
    DetectionSummary,
    SignalType,
    SourceType,
    area_geo_id,
    build_listing_signal_key,
)
from market_signals.detector.scorer import (
    CompositeScorer,
    analyze_price,
    analyze_yield,
    match_quality_score,
)
from market_signals.storage.readers import AreaYield
from market_signals.storage.repos import SignalDTO

if TYPE_CHECKING:
    from market_signals.config import PricingSettings
    from market_signals.storage.readers import MarketReader, SnapshotReader
    from market_signals.storage.repos import ListingDTO, SignalRepository

logger = logging.getLogger(__name__)

TIMEFRAME = "current"
METRIC = "price_per_sqm"
PROGRESS_EVERY = 50

FRESH_LISTING_DAYS = 30
STALE_LISTING_DAYS = 60
DOM_CEILING_DAYS = 180


@dataclass(frozen=True)
class AreaLiquidity:
    """Days-on-market profile of an area's active listings."""

    listing_count: int
    avg_days_on_market: float
    median_days_on_market: float
    p75_days_on_market: float
    fresh_listings_count: int
    stale_listings_count: int
    liquidity_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "area_avg_dom": round(self.avg_days_on_market),
            "median_dom": round(self.median_days_on_market),
            "p75_dom": round(self.p75_days_on_market),
            "fresh_listings": self.fresh_listings_count,
            "stale_listings": self.stale_listings_count,
            "liquidity_score": round(self.liquidity_score, 2),
        }


def summarize_liquidity(days_on_market: list[int]) -> AreaLiquidity | None:
    """Build the area liquidity profile, or None when no DOM data exists.

    liquidity_score = 0.5 * fresh_share + 0.5 * max(0, 1 - median_dom / 180)
    """
    if not days_on_market:
        return None
    dom = np.asarray(days_on_market, dtype=float)
    fresh = int((dom <= FRESH_LISTING_DAYS).sum())
    stale = int((dom >= STALE_LISTING_DAYS).sum())
    median = float(np.median(dom))
    score = 0.5 * (fresh / len(dom)) + 0.5 * max(0.0, 1 - median / DOM_CEILING_DAYS)
    return AreaLiquidity(
        listing_count=len(dom),
        avg_days_on_market=float(dom.mean()),
        median_days_on_market=median,
        p75_days_on_market=float(np.percentile(dom, 75)),
        fresh_listings_count=fresh,
        stale_listings_count=stale,
        liquidity_score=min(1.0, max(0.0, score)),
    )


def listing_psm(listing: ListingDTO) -> float:
    if listing.price_per_sqm is not None and listing.price_per_sqm > 0:
        return listing.price_per_sqm
    if listing.size_sqm and listing.asking_price:
        return listing.asking_price / listing.size_sqm
    return 0.0


class PricingOpportunityDetector:
    """Finds listings priced attractively against their comparables.

    Area-level lookups (comparables, yield, liquidity) go through a
    LookupCache so an area is read once per run no matter how many of its
    listings are analyzed.
    """

    def __init__(
        self,
        market: MarketReader,
        snapshots: SnapshotReader,
        signal_repo: SignalRepository,
        *,
        settings: PricingSettings,
        cache: LookupCache | None = None,
        scorer: CompositeScorer | None = None,
        matcher: ComparableMatcher | None = None,
    ) -> None:
        self._market = market
        self._snapshots = snapshots
        self._signal_repo = signal_repo
        self._settings = settings
        self._cache = cache if cache is not None else LookupCache()
        self._scorer = scorer or CompositeScorer(settings.weights.as_dict())
        self._matcher = matcher or ComparableMatcher(
            min_comparables=settings.min_comparables,
            size_tolerance=settings.size_tolerance,
            loose_size_tolerance=settings.loose_size_tolerance,
            half_life_days=settings.recency_half_life_days,
            lookback_months=settings.comparable_lookback_months,
        )

    async def detect(self, org_id: str, *, reference_date: date | None = None) -> DetectionSummary:
        """Analyze every active sale listing and upsert the opportunities found."""
        today = reference_date or datetime.now(UTC).date()
        summary = DetectionSummary()
        listings = await self._market.active_sale_listings(org_id)
        logger.info("Pricing detection: org=%s analyzing %d active listings", org_id, len(listings))

        signals: list[SignalDTO] = []
        for listing in listings:
            summary.analyzed += 1
            if summary.analyzed % PROGRESS_EVERY == 0:
                logger.info(
                    "Pricing detection: analyzed %d/%d (%d opportunities)",
                    summary.analyzed,
                    len(listings),
                    len(signals),
                )
            signal = await self.evaluate_listing(org_id, listing, reference_date=today)
            if signal is None:
                summary.skipped += 1
                continue
            signals.append(signal)

        if signals:
            summary.created = await self._signal_repo.upsert_many(
                signals, batch_size=self._settings.signal_batch_size
            )
            summary.upserted = len(signals)
        logger.info(
            "Pricing detection: org=%s analyzed=%d opportunities=%d new=%d skipped=%d "
            "cache_hits=%d cache_misses=%d",
            org_id,
            summary.analyzed,
            summary.upserted,
            summary.created,
            summary.skipped,
            self._cache.hits,
            self._cache.misses,
        )
        return summary

    async def evaluate_listing(
        self, org_id: str, listing: ListingDTO, *, reference_date: date
    ) -> SignalDTO | None:
        """Score one listing; None when it has no comparables or scores too low."""
        if not listing.asking_price or listing.asking_price <= 0:
            return None

        comps = await self._comparables_for(org_id, listing, reference_date)
        if comps is None:
            return None

        psm = listing_psm(listing)
        if psm <= 0:
            return None

        area_yield = await self._area_yield(org_id, listing)
        liquidity = await self._liquidity(org_id, listing)

        price = analyze_price(
            psm,
            median_psm=comps.median_price_per_sqm,
            time_weighted_psm=comps.time_weighted_avg_psm,
        )
        yield_analysis = analyze_yield(
            listing.asking_price,
            median_rent_annual=area_yield.median_rent_annual,
            area_gross_yield=area_yield.gross_yield,
            default_area_yield=self._settings.default_area_yield,
        )
        breakdown = self._scorer.score(
            price=price.score,
            yield_=yield_analysis.score,
            match_quality=match_quality_score(comps.match_tier, comps.comparable_count),
            liquidity=liquidity.liquidity_score if liquidity else None,
            recency=comps.recency_score,
        )
        if breakdown.composite < self._settings.min_composite_score:
            logger.debug(
                "Listing %s/%s below composite floor: %d",
                listing.portal,
                listing.listing_id,
                breakdown.composite,
            )
            return None

        reference_psm = price.reference_psm or comps.median_price_per_sqm
        psm_discount = price.discount_pct or 0.0
        price_discount = (
            (comps.median_price - listing.asking_price) / comps.median_price * 100
            if comps.median_price > 0
            else None
        )

        evidence: dict[str, Any] = {
            "composite_score": breakdown.composite,
            "rating": breakdown.rating,
            "score_breakdown": breakdown.to_dict(),
            "listing_id": listing.listing_id,
            "listing_url": listing.listing_url,
            "portal": listing.portal,
            "property_type": listing.property_type,
            "bedrooms": listing.bedrooms,
            "size_sqm": listing.size_sqm,
            "asking_price": listing.asking_price,
            "price_per_sqm": round(psm),
            "listed_date": listing.listed_date.isoformat() if listing.listed_date else None,
            "comparable_median_psm": round(comps.median_price_per_sqm),
            "comparable_time_weighted_psm": round(comps.time_weighted_avg_psm),
            "psm_discount_pct": round(psm_discount, 1),
            "comparable_median_price": round(comps.median_price),
            "price_discount_pct": round(price_discount, 1) if price_discount is not None else None,
            "savings": round(comps.median_price - listing.asking_price),
            "comparable_psm_range": {
                "min": round(comps.price_range_min_psm),
                "max": round(comps.price_range_max_psm),
            },
            "match_tier": comps.match_tier,
            "match_description": comps.match_description,
            "comparable_count": comps.comparable_count,
            "latest_transaction_date": comps.latest_transaction_date.isoformat(),
            "yield_analysis": (
                yield_analysis.to_dict() if area_yield.median_rent_annual is not None else None
            ),
            "liquidity_analysis": liquidity.to_dict() if liquidity else None,
            "recency_score": comps.recency_score,
        }

        area = listing.area_name
        return SignalDTO(
            org_id=org_id,
            signal_key=build_listing_signal_key(
                portal=listing.portal,
                area=area,
                property_type=listing.property_type,
                listing_id=listing.listing_id,
            ),
            type=SignalType.PRICING_OPPORTUNITY.value,
            source_type=SourceType.PORTAL.value,
            source=listing.portal,
            geo_type="area",
            geo_id=area_geo_id(area),
            geo_name=area,
            segment=listing.property_type,
            metric=METRIC,
            timeframe=TIMEFRAME,
            current_value=psm,
            prev_value=reference_psm,
            delta_value=psm - reference_psm,
            delta_pct=-psm_discount / 100,
            confidence_score=comps.confidence_score,
            severity=breakdown.severity,
            evidence=evidence,
        )

    async def _comparables_for(
        self, org_id: str, listing: ListingDTO, reference_date: date
    ) -> ComparableSet | None:
        area_key = listing.area_name.strip().lower()
        since = months_before(reference_date, self._matcher.lookback_months)

        async def load_candidates():
            return await self._market.comparable_transactions(
                org_id, area_name=listing.area_name, since=since
            )

        candidates = await self._cache.get_or_load(
            "comparable_transactions", (org_id, area_key, since), load_candidates
        )
        descriptor = ListingDescriptor(
            area=listing.area_name,
            property_type=listing.property_type,
            bedrooms=listing.bedrooms,
            size_sqm=listing.size_sqm,
            building_name=listing.building_name,
        )

        async def match():
            return self._matcher.match(descriptor, candidates, reference_date=reference_date)

        return await self._cache.get_or_load(
            "comparable_match", (org_id, area_key, descriptor, reference_date), match
        )

    async def _area_yield(self, org_id: str, listing: ListingDTO) -> AreaYield:
        geo_id = area_geo_id(listing.area_name)
        segment = listing.property_type

        async def load():
            return await self._snapshots.area_yield(org_id, geo_id=geo_id, segment=segment)

        return await self._cache.get_or_load("area_yield", (org_id, geo_id, segment), load)

    async def _liquidity(self, org_id: str, listing: ListingDTO) -> AreaLiquidity | None:
        area_key = listing.area_name.strip().lower()

        async def load():
            days = await self._market.area_days_on_market(
                org_id, area_name=listing.area_name, property_type=listing.property_type
            )
            return summarize_liquidity(days)

        return await self._cache.get_or_load(
            "area_liquidity", (org_id, area_key, listing.property_type), load
        )
