"""Signal-to-investor relevance mapping.

Scores every (signal, investor) pair additively from the investor's mandate
and upserts the pairs that clear the minimum as SignalTarget rows. Each
written row carries a reason payload naming the sub-matches that fired and
the thresholds in force, so a match can always be explained after the fact.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from market_signals.detector.models import SignalType
from market_signals.storage.repos import SignalTargetDTO

if TYPE_CHECKING:
    from market_signals.config import MappingSettings
    from market_signals.storage.readers import Exposure, ExposureLookup, InvestorDirectory
    from market_signals.storage.repos import (
        InvestorDTO,
        SignalDTO,
        SignalRepository,
        SignalTargetRepository,
    )

logger = logging.getLogger(__name__)

RISK_CORRELATED_TYPES = frozenset(
    {
        "risk_flag",
        SignalType.DISCOUNTING_SPIKE.value,
        SignalType.SUPPLY_SPIKE.value,
        SignalType.STALENESS_RISE.value,
    }
)
PRICE_METRIC_MARKERS = ("price", "ask", "psf")
DEFAULT_RISK_TOLERANCE = "medium"

SKIP_MISSING_YIELD_TARGET = "missing_yield_target"
SKIP_YIELD_BELOW_TARGET = "yield_below_target"
SKIP_BELOW_THRESHOLD = "below_threshold"


def coerce_number(value: Any) -> float | None:
    """Mandate values may arrive as numbers or numeric strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def is_price_related_metric(metric: str | None) -> bool:
    m = (metric or "").lower()
    return any(marker in m for marker in PRICE_METRIC_MARKERS)


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


@dataclass
class InvestorMatch:
    """Outcome of scoring one (signal, investor) pair.

    A pair stopped by the yield gate is skipped without a score; a pair
    below the minimum keeps its score alongside ``below_threshold``.
    """

    investor_id: str
    score: float = 0.0
    matched: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
    skip_reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.skip_reason is None


def yield_gate(signal: SignalDTO, mandate: dict[str, Any]) -> str | None:
    """Return a skip reason when a yield signal cannot match the mandate."""
    if signal.type != SignalType.YIELD_OPPORTUNITY.value:
        return None
    target = coerce_number(mandate.get("yield_target"))
    if target is None:
        return SKIP_MISSING_YIELD_TARGET
    if signal.current_value < target:
        return SKIP_YIELD_BELOW_TARGET
    return None


def score_investor(
    signal: SignalDTO,
    investor: InvestorDTO,
    *,
    settings: MappingSettings,
    exposure: Exposure | None = None,
) -> InvestorMatch:
    """Additive relevance of a signal for one investor's mandate."""
    mandate = investor.mandate or {}
    result = InvestorMatch(investor_id=investor.id)

    gate = yield_gate(signal, mandate)
    if gate is not None:
        result.skip_reason = gate
        return result
    if signal.type == SignalType.YIELD_OPPORTUNITY.value:
        result.score += settings.yield_match
        result.matched.append("yield")
        result.details["yield"] = {
            "yield_target": coerce_number(mandate.get("yield_target")),
            "signal_yield": signal.current_value,
        }

    # Area
    preferred_areas = _as_list(mandate.get("preferred_areas"))
    preferred_projects = _as_list(mandate.get("preferred_projects"))
    is_open = bool(mandate.get("open")) or (not preferred_areas and not preferred_projects)
    if signal.geo_id in preferred_areas or signal.geo_id in preferred_projects:
        result.score += settings.area_match
        result.matched.append("area")
        result.details["area"] = {"matched_geo_id": signal.geo_id}
    elif is_open:
        result.score += settings.area_open
        result.matched.append("area_open")
        result.details["area"] = {"open": True}
    else:
        result.details["area"] = {
            "open": False,
            "preferred_areas": preferred_areas,
            "preferred_projects": preferred_projects,
        }

    # Budget
    price_related = is_price_related_metric(signal.metric)
    budget_min = coerce_number(mandate.get("budget_min"))
    budget_max = coerce_number(mandate.get("budget_max"))
    if not price_related or budget_min is None or budget_max is None:
        result.score += settings.budget_soft
        result.matched.append("budget_soft")
        result.details["budget"] = {
            "applied": "soft",
            "price_related": price_related,
            "budget_min": budget_min,
            "budget_max": budget_max,
        }
    else:
        within = budget_min <= signal.current_value <= budget_max
        result.details["budget"] = {
            "applied": "hard",
            "price_related": True,
            "budget_min": budget_min,
            "budget_max": budget_max,
            "within": within,
        }
        if within:
            result.score += settings.budget_match
            result.matched.append("budget")

    if exposure is not None and exposure.has_exposure:
        result.score += settings.portfolio_exposure
        result.matched.append("portfolio_exposure")
        result.details["portfolio_exposure"] = exposure.details or {"geo_id": signal.geo_id}

    risk_tolerance = mandate.get("risk_tolerance") or DEFAULT_RISK_TOLERANCE
    if signal.type in RISK_CORRELATED_TYPES and risk_tolerance == "low":
        result.score = min(result.score, settings.low_risk_cap)
        result.details["risk_note"] = "low_risk_tolerance_cap_applied"

    result.score = min(1.0, max(0.0, result.score))
    if result.score < settings.min_score:
        result.skip_reason = SKIP_BELOW_THRESHOLD
    return result


@dataclass
class MappingSummary:
    signals_processed: int = 0
    targets_created: int = 0
    targets_skipped: int = 0
    next_cursor: int | None = None


class InvestorMapper:
    """Maps unmapped signals onto investors with a mandate.

    Signals are read page by page in ascending id order. A call processes at
    most ``max_batches`` pages and returns the cursor to resume from; the
    cursor is None once every unmapped signal has been seen.
    """

    def __init__(
        self,
        investors: InvestorDirectory,
        exposure: ExposureLookup,
        signal_repo: SignalRepository,
        target_repo: SignalTargetRepository,
        *,
        settings: MappingSettings,
        thresholds: dict[str, Any] | None = None,
    ) -> None:
        self._investors = investors
        self._exposure = exposure
        self._signal_repo = signal_repo
        self._target_repo = target_repo
        self._settings = settings
        self._thresholds = thresholds or {}

    async def compute_targets(
        self, org_id: str, signal: SignalDTO, investors: list[InvestorDTO]
    ) -> tuple[list[SignalTargetDTO], list[InvestorMatch]]:
        """Score a signal against every investor; returns (rows, skipped)."""
        if signal.id is None:
            raise ValueError("Cannot map a signal that has not been persisted")
        rows: list[SignalTargetDTO] = []
        skipped: list[InvestorMatch] = []
        for investor in investors:
            if not investor.id:
                continue
            if yield_gate(signal, investor.mandate) is None:
                exposure = await self._exposure.get_exposure(
                    org_id, investor_id=investor.id, geo_id=signal.geo_id
                )
            else:
                exposure = None
            match = score_investor(signal, investor, settings=self._settings, exposure=exposure)
            if not match.accepted:
                skipped.append(match)
                continue
            rows.append(
                SignalTargetDTO(
                    org_id=org_id,
                    signal_id=signal.id,
                    investor_id=investor.id,
                    relevance_score=match.score,
                    reason={
                        "matched": match.matched,
                        "details": match.details,
                        "thresholds_used": self._thresholds,
                    },
                )
            )
        return rows, skipped

    async def map_signals(self, org_id: str, *, cursor: int | None = None) -> MappingSummary:
        summary = MappingSummary()
        investors = await self._investors.investors_with_mandate(org_id)
        if not investors:
            logger.info("No investors with a mandate for org=%s", org_id)

        for _ in range(self._settings.max_batches):
            page = await self._signal_repo.list_unmapped(
                org_id, limit=self._settings.batch_size, after_id=cursor
            )
            if not page:
                cursor = None
                break
            cursor = page[-1].id

            for signal in page:
                summary.signals_processed += 1
                if signal.id is None or not signal.geo_id or not signal.type or not signal.metric:
                    logger.warning("Skipping signal with missing fields: id=%s", signal.id)
                    summary.targets_skipped += 1
                    continue
                # Savepoint per signal: a failed statement must not abort the page.
                try:
                    async with self._target_repo.session.begin_nested():
                        rows, skipped = await self.compute_targets(org_id, signal, investors)
                        if rows:
                            await self._target_repo.upsert_many(rows)
                except Exception as e:
                    logger.warning("Error mapping signal %s; skipping: %s", signal.id, e)
                    summary.targets_skipped += 1
                    continue
                summary.targets_created += len(rows)
                summary.targets_skipped += len(skipped)

            if len(page) < self._settings.batch_size:
                cursor = None
                break

        summary.next_cursor = cursor
        logger.info(
            "Mapping: org=%s signals=%d targets=%d skipped=%d next_cursor=%s",
            org_id,
            summary.signals_processed,
            summary.targets_created,
            summary.targets_skipped,
            summary.next_cursor,
        )
        return summary
