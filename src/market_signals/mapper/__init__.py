"""Investor mapping layer - relevance of signals to investor mandates."""

from market_signals.mapper.investor import (
    InvestorMapper,
    InvestorMatch,
    MappingSummary,
    coerce_number,
    score_investor,
)

__all__ = [
    "InvestorMapper",
    "InvestorMatch",
    "MappingSummary",
    "coerce_number",
    "score_investor",
]
