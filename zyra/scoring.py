# zyra/scoring.py
# Purpose: Heuristic risk scores and market trend, kept free of I/O.
# Pitfalls: Thresholds are demo tuning, not validated risk figures; pass a
#   custom RiskThresholds to change them.

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from zyra.schemas import MarketTrend

MIN_SCORE = 1.0
MAX_SCORE = 5.0
BASE_SCORE = 2.5


@dataclass(frozen=True)
class RiskThresholds:
    # protocols
    large_protocol_tvl: float = 1_000_000_000
    small_protocol_tvl: float = 10_000_000
    mature_age: timedelta = timedelta(days=365)
    low_risk_categories: frozenset[str] = frozenset({"Lending", "Liquid Staking", "DEX"})

    # pools
    high_apy: float = 100.0
    low_apy: float = 5.0
    large_pool_tvl: float = 100_000_000
    small_pool_tvl: float = 1_000_000
    stablecoin_tickers: tuple[str, ...] = ("USD", "DAI", "USDT")

    # trend
    bullish_ratio: float = 0.6
    bearish_ratio: float = 0.4


DEFAULT_THRESHOLDS = RiskThresholds()


def _clamp(score: float) -> float:
    if math.isnan(score):
        return BASE_SCORE
    return round(max(MIN_SCORE, min(MAX_SCORE, score)), 2)


def protocol_risk_score(
    tvl: float,
    category: str | None,
    founded: datetime | None = None,
    *,
    now: datetime | None = None,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> float:
    """Lower is safer. Big, old protocols in conservative categories score lowest."""
    score = BASE_SCORE

    if tvl > thresholds.large_protocol_tvl:
        score -= 0.5
    elif tvl < thresholds.small_protocol_tvl:
        score += 0.5

    if founded is not None:
        now = now or datetime.now(UTC)
        if now - founded > thresholds.mature_age:
            score -= 0.3

    if category in thresholds.low_risk_categories:
        score -= 0.2

    return _clamp(score)


def pool_risk_score(
    apy: float,
    tvl: float,
    symbol: str | None,
    *,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> float:
    score = BASE_SCORE

    # very high APY usually means emissions or leverage
    if apy > thresholds.high_apy:
        score += 1.0
    elif apy < thresholds.low_apy:
        score -= 0.3

    if tvl > thresholds.large_pool_tvl:
        score -= 0.5
    elif tvl < thresholds.small_pool_tvl:
        score += 0.5

    sym = (symbol or "").upper()
    if any(ticker in sym for ticker in thresholds.stablecoin_tickers):
        score -= 0.3

    return _clamp(score)


def categorize_pool(symbol: str | None, project: str | None) -> str:
    sym = symbol or ""
    proj = (project or "").lower()
    if "-" in sym:
        return "Liquidity Providing"
    if "USD" in sym.upper():
        return "Stable Swapping"
    if "stake" in proj:
        return "Liquid Staking"
    if "lend" in proj:
        return "Lending"
    return "Yield Farming"


def market_trend(
    changes: Iterable[float | None],
    *,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> MarketTrend:
    """
    Majority vote over 24h price changes.
    ratio > 0.6 -> bullish, ratio < 0.4 -> bearish, otherwise (and for no input) neutral.
    """
    values = list(changes)
    if not values:
        return MarketTrend.NEUTRAL
    positive = sum(1 for v in values if v is not None and v > 0)
    ratio = positive / len(values)
    if ratio > thresholds.bullish_ratio:
        return MarketTrend.BULLISH
    if ratio < thresholds.bearish_ratio:
        return MarketTrend.BEARISH
    return MarketTrend.NEUTRAL
