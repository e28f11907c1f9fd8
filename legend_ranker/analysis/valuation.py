"""Fair-value models - one intrinsic price per share per legendary investor.

Shared gates applied by every model:
  * Health gate -- distressed companies (no profit, no free cash flow and an
    operating margin at or below -10%) skip the model and get a fixed
    discount off the current price.
  * EPS validity -- EPS outside (0.01, 1000], or positive EPS alongside deep
    losses, is treated as absent; each model then falls back to book value,
    sales or EV/EBITDA, and finally to the current price.
  * Sanity clamp -- every computed value is bounded to
    [0.1 x price, price x dynamic multiplier].
"""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional

import numpy as np

from legend_ranker.models import (
    STRATEGY_ORDER,
    CanonicalMetrics,
    FairValueResult,
    FairValueSummary,
    StrategyValuation,
)
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("valuation")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_VALID_EPS = 0.01
MAX_VALID_EPS = 1000.0
# Net income in billions below which a positive EPS is considered inconsistent
DEEP_LOSS_NET_INCOME = -0.1
MIN_FAIR_VALUE_RATIO = 0.1
UNHEALTHY_MAX_MULTIPLIER = 2.0
MAX_MULTIPLIER_PERCENT = 2400.0
# Assumed market cap (billions) when the provider reports none
_DEFAULT_MARKET_CAP = 0.1

# Fraction of price kept when a company fails the health gate
UNHEALTHY_DISCOUNTS: Dict[str, float] = {
    "buffett": 0.8,
    "graham": 0.7,
    "lynch": 0.8,
    "greenblatt": 0.75,
    "templeton": 0.6,
    "marks": 0.7,
}

BUY_UPSIDE = 50.0


# ===================================================================
# Shared gates
# ===================================================================

def is_fundamentally_healthy(m: CanonicalMetrics) -> bool:
    """Profitable, cash generative, or operating margin above -10%."""
    if m.net_income is not None and m.net_income > 0:
        return True
    if m.free_cash_flow is not None and m.free_cash_flow > 0:
        return True
    return m.operating_margin is not None and m.operating_margin > -10


def validate_eps(m: CanonicalMetrics) -> Optional[float]:
    """Usable EPS or ``None`` when out of range or inconsistent with net income."""
    eps = m.earnings_per_share
    if eps is None or eps <= MIN_VALID_EPS or eps > MAX_VALID_EPS:
        return None
    if m.net_income is not None and m.net_income < DEEP_LOSS_NET_INCOME:
        return None
    return eps


def dynamic_max_multiplier(m: CanonicalMetrics) -> float:
    """Upper fair-value bound as a multiple of price.

    Base by market cap (20x below $50M, 15x below $500M, 12x below $5B, else
    10x), raised for cheap profitable companies and high beta, trimmed for
    expensive or low-beta ones, hard-capped at 24x. Distressed companies are
    held to 2x.
    """
    if not is_fundamentally_healthy(m):
        return UNHEALTHY_MAX_MULTIPLIER

    market_cap = m.market_cap or _DEFAULT_MARKET_CAP
    if market_cap < 0.05:
        percent = 2000.0
    elif market_cap < 0.5:
        percent = 1500.0
    elif market_cap < 5:
        percent = 1200.0
    else:
        percent = 1000.0

    pe = m.pe_ratio
    if pe is not None and pe > 0 and m.net_income is not None and m.net_income > 0:
        if pe < 5:
            percent += 300
        elif pe < 10:
            percent += 150
        elif pe > 30:
            percent *= 0.7

    if m.beta is not None:
        if abs(m.beta) > 2.0:
            percent += 200
        elif abs(m.beta) < 0.5:
            percent *= 0.9

    return min(percent, MAX_MULTIPLIER_PERCENT) / 100.0


def apply_sanity_clamp(fair_value: float, m: CanonicalMetrics) -> float:
    """Bound ``fair_value`` to [0.1 x price, price x dynamic multiplier]."""
    price = m.price
    floor = price * MIN_FAIR_VALUE_RATIO
    ceiling = price * dynamic_max_multiplier(m)
    return max(floor, min(ceiling, fair_value))


def _unhealthy_value(strategy: str, m: CanonicalMetrics) -> float:
    return apply_sanity_clamp(m.price * UNHEALTHY_DISCOUNTS[strategy], m)


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


# ===================================================================
# Strategy models
# ===================================================================

def buffett_fair_value(m: CanonicalMetrics) -> float:
    """Quality-adjusted P/E (15 base, capped at 30) on EPS."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("buffett", m)

    eps = validate_eps(m)
    if eps is None:
        if _positive(m.book_value_per_share):
            return apply_sanity_clamp(m.book_value_per_share * 1.2, m)
        return m.price

    fair_pe = 15.0
    if m.roe is not None and m.roe > 20:
        fair_pe += 3
    if m.net_margin is not None and m.net_margin > 15:
        fair_pe += 2
    if m.debt_to_equity is not None and m.debt_to_equity < 0.5:
        fair_pe += 2
    if m.free_cash_flow is not None and m.net_income is not None and m.free_cash_flow > m.net_income * 0.8:
        fair_pe += 2
    growth = m.earnings_growth_5y
    if growth is not None and growth > 10:
        fair_pe += 3
    elif growth is not None and growth > 5:
        fair_pe += 1

    return apply_sanity_clamp(eps * min(30.0, fair_pe), m)


def graham_fair_value(m: CanonicalMetrics) -> float:
    """Graham Number sqrt(22.5 x EPS x BVPS)."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("graham", m)

    eps = validate_eps(m)
    bvps = m.book_value_per_share
    if eps is None or not bvps:
        if _positive(m.tangible_book_value_per_share):
            return apply_sanity_clamp(m.tangible_book_value_per_share * 0.8, m)
        if _positive(bvps):
            return apply_sanity_clamp(bvps * 0.7, m)
        return m.price

    if bvps <= 0:
        return apply_sanity_clamp(m.price * 0.7, m)
    return apply_sanity_clamp(math.sqrt(22.5 * eps * bvps), m)


def lynch_fair_value(m: CanonicalMetrics) -> float:
    """PEG-implied P/E: growth clamped to 8-30% times a quality-adjusted PEG."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("lynch", m)

    eps = validate_eps(m)
    if eps is None:
        ps = m.price_to_sales
        if ps is not None and 0 < ps < 10 and m.revenue is not None and _positive(m.shares_outstanding):
            fair_ps = min(5.0, ps * 1.2)
            per_share = m.revenue * 1e9 * fair_ps / m.shares_outstanding
            return apply_sanity_clamp(per_share, m)
        return m.price

    growth = abs(m.earnings_growth_5y) if m.earnings_growth_5y else 8.0
    growth = min(30.0, max(8.0, growth))

    target_peg = 1.3
    if m.roe is not None and m.roe > 25:
        target_peg = 1.6
    elif m.roe is not None and m.roe > 20:
        target_peg = 1.4

    fair_pe = min(50.0, growth * target_peg)
    return apply_sanity_clamp(eps * fair_pe, m)


def greenblatt_fair_value(m: CanonicalMetrics) -> float:
    """Target earnings yield 6-8% (lower for high ROIC), P/E capped at 25, quality premium."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("greenblatt", m)

    eps = validate_eps(m)
    if eps is None:
        if _positive(m.ebitda) and _positive(m.ev_to_ebitda):
            fair_multiple = min(15.0, m.ev_to_ebitda)
            return apply_sanity_clamp(m.price * fair_multiple / m.ev_to_ebitda, m)
        return m.price

    roic = m.roic if m.roic else 15.0
    roic = max(5.0, min(50.0, roic))
    target_yield = max(6.0, 8.0 - (roic - 15.0) * 0.1)
    target_pe = min(25.0, 100.0 / target_yield)

    quality = 1.0
    if roic > 25:
        quality = 1.2
    elif roic > 20:
        quality = 1.15
    elif roic > 15:
        quality = 1.05

    return apply_sanity_clamp(eps * target_pe * quality, m)


def templeton_fair_value(m: CanonicalMetrics) -> float:
    """Deep-value P/E of 6, 7 if virtually debt free, small yield/book bonuses, ceiling 8."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("templeton", m)

    eps = validate_eps(m)
    if eps is None:
        if _positive(m.book_value_per_share):
            return apply_sanity_clamp(m.book_value_per_share * 0.6, m)
        if _positive(m.tangible_book_value_per_share):
            return apply_sanity_clamp(m.tangible_book_value_per_share * 0.5, m)
        return apply_sanity_clamp(m.price * 0.7, m)

    target_pe = 6.0
    if m.debt_to_equity is not None and m.debt_to_equity < 0.1:
        target_pe = 7.0
    if m.dividend_yield is not None and m.dividend_yield > 5:
        target_pe += 0.5
    if _positive(m.pb_ratio) and m.pb_ratio < 0.8:
        target_pe += 0.5

    return apply_sanity_clamp(eps * min(8.0, target_pe), m)


def marks_fair_value(m: CanonicalMetrics) -> float:
    """Base 14x with multiplicative leverage penalties and quality premiums, capped at 20x."""
    if not is_fundamentally_healthy(m):
        return _unhealthy_value("marks", m)

    eps = validate_eps(m)
    if eps is None:
        if _positive(m.tangible_book_value_per_share):
            return apply_sanity_clamp(m.tangible_book_value_per_share * 0.7, m)
        if _positive(m.book_value_per_share):
            return apply_sanity_clamp(m.book_value_per_share * 0.6, m)
        return apply_sanity_clamp(m.price * 0.8, m)

    multiple = 14.0
    leverage = m.debt_to_equity or 0.0
    if leverage > 2.0:
        multiple *= 0.6
    elif leverage > 1.5:
        multiple *= 0.75
    elif leverage > 1.0:
        multiple *= 0.85
    elif leverage < 0.5:
        multiple *= 1.05

    if m.roe is not None and m.roe > 25:
        multiple *= 1.1
    elif m.roe is not None and m.roe > 20:
        multiple *= 1.05
    elif m.roe is not None and m.roe < 12:
        multiple *= 0.9

    if m.net_margin is not None and m.net_margin > 20:
        multiple *= 1.08
    elif m.net_margin is not None and m.net_margin < 8:
        multiple *= 0.9

    if m.pe_ratio is not None and m.pe_ratio > 25:
        multiple *= 0.9

    return apply_sanity_clamp(eps * min(20.0, multiple), m)


FAIR_VALUE_MODELS: Dict[str, Callable[[CanonicalMetrics], float]] = {
    "buffett": buffett_fair_value,
    "graham": graham_fair_value,
    "lynch": lynch_fair_value,
    "greenblatt": greenblatt_fair_value,
    "templeton": templeton_fair_value,
    "marks": marks_fair_value,
}


# ===================================================================
# Aggregation
# ===================================================================

def fair_values(m: CanonicalMetrics) -> List[FairValueResult]:
    return [FairValueResult(s, FAIR_VALUE_MODELS[s](m)) for s in STRATEGY_ORDER]


def average_fair_value(results: List[FairValueResult]) -> float:
    if not results:
        return 0.0
    return float(np.mean([r.fair_value for r in results]))


def calculate_upside(price: float, fair_value: float) -> float:
    """Percent gap from price to fair value; 0 when price is not positive."""
    if price <= 0:
        return 0.0
    return (fair_value - price) / price * 100.0


def signal_from_upside(upside: float) -> str:
    """``buy`` above 50% upside, ``hold`` from 0%, ``sell`` below."""
    if upside > BUY_UPSIDE:
        return "buy"
    if upside >= 0:
        return "hold"
    return "sell"


def value_company(m: CanonicalMetrics) -> FairValueSummary:
    """Run all six models and summarize them against the current price."""
    results = fair_values(m)
    average = average_fair_value(results)
    per_strategy = []
    for r in results:
        upside = calculate_upside(m.price, r.fair_value)
        per_strategy.append(StrategyValuation(r.strategy, r.fair_value, upside, signal_from_upside(upside)))

    summary = FairValueSummary(
        average_fair_value=average,
        upside=calculate_upside(m.price, average),
        per_strategy=per_strategy,
    )
    logger.debug(
        "Valued %s: avg=%.2f upside=%.1f%% healthy=%s",
        m.symbol, summary.average_fair_value, summary.upside, is_fundamentally_healthy(m),
    )
    return summary
