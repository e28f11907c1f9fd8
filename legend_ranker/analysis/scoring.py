"""Legendary-investor scoring engine.

Six additive rule tables, one per strategy. Each rule is an ordered list of
(predicate, points) tiers; the first tier whose predicate holds awards its
points and the rule contributes nothing otherwise. A strategy's raw score is
the sum over its rules, capped at 100.

Null metrics never satisfy a predicate, so missing data only withholds
points. Valuation multiples (P/E, P/B, PEG, EV/EBITDA) count as "cheap" only
when positive: a negative multiple reflects losses or negative book value.

The surfaced score divides each raw score by the strategy's observed maximum
(``MAX_SCORES``) and rounds to an integer in [0, 100].
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from legend_ranker.models import (
    STRATEGY_NAMES,
    STRATEGY_ORDER,
    CanonicalMetrics,
    ScoreResult,
    ScoringSummary,
)
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("scoring")

Source = Union[str, Callable[[CanonicalMetrics], Optional[float]]]
Predicate = Callable[[CanonicalMetrics], bool]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
SCORE_CAP = 100

# Empirically observed maxima per strategy, used to put the six raw scores
# on a comparable 0-100 scale.
MAX_SCORES: Dict[str, int] = {
    "buffett": 100,
    "graham": 100,
    "lynch": 96,
    "greenblatt": 100,
    "templeton": 96,
    "marks": 100,
}

BUY_SCORE = 80
HOLD_SCORE = 60


def round_half_up(value: float) -> int:
    """Round to nearest integer with .5 going up."""
    return int(math.floor(value + 0.5))


# ===================================================================
# Metric sources
# ===================================================================

def _value(m: CanonicalMetrics, source: Source) -> Optional[float]:
    if callable(source):
        return source(m)
    return getattr(m, source)


def _positive(name: str) -> Callable[[CanonicalMetrics], Optional[float]]:
    """Metric ``name`` when strictly positive, else ``None``."""
    def read(m: CanonicalMetrics) -> Optional[float]:
        v = getattr(m, name)
        return v if v is not None and v > 0 else None
    read.__name__ = f"positive_{name}"
    return read


def earnings_yield(m: CanonicalMetrics) -> Optional[float]:
    """Inverse P/E in percent; ``None`` unless P/E is positive."""
    if m.pe_ratio is None or m.pe_ratio <= 0:
        return None
    return 100.0 / m.pe_ratio


def inventory_turnover(m: CanonicalMetrics) -> Optional[float]:
    if m.cost_of_goods_sold is None or m.inventory is None or m.inventory <= 0:
        return None
    return m.cost_of_goods_sold / m.inventory


def dividend_coverage(m: CanonicalMetrics) -> Optional[float]:
    """EPS / DPS; ``None`` for non-payers."""
    if m.earnings_per_share is None or m.dividends_per_share is None or m.dividends_per_share <= 0:
        return None
    return m.earnings_per_share / m.dividends_per_share


def graham_number(m: CanonicalMetrics) -> Optional[float]:
    """sqrt(22.5 x EPS x BVPS), defined only for positive EPS and book value."""
    eps, bvps = m.earnings_per_share, m.book_value_per_share
    if eps is None or bvps is None or eps <= 0 or bvps <= 0:
        return None
    return math.sqrt(22.5 * eps * bvps)


def _price_relative(name: str) -> Callable[[CanonicalMetrics], Optional[float]]:
    """Per-share metric ``name`` divided by the current price."""
    def read(m: CanonicalMetrics) -> Optional[float]:
        v = getattr(m, name)
        if v is None or m.price <= 0:
            return None
        return v / m.price
    read.__name__ = f"{name}_to_price"
    return read


def price_to_graham_number(m: CanonicalMetrics) -> Optional[float]:
    gn = graham_number(m)
    if gn is None or m.price <= 0:
        return None
    return m.price / gn


# ===================================================================
# Predicates and rules
# ===================================================================

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    ">": lambda v, t: v > t,
    ">=": lambda v, t: v >= t,
    "<": lambda v, t: v < t,
    "<=": lambda v, t: v <= t,
}


def compare(source: Source, op: str, threshold: float) -> Predicate:
    """Null-safe threshold predicate over a metric source."""
    check = _OPERATORS[op]

    def predicate(m: CanonicalMetrics) -> bool:
        v = _value(m, source)
        return v is not None and check(v, threshold)
    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    return lambda m: all(p(m) for p in predicates)


def fcf_exceeds_net_income(share: float) -> Predicate:
    """Free cash flow above ``share`` x net income (both known)."""
    def predicate(m: CanonicalMetrics) -> bool:
        if m.free_cash_flow is None or m.net_income is None:
            return False
        return m.free_cash_flow > m.net_income * share
    return predicate


@dataclass(frozen=True)
class Rule:
    """One scoring clause: the first matching tier awards its points."""

    label: str
    tiers: Tuple[Tuple[Predicate, int], ...]

    def points(self, m: CanonicalMetrics) -> int:
        for predicate, pts in self.tiers:
            if predicate(m):
                return pts
        return 0


def tiered(label: str, source: Source, op: str, *tiers: Tuple[float, int]) -> Rule:
    """Rule over a single metric with descending-quality thresholds."""
    return Rule(label, tuple((compare(source, op, t), pts) for t, pts in tiers))


# ===================================================================
# Strategy tables
# ===================================================================

BUFFETT_RULES: Tuple[Rule, ...] = (
    tiered("high ROE", "roe", ">", (20, 25), (15, 20), (10, 10)),
    tiered("low leverage", "debt_to_equity", "<", (0.3, 20), (0.6, 15), (1.0, 10)),
    tiered("earnings growth", "earnings_growth_5y", ">", (10, 15), (5, 10)),
    tiered("net margin", "net_margin", ">", (15, 15), (10, 10)),
    tiered("reasonable P/E", _positive("pe_ratio"), "<", (20, 15), (25, 10), (30, 5)),
    Rule("cash conversion", ((fcf_exceeds_net_income(0.8), 10),)),
)

GRAHAM_RULES: Tuple[Rule, ...] = (
    tiered("low P/E", _positive("pe_ratio"), "<", (10, 15), (15, 12), (20, 8)),
    tiered("low P/B", _positive("pb_ratio"), "<", (1.0, 15), (1.5, 12), (2.5, 8)),
    tiered("liquidity", "current_ratio", ">", (2.0, 12), (1.5, 10), (1.2, 6)),
    tiered("low debt/assets", "debt_to_assets", "<", (0.3, 8), (0.5, 6)),
    tiered("cash per share", _price_relative("cash_per_share"), ">", (0.1, 12), (0.05, 8)),
    tiered("book value per share", _price_relative("book_value_per_share"), ">", (1.0, 10), (0.8, 6)),
    tiered("Graham Number", price_to_graham_number, "<=", (1.0, 20), (1.2, 12), (1.5, 6)),
    tiered("earnings growth", "earnings_growth_5y", ">", (0, 8)),
)

LYNCH_RULES: Tuple[Rule, ...] = (
    tiered("PEG", _positive("peg_ratio"), "<", (0.5, 25), (1.0, 20), (1.5, 12), (2.0, 8)),
    tiered("earnings growth", "earnings_growth_5y", ">", (20, 20), (15, 16), (10, 12)),
    tiered("ROE", "roe", ">", (20, 16), (15, 12), (10, 8)),
    tiered("leverage", "debt_to_equity", "<", (0.5, 12), (1.0, 8)),
    tiered("revenue growth", "revenue_growth_5y", ">", (10, 8)),
    tiered("inventory turnover", inventory_turnover, ">=", (12, 15), (6, 12), (4, 8), (2, 4)),
)

GREENBLATT_RULES: Tuple[Rule, ...] = (
    tiered("ROIC", "roic", ">", (25, 35), (20, 30), (15, 25), (10, 15)),
    tiered("earnings yield", earnings_yield, ">", (15, 35), (10, 30), (7, 25), (5, 15)),
    tiered("EV/EBITDA", _positive("ev_to_ebitda"), "<", (8, 20), (12, 15), (15, 10)),
    tiered("free cash flow", "free_cash_flow", ">", (0, 10)),
)

TEMPLETON_RULES: Tuple[Rule, ...] = (
    tiered("very low P/E", _positive("pe_ratio"), "<", (8, 20), (12, 16), (15, 10)),
    tiered("low P/B", _positive("pb_ratio"), "<", (0.8, 16), (1.2, 12), (1.8, 8)),
    tiered("dividend yield", "dividend_yield", ">", (4, 16), (3, 12), (2, 8)),
    tiered("dividend coverage", dividend_coverage, ">=", (3, 16), (2, 12), (1.5, 8), (1, 4)),
    tiered("cash per share", _price_relative("cash_per_share"), ">", (0.15, 10), (0.1, 6)),
    tiered("tangible book", "tangible_book_value_per_share", ">", (0, 6)),
    Rule("financial stability", (
        (all_of(compare("current_ratio", ">", 1.5), compare("debt_to_equity", "<", 0.6)), 8),
        (all_of(compare("current_ratio", ">", 1.2), compare("debt_to_equity", "<", 1.0)), 6),
    )),
    tiered("operating margin", "operating_margin", ">", (10, 4)),
)

MARKS_RULES: Tuple[Rule, ...] = (
    tiered("low leverage", "debt_to_equity", "<", (0.2, 25), (0.4, 20), (0.7, 15)),
    tiered("interest coverage", "interest_coverage", ">", (10, 20), (5, 15), (3, 10)),
    Rule("quality", (
        (all_of(compare("roe", ">", 15), compare("roa", ">", 8)), 25),
        (all_of(compare("roe", ">", 12), compare("roa", ">", 6)), 20),
        (all_of(compare("roe", ">", 10), compare("roa", ">", 4)), 15),
    )),
    Rule("reasonable valuation", (
        (all_of(compare(_positive("pe_ratio"), "<", 18), compare(_positive("pb_ratio"), "<", 2.5)), 20),
        (all_of(compare(_positive("pe_ratio"), "<", 22), compare(_positive("pb_ratio"), "<", 3.0)), 15),
    )),
    Rule("cash generation", ((fcf_exceeds_net_income(0.9), 10),)),
)

STRATEGY_RULES: Dict[str, Tuple[Rule, ...]] = {
    "buffett": BUFFETT_RULES,
    "graham": GRAHAM_RULES,
    "lynch": LYNCH_RULES,
    "greenblatt": GREENBLATT_RULES,
    "templeton": TEMPLETON_RULES,
    "marks": MARKS_RULES,
}


# ===================================================================
# Scoring
# ===================================================================

def evaluate(rules: Iterable[Rule], m: CanonicalMetrics) -> int:
    """Sum of rule points, capped at 100."""
    return min(sum(rule.points(m) for rule in rules), SCORE_CAP)


def raw_score(strategy: str, m: CanonicalMetrics) -> int:
    return evaluate(STRATEGY_RULES[strategy], m)


def buffett_score(m: CanonicalMetrics) -> int:
    return raw_score("buffett", m)


def graham_score(m: CanonicalMetrics) -> int:
    return raw_score("graham", m)


def lynch_score(m: CanonicalMetrics) -> int:
    return raw_score("lynch", m)


def greenblatt_score(m: CanonicalMetrics) -> int:
    return raw_score("greenblatt", m)


def templeton_score(m: CanonicalMetrics) -> int:
    return raw_score("templeton", m)


def marks_score(m: CanonicalMetrics) -> int:
    return raw_score("marks", m)


def scaled_score(strategy: str, raw: int) -> int:
    """Raw score over the strategy's observed maximum, as an int in [0, 100]."""
    scaled = round_half_up(raw / MAX_SCORES[strategy] * 100)
    return max(0, min(SCORE_CAP, scaled))


def score_all(m: CanonicalMetrics) -> List[ScoreResult]:
    """Surfaced (scaled) score for every strategy, in evaluation order."""
    return [
        ScoreResult(strategy, scaled_score(strategy, raw_score(strategy, m)))
        for strategy in STRATEGY_ORDER
    ]


def summarize_scores(results: List[ScoreResult]) -> ScoringSummary:
    """Overall score (rounded mean) and top strategy (first maximum wins)."""
    if not results:
        return ScoringSummary(overall_score=0, top_strategy="", strategies=[])

    overall = round_half_up(sum(r.score for r in results) / len(results))
    top = results[0]
    for r in results[1:]:
        if r.score > top.score:
            top = r
    return ScoringSummary(
        overall_score=overall,
        top_strategy=STRATEGY_NAMES.get(top.strategy, top.strategy),
        strategies=list(results),
    )


def score_company(m: CanonicalMetrics) -> ScoringSummary:
    summary = summarize_scores(score_all(m))
    logger.debug(
        "Scored %s: overall=%d top=%s", m.symbol, summary.overall_score, summary.top_strategy,
    )
    return summary


def signal_from_score(score: float) -> str:
    """``buy`` at 80+, ``hold`` at 60+, ``sell`` below."""
    if score >= BUY_SCORE:
        return "buy"
    if score >= HOLD_SCORE:
        return "hold"
    return "sell"
