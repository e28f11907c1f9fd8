"""Data model shared by the normalizer, the engines and the aggregator."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Optional


# Strategy keys in evaluation order; ties in top-strategy selection resolve
# to the earliest entry.
STRATEGY_ORDER: tuple[str, ...] = (
    "buffett", "graham", "lynch", "greenblatt", "templeton", "marks",
)

STRATEGY_NAMES: dict[str, str] = {
    "buffett": "Warren Buffett",
    "graham": "Benjamin Graham",
    "lynch": "Peter Lynch",
    "greenblatt": "Joel Greenblatt",
    "templeton": "John Templeton",
    "marks": "Howard Marks",
}


def finite_or_none(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` for missing / NaN / inf."""
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


@dataclass
class CanonicalMetrics:
    """Normalized fundamentals for one company in one analysis run.

    Monetary aggregates (market cap, revenue, income, debt, equity, assets,
    cash flow, working capital, inventory, COGS) are in billions. Per-share
    values, ratios and percentages are not rescaled. Every numeric field is
    a finite float or ``None``.
    """

    symbol: str
    name: str
    sector: str = "Unknown"
    industry: Optional[str] = None
    isin: Optional[str] = None
    price: float = 0.0

    # Valuation
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    peg_ratio: Optional[float] = None
    price_to_sales: Optional[float] = None
    enterprise_value: Optional[float] = None
    ev_to_ebitda: Optional[float] = None

    # Performance
    revenue: Optional[float] = None
    revenue_growth: Optional[float] = None
    net_income: Optional[float] = None
    net_income_growth: Optional[float] = None
    operating_income: Optional[float] = None
    ebitda: Optional[float] = None
    free_cash_flow: Optional[float] = None

    # Profitability (percent)
    roe: Optional[float] = None
    roa: Optional[float] = None
    roic: Optional[float] = None
    nopat: Optional[float] = None
    gross_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    net_margin: Optional[float] = None

    # Financial health
    current_ratio: Optional[float] = None
    quick_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    debt_to_assets: Optional[float] = None
    interest_coverage: Optional[float] = None
    total_debt: Optional[float] = None
    total_equity: Optional[float] = None
    total_assets: Optional[float] = None
    working_capital: Optional[float] = None

    # Dividends (yield and payout in percent)
    dividend_yield: Optional[float] = None
    dividends_per_share: Optional[float] = None
    payout_ratio: Optional[float] = None

    # Market / per-share
    beta: Optional[float] = None
    book_value_per_share: Optional[float] = None
    tangible_book_value_per_share: Optional[float] = None
    cash_per_share: Optional[float] = None
    earnings_per_share: Optional[float] = None
    shares_outstanding: Optional[float] = None

    # Growth (percent CAGR)
    earnings_growth_5y: Optional[float] = None
    revenue_growth_5y: Optional[float] = None

    # Working-capital components
    current_assets: Optional[float] = None
    current_liabilities: Optional[float] = None
    inventory: Optional[float] = None
    cost_of_goods_sold: Optional[float] = None

    def __post_init__(self) -> None:
        for f in fields(self):
            if f.name in ("symbol", "name", "sector", "industry", "isin"):
                continue
            value = getattr(self, f.name)
            if f.name == "price":
                self.price = finite_or_none(value) or 0.0
            else:
                setattr(self, f.name, finite_or_none(value))

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class ScoreResult:
    strategy: str
    score: int

    @property
    def name(self) -> str:
        return STRATEGY_NAMES.get(self.strategy, self.strategy)


@dataclass(frozen=True)
class FairValueResult:
    strategy: str
    fair_value: float

    @property
    def name(self) -> str:
        return STRATEGY_NAMES.get(self.strategy, self.strategy)


@dataclass
class ScoringSummary:
    overall_score: int
    top_strategy: str
    strategies: list[ScoreResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overallScore": self.overall_score,
            "topStrategy": self.top_strategy,
            "strategies": [{"name": s.name, "score": s.score} for s in self.strategies],
        }


@dataclass
class StrategyValuation:
    strategy: str
    fair_value: float
    upside: float
    signal: str

    @property
    def name(self) -> str:
        return STRATEGY_NAMES.get(self.strategy, self.strategy)


@dataclass
class FairValueSummary:
    average_fair_value: float
    upside: float
    per_strategy: list[StrategyValuation]

    def to_dict(self) -> dict[str, Any]:
        return {
            "averageFairValue": self.average_fair_value,
            "upside": self.upside,
            "perStrategy": [
                {"name": v.name, "fairValue": v.fair_value, "upside": v.upside, "signal": v.signal}
                for v in self.per_strategy
            ],
        }


@dataclass
class RankingRecord:
    """One company's row in the persisted leaderboards.

    Serialized with the store's camelCase keys; ``averageTarget`` holds the
    average fair value.
    """

    symbol: str
    name: str
    sector: str
    overall_score: int
    top_strategy: str
    analysis_date: str
    current_price: float = 0.0
    average_fair_value: float = 0.0
    upside: Optional[float] = None
    dividend_yield: Optional[float] = None
    industry: Optional[str] = None
    isin: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "symbol": self.symbol,
            "name": self.name,
            "sector": self.sector,
            "overallScore": self.overall_score,
            "topStrategy": self.top_strategy,
            "analysisDate": self.analysis_date,
            "dividendYield": self.dividend_yield,
            "currentPrice": self.current_price,
            "averageTarget": self.average_fair_value,
            "upside": self.upside,
        }
        if self.industry is not None:
            data["industry"] = self.industry
        if self.isin is not None:
            data["isin"] = self.isin
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["RankingRecord"]:
        """Parse a stored row; ``None`` when it is not a well-formed record."""
        if not isinstance(data, dict):
            return None
        for key in ("symbol", "name", "sector", "topStrategy", "analysisDate"):
            if not isinstance(data.get(key), str):
                return None
        score = data.get("overallScore")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            return None
        return cls(
            symbol=data["symbol"],
            name=data["name"],
            sector=data["sector"],
            overall_score=int(round(score)),
            top_strategy=data["topStrategy"],
            analysis_date=data["analysisDate"],
            current_price=finite_or_none(data.get("currentPrice")) or 0.0,
            average_fair_value=finite_or_none(data.get("averageTarget")) or 0.0,
            upside=finite_or_none(data.get("upside")),
            dividend_yield=finite_or_none(data.get("dividendYield")),
            industry=data.get("industry"),
            isin=data.get("isin"),
        )


@dataclass(frozen=True)
class Company:
    """A candidate listed by the provider's exchange symbol list."""

    symbol: str
    name: str
    exchange: str = "US"
    sector: str = "Unknown"
    industry: Optional[str] = None
    isin: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class BatchProgress:
    completed: int
    total: int
    current_symbol: str


@dataclass
class BatchReport:
    """Outcome counters for one Batch Controller run."""

    total: int = 0
    completed: int = 0
    ranked: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Everything produced for one company by a single analysis."""

    metrics: CanonicalMetrics
    scoring: ScoringSummary
    valuation: FairValueSummary
    record: RankingRecord
