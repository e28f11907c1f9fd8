"""Fundamentals normalizer -- raw provider payload to ``CanonicalMetrics``.

Implements:
  * Latest-period selection over yearly (else quarterly) statement series
  * CAGR over a look-back window of statement periods
  * Best-earnings-growth waterfall feeding the PEG ratio
  * ROIC on average invested capital (two-period average, 70% cash rule,
    flat 21% tax rate on EBIT)
  * Derived ratios, margins and per-share values

Nothing in here raises for missing or malformed sections: every lookup
degrades to ``None``. Monetary aggregates are converted to billions at this
boundary; per-share values, ratios and percentages are left unscaled except
where the provider reports decimals (yields, YoY growth, margins), which are
multiplied by 100.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np
import pandas as pd

from legend_ranker.models import CanonicalMetrics, finite_or_none
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("fundamental_analysis")

BILLION = 1e9
TAX_RATE = 0.21
NON_OPERATING_CASH_SHARE = 0.7
GROWTH_BOUND = 100.0
PEG_BOUND = 50.0
# Periods scanned for the long-run growth fields
LONG_RUN_LOOKBACK = 10


# ---------------------------------------------------------------------------
# Provider field aliases -- statement rows use inconsistent labels
# ---------------------------------------------------------------------------
_FIELD_ALIASES: dict[str, list[str]] = {
    # Income statement
    "revenue": ["totalRevenue"],
    "cogs": ["costOfRevenue"],
    "gross_profit": ["grossProfit"],
    "operating_income": ["operatingIncome"],
    "ebit": ["ebit", "operatingIncome"],
    "net_income": ["netIncome", "netIncomeFromContinuingOperations"],
    "interest_expense": ["interestExpense"],
    "eps": ["eps", "dilutedEPS", "epsDiluted"],

    # Balance sheet
    "total_equity": ["totalStockholderEquity", "commonStockTotalEquity"],
    "total_assets": ["totalAssets"],
    "current_assets": ["totalCurrentAssets"],
    "current_liabilities": ["totalCurrentLiabilities"],
    "short_term_debt": ["shortTermDebt", "shortLongTermDebt"],
    "long_term_debt": ["longTermDebt", "longTermDebtTotal"],
    "cash": ["cash", "cashAndEquivalents"],
    "short_term_investments": ["shortTermInvestments"],
    "goodwill": ["goodWill"],
    "intangibles": ["intangibleAssets"],
    "inventory": ["inventory"],
    "shares": ["commonStockSharesOutstanding"],

    # Cash flow
    "operating_cashflow": [
        "totalCashFromOperatingActivities", "operatingCashFlow", "cashFlowFromOperations",
    ],
    "capex": ["capitalExpenditures", "capitalExpenditure"],
    "free_cashflow": ["freeCashFlow"],
}


# ---------------------------------------------------------------------------
# Low-level helpers
# ---------------------------------------------------------------------------

def _parse(value: Any) -> Optional[float]:
    """Provider scalar (number, numeric string, "NA", None) to float or None."""
    return finite_or_none(value)


def _section(payload: dict | None, *path: str) -> dict:
    """Walk nested dict keys; any missing / non-dict level yields ``{}``."""
    node: Any = payload or {}
    for key in path:
        node = node.get(key) if isinstance(node, dict) else None
        if node is None:
            return {}
    return node if isinstance(node, dict) else {}


def _safe_div(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or denominator is None or denominator == 0:
        return None
    return numerator / denominator


def _scale(value: Optional[float], factor: float) -> Optional[float]:
    return None if value is None else value * factor


def _billions(value: Optional[float]) -> Optional[float]:
    return None if value is None else value / BILLION


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _first(*values: Optional[float]) -> Optional[float]:
    for v in values:
        if v is not None:
            return v
    return None


def _statement_frame(series: dict | None) -> pd.DataFrame:
    """Period-keyed statement dict to a DataFrame.

    Rows are line items, columns are period-end keys ordered most recent
    first (lexicographic on the ISO date key). Non-numeric cells become NaN.
    """
    if not isinstance(series, dict) or not series:
        return pd.DataFrame()
    periods = {k: v for k, v in series.items() if isinstance(v, dict)}
    if not periods:
        return pd.DataFrame()
    df = pd.DataFrame(periods)
    df = df[sorted(df.columns, key=str, reverse=True)]
    return df.apply(pd.to_numeric, errors="coerce")


def _statement(payload: dict | None, name: str, prefer: str = "yearly") -> pd.DataFrame:
    """Yearly series of a statement, falling back to quarterly when absent."""
    statement = _section(payload, "Financials", name)
    other = "quarterly" if prefer == "yearly" else "yearly"
    df = _statement_frame(statement.get(prefer))
    if df.empty:
        df = _statement_frame(statement.get(other))
    return df


def _num_periods(df: pd.DataFrame | None) -> int:
    return 0 if df is None or df.empty else len(df.columns)


def _extract(
    df: pd.DataFrame | None,
    field_key: str,
    col_idx: int = 0,
) -> Optional[float]:
    """Safely pull one numeric value from a statement frame.

    Args:
        df: statement frame (rows = line items, cols = periods, most recent first).
        field_key: logical name mapped through ``_FIELD_ALIASES``.
        col_idx: column ordinal (0 = latest period).

    Returns:
        ``float`` value or ``None`` when unavailable.
    """
    if df is None or df.empty or col_idx >= len(df.columns):
        return None
    for label in _FIELD_ALIASES.get(field_key, [field_key]):
        if label in df.index:
            val = df[df.columns[col_idx]].get(label)
            if val is not None and pd.notna(val):
                return _parse(val)
    return None


def _period_year(key: Any) -> Optional[int]:
    ts = pd.to_datetime(str(key), errors="coerce")
    return None if pd.isna(ts) else int(ts.year)


# ---------------------------------------------------------------------------
# Growth
# ---------------------------------------------------------------------------

def compound_annual_growth(df: pd.DataFrame | None, field_key: str, lookback: int) -> Optional[float]:
    """CAGR in percent between the earliest of the last ``lookback`` periods and the latest.

    Returns ``None`` with fewer than two periods, a missing or non-positive
    start value, a missing end value, a non-positive end/start ratio, or when
    the two periods are not at least one calendar year apart.
    """
    n = _num_periods(df)
    if n < 2 or lookback < 2:
        return None
    start_idx = min(lookback, n) - 1
    start = _extract(df, field_key, start_idx)
    end = _extract(df, field_key, 0)
    if start is None or start <= 0 or end is None:
        return None

    start_year = _period_year(df.columns[start_idx])
    end_year = _period_year(df.columns[0])
    if start_year is None or end_year is None:
        return None
    years = end_year - start_year
    if years <= 0:
        return None

    ratio = end / start
    if ratio <= 0:
        return None
    return float(np.power(ratio, 1.0 / years) - 1.0) * 100.0


def best_earnings_growth(payload: dict | None) -> Optional[float]:
    """Best available earnings-growth percentage for the PEG ratio.

    Priority (first acceptable candidate wins, no blending):
      1. Growth from current-year to next-year EPS estimate, within +/-100%.
      2. Quarterly YoY earnings growth (a ratio in [-1, 1]) as percent.
      3. 5-period EPS CAGR within +/-100%.
      4. 3-period EPS CAGR within +/-100%.
    """
    highlights = _section(payload, "Highlights")

    current_eps = _parse(highlights.get("EPSEstimateCurrentYear"))
    next_eps = _parse(highlights.get("EPSEstimateNextYear"))
    if current_eps and next_eps is not None:
        forward = (next_eps - current_eps) / abs(current_eps) * 100.0
        if -GROWTH_BOUND <= forward <= GROWTH_BOUND:
            return forward

    quarterly = _parse(highlights.get("QuarterlyEarningsGrowthYOY"))
    if quarterly is not None and -1.0 <= quarterly <= 1.0:
        return quarterly * 100.0

    income = _statement(payload, "Income_Statement")
    for lookback in (5, 3):
        cagr = compound_annual_growth(income, "eps", lookback)
        if cagr is not None and -GROWTH_BOUND <= cagr <= GROWTH_BOUND:
            return cagr

    return None


def peg_ratio(pe: Optional[float], growth: Optional[float], provider_peg: Optional[float]) -> Optional[float]:
    """P/E over growth percent, clamped to +/-50; provider PEG when not computable."""
    if pe is not None and pe > 0 and growth is not None:
        if growth == 0:
            return None
        return _clamp(pe / growth, -PEG_BOUND, PEG_BOUND)
    if provider_peg is None:
        return None
    return _clamp(provider_peg, -PEG_BOUND, PEG_BOUND)


# ---------------------------------------------------------------------------
# ROIC
# ---------------------------------------------------------------------------

def _total_debt(bs: pd.DataFrame, col_idx: int = 0) -> Optional[float]:
    short = _extract(bs, "short_term_debt", col_idx)
    long_ = _extract(bs, "long_term_debt", col_idx)
    if short is None and long_ is None:
        return None
    return (short or 0.0) + (long_ or 0.0)


def _total_cash(bs: pd.DataFrame, col_idx: int = 0) -> Optional[float]:
    cash = _extract(bs, "cash", col_idx)
    sti = _extract(bs, "short_term_investments", col_idx)
    if cash is None and sti is None:
        return None
    return (cash or 0.0) + (sti or 0.0)


def invested_capital(bs: pd.DataFrame, col_idx: int = 0) -> Optional[float]:
    """Equity + debt - 70% of cash + goodwill + intangibles + net working capital.

    Equity is required; unreported debt, cash, goodwill, intangibles and
    working capital contribute nothing.
    """
    equity = _extract(bs, "total_equity", col_idx)
    if equity is None:
        return None
    debt = _total_debt(bs, col_idx) or 0.0
    non_operating_cash = NON_OPERATING_CASH_SHARE * (_total_cash(bs, col_idx) or 0.0)
    goodwill = _extract(bs, "goodwill", col_idx) or 0.0
    intangibles = _extract(bs, "intangibles", col_idx) or 0.0
    current_assets = _extract(bs, "current_assets", col_idx)
    current_liabilities = _extract(bs, "current_liabilities", col_idx)
    nwc = 0.0
    if current_assets is not None and current_liabilities is not None:
        nwc = current_assets - current_liabilities
    return equity + debt - non_operating_cash + goodwill + intangibles + nwc


def compute_roic(bs: pd.DataFrame, ebit: Optional[float]) -> tuple[Optional[float], Optional[float]]:
    """``(roic_percent, nopat)`` in raw currency units for NOPAT.

    Invested capital is averaged over the latest and prior balance sheets,
    or taken from the latest alone when no usable prior period exists.
    """
    nopat = None if ebit is None else ebit * (1.0 - TAX_RATE)
    current = invested_capital(bs, 0)
    if nopat is None or current is None:
        return None, nopat

    prior = invested_capital(bs, 1) if _num_periods(bs) > 1 else None
    average = current if prior is None else (current + prior) / 2.0
    if average <= 0:
        return None, nopat
    return nopat / average * 100.0, nopat


# ---------------------------------------------------------------------------
# Per-share helpers
# ---------------------------------------------------------------------------

def _balance_sheet_shares(bs: pd.DataFrame) -> Optional[float]:
    shares = _extract(bs, "shares")
    # Older filings report the share count in millions
    if shares is not None and 0 < shares < 1000:
        shares *= 1_000_000
    return shares if shares else None


def _latest_quarterly(payload: dict | None, statement: str, field_key: str) -> Optional[float]:
    df = _statement(payload, statement, prefer="quarterly")
    return _extract(df, field_key)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def normalize_fundamentals(
    symbol: str,
    payload: dict | None,
    price: Optional[float] = None,
) -> CanonicalMetrics:
    """Convert a raw provider fundamentals payload into ``CanonicalMetrics``.

    Args:
        symbol: requested ticker (used when the payload carries no code).
        payload: nested provider sections (General, Highlights, Valuation,
            Technicals, SplitsDividends, SharesStats, Financials).
        price: externally fetched current price; ``0.0`` when absent.
    """
    general = _section(payload, "General")
    highlights = _section(payload, "Highlights")
    valuation = _section(payload, "Valuation")
    technicals = _section(payload, "Technicals")
    dividends = _section(payload, "SplitsDividends")
    shares_stats = _section(payload, "SharesStats")

    bs = _statement(payload, "Balance_Sheet")
    inc = _statement(payload, "Income_Statement")
    cf = _statement(payload, "Cash_Flow")

    # --- Balance sheet (raw units) ---
    equity = _extract(bs, "total_equity")
    total_assets = _extract(bs, "total_assets")
    current_assets = _extract(bs, "current_assets")
    current_liabilities = _extract(bs, "current_liabilities")
    total_debt = _total_debt(bs)
    total_cash = _total_cash(bs)
    goodwill = _extract(bs, "goodwill") or 0.0
    intangibles = _extract(bs, "intangibles") or 0.0
    working_capital = None
    if current_assets is not None and current_liabilities is not None:
        working_capital = current_assets - current_liabilities

    # --- Income statement (raw units) ---
    net_income = _extract(inc, "net_income")
    revenue = _extract(inc, "revenue")
    gross_profit = _extract(inc, "gross_profit")
    operating_income = _extract(inc, "operating_income")
    ebit = _extract(inc, "ebit")
    interest_expense = _extract(inc, "interest_expense")

    # --- Cash flow (raw units) ---
    operating_cf = _extract(cf, "operating_cashflow")
    capex = _extract(cf, "capex")
    if operating_cf is not None and capex is not None:
        free_cash_flow = operating_cf - abs(capex)
    else:
        free_cash_flow = _extract(cf, "free_cashflow")

    # --- Market data ---
    market_cap = _first(_parse(highlights.get("MarketCapitalization")), _parse(general.get("MarketCapitalization")))
    pe = _first(_parse(highlights.get("PERatio")), _parse(valuation.get("TrailingPE")))
    eps = _first(_parse(highlights.get("EarningsShare")), _parse(highlights.get("DilutedEpsTTM")))
    dps = _first(_parse(dividends.get("ForwardAnnualDividendRate")), _parse(highlights.get("DividendShare")))
    dividend_yield = _first(
        _scale(_parse(dividends.get("ForwardAnnualDividendYield")), 100.0),
        _scale(_parse(highlights.get("DividendYield")), 100.0),
    )
    shares = _first(
        _parse(shares_stats.get("SharesOutstanding")),
        _parse(general.get("SharesOutstanding")),
        _balance_sheet_shares(bs),
    )
    bs_shares = _balance_sheet_shares(bs) or shares

    roic, nopat = compute_roic(bs, ebit)
    growth = best_earnings_growth(payload)

    inventory = _first(_latest_quarterly(payload, "Balance_Sheet", "inventory"), _extract(bs, "inventory"))
    cogs = _latest_quarterly(payload, "Income_Statement", "cogs")

    current_ratio = _safe_div(current_assets, current_liabilities)
    if inventory is not None and current_assets is not None:
        quick_ratio = _safe_div(current_assets - inventory, current_liabilities)
    else:
        quick_ratio = current_ratio

    positive_equity = equity if equity is not None and equity > 0 else None
    tangible_bvps = None
    if equity is not None:
        tangible_bvps = _safe_div(equity - goodwill - intangibles, shares)

    net_margin = _scale(_parse(highlights.get("ProfitMargin")), 100.0)
    if net_margin is None:
        net_margin = _scale(_safe_div(net_income, revenue), 100.0)

    interest_coverage = None
    if ebit is not None and interest_expense:
        interest_coverage = ebit / abs(interest_expense)

    payout_ratio = None
    if dps is not None and eps is not None and eps > 0:
        payout_ratio = dps / eps * 100.0

    metrics = CanonicalMetrics(
        symbol=general.get("Code") or symbol,
        name=general.get("Name") or symbol,
        sector=general.get("Sector") or "Unknown",
        industry=general.get("Industry") or None,
        isin=general.get("ISIN") or None,
        price=price or 0.0,

        market_cap=_billions(market_cap),
        pe_ratio=pe,
        pb_ratio=_parse(valuation.get("PriceBookMRQ")),
        peg_ratio=peg_ratio(pe, growth, _parse(highlights.get("PEGRatio"))),
        price_to_sales=_parse(valuation.get("PriceSalesTTM")),
        enterprise_value=_billions(_parse(valuation.get("EnterpriseValue"))),
        ev_to_ebitda=_parse(valuation.get("EnterpriseValueEbitda")),

        revenue=_billions(revenue),
        revenue_growth=_scale(_parse(highlights.get("QuarterlyRevenueGrowthYOY")), 100.0),
        net_income=_billions(net_income),
        net_income_growth=_scale(_parse(highlights.get("QuarterlyEarningsGrowthYOY")), 100.0),
        operating_income=_billions(operating_income),
        ebitda=_billions(_parse(highlights.get("EBITDA"))),
        free_cash_flow=_billions(free_cash_flow),

        roe=_scale(_safe_div(net_income, equity), 100.0),
        roa=_scale(_safe_div(net_income, total_assets), 100.0),
        roic=roic,
        nopat=_billions(nopat),
        gross_margin=_scale(_safe_div(gross_profit, revenue), 100.0),
        operating_margin=_scale(_parse(highlights.get("OperatingMarginTTM")), 100.0),
        net_margin=net_margin,

        current_ratio=current_ratio,
        quick_ratio=quick_ratio,
        debt_to_equity=_safe_div(total_debt, positive_equity),
        debt_to_assets=_safe_div(total_debt, total_assets),
        interest_coverage=interest_coverage,
        total_debt=_billions(total_debt),
        total_equity=_billions(equity),
        total_assets=_billions(total_assets),
        working_capital=_billions(working_capital),

        dividend_yield=dividend_yield,
        dividends_per_share=dps,
        payout_ratio=payout_ratio,

        beta=_parse(technicals.get("Beta")),
        book_value_per_share=_parse(highlights.get("BookValue")),
        tangible_book_value_per_share=tangible_bvps,
        cash_per_share=_safe_div(total_cash, bs_shares),
        earnings_per_share=eps,
        shares_outstanding=shares,

        earnings_growth_5y=compound_annual_growth(inc, "net_income", LONG_RUN_LOOKBACK),
        revenue_growth_5y=compound_annual_growth(inc, "revenue", LONG_RUN_LOOKBACK),

        current_assets=_billions(current_assets),
        current_liabilities=_billions(current_liabilities),
        inventory=_billions(inventory),
        cost_of_goods_sold=_billions(cogs),
    )
    logger.debug(
        "Normalized %s: price=%.2f pe=%s roic=%s peg=%s",
        metrics.symbol, metrics.price, metrics.pe_ratio, metrics.roic, metrics.peg_ratio,
    )
    return metrics
