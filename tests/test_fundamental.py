"""Tests for legend_ranker.analysis.fundamental -- statement frames, CAGR, growth waterfall, PEG, ROIC, normalization."""

import math

import pandas as pd
import pytest

from legend_ranker.analysis.fundamental import (
    _FIELD_ALIASES,
    _extract,
    _safe_div,
    _statement_frame,
    best_earnings_growth,
    compound_annual_growth,
    compute_roic,
    invested_capital,
    normalize_fundamentals,
    peg_ratio,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _frame(**periods):
    """Statement frame from ``period=row`` keywords, e.g. ``y2023={...}``."""
    return _statement_frame({k.lstrip("y") + "-12-31": v for k, v in periods.items()})


# ---------------------------------------------------------------------------
# Tests for low-level helpers
# ---------------------------------------------------------------------------

class TestStatementFrame:

    def test_columns_sorted_most_recent_first(self):
        df = _statement_frame({
            "2021-12-31": {"netIncome": 1},
            "2023-12-31": {"netIncome": 3},
            "2022-12-31": {"netIncome": 2},
        })
        assert list(df.columns) == ["2023-12-31", "2022-12-31", "2021-12-31"]

    def test_numeric_strings_are_parsed(self):
        df = _statement_frame({"2023-12-31": {"netIncome": "1234.5", "currency": "USD"}})
        assert _extract(df, "net_income") == pytest.approx(1234.5)
        assert _extract(df, "currency") is None

    def test_empty_or_malformed_series(self):
        assert _statement_frame(None).empty
        assert _statement_frame({}).empty
        assert _statement_frame({"2023-12-31": "n/a"}).empty


class TestExtract:

    def test_alias_fallback(self):
        df = _frame(y2023={"commonStockTotalEquity": 10.0})
        assert _extract(df, "total_equity") == pytest.approx(10.0)

    def test_first_alias_wins(self):
        df = _frame(y2023={"totalStockholderEquity": 12.0, "commonStockTotalEquity": 10.0})
        assert _extract(df, "total_equity") == pytest.approx(12.0)

    def test_zero_is_a_value(self):
        df = _frame(y2023={"shortTermDebt": 0.0})
        assert _extract(df, "short_term_debt") == 0.0

    def test_missing_field_and_out_of_range_column(self):
        df = _frame(y2023={"netIncome": 1.0})
        assert _extract(df, "revenue") is None
        assert _extract(df, "net_income", 3) is None
        assert _extract(pd.DataFrame(), "net_income") is None
        assert _extract(None, "net_income") is None

    def test_aliases_cover_debt_and_cash(self):
        assert "shortLongTermDebt" in _FIELD_ALIASES["short_term_debt"]
        assert "longTermDebtTotal" in _FIELD_ALIASES["long_term_debt"]
        assert "cashAndEquivalents" in _FIELD_ALIASES["cash"]


class TestSafeDiv:

    def test_normal_division(self):
        assert _safe_div(10.0, 4.0) == pytest.approx(2.5)

    def test_zero_denominator(self):
        assert _safe_div(10.0, 0.0) is None

    def test_none_inputs(self):
        assert _safe_div(None, 2.0) is None
        assert _safe_div(2.0, None) is None


# ---------------------------------------------------------------------------
# Tests for CAGR
# ---------------------------------------------------------------------------

class TestCompoundAnnualGrowth:

    def test_two_year_growth(self):
        df = _frame(y2023={"netIncome": 121.0}, y2022={"netIncome": 110.0}, y2021={"netIncome": 100.0})
        assert compound_annual_growth(df, "net_income", 10) == pytest.approx(10.0)

    def test_lookback_limits_start_period(self):
        df = _frame(y2023={"netIncome": 121.0}, y2022={"netIncome": 110.0}, y2021={"netIncome": 50.0})
        assert compound_annual_growth(df, "net_income", 2) == pytest.approx(10.0)

    def test_single_period_is_none(self):
        df = _frame(y2023={"netIncome": 121.0})
        assert compound_annual_growth(df, "net_income", 5) is None

    def test_non_positive_start_is_none(self):
        df = _frame(y2023={"netIncome": 121.0}, y2022={"netIncome": 0.0})
        assert compound_annual_growth(df, "net_income", 5) is None
        df = _frame(y2023={"netIncome": 121.0}, y2022={"netIncome": -5.0})
        assert compound_annual_growth(df, "net_income", 5) is None

    def test_negative_end_is_none(self):
        df = _frame(y2023={"netIncome": -10.0}, y2022={"netIncome": 100.0})
        assert compound_annual_growth(df, "net_income", 5) is None

    def test_missing_end_is_none(self):
        df = _frame(y2023={"totalRevenue": 5.0}, y2022={"netIncome": 100.0})
        assert compound_annual_growth(df, "net_income", 5) is None

    def test_same_year_periods_is_none(self):
        df = _statement_frame({
            "2023-12-31": {"netIncome": 120.0},
            "2023-06-30": {"netIncome": 100.0},
        })
        assert compound_annual_growth(df, "net_income", 5) is None


# ---------------------------------------------------------------------------
# Tests for growth waterfall and PEG
# ---------------------------------------------------------------------------

class TestBestEarningsGrowth:

    def test_forward_estimates_win(self, sample_payload):
        assert best_earnings_growth(sample_payload) == pytest.approx(30.0)

    def test_out_of_band_forward_falls_to_quarterly(self, sample_payload):
        sample_payload["Highlights"]["EPSEstimateNextYear"] = 3.5
        assert best_earnings_growth(sample_payload) == pytest.approx(8.0)

    def test_falls_to_eps_cagr(self):
        payload = {
            "Highlights": {"QuarterlyEarningsGrowthYOY": 1.8},
            "Financials": {"Income_Statement": {"yearly": {
                "2023-12-31": {"eps": 1.21},
                "2022-12-31": {"eps": 1.10},
                "2021-12-31": {"eps": 1.00},
            }}},
        }
        assert best_earnings_growth(payload) == pytest.approx(10.0)

    def test_nothing_usable(self):
        assert best_earnings_growth({}) is None
        assert best_earnings_growth(None) is None

    def test_zero_current_estimate_skips_forward(self):
        payload = {"Highlights": {
            "EPSEstimateCurrentYear": 0, "EPSEstimateNextYear": 1.0,
            "QuarterlyEarningsGrowthYOY": -0.25,
        }}
        assert best_earnings_growth(payload) == pytest.approx(-25.0)


class TestPegRatio:

    def test_pe_over_growth(self):
        assert peg_ratio(20.0, 30.0, 9.9) == pytest.approx(0.6667, abs=1e-4)

    def test_clamped(self):
        assert peg_ratio(100.0, 1.0, None) == 50.0
        assert peg_ratio(100.0, -1.0, None) == -50.0

    def test_zero_growth_is_none(self):
        assert peg_ratio(20.0, 0.0, 1.2) is None

    def test_provider_fallback(self):
        assert peg_ratio(None, 25.0, 1.2) == pytest.approx(1.2)
        assert peg_ratio(20.0, None, 80.0) == 50.0
        assert peg_ratio(-5.0, 10.0, 1.1) == pytest.approx(1.1)
        assert peg_ratio(None, None, None) is None


# ---------------------------------------------------------------------------
# Tests for ROIC
# ---------------------------------------------------------------------------

class TestRoic:

    def test_average_of_two_periods(self, sample_payload):
        bs = _statement_frame(sample_payload["Financials"]["Balance_Sheet"]["yearly"])
        assert invested_capital(bs, 0) == pytest.approx(64.8e9)
        assert invested_capital(bs, 1) == pytest.approx(59.5e9)
        roic, nopat = compute_roic(bs, 6e9)
        assert nopat == pytest.approx(4.74e9)
        assert roic == pytest.approx(4.74 / 62.15 * 100)

    def test_single_period(self):
        bs = _frame(y2023={"totalStockholderEquity": 100.0})
        roic, _ = compute_roic(bs, 10.0)
        assert roic == pytest.approx(7.9)

    def test_missing_inputs(self):
        bs = _frame(y2023={"totalStockholderEquity": 100.0})
        assert compute_roic(bs, None) == (None, None)
        roic, nopat = compute_roic(_frame(y2023={"totalAssets": 5.0}), 10.0)
        assert roic is None
        assert nopat == pytest.approx(7.9)

    def test_non_positive_capital(self):
        bs = _frame(y2023={"totalStockholderEquity": 10.0, "cash": 100.0})
        roic, _ = compute_roic(bs, 10.0)
        assert roic is None


# ---------------------------------------------------------------------------
# Tests for normalize_fundamentals
# ---------------------------------------------------------------------------

class TestNormalizeFundamentals:

    def test_identity_and_price(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.symbol == "ACME"
        assert m.name == "Acme Corp"
        assert m.sector == "Industrials"
        assert m.industry == "Machinery"
        assert m.isin == "US0000000001"
        assert m.price == 80.0

    def test_monetary_fields_in_billions(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.market_cap == pytest.approx(50.0)
        assert m.revenue == pytest.approx(30.0)
        assert m.net_income == pytest.approx(4.8)
        assert m.operating_income == pytest.approx(6.0)
        assert m.ebitda == pytest.approx(8.0)
        assert m.enterprise_value == pytest.approx(55.0)
        assert m.free_cash_flow == pytest.approx(4.5)
        assert m.total_debt == pytest.approx(10.0)
        assert m.total_equity == pytest.approx(40.0)
        assert m.working_capital == pytest.approx(15.0)
        assert m.nopat == pytest.approx(4.74)

    def test_ratios_and_margins(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.pe_ratio == pytest.approx(20.0)
        assert m.pb_ratio == pytest.approx(2.2)
        assert m.peg_ratio == pytest.approx(20.0 / 30.0)
        assert m.roe == pytest.approx(12.0)
        assert m.roa == pytest.approx(4.8)
        assert m.gross_margin == pytest.approx(40.0)
        assert m.operating_margin == pytest.approx(18.0)
        assert m.net_margin == pytest.approx(12.0)
        assert m.current_ratio == pytest.approx(2.0)
        assert m.quick_ratio == pytest.approx(25.0 / 15.0)
        assert m.debt_to_equity == pytest.approx(0.25)
        assert m.debt_to_assets == pytest.approx(0.1)
        assert m.interest_coverage == pytest.approx(12.0)
        assert m.roic == pytest.approx(4.74 / 62.15 * 100)

    def test_per_share_and_dividends(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.dividend_yield == pytest.approx(2.5)
        assert m.dividends_per_share == pytest.approx(2.0)
        assert m.payout_ratio == pytest.approx(40.0)
        assert m.earnings_per_share == pytest.approx(5.0)
        assert m.book_value_per_share == pytest.approx(45.0)
        assert m.tangible_book_value_per_share == pytest.approx(36.0)
        assert m.cash_per_share == pytest.approx(6.0)
        assert m.shares_outstanding == pytest.approx(1e9)
        assert m.beta == pytest.approx(1.1)

    def test_growth_fields(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.earnings_growth_5y == pytest.approx((math.sqrt(4.8 / 3.3) - 1) * 100)
        assert m.revenue_growth_5y == pytest.approx((math.sqrt(30 / 25) - 1) * 100)
        assert m.revenue_growth == pytest.approx(5.0)
        assert m.net_income_growth == pytest.approx(8.0)

    def test_working_capital_components_from_latest_quarter(self, sample_payload):
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.inventory == pytest.approx(5.0)
        assert m.cost_of_goods_sold == pytest.approx(4.5)
        assert m.current_assets == pytest.approx(30.0)
        assert m.current_liabilities == pytest.approx(15.0)

    def test_empty_payload_degrades_to_nulls(self):
        m = normalize_fundamentals("XYZ", {})
        assert m.symbol == "XYZ"
        assert m.name == "XYZ"
        assert m.sector == "Unknown"
        assert m.price == 0.0
        assert m.pe_ratio is None
        assert m.roic is None
        assert m.debt_to_equity is None
        assert m.earnings_growth_5y is None

    def test_none_payload(self):
        m = normalize_fundamentals("XYZ", None, None)
        assert m.price == 0.0
        assert m.revenue is None

    def test_quarterly_fallback_when_no_yearly(self):
        payload = {"Financials": {"Income_Statement": {"quarterly": {
            "2024-03-31": {"netIncome": 2e9, "totalRevenue": 10e9},
            "2023-12-31": {"netIncome": 1e9, "totalRevenue": 9e9},
        }}}}
        m = normalize_fundamentals("Q", payload, 10.0)
        assert m.net_income == pytest.approx(2.0)
        assert m.revenue == pytest.approx(10.0)

    def test_non_finite_values_become_null(self, sample_payload):
        sample_payload["Highlights"]["PERatio"] = "NaN"
        sample_payload["Valuation"]["TrailingPE"] = "Infinity"
        sample_payload["Technicals"]["Beta"] = "NA"
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.pe_ratio is None
        assert m.beta is None

    def test_zero_debt_is_known(self, sample_payload):
        latest = sample_payload["Financials"]["Balance_Sheet"]["yearly"]["2023-12-31"]
        latest["shortTermDebt"] = 0
        latest["longTermDebt"] = 0
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.debt_to_equity == 0.0
        assert m.total_debt == 0.0

    def test_unknown_debt_stays_null(self, sample_payload):
        latest = sample_payload["Financials"]["Balance_Sheet"]["yearly"]["2023-12-31"]
        del latest["shortTermDebt"]
        del latest["longTermDebt"]
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.debt_to_equity is None
        assert m.total_debt is None

    def test_dividend_yield_fallback_and_absence(self, sample_payload):
        del sample_payload["SplitsDividends"]
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.dividend_yield == pytest.approx(2.0)
        assert m.dividends_per_share == pytest.approx(1.5)

        del sample_payload["Highlights"]["DividendYield"]
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.dividend_yield is None

    def test_share_count_in_millions(self, sample_payload):
        del sample_payload["SharesStats"]
        latest = sample_payload["Financials"]["Balance_Sheet"]["yearly"]["2023-12-31"]
        latest["commonStockSharesOutstanding"] = 500
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.shares_outstanding == pytest.approx(500e6)
        assert m.cash_per_share == pytest.approx(6e9 / 500e6)

    def test_negative_equity_has_no_leverage_ratio(self, sample_payload):
        latest = sample_payload["Financials"]["Balance_Sheet"]["yearly"]["2023-12-31"]
        latest["totalStockholderEquity"] = -5e9
        m = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert m.debt_to_equity is None
        assert m.total_equity == pytest.approx(-5.0)

    def test_is_deterministic(self, sample_payload):
        a = normalize_fundamentals("ACME", sample_payload, 80.0)
        b = normalize_fundamentals("ACME", sample_payload, 80.0)
        assert a == b
