"""Shared pytest fixtures for the legend-ranker test suite.

Provides a synthetic provider fundamentals payload, a canonical-metrics
builder and in-memory fakes for the provider clients and the leaderboard
store. All fixtures are independent of external APIs.
"""

import asyncio
import copy

import pytest

from legend_ranker.exceptions import StoreError
from legend_ranker.models import CanonicalMetrics


# ---------------------------------------------------------------------------
# 1. Provider fundamentals payload
# ---------------------------------------------------------------------------

_PAYLOAD = {
    "General": {
        "Code": "ACME",
        "Name": "Acme Corp",
        "Sector": "Industrials",
        "Industry": "Machinery",
        "ISIN": "US0000000001",
    },
    "Highlights": {
        "MarketCapitalization": 50_000_000_000,
        "PERatio": 20.0,
        "PEGRatio": 2.5,
        "EarningsShare": 5.0,
        "BookValue": 45.0,
        "EBITDA": 8_000_000_000,
        "OperatingMarginTTM": 0.18,
        "ProfitMargin": 0.12,
        "QuarterlyRevenueGrowthYOY": 0.05,
        "QuarterlyEarningsGrowthYOY": 0.08,
        "EPSEstimateCurrentYear": 1.0,
        "EPSEstimateNextYear": 1.3,
        "DividendYield": 0.02,
        "DividendShare": 1.5,
    },
    "Valuation": {
        "TrailingPE": 19.0,
        "PriceBookMRQ": 2.2,
        "PriceSalesTTM": 1.6,
        "EnterpriseValue": 55_000_000_000,
        "EnterpriseValueEbitda": 9.0,
    },
    "Technicals": {"Beta": 1.1},
    "SplitsDividends": {
        "ForwardAnnualDividendYield": 0.025,
        "ForwardAnnualDividendRate": 2.0,
    },
    "SharesStats": {"SharesOutstanding": 1_000_000_000},
    "Financials": {
        "Balance_Sheet": {
            "yearly": {
                "2022-12-31": {
                    "totalStockholderEquity": 36e9,
                    "totalAssets": 90e9,
                    "totalCurrentAssets": 26e9,
                    "totalCurrentLiabilities": 14e9,
                    "shortTermDebt": 2e9,
                    "longTermDebt": 9e9,
                    "cash": 4e9,
                    "shortTermInvestments": 1e9,
                    "goodWill": 3e9,
                    "intangibleAssets": 1e9,
                },
                "2023-12-31": {
                    "totalStockholderEquity": 40e9,
                    "totalAssets": 100e9,
                    "totalCurrentAssets": 30e9,
                    "totalCurrentLiabilities": 15e9,
                    "shortTermDebt": 2e9,
                    "longTermDebt": 8e9,
                    "cash": 5e9,
                    "shortTermInvestments": 1e9,
                    "goodWill": 3e9,
                    "intangibleAssets": 1e9,
                    "inventory": 6e9,
                    "commonStockSharesOutstanding": 1e9,
                },
            },
            "quarterly": {
                "2023-09-30": {"inventory": 5.5e9},
                "2023-12-31": {"inventory": 5e9},
            },
        },
        "Income_Statement": {
            "yearly": {
                "2023-12-31": {
                    "totalRevenue": 30e9,
                    "costOfRevenue": 18e9,
                    "grossProfit": 12e9,
                    "operatingIncome": 6e9,
                    "ebit": 6e9,
                    "netIncome": 4.8e9,
                    "interestExpense": 0.5e9,
                },
                "2022-12-31": {"totalRevenue": 27e9, "netIncome": 4.0e9},
                # Provider often ships numbers as strings
                "2021-12-31": {"totalRevenue": "25000000000.00", "netIncome": "3300000000"},
            },
            "quarterly": {
                "2023-12-31": {"costOfRevenue": 4.5e9},
                "2023-09-30": {"costOfRevenue": 4.2e9},
            },
        },
        "Cash_Flow": {
            "yearly": {
                "2023-12-31": {
                    "totalCashFromOperatingActivities": 6e9,
                    "capitalExpenditures": -1.5e9,
                },
            },
        },
    },
}


@pytest.fixture
def sample_payload():
    """Deep copy of a complete fundamentals payload for ``ACME``."""
    return copy.deepcopy(_PAYLOAD)


# ---------------------------------------------------------------------------
# 2. Canonical metrics builder
# ---------------------------------------------------------------------------

@pytest.fixture
def make_metrics():
    """Factory for ``CanonicalMetrics``.

    Defaults describe a healthy, profitable large cap priced at 100 whose
    dynamic fair-value ceiling is exactly 10x price; everything else is null.
    """
    def _build(**overrides):
        base = {
            "symbol": "TEST",
            "name": "Test Holdings",
            "sector": "Technology",
            "price": 100.0,
            "market_cap": 100.0,
            "net_income": 5.0,
            "free_cash_flow": 4.0,
            "operating_margin": 20.0,
            "pe_ratio": 15.0,
            "beta": 1.0,
        }
        base.update(overrides)
        return CanonicalMetrics(**base)
    return _build


# ---------------------------------------------------------------------------
# 3. In-memory collaborators
# ---------------------------------------------------------------------------

class FakeStore:
    """Leaderboard store kept in a dict; yields on every call like real I/O."""

    def __init__(self, lists=None, fail_writes=(), fail_reads=()):
        self.lists = {k: [dict(r) for r in v] for k, v in (lists or {}).items()}
        self.fail_writes = set(fail_writes)
        self.fail_reads = set(fail_reads)
        self.writes = []

    async def read_list(self, path):
        await asyncio.sleep(0)
        if path in self.fail_reads:
            raise StoreError(path, "read failed: HTTP 500")
        return [dict(r) for r in self.lists.get(path, [])]

    async def write_list(self, path, rows):
        await asyncio.sleep(0)
        if path in self.fail_writes:
            raise StoreError(path, "write failed: HTTP 500")
        self.lists[path] = [dict(r) for r in rows]
        self.writes.append(path)

    async def list_sectors(self):
        return sorted(k.split("/", 1)[1] for k in self.lists if k.startswith("sectors/"))

    async def aclose(self):
        pass


class FakeFundamentals:
    def __init__(self, payloads=None):
        self.payloads = payloads or {}
        self.calls = []

    async def get_fundamentals(self, symbol):
        self.calls.append(symbol)
        await asyncio.sleep(0)
        return copy.deepcopy(self.payloads.get(symbol))

    async def list_symbols(self, exchange="US"):
        return []

    async def aclose(self):
        pass


class FakeMarketData:
    def __init__(self, prices=None):
        self.prices = prices or {}
        self.calls = []

    async def get_realtime_price(self, symbol):
        self.calls.append(symbol)
        await asyncio.sleep(0)
        return self.prices.get(symbol)

    async def aclose(self):
        pass


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_store_factory():
    return FakeStore


@pytest.fixture
def fake_fundamentals_factory():
    return FakeFundamentals


@pytest.fixture
def fake_market_factory():
    return FakeMarketData
