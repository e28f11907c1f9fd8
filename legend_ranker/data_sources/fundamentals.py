"""Fundamental data client - exchange symbol lists and fundamentals payloads.

Provider: EODHD-style REST API. Transport failures never reach callers:
a 404 means "no data" and any other failure is logged and returned as
``None`` / ``[]``.
"""

from __future__ import annotations

from typing import Any

import httpx

from legend_ranker.config import Endpoints, Keys, setting
from legend_ranker.exceptions import ProviderError
from legend_ranker.models import Company
from legend_ranker.utils.logger import setup_logger
from legend_ranker.utils.rate_limiter import RateLimiter

logger = setup_logger("fundamentals")


class ProviderClient:
    """Shared HTTP plumbing for the market-data provider endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        exchange_suffix: str | None = None,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
    ):
        self.api_key = api_key if api_key is not None else Keys.EODHD
        self.base_url = (base_url or Endpoints.PROVIDER).rstrip("/")
        self.exchange_suffix = exchange_suffix or setting("provider", "exchange_suffix", "US")
        self._client = client or httpx.AsyncClient(timeout=setting("provider", "timeout_seconds", 30))
        self._limiter = limiter or RateLimiter(setting("provider", "calls_per_minute", 900))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _qualified(self, symbol: str) -> str:
        """``AAPL`` -> ``AAPL.US``; symbols that already carry a suffix pass through."""
        return symbol if "." in symbol else f"{symbol}.{self.exchange_suffix}"

    async def _get_json(self, path: str) -> Any | None:
        """GET ``path`` and decode JSON; ``None`` on 404.

        Raises:
            ProviderError: on any other HTTP status, transport error or
                undecodable body.
        """
        await self._limiter.wait()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = await self._client.get(url, params={"api_token": self.api_key, "fmt": "json"})
        except httpx.HTTPError as exc:
            raise ProviderError(f"{path}: {exc}") from exc
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise ProviderError(f"{path}: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"{path}: invalid JSON") from exc


class FundamentalsClient(ProviderClient):
    """Fetch exchange listings and raw fundamentals payloads."""

    async def list_symbols(self, exchange: str = "US") -> list[Company]:
        """List the instruments traded on ``exchange``."""
        try:
            data = await self._get_json(f"exchange-symbol-list/{exchange}")
        except ProviderError as exc:
            logger.warning("Symbol list failed for %s: %s", exchange, exc)
            return []
        if not isinstance(data, list):
            return []

        companies = []
        for row in data:
            if not isinstance(row, dict) or not row.get("Code") or not row.get("Name"):
                continue
            companies.append(Company(
                symbol=str(row["Code"]),
                name=str(row["Name"]),
                exchange=str(row.get("Exchange") or exchange),
                isin=row.get("Isin") or row.get("ISIN"),
                country=row.get("Country"),
            ))
        logger.info("Listed %d symbols on %s", len(companies), exchange)
        return companies

    async def get_fundamentals(self, symbol: str) -> dict | None:
        """Raw nested fundamentals payload, or ``None`` when unavailable."""
        logger.info("Fetching fundamentals: %s", symbol)
        try:
            data = await self._get_json(f"fundamentals/{self._qualified(symbol)}")
        except ProviderError as exc:
            logger.warning("Fundamentals fetch failed for %s: %s", symbol, exc)
            return None
        if not isinstance(data, dict) or not data:
            return None
        return data
