"""Market data client - realtime quotes."""

from __future__ import annotations

from legend_ranker.data_sources.fundamentals import ProviderClient
from legend_ranker.exceptions import ProviderError
from legend_ranker.models import finite_or_none
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("market_data")


class MarketDataClient(ProviderClient):
    """Fetch the latest traded price."""

    async def get_realtime_price(self, symbol: str) -> float | None:
        """Last close (or previous close) for ``symbol``; ``None`` if unknown."""
        try:
            data = await self._get_json(f"real-time/{self._qualified(symbol)}")
        except ProviderError as exc:
            logger.warning("Realtime price failed for %s: %s", symbol, exc)
            return None
        if not isinstance(data, dict):
            return None

        for field in ("close", "previousClose"):
            price = finite_or_none(data.get(field))
            if price:
                return price
        return None
