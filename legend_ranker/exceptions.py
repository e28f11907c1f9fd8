"""Exception hierarchy for legend-ranker."""


class LegendRankerError(Exception):
    """Base class for errors raised by this package."""


class ProviderError(LegendRankerError):
    """Market-data provider request failed (transport or payload)."""


class StoreError(LegendRankerError):
    """Leaderboard store read or write failed."""

    def __init__(self, list_id: str, message: str):
        super().__init__(f"{list_id}: {message}")
        self.list_id = list_id
