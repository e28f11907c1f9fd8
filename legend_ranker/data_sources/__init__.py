from .fundamentals import FundamentalsClient, ProviderClient
from .market_data import MarketDataClient
from .leaderboard_store import LeaderboardStore
