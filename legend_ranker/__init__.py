"""legend-ranker: legendary-investor scoring, fair values and leaderboards."""

__version__ = "0.1.0"
