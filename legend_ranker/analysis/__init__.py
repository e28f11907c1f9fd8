from .fundamental import normalize_fundamentals
from .scoring import score_all, score_company, signal_from_score
from .valuation import fair_values, signal_from_upside, value_company
from .ranking import LeaderboardSpec, RankingAggregator, build_ranking_record
