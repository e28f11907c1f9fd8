"""Ranking aggregator - the four persisted leaderboards.

Every analysed company is upserted into:
  * ``top300``            overall score, cap 300
  * ``sectors/<slug>``    overall score within the sector, cap 30
  * ``dividends``         dividend yield in (0, 25], cap 300
  * ``upside``            upside percent when known, cap 300

An upsert is read -> drop same ticker -> put the new record first -> drop
repeated company names (first kept) -> sort descending -> truncate -> write.
Read-modify-write cycles on the same list are serialized per process.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from legend_ranker.config import setting
from legend_ranker.data_sources.leaderboard_store import LeaderboardStore
from legend_ranker.exceptions import StoreError
from legend_ranker.models import (
    CanonicalMetrics,
    FairValueSummary,
    RankingRecord,
    ScoringSummary,
)
from legend_ranker.resolver import dedupe_by_name, sector_slug
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("ranking")

GLOBAL_LIST = "top300"
DIVIDEND_LIST = "dividends"
UPSIDE_LIST = "upside"
SECTOR_PREFIX = "sector-"


def _by_score(record: RankingRecord) -> float:
    return float(record.overall_score)


def _by_dividend_yield(record: RankingRecord) -> float:
    return record.dividend_yield or 0.0


def _by_upside(record: RankingRecord) -> float:
    return record.upside or 0.0


def _accept_all(record: RankingRecord) -> bool:
    return True


@dataclass(frozen=True)
class LeaderboardSpec:
    """Store path, ordering, size cap and admission rule of one leaderboard."""

    path: str
    sort_key: Callable[[RankingRecord], float]
    cap: int
    accepts: Callable[[RankingRecord], bool] = _accept_all


def build_ranking_record(
    metrics: CanonicalMetrics,
    scoring: ScoringSummary,
    valuation: FairValueSummary,
    analysis_date: Optional[str] = None,
) -> RankingRecord:
    """Assemble the persisted row for one analysed company."""
    return RankingRecord(
        symbol=metrics.symbol,
        name=metrics.name,
        sector=metrics.sector,
        industry=metrics.industry,
        isin=metrics.isin,
        overall_score=scoring.overall_score,
        top_strategy=scoring.top_strategy,
        analysis_date=analysis_date or datetime.now(timezone.utc).isoformat(),
        current_price=metrics.price,
        average_fair_value=valuation.average_fair_value,
        upside=valuation.upside,
        dividend_yield=metrics.dividend_yield,
    )


class RankingAggregator:
    """Sole writer of the persisted leaderboards."""

    def __init__(
        self,
        store: LeaderboardStore | None = None,
        global_cap: int | None = None,
        sector_cap: int | None = None,
        dividend_cap: int | None = None,
        upside_cap: int | None = None,
        dividend_max_yield: float | None = None,
    ):
        self.store = store or LeaderboardStore()
        self.global_cap = global_cap or setting("leaderboards", "global_cap", 300)
        self.sector_cap = sector_cap or setting("leaderboards", "sector_cap", 30)
        self.dividend_cap = dividend_cap or setting("leaderboards", "dividend_cap", 300)
        self.upside_cap = upside_cap or setting("leaderboards", "upside_cap", 300)
        self.dividend_max_yield = dividend_max_yield or setting("leaderboards", "dividend_max_yield", 25)
        self._locks: dict[str, asyncio.Lock] = {}

    # -- leaderboard definitions -----------------------------------------

    def _dividend_ok(self, record: RankingRecord) -> bool:
        y = record.dividend_yield
        return y is not None and 0 < y <= self.dividend_max_yield

    def global_spec(self) -> LeaderboardSpec:
        return LeaderboardSpec(GLOBAL_LIST, _by_score, self.global_cap)

    def sector_spec(self, sector: str) -> LeaderboardSpec:
        return LeaderboardSpec(f"sectors/{sector_slug(sector)}", _by_score, self.sector_cap)

    def dividend_spec(self) -> LeaderboardSpec:
        return LeaderboardSpec(DIVIDEND_LIST, _by_dividend_yield, self.dividend_cap, self._dividend_ok)

    def upside_spec(self) -> LeaderboardSpec:
        return LeaderboardSpec(
            UPSIDE_LIST, _by_upside, self.upside_cap, lambda r: r.upside is not None,
        )

    def spec_for(self, list_id: str) -> LeaderboardSpec:
        """Leaderboard addressed as ``top300``, ``dividends``, ``upside`` or ``sector-<name>``."""
        if list_id == DIVIDEND_LIST:
            return self.dividend_spec()
        if list_id == UPSIDE_LIST:
            return self.upside_spec()
        if list_id.startswith(SECTOR_PREFIX):
            return self.sector_spec(list_id[len(SECTOR_PREFIX):])
        return self.global_spec()

    def specs_for(self, record: RankingRecord) -> list[LeaderboardSpec]:
        """The leaderboards ``record`` qualifies for."""
        specs = [self.global_spec(), self.sector_spec(record.sector)]
        for spec in (self.dividend_spec(), self.upside_spec()):
            if spec.accepts(record):
                specs.append(spec)
        return specs

    def _lock(self, path: str) -> asyncio.Lock:
        if path not in self._locks:
            self._locks[path] = asyncio.Lock()
        return self._locks[path]

    # -- writes ------------------------------------------------------------

    async def upsert_list(self, spec: LeaderboardSpec, record: RankingRecord) -> list[RankingRecord]:
        """Read-modify-write one leaderboard; returns the rows written.

        Raises:
            StoreError: the read or the write failed.
        """
        async with self._lock(spec.path):
            rows = await self.store.read_list(spec.path)
            symbol = record.symbol.upper()
            existing = [
                r for r in (RankingRecord.from_dict(row) for row in rows)
                if r is not None and r.symbol.upper() != symbol and spec.accepts(r)
            ]
            merged = dedupe_by_name([record, *existing], lambda r: r.name)
            merged.sort(key=spec.sort_key, reverse=True)
            merged = merged[:spec.cap]
            await self.store.write_list(spec.path, [r.to_dict() for r in merged])
        logger.debug("Upserted %s into %s (%d rows)", record.symbol, spec.path, len(merged))
        return merged

    async def upsert(self, record: RankingRecord) -> list[str]:
        """Upsert ``record`` into every qualifying leaderboard concurrently.

        All leaderboards are attempted; the first failure is re-raised after
        the others settle.

        Returns:
            Store paths written.

        Raises:
            StoreError: at least one leaderboard could not be updated.
        """
        specs = self.specs_for(record)
        outcomes = await asyncio.gather(
            *(self.upsert_list(spec, record) for spec in specs), return_exceptions=True,
        )
        written, first_error = [], None
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Leaderboard %s not updated for %s: %s", spec.path, record.symbol, outcome)
                if first_error is None:
                    first_error = outcome
            else:
                written.append(spec.path)
        if first_error is not None:
            if isinstance(first_error, StoreError):
                raise first_error
            raise StoreError(record.symbol, str(first_error)) from first_error
        logger.info("Ranked %s (score %d) into %s", record.symbol, record.overall_score, ", ".join(written))
        return written

    # -- reads ---------------------------------------------------------------

    async def load_leaderboard(self, list_id: str = GLOBAL_LIST) -> list[RankingRecord]:
        """Well-formed rows of a leaderboard, sorted by its key.

        Raises:
            StoreError: the store could not be read.
        """
        spec = self.spec_for(list_id)
        rows = await self.store.read_list(spec.path)
        records = [r for r in (RankingRecord.from_dict(row) for row in rows) if r is not None]
        records.sort(key=spec.sort_key, reverse=True)
        return records

    async def load_sectors(self) -> list[str]:
        return await self.store.list_sectors()
