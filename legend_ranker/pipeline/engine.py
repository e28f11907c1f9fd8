"""Analysis pipeline: single-company analysis and the batch controller.

``AnalysisEngine`` fetches fundamentals and price (cache-wrapped, in
parallel), normalizes, scores, values and ranks one company.
``BatchController`` drives a deduplicated candidate list through the engine
in fixed-size, sequential batches with staggered starts inside each batch.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from legend_ranker.analysis.fundamental import normalize_fundamentals
from legend_ranker.analysis.ranking import RankingAggregator, build_ranking_record
from legend_ranker.analysis.scoring import score_company
from legend_ranker.analysis.valuation import value_company
from legend_ranker.config import setting
from legend_ranker.data_sources.fundamentals import FundamentalsClient
from legend_ranker.data_sources.market_data import MarketDataClient
from legend_ranker.models import AnalysisResult, BatchProgress, BatchReport, Company
from legend_ranker.resolver import dedupe_by_name
from legend_ranker.utils.cache import DataCache, cache_keys, data_cache, ttl_for, with_cache
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("pipeline")

ProgressCallback = Callable[[BatchProgress], None]
CompletionCallback = Callable[[BatchReport], None]
SleepFn = Callable[[float], Awaitable[Any]]

# Per-candidate outcomes
RANKED = "ranked"
SKIPPED = "skipped"
NO_DATA = "no_data"


class AnalysisEngine:
    """Fetch -> normalize -> score -> value -> rank for one company."""

    def __init__(
        self,
        fundamentals: FundamentalsClient | None = None,
        market_data: MarketDataClient | None = None,
        aggregator: RankingAggregator | None = None,
        cache: DataCache | None = None,
        fundamentals_ttl: float | None = None,
        price_ttl: float | None = None,
    ):
        self.fundamentals = fundamentals or FundamentalsClient()
        self.market_data = market_data or MarketDataClient()
        self.aggregator = aggregator or RankingAggregator()
        self.cache = cache if cache is not None else data_cache
        self.fundamentals_ttl = fundamentals_ttl if fundamentals_ttl is not None else ttl_for("fundamentals")
        self.price_ttl = price_ttl if price_ttl is not None else ttl_for("price")

    async def aclose(self) -> None:
        await asyncio.gather(
            self.fundamentals.aclose(),
            self.market_data.aclose(),
            self.aggregator.store.aclose(),
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def fetch_inputs(self, symbol: str) -> tuple[Optional[dict], Optional[float]]:
        """Fundamentals payload and realtime price, fetched concurrently."""
        payload, price = await asyncio.gather(
            with_cache(
                cache_keys.fundamentals(symbol),
                lambda: self.fundamentals.get_fundamentals(symbol),
                self.fundamentals_ttl,
                self.cache,
            ),
            with_cache(
                cache_keys.realtime_price(symbol),
                lambda: self.market_data.get_realtime_price(symbol),
                self.price_ttl,
                self.cache,
            ),
        )
        return payload, price

    def evaluate(
        self,
        symbol: str,
        payload: dict,
        price: Optional[float],
        company: Company | None = None,
    ) -> AnalysisResult:
        """Pure part of the pipeline; no I/O."""
        metrics = normalize_fundamentals(symbol, payload, price)
        if company is not None:
            # Listing data fills what the fundamentals payload left out
            general = payload.get("General") or {}
            metrics.symbol = company.symbol
            if not general.get("Name"):
                metrics.name = company.name
            if not general.get("Sector") and company.sector:
                metrics.sector = company.sector
            if metrics.industry is None:
                metrics.industry = company.industry

        scoring = score_company(metrics)
        valuation = value_company(metrics)
        record = build_ranking_record(metrics, scoring, valuation)
        return AnalysisResult(metrics=metrics, scoring=scoring, valuation=valuation, record=record)

    async def analyze_company(self, symbol: str, persist: bool = True) -> AnalysisResult | None:
        """Full analysis of one symbol; ``None`` when no fundamentals exist.

        Raises:
            StoreError: the leaderboards could not be updated.
        """
        payload, price = await self.fetch_inputs(symbol)
        if not payload:
            logger.info("No fundamentals for %s", symbol)
            return None

        result = self.evaluate(symbol, payload, price)
        logger.info(
            "Analyzed %s: score=%d top=%s fair=%.2f upside=%.1f%%",
            symbol, result.scoring.overall_score, result.scoring.top_strategy,
            result.valuation.average_fair_value, result.valuation.upside,
        )
        if persist:
            await self.aggregator.upsert(result.record)
        return result

    async def rank_candidate(self, company: Company, min_price: float) -> str:
        """Analyse and rank one batch candidate.

        Returns:
            ``RANKED``, ``SKIPPED`` (priced under ``min_price``) or
            ``NO_DATA`` (no fundamentals).

        Raises:
            StoreError: the leaderboards could not be updated.
        """
        payload, price = await self.fetch_inputs(company.symbol)
        if not payload:
            logger.debug("No fundamentals for %s", company.symbol)
            return NO_DATA

        result = self.evaluate(company.symbol, payload, price, company)
        if result.metrics.price < min_price:
            logger.debug("Skipping %s: price %.2f below %.2f", company.symbol, result.metrics.price, min_price)
            return SKIPPED

        await self.aggregator.upsert(result.record)
        return RANKED


class BatchController:
    """Run candidates through an ``AnalysisEngine`` in paced batches.

    Every deduplicated candidate is processed exactly once. Per-item failures
    (missing data, store errors, any exception) are logged and counted as
    completed; the completion callback always fires.
    """

    def __init__(
        self,
        engine: AnalysisEngine | None = None,
        batch_size: int | None = None,
        item_delay: float | None = None,
        batch_delay: float | None = None,
        min_price: float | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.engine = engine or AnalysisEngine()
        self.batch_size = batch_size or setting("batch", "size", 5)
        self.item_delay = item_delay if item_delay is not None else setting("batch", "item_delay_ms", 500) / 1000
        self.batch_delay = batch_delay if batch_delay is not None else setting("batch", "batch_delay_ms", 2000) / 1000
        self.min_price = min_price if min_price is not None else setting("batch", "min_price", 1.0)
        self._sleep = sleep

    def batches(self, candidates: list[Company]) -> list[list[Company]]:
        unique = dedupe_by_name(candidates, lambda c: c.name)
        return [unique[i:i + self.batch_size] for i in range(0, len(unique), self.batch_size)]

    async def run(
        self,
        candidates: list[Company],
        on_progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> BatchReport:
        batches = self.batches(candidates)
        report = BatchReport(total=sum(len(b) for b in batches))
        logger.info(
            "Batch run started: %d candidates (%d unique) in %d batches",
            len(candidates), report.total, len(batches),
        )
        try:
            for n, batch in enumerate(batches, 1):
                logger.info("Batch %d/%d: %s", n, len(batches), ", ".join(c.symbol for c in batch))
                await asyncio.gather(
                    *(self._process(company, idx, report, on_progress) for idx, company in enumerate(batch)),
                    return_exceptions=True,
                )
                if n < len(batches):
                    await self._sleep(self.batch_delay)
        finally:
            logger.info(
                "Batch run finished: %d/%d completed, %d ranked, %d skipped, %d failed",
                report.completed, report.total, len(report.ranked), len(report.skipped), len(report.failed),
            )
            if on_complete is not None:
                on_complete(report)
        return report

    async def _process(
        self,
        company: Company,
        index: int,
        report: BatchReport,
        on_progress: ProgressCallback | None,
    ) -> None:
        try:
            if index:
                await self._sleep(index * self.item_delay)
            _notify(on_progress, BatchProgress(report.completed, report.total, company.symbol))
            outcome = await self.engine.rank_candidate(company, self.min_price)
            if outcome == RANKED:
                report.ranked.append(company.symbol)
            else:
                report.skipped.append(company.symbol)
        except Exception as exc:
            logger.warning("Batch item %s failed: %s", company.symbol, exc)
            report.failed.append(company.symbol)
        finally:
            report.completed += 1
            _notify(on_progress, BatchProgress(report.completed, report.total, company.symbol))


def _notify(callback: ProgressCallback | None, progress: BatchProgress) -> None:
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as exc:
        logger.warning("Progress callback failed: %s", exc)
