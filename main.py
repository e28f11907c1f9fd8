#!/usr/bin/env python3
"""legend-ranker: legendary-investor scoring and leaderboards.

Usage:
    python main.py analyze AAPL                       # score, value and rank one company
    python main.py analyze apple "berkshire" --no-save
    python main.py batch --letter A                   # rank every US listing starting with A
    python main.py batch --letter B --exchange US --limit 50
    python main.py leaderboard                        # global top list
    python main.py leaderboard dividends --top 10
    python main.py leaderboard sector-Technology
    python main.py sectors                            # sectors with a leaderboard
"""

import argparse
import asyncio
import json
import sys

from legend_ranker.analysis.scoring import signal_from_score
from legend_ranker.config import SETTINGS
from legend_ranker.exceptions import StoreError
from legend_ranker.models import AnalysisResult, BatchProgress, BatchReport
from legend_ranker.pipeline.engine import AnalysisEngine, BatchController
from legend_ranker.resolver import TickerResolver
from legend_ranker.utils.cache import cache_keys, ttl_for, with_cache
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("main", SETTINGS.get("app", {}).get("log_level", "INFO"))

resolver = TickerResolver()


def _print_analysis(result: AnalysisResult) -> None:
    m, scoring, valuation = result.metrics, result.scoring, result.valuation
    print(f"\n{'='*60}")
    print(f"  {m.name} ({m.symbol})  {m.sector}")
    print(f"  Price: {m.price:.2f}   Overall: {scoring.overall_score} "
          f"({signal_from_score(scoring.overall_score)})   Top: {scoring.top_strategy}")
    print(f"{'='*60}")
    print(f"  {'Strategy':18s} {'Score':>5s} {'Fair value':>11s} {'Upside':>9s}  Signal")
    for score, fv in zip(scoring.strategies, valuation.per_strategy):
        print(f"  {score.name:18s} {score.score:5d} {fv.fair_value:11.2f} {fv.upside:8.1f}%  {fv.signal}")
    print(f"  {'Average':18s} {'':5s} {valuation.average_fair_value:11.2f} {valuation.upside:8.1f}%")


async def _analyze(args) -> None:
    async with AnalysisEngine() as engine:
        for symbol in resolver.resolve_many(args.tickers):
            result = await engine.analyze_company(symbol, persist=False)
            if result is None:
                print(f"No fundamentals available for {symbol}")
                continue
            if args.json:
                print(json.dumps({
                    "metrics": result.metrics.to_dict(),
                    "scoring": result.scoring.to_dict(),
                    "valuation": result.valuation.to_dict(),
                }, indent=2, default=str))
            else:
                _print_analysis(result)
            if not args.no_save:
                try:
                    await engine.aggregator.upsert(result.record)
                except StoreError as e:
                    print(f"  Warning: leaderboard sync failed ({e})")


def cmd_analyze(args):
    """Analyse one or more companies and update the leaderboards."""
    asyncio.run(_analyze(args))


def _print_progress(progress: BatchProgress) -> None:
    print(f"  [{progress.completed}/{progress.total}] {progress.current_symbol}", file=sys.stderr)


def _print_report(report: BatchReport) -> None:
    print(f"\nRankings updated: {report.completed}/{report.total} processed, "
          f"{len(report.ranked)} ranked, {len(report.skipped)} skipped, {len(report.failed)} failed")


async def _batch(args) -> None:
    async with AnalysisEngine() as engine:
        companies = await with_cache(
            cache_keys.exchange_symbols(args.exchange),
            lambda: engine.fundamentals.list_symbols(args.exchange),
            ttl_for("symbols"),
        )
        candidates = [c for c in companies or [] if c.name.upper().startswith(args.letter.upper())]
        if args.limit:
            candidates = candidates[:args.limit]
        if not candidates:
            print(f"No {args.exchange} companies starting with '{args.letter}'")
            return
        controller = BatchController(engine)
        await controller.run(candidates, on_progress=_print_progress, on_complete=_print_report)


def cmd_batch(args):
    """Rank every listing of an exchange whose name starts with a letter."""
    asyncio.run(_batch(args))


async def _leaderboard(args) -> None:
    async with AnalysisEngine() as engine:
        records = await engine.aggregator.load_leaderboard(args.list_id)
    print(f"\n--- {args.list_id} ({len(records)} companies) ---")
    print(f"  {'#':>3s}  {'Symbol':8s} {'Name':30s} {'Score':>5s} {'Yield':>6s} {'Upside':>8s}")
    for i, r in enumerate(records[:args.top], 1):
        dy = f"{r.dividend_yield:.2f}" if r.dividend_yield is not None else "-"
        up = f"{r.upside:.1f}%" if r.upside is not None else "-"
        print(f"  {i:3d}  {r.symbol:8s} {r.name[:30]:30s} {r.overall_score:5d} {dy:>6s} {up:>8s}")


def cmd_leaderboard(args):
    """Show a persisted leaderboard."""
    try:
        asyncio.run(_leaderboard(args))
    except StoreError as e:
        print(f"Could not load leaderboard: {e}")
        sys.exit(1)


async def _sectors() -> list[str]:
    async with AnalysisEngine() as engine:
        return await engine.aggregator.load_sectors()


def cmd_sectors(args):
    """List sectors that have a leaderboard."""
    for slug in asyncio.run(_sectors()):
        print(f"  sector-{slug}")


def main():
    parser = argparse.ArgumentParser(
        description="legend-ranker: legendary-investor scoring and leaderboards",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", help="Commands")

    # analyze
    p = sub.add_parser("analyze", help="Score, value and rank companies")
    p.add_argument("tickers", nargs="+", help="Tickers or company names")
    p.add_argument("--no-save", action="store_true", help="Do not update the leaderboards")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    p.set_defaults(func=cmd_analyze)

    # batch
    p = sub.add_parser("batch", help="Batch-rank an exchange by leading letter")
    p.add_argument("--letter", required=True, help="First letter of the company name")
    p.add_argument("--exchange", default="US", help="Exchange code (default: US)")
    p.add_argument("--limit", type=int, default=0, help="Max candidates (0 = all)")
    p.set_defaults(func=cmd_batch)

    # leaderboard
    p = sub.add_parser("leaderboard", help="Show a leaderboard")
    p.add_argument("list_id", nargs="?", default="top300",
                   help="top300, dividends, upside or sector-<name>")
    p.add_argument("--top", type=int, default=20, help="Rows to show")
    p.set_defaults(func=cmd_leaderboard)

    # sectors
    p = sub.add_parser("sectors", help="List sector leaderboards")
    p.set_defaults(func=cmd_sectors)

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(0)
    args.func(args)


if __name__ == "__main__":
    main()
