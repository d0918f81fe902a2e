"""
candlebt - command line backtests against live market history.

Usage:
    candlebt --asset BTC --timeframe 4h --strategy btc-spot --start 2024-01-01
    candlebt --asset ETH --strategy supertrend --roi-sweep 0.5 3 0.25
    python -m candlebt.main --list-strategies

Configuration:
    Runtime knobs (retry policy, cache, fees, sizing) come from environment
    variables or a .env file, see config/settings.py.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from pydantic import ValidationError

from config.logging_config import get_logger, setup_logging_from_settings
from config.settings import get_settings
from candlebt.backtest.roi_sweep import RoiSweepResult, roi_range
from candlebt.backtest.service import BacktestRequest, BacktestService
from candlebt.market.errors import AssemblyError, FetchError
from candlebt.strategy.registry import default_registry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="candlebt",
        description="Backtest a registered strategy over historical candles.",
    )
    parser.add_argument("--asset", default="BTC", help="Base asset or full pair (default: BTC)")
    parser.add_argument("--timeframe", default="1h", help="Candle interval, e.g. 15m, 4h, 1d (default: 1h)")
    parser.add_argument("--strategy", default="rsi", help="Registered strategy name (default: rsi)")
    parser.add_argument("--start", help="Range start, ISO-8601 (default: 30 days before end)")
    parser.add_argument("--end", help="Range end, ISO-8601 (default: now)")
    parser.add_argument("--target-roi", type=float, help="Minimum target in percent above entry")
    parser.add_argument(
        "--roi-sweep",
        nargs=3,
        type=float,
        metavar=("MIN", "MAX", "STEP"),
        help="Rerun with every target ROI from MIN to MAX percent and compare compounded PnL",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--list-strategies", action="store_true", help="List strategy names and exit")
    return parser


async def run(args: argparse.Namespace) -> int:
    logger = get_logger(__name__)
    service = BacktestService.from_settings(get_settings())
    request = BacktestRequest(
        asset=args.asset,
        timeframe=args.timeframe,
        strategy=args.strategy,
        start_date=args.start,
        end_date=args.end,
        target_roi_percent=args.target_roi,
    )
    try:
        if args.roi_sweep:
            sweep = await service.run_roi_sweep(request, roi_range(*args.roi_sweep))
        else:
            report = await service.run_backtest(request)
    except (FetchError, AssemblyError) as e:
        logger.error("backtest_failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        # Unknown strategy, timeframe, date format or ROI range
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await service.aclose()

    if args.roi_sweep:
        if args.json:
            print(json.dumps([row.to_dict() for row in sweep], indent=2))
        else:
            print(format_sweep(sweep))
    elif args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.summary())
    return 0


def format_sweep(rows: Sequence[RoiSweepResult]) -> str:
    lines = [f"{'target %':>9} {'trades':>7} {'won/lost':>9} {'win %':>6} {'compounded %':>13}"]
    for row in rows:
        lines.append(
            f"{row.target_roi_percent:>9.2f} {row.total_trades:>7} "
            f"{f'{row.winning_trades}/{row.losing_trades}':>9} {row.win_rate:>6.1f} "
            f"{row.compounded_pnl_percent:>13.2f}"
        )
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the backtest CLI.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = build_parser().parse_args(argv)

    if args.list_strategies:
        for name in default_registry().names():
            print(name)
        return 0

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 1

    setup_logging_from_settings(settings)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
