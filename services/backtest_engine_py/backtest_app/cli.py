"""
Command line entry point: fetch a date range, run the backtest and
print the summary.

    keltner-backtest --asset BTC --currency USDC \
        --start-date 2023-08-01 --end-date 2024-08-02

Connection settings come from the environment (``BINANCE_BASE_URL``,
``BINANCE_API_KEY`` ...); run parameters from the flags below, falling
back to ``BACKTEST_*`` environment variables.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from backtest_core import (
    STRATEGIES,
    AdapterFailure,
    ApiConfig,
    BacktestConfig,
    UnknownStrategy,
    run_backtest,
    to_utc_millis,
)

logger = logging.getLogger("backtest_cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="keltner-backtest",
        description="Backtest a signal strategy against historical candles.",
    )
    p.add_argument("--asset", default="BTC")
    p.add_argument("--currency", default="USDC")
    p.add_argument("--start-date", default="2023-08-01", help="YYYY-MM-DD (UTC)")
    p.add_argument("--start-time", default="00:00", help="HH:MM (UTC)")
    p.add_argument("--end-date", default="2024-08-02", help="YYYY-MM-DD (UTC)")
    p.add_argument("--end-time", default="00:00", help="HH:MM (UTC)")
    p.add_argument("--strategy", choices=STRATEGIES, default=None)
    p.add_argument("--candle-size", type=int, default=None, help="bar size in minutes")
    p.add_argument(
        "--full-recompute",
        action="store_true",
        help="re-evaluate indicators over the whole prefix at every bar",
    )
    p.add_argument("--json", action="store_true", help="print the report as JSON")
    return p


def _config_from_args(args: argparse.Namespace) -> BacktestConfig:
    base = BacktestConfig.from_env()
    updates = {"incremental": not args.full_recompute}
    if args.strategy:
        updates["strategy"] = args.strategy
    if args.candle_size:
        updates["candle_size"] = args.candle_size
    return BacktestConfig(**{**base.model_dump(), **updates})


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("BACKTEST_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    args = build_parser().parse_args(argv)
    try:
        config = _config_from_args(args)
    except UnknownStrategy as e:
        logger.error("%s", e)
        return 2

    start_ts = to_utc_millis(args.start_date, args.start_time)
    end_ts = to_utc_millis(args.end_date, args.end_time)
    try:
        report = asyncio.run(
            run_backtest(args.asset, args.currency, start_ts, end_ts, config, ApiConfig.from_env())
        )
    except AdapterFailure as e:
        logger.error("Error fetching historical data: %s", e)
        return 1
    if report is None:
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print("\n".join(report.summary_lines()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
