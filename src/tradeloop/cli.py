"""Command-line interface for the tradeloop runtime."""

from __future__ import annotations

import argparse
import sys

from tradeloop.config import Settings, parse_optional_datetime, parse_symbols
from tradeloop.runtime import run
from tradeloop.strategy_core.registry import available_strategy_ids, default_strategy_id


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description="Run a strategy as a backtest or live")
    parser.add_argument("--mode", choices=["backtest", "live"], help="Runtime mode")
    parser.add_argument("--strategy", type=str, help="Strategy id")
    parser.add_argument("--symbols", type=str, help="Comma-separated instruments")
    parser.add_argument("--start", type=str, help="Backtest start (ISO-8601)")
    parser.add_argument("--end", type=str, help="Backtest end (ISO-8601)")
    parser.add_argument("--run-id", type=str, help="Run id; also prefixes order ids")
    parser.add_argument("--historical-dir", type=str, help="CSV historical data directory")
    parser.add_argument("--state-db", type=str, help="SQLite archive path")
    parser.add_argument("--events-dir", type=str, help="Run outputs directory")
    parser.add_argument("--starting-cash", type=float, help="Starting cash for the portfolio")
    parser.add_argument(
        "--archive",
        action="store_true",
        help="Archive backtest orders and fills to the SQLite database",
    )
    parser.add_argument(
        "--list-strategies",
        action="store_true",
        help="Print available strategy ids, then exit",
    )
    return parser


def apply_cli_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI values onto environment-derived settings."""
    overrides: dict[str, object] = {}
    if args.mode:
        overrides["mode"] = args.mode
    if args.strategy:
        overrides["strategy"] = args.strategy
    if args.symbols:
        overrides["symbols"] = parse_symbols(args.symbols, settings.symbols)
    if args.start:
        overrides["start"] = parse_optional_datetime(args.start, field_name="start")
    if args.end:
        overrides["end"] = parse_optional_datetime(args.end, field_name="end")
    if args.run_id:
        overrides["run_id"] = args.run_id
    if args.historical_dir:
        overrides["historical_data_dir"] = args.historical_dir
    if args.state_db:
        overrides["state_db_path"] = args.state_db
    if args.events_dir:
        overrides["events_dir"] = args.events_dir
    if args.starting_cash is not None:
        overrides["starting_cash"] = args.starting_cash
    if args.archive:
        overrides["archive_backtest"] = True

    merged = settings.with_overrides(**overrides)
    if not merged.strategy.strip():
        merged = merged.with_overrides(strategy=default_strategy_id())
    if merged.strategy not in available_strategy_ids():
        supported = ", ".join(available_strategy_ids())
        raise ValueError(f"Unknown strategy '{merged.strategy}'. Supported: {supported}")
    if merged.mode == "live":
        merged.validate_live_credentials()
    return merged


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.list_strategies:
        for strategy_id in available_strategy_ids():
            print(strategy_id)
        return 0
    try:
        settings = apply_cli_overrides(Settings.from_env(), args)
    except ValueError as exc:
        print(f"Configuration error: {exc}")
        return 2
    return run(settings)


if __name__ == "__main__":
    sys.exit(main())
