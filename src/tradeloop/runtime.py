"""Runtime wiring for backtest and live runs."""

from __future__ import annotations

import hashlib
import signal
from collections.abc import Callable
from pathlib import Path
from types import FrameType
from typing import Any
from uuid import uuid4

from tradeloop.adapters.alpaca import AlpacaAdapter
from tradeloop.adapters.base import ExchangeAdapter
from tradeloop.config import Settings
from tradeloop.engine import SHUTDOWN_REASON, Engine, EngineState, RunResult
from tradeloop.feeds.base import EventFeed
from tradeloop.feeds.csv_source import CsvHistoricalSource
from tradeloop.feeds.historical import HistoricalFeed
from tradeloop.feeds.live import LiveFeed
from tradeloop.logging.event_sink import JsonlEventSink, generate_plotly_report
from tradeloop.logging.logger import HumanLogger
from tradeloop.portfolio.ledger import Portfolio
from tradeloop.state.sqlite_store import SqliteStateStore
from tradeloop.state.store import NoopStateStore, StateStore
from tradeloop.strategy_core.registry import create_strategy
from tradeloop.venues.base import Venue
from tradeloop.venues.live import LiveVenue
from tradeloop.venues.pricing import FixedBpsSlippage, PercentageFee, no_fees, no_slippage
from tradeloop.venues.simulated import SimulatedVenue


def run(settings: Settings) -> int:
    """Run one backtest or live session and return a process exit code."""
    strategy = create_strategy(settings.strategy, settings)
    run_id = settings.run_id or default_run_id(settings, strategy.strategy_id)
    run_directory = Path(settings.events_dir) / run_id
    run_directory.mkdir(parents=True, exist_ok=True)
    events_path = run_directory / "events.jsonl"
    if settings.mode == "backtest":
        # a rerun replaces the previous stream instead of appending to it
        events_path.unlink(missing_ok=True)
    report_path = run_directory / "report.html"

    event_sink = JsonlEventSink(events_path)
    human_logger = HumanLogger(level=settings.log_level)
    state_store = build_state_store(settings)
    state_store.record_run(run_id, settings.mode, strategy.strategy_id, settings.symbols)
    human_logger.run_started(run_id, settings.mode, strategy.strategy_id, settings.symbols)

    exit_code = 0
    try:
        adapter = build_adapter(settings) if settings.mode == "live" else None
        feed = build_feed(settings, adapter)
        venue = build_venue(settings, adapter)
        if isinstance(venue, LiveVenue):
            venue.connect()
        engine = Engine(
            feed=feed,
            venue=venue,
            strategy=strategy,
            config=settings.engine_config(run_id),
            portfolio=Portfolio(settings.starting_cash),
            sinks=[event_sink],
            human_logger=human_logger,
        )
        previous_handler = install_stop_handler(engine)
        try:
            result = engine.run()
        finally:
            signal.signal(signal.SIGINT, previous_handler)
        archive_run(state_store, result)
        exit_code = exit_code_for(result)
    except Exception as exc:
        human_logger.error(str(exc))
        state_store.finish_run(run_id, EngineState.HALTED.value, str(exc))
        exit_code = 1
    finally:
        try:
            generate_plotly_report(events_path, report_path)
        finally:
            state_store.close()

    return exit_code


def default_run_id(settings: Settings, strategy_id: str) -> str:
    """Run id used when RUN_ID is unset.

    Backtests derive it from their settings, so rerunning the same backtest
    reproduces its order ids and run directory. Live sessions get a fresh id.
    """
    if settings.mode == "live":
        return uuid4().hex[:10]
    digest = hashlib.sha1(repr(settings).encode("utf-8")).hexdigest()[:10]
    return f"{strategy_id}-{digest}"


def exit_code_for(result: RunResult) -> int:
    if result.state is EngineState.COMPLETED or result.halt_reason == SHUTDOWN_REASON:
        return 0
    return 1


def install_stop_handler(engine: Engine) -> Callable[..., Any] | int | None:
    """Route SIGINT to a cooperative engine stop; return the previous handler."""

    def _handle(signum: int, frame: FrameType | None) -> None:
        _ = (signum, frame)
        engine.stop()

    return signal.signal(signal.SIGINT, _handle)


def archive_run(state_store: StateStore, result: RunResult) -> None:
    for order in result.orders:
        state_store.save_order(result.run_id, order)
    for fill in result.fills:
        state_store.save_fill(result.run_id, fill)
    state_store.finish_run(result.run_id, result.state.value, result.halt_reason)


def build_state_store(settings: Settings) -> StateStore:
    if settings.mode == "live" or settings.archive_backtest:
        return SqliteStateStore(settings.state_db_path)
    return NoopStateStore()


def build_adapter(settings: Settings) -> ExchangeAdapter:
    settings.validate_live_credentials()
    return AlpacaAdapter(
        api_key=settings.alpaca_api_key,
        secret_key=settings.alpaca_secret_key,
        base_url=settings.alpaca_base_url,
        data_url=settings.alpaca_data_url,
        instruments=settings.symbols,
        poll_interval_seconds=settings.alpaca_poll_seconds,
    )


def build_feed(settings: Settings, adapter: ExchangeAdapter | None = None) -> EventFeed:
    if settings.mode == "live":
        if adapter is None:
            raise ValueError("live feed requires an exchange adapter")
        return LiveFeed(adapter, settings.symbols)
    return HistoricalFeed(
        CsvHistoricalSource(settings.historical_data_dir),
        settings.symbols,
        start=settings.start,
        end=settings.end,
    )


def build_venue(settings: Settings, adapter: ExchangeAdapter | None = None) -> Venue:
    if settings.mode == "live":
        if adapter is None:
            raise ValueError("live venue requires an exchange adapter")
        return LiveVenue(adapter, ack_timeout=settings.ack_timeout_seconds)
    slippage = FixedBpsSlippage(settings.slippage_bps) if settings.slippage_bps else no_slippage
    fees = PercentageFee(settings.fee_rate) if settings.fee_rate else no_fees
    return SimulatedVenue(slippage=slippage, fees=fees)
