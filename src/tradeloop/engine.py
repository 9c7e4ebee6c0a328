"""Event loop that drives feed, strategy, risk ledger, venue and portfolio."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from tradeloop.domain.events import TradeEvent
from tradeloop.domain.models import (
    QTY_EPSILON,
    CancelRequest,
    CancelResult,
    Fill,
    MarketEvent,
    Mode,
    Order,
    OrderIntent,
    OrderRequest,
    OrderStatus,
    OrderUpdate,
    PortfolioSnapshot,
    Rejection,
    RiskLimits,
    VenueUpdate,
)
from tradeloop.errors import (
    FeedGapError,
    OrderRejected,
    ReconciliationConflict,
    StrategyError,
    VenueError,
    VenueUnavailableError,
)
from tradeloop.feeds.base import END_OF_STREAM, EventFeed
from tradeloop.logging.event_sink import EventSink
from tradeloop.logging.logger import HumanLogger
from tradeloop.portfolio.ledger import Portfolio
from tradeloop.portfolio.risk import RiskLedger
from tradeloop.strategy_core.base import Strategy
from tradeloop.venues.base import Venue

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "shutdown requested"


class EngineState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED = "halted"


@dataclass(frozen=True)
class EngineConfig:
    """Per-run engine policy. Immutable once the run starts."""

    run_id: str = field(default_factory=lambda: uuid4().hex[:10])
    mode: Mode = "backtest"
    risk_limits: RiskLimits = field(default_factory=RiskLimits)
    max_venue_rejections: int = 25
    halt_on_feed_gap: bool = True
    max_reconnect_attempts: int = 5
    reconnect_backoff_seconds: float = 0.5
    reconnect_backoff_max_seconds: float = 30.0
    emit_market_events: bool = False
    idle_timeout_seconds: float = 0.25


@dataclass(frozen=True)
class RunResult:
    """Archived outcome of one run."""

    run_id: str
    state: EngineState
    halt_reason: str | None
    orders: tuple[Order, ...]
    fills: tuple[Fill, ...]
    portfolio: PortfolioSnapshot
    rejections: tuple[Rejection, ...] = ()
    data_quality_flags: tuple[str, ...] = ()
    events_processed: int = 0

    @property
    def completed(self) -> bool:
        return self.state is EngineState.COMPLETED


class _Halt(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class Engine:
    """Run one strategy against one feed and one venue.

    The same loop serves backtests and live trading; only the feed and venue
    differ. For each event the venue sees the event first, fills it produced
    are applied to the portfolio, and only then is the strategy called, so a
    strategy never observes an event before the fills it caused. Intents go
    through the risk ledger before they reach the venue, and fills produced
    by submissions are applied before the next event is pulled.
    """

    def __init__(
        self,
        feed: EventFeed,
        venue: Venue,
        strategy: Strategy,
        config: EngineConfig | None = None,
        portfolio: Portfolio | None = None,
        sinks: Sequence[EventSink] = (),
        human_logger: HumanLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.feed = feed
        self.venue = venue
        self.strategy = strategy
        self.config = config or EngineConfig()
        self.portfolio = portfolio or Portfolio()
        self.sinks = list(sinks)
        self.human_logger = human_logger
        self.state = EngineState.IDLE
        self.halt_reason: str | None = None
        self.strategy_id = str(getattr(strategy, "strategy_id", type(strategy).__name__))
        self._sleep = sleep
        self._risk = RiskLedger(self.config.risk_limits)
        self._orders: dict[str, Order] = {}
        self._fills: list[Fill] = []
        self._rejections: list[Rejection] = []
        self._data_quality_flags: list[str] = []
        self._venue_rejections = 0
        self._order_counter = 0
        self._report_seq = 0
        self._events_processed = 0
        self._market_time: datetime | None = None
        self._announced = False
        self._stop_requested = threading.Event()

    def stop(self) -> None:
        """Ask the loop to halt after the work already in hand. Safe from any thread."""
        self._stop_requested.set()

    @property
    def orders(self) -> list[Order]:
        return [replace(order) for order in self._orders.values()]

    @property
    def fills(self) -> list[Fill]:
        return list(self._fills)

    def run(self) -> RunResult:
        if self.state is not EngineState.IDLE:
            raise RuntimeError(f"engine already {self.state.value}; create a new engine per run")
        self.state = EngineState.RUNNING
        if self.config.mode == "live":
            self._announce()
        try:
            self._loop()
        except _Halt as halt:
            self._halt(halt.reason)
        except StrategyError as exc:
            self._halt(str(exc))
        except Exception as exc:
            self._halt(f"unexpected error: {exc}")
            self._finalize()
            raise
        return self._finalize()

    def _loop(self) -> None:
        while True:
            if self._stop_requested.is_set():
                raise _Halt(SHUTDOWN_REASON)
            try:
                item = self.feed.next(timeout=self.config.idle_timeout_seconds)
            except FeedGapError as exc:
                self._announce()
                self._on_feed_gap(exc)
                continue
            self._announce(item if isinstance(item, MarketEvent) else None)
            if item is END_OF_STREAM:
                self._drain_venue()
                self.state = EngineState.COMPLETED
                return
            if item is None:
                self._drain_venue()
                continue
            self._process_event(item)

    def _announce(self, first_event: MarketEvent | None = None) -> None:
        """Emit run_started once, stamped with the first event time when there is one."""
        if self._announced:
            return
        self._announced = True
        if first_event is not None:
            self._market_time = first_event.timestamp
        self._emit(
            "run_started",
            {
                "starting_cash": self.portfolio.starting_cash,
                "risk_limits": {
                    "max_position_per_instrument": self._risk.limits.max_position_per_instrument,
                    "max_notional_exposure": self._risk.limits.max_notional_exposure,
                    "max_orders_per_window": self._risk.limits.max_orders_per_window,
                    "rate_window_seconds": self._risk.limits.rate_window_seconds,
                    "allow_short": self._risk.limits.allow_short,
                },
            },
        )

    def _process_event(self, event: MarketEvent) -> None:
        self._market_time = event.timestamp
        self._events_processed += 1
        self.venue.on_market_event(event)
        self._drain_venue()

        price = event.reference_price()
        if price is not None:
            self.portfolio.mark(event.instrument, price)
        if self.config.emit_market_events:
            self._emit("market_event", event.to_record())

        intents = self._call_strategy(self.strategy.on_event, event, self.portfolio.snapshot())
        self._handle_intents(intents, event)
        self._drain_venue()

    def _call_strategy(self, callback: Callable[..., Any], *args: Any) -> list[OrderIntent]:
        try:
            result = callback(*args)
        except Exception as exc:
            logger.exception("strategy %s failed in %s", self.strategy_id, callback.__name__)
            raise StrategyError(f"strategy error in {callback.__name__}: {exc}") from exc
        if result is None:
            return []
        return list(result)

    def _handle_intents(self, intents: Iterable[OrderIntent], event: MarketEvent | None) -> None:
        for intent in intents:
            if isinstance(intent, CancelRequest):
                self._cancel(intent.order_id)
            elif isinstance(intent, OrderRequest):
                reference_price = None
                if event is not None and event.instrument == intent.instrument:
                    reference_price = event.reference_price()
                self._submit(intent, reference_price)
            else:
                raise _Halt(f"strategy returned an unsupported intent: {intent!r}")

    def _submit(self, request: OrderRequest, reference_price: float | None) -> None:
        self._order_counter += 1
        order = Order.from_request(
            f"{self.config.run_id}-{self._order_counter:06d}",
            request,
            submitted_at=self._market_time,
        )
        decision = self._risk.check(
            request,
            self.portfolio.snapshot(),
            open_orders=list(self._orders.values()),
            now=self._market_time,
            reference_price=reference_price,
        )
        self._orders[order.order_id] = order
        if not decision.approved:
            reason = decision.reason.value if decision.reason else "rejected"
            self._set_status(order, OrderStatus.REJECTED, reason)
            self._reject(order, reason, "risk", decision.detail)
            return

        self._risk.record_submission(self._market_time)
        if self.human_logger is not None:
            self.human_logger.order_submit(
                order.instrument,
                order.side.value,
                order.quantity,
                order.order_id,
                reference_price=reference_price,
            )
        try:
            ack = self.venue.submit(order)
        except OrderRejected as exc:
            self._set_status(order, OrderStatus.REJECTED, exc.reason)
            self._venue_rejected(order, exc.reason)
            return
        except VenueUnavailableError as exc:
            self._set_status(order, OrderStatus.UNKNOWN, str(exc))
            self._recover_venue(exc)
            return
        order.venue_order_id = ack.venue_order_id or order.venue_order_id
        if order.status is OrderStatus.NEW:
            self._set_status(order, ack.status)

    def _cancel(self, order_id: str) -> None:
        order = self._orders.get(order_id)
        if order is None:
            logger.warning("cancel requested for unknown order %s", order_id)
            return
        if order.is_terminal:
            return
        try:
            result = self.venue.cancel(order_id)
        except VenueUnavailableError as exc:
            self._recover_venue(exc)
            return
        except VenueError as exc:
            logger.warning("cancel of %s failed: %s", order_id, exc)
            return
        if result is CancelResult.CANCELLED and not order.is_terminal:
            self._set_status(order, OrderStatus.CANCELLED, "cancelled by strategy")

    def _drain_venue(self) -> None:
        try:
            updates = self.venue.drain()
        except VenueUnavailableError as exc:
            self._recover_venue(exc)
            return
        self._apply_updates(updates)

    def _apply_updates(self, updates: Iterable[VenueUpdate]) -> None:
        for update in updates:
            if isinstance(update, Fill):
                self._apply_fill(update)
            else:
                self._apply_order_update(update)

    def _apply_fill(self, fill: Fill) -> None:
        if self.portfolio.has_applied(fill.fill_id):
            logger.debug("ignoring duplicate fill %s", fill.fill_id)
            return
        order = self._orders.get(fill.order_id)
        if order is None:
            self._conflict(fill.order_id, f"fill {fill.fill_id} does not match any known order")
            return
        if fill.instrument != order.instrument or fill.side is not order.side:
            self._conflict(order.order_id, f"fill {fill.fill_id} does not match order terms")
            return
        if fill.quantity > order.remaining_quantity + QTY_EPSILON:
            self._conflict(
                order.order_id,
                f"fill {fill.fill_id} of {fill.quantity:g} exceeds remaining "
                f"{order.remaining_quantity:g}",
            )
            self._set_status(order, OrderStatus.UNKNOWN, "over-fill reported")
            return

        self.portfolio.apply(fill)
        previous_status = order.status
        order.record_fill(fill.quantity, fill.price)
        if previous_status is OrderStatus.CANCELLED and order.status is not OrderStatus.FILLED:
            order.status = OrderStatus.CANCELLED
        self._fills.append(fill)
        if self.human_logger is not None:
            self.human_logger.fill(
                fill.instrument, fill.side.value, fill.quantity, fill.price, fill.fee
            )
        self._emit("fill", fill.to_record())
        self._emit("order_update", order.to_record())
        snapshot = self.portfolio.snapshot()
        self._emit("portfolio", snapshot.to_record())

        intents = self._call_strategy(self.strategy.on_fill, fill, snapshot)
        self._handle_intents(intents, None)

    def _apply_order_update(self, update: OrderUpdate) -> None:
        order = self._orders.get(update.order_id)
        if order is None:
            self._conflict(update.order_id, f"status {update.status.value} for unknown order")
            return
        order.venue_order_id = update.venue_order_id or order.venue_order_id
        if order.is_terminal:
            return
        status = update.status
        if status is OrderStatus.FILLED and order.remaining_quantity > QTY_EPSILON:
            self._conflict(
                order.order_id,
                f"venue reports filled but only {order.filled_quantity:g} of "
                f"{order.quantity:g} was reported as fills",
            )
            self._set_status(order, OrderStatus.UNKNOWN, "fills missing after reconciliation")
            return
        if status in {OrderStatus.SUBMITTED, OrderStatus.PARTIALLY_FILLED, OrderStatus.NEW}:
            status = (
                OrderStatus.PARTIALLY_FILLED
                if order.filled_quantity > QTY_EPSILON
                else OrderStatus.SUBMITTED
            )
        if status is order.status:
            return
        self._set_status(order, status, update.reason)
        if status is OrderStatus.REJECTED:
            self._venue_rejected(order, update.reason or "rejected by venue")

    def _set_status(self, order: Order, status: OrderStatus, reason: str | None = None) -> None:
        order.status = status
        if status is OrderStatus.REJECTED:
            order.reject_reason = reason
        if self.human_logger is not None:
            self.human_logger.order_update(order.order_id, status.value, reason, self._market_time)
        payload = order.to_record()
        if reason:
            payload["reason"] = reason
        self._emit("order_update", payload)

    def _venue_rejected(self, order: Order, reason: str) -> None:
        self._venue_rejections += 1
        self._reject(order, reason, "venue")
        if self._venue_rejections > self.config.max_venue_rejections:
            raise _Halt(
                f"venue rejected {self._venue_rejections} orders "
                f"(limit {self.config.max_venue_rejections})"
            )

    def _reject(
        self,
        order: Order,
        reason: str,
        source: str,
        detail: str | None = None,
    ) -> None:
        rejection = Rejection(
            order_id=order.order_id,
            instrument=order.instrument,
            reason=reason,
            source="risk" if source == "risk" else "venue",
            timestamp=self._market_time,
            detail=detail or None,
        )
        self._rejections.append(rejection)
        if self.human_logger is not None:
            self.human_logger.rejection(order.instrument, reason, source)
        self._emit(
            "rejection",
            {
                "order_id": order.order_id,
                "instrument": order.instrument,
                "reason": reason,
                "source": source,
                "detail": detail,
            },
        )
        self._call_strategy(self.strategy.on_reject, rejection)

    def _conflict(self, order_id: str | None, message: str) -> None:
        conflict = ReconciliationConflict(order_id, message)
        logger.warning("%s", conflict)
        self._emit("reconciliation_conflict", {"order_id": order_id, "message": message})

    def _on_feed_gap(self, exc: FeedGapError) -> None:
        fatal = self.config.halt_on_feed_gap
        if self.human_logger is not None:
            self.human_logger.feed_gap(str(exc), fatal)
        self._emit(
            "feed_gap",
            {
                "instrument": exc.instrument,
                "expected": exc.expected,
                "received": exc.received,
                "fatal": fatal,
            },
        )
        if fatal:
            raise _Halt(f"feed gap: {exc}")
        self._data_quality_flags.append(str(exc))

    def _recover_venue(self, exc: VenueUnavailableError) -> None:
        logger.warning("venue unavailable: %s", exc)
        attempts = self.config.max_reconnect_attempts
        for attempt in range(attempts):
            if self._stop_requested.is_set():
                raise _Halt(SHUTDOWN_REASON)
            delay = min(
                self.config.reconnect_backoff_seconds * 2**attempt,
                self.config.reconnect_backoff_max_seconds,
            )
            self._sleep(delay)
            try:
                self.venue.reconnect()
                updates = self.venue.drain()
            except VenueUnavailableError as retry_exc:
                self._reconnect_attempted(attempt + 1, delay, False, str(retry_exc))
                continue
            self._reconnect_attempted(attempt + 1, delay, True, None)
            self._apply_updates(updates)
            return
        raise _Halt(f"venue unavailable after {attempts} reconnect attempts: {exc}")

    def _reconnect_attempted(
        self,
        attempt: int,
        delay: float,
        succeeded: bool,
        error: str | None,
    ) -> None:
        if self.human_logger is not None:
            self.human_logger.reconnect(attempt, delay, succeeded)
        self._emit(
            "venue_reconnect",
            {"attempt": attempt, "delay": delay, "succeeded": succeeded, "error": error},
        )

    def _halt(self, reason: str) -> None:
        self._announce()
        self.state = EngineState.HALTED
        self.halt_reason = reason
        if self.human_logger is not None:
            self.human_logger.halted(reason)
        self._emit("halted", {"reason": reason})

    def _finalize(self) -> RunResult:
        self._announce()
        self.feed.close()
        snapshot = self.portfolio.snapshot()
        self._emit("portfolio", snapshot.to_record())
        self._emit(
            "run_finished",
            {
                "state": self.state.value,
                "halt_reason": self.halt_reason,
                "events_processed": self._events_processed,
                "orders": [order.to_record() for order in self._orders.values()],
                "fills": len(self._fills),
                "data_quality_flags": list(self._data_quality_flags),
            },
        )
        if self.human_logger is not None:
            for instrument, position in sorted(snapshot.positions.items()):
                if not position.is_flat:
                    self.human_logger.position(
                        instrument, position.quantity, position.average_price
                    )
            self.human_logger.portfolio(
                snapshot.cash, snapshot.equity, snapshot.realized_pnl, snapshot.unrealized_pnl
            )
            start_equity = self.portfolio.starting_cash
            pnl = snapshot.equity - start_equity
            pnl_pct = pnl / start_equity if start_equity else 0.0
            self.human_logger.run_pnl(snapshot.equity, pnl, pnl_pct, start_equity)
        return RunResult(
            run_id=self.config.run_id,
            state=self.state,
            halt_reason=self.halt_reason,
            orders=tuple(self.orders),
            fills=tuple(self._fills),
            portfolio=snapshot,
            rejections=tuple(self._rejections),
            data_quality_flags=tuple(self._data_quality_flags),
            events_processed=self._events_processed,
        )

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self._report_seq += 1
        timestamp = self._market_time or datetime.now(tz=UTC)
        event = TradeEvent(
            run_id=self.config.run_id,
            mode=self.config.mode,
            strategy_id=self.strategy_id,
            event_type=event_type,
            payload=payload,
            ts=timestamp.isoformat(),
            seq=self._report_seq,
        )
        for sink in self.sinks:
            sink.emit(event)
