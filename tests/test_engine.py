from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tradeloop.domain.models import (
    CancelRequest,
    CancelResult,
    EventKind,
    Fill,
    InstrumentSpec,
    MarketEvent,
    OrderAck,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdate,
    RiskLimits,
)
from tradeloop.engine import SHUTDOWN_REASON, Engine, EngineConfig, EngineState
from tradeloop.errors import FeedGapError
from tradeloop.feeds.base import END_OF_STREAM
from tradeloop.feeds.historical import HistoricalFeed
from tradeloop.feeds.memory import InMemorySource
from tradeloop.logging.event_sink import MemoryEventSink
from tradeloop.strategy_core.base import Strategy
from tradeloop.venues.simulated import SimulatedVenue

T0 = datetime(2024, 1, 2, 9, 30, tzinfo=UTC)


def _trades(prices: list[float], sizes: list[float] | None = None) -> list[MarketEvent]:
    events = []
    for index, price in enumerate(prices):
        payload = {"price": price}
        if sizes is not None:
            payload["size"] = sizes[index]
        events.append(
            MarketEvent(T0 + timedelta(minutes=index), "SPY", EventKind.TRADE, payload)
        )
    return events


def _feed(prices: list[float], sizes: list[float] | None = None) -> HistoricalFeed:
    return HistoricalFeed(InMemorySource(_trades(prices, sizes)), ["SPY"])


class ScriptedFeed:
    restartable = False

    def __init__(self, items: list) -> None:
        self.items = list(items)
        self.closed = False

    def next(self, timeout: float | None = None):
        _ = timeout
        if not self.items:
            return END_OF_STREAM
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class BuyOnce(Strategy):
    strategy_id = "buy_once"

    def __init__(
        self,
        quantity: float = 10,
        order_type: OrderType = OrderType.MARKET,
        limit_price: float | None = None,
    ) -> None:
        self.quantity = quantity
        self.order_type = order_type
        self.limit_price = limit_price
        self.sent = False
        self.seen_quantities: list[float] = []
        self.rejections = []

    def on_event(self, event, portfolio):
        self.seen_quantities.append(portfolio.quantity(event.instrument))
        if self.sent:
            return []
        self.sent = True
        return [
            OrderRequest(
                event.instrument,
                OrderSide.BUY,
                self.quantity,
                order_type=self.order_type,
                limit_price=self.limit_price,
            )
        ]

    def on_reject(self, rejection) -> None:
        self.rejections.append(rejection)


class BuyEveryEvent(Strategy):
    strategy_id = "buy_every_event"

    def on_event(self, event, portfolio):
        return [OrderRequest(event.instrument, OrderSide.BUY, 1)]


class RecordingVenue(SimulatedVenue):
    def __init__(self) -> None:
        super().__init__()
        self.submitted: list[str] = []

    def submit(self, order):
        self.submitted.append(order.order_id)
        return super().submit(order)


class ReportingVenue:
    """Accepts every order and replays scripted venue reports on given events."""

    def __init__(self, reports: dict[int, list]) -> None:
        self.reports = reports
        self.events = 0
        self.ready: list = []

    def submit(self, order):
        return OrderAck(order.order_id)

    def cancel(self, order_id):
        return CancelResult.PENDING

    def on_market_event(self, event) -> None:
        self.events += 1
        self.ready.extend(self.reports.get(self.events, []))

    def drain(self):
        updates, self.ready = self.ready, []
        return updates

    def reconnect(self) -> None:
        return None


def _reported_run(reports: dict[int, list]):
    sink = MemoryEventSink()
    engine = Engine(
        _feed([100.0, 101.0, 102.0]),
        ReportingVenue(reports),
        BuyOnce(quantity=10),
        config=EngineConfig(run_id="rc"),
        sinks=[sink],
    )
    return engine.run(), sink


def _spy_fill(
    fill_id: str,
    order_id: str,
    quantity: float,
    side: OrderSide = OrderSide.BUY,
    instrument: str = "SPY",
) -> Fill:
    return Fill(fill_id, order_id, instrument, side, quantity, 101.0, T0)


def test_backtest_fills_on_next_event_and_marks_to_market() -> None:
    strategy = BuyOnce()
    sink = MemoryEventSink()
    engine = Engine(
        _feed([100.0, 101.0, 99.0]),
        SimulatedVenue(),
        strategy,
        config=EngineConfig(run_id="bt"),
        sinks=[sink],
    )

    result = engine.run()

    assert result.completed
    assert result.events_processed == 3
    assert [(fill.quantity, fill.price) for fill in result.fills] == [(10, 101.0)]
    assert result.orders[0].order_id == "bt-000001"
    assert result.orders[0].status is OrderStatus.FILLED
    assert strategy.seen_quantities == [0.0, 10, 10]
    assert result.portfolio.position("SPY").average_price == 101.0
    assert result.portfolio.cash == pytest.approx(98_990.0)
    assert result.portfolio.equity == pytest.approx(99_980.0)
    assert result.portfolio.unrealized_pnl == pytest.approx(-20.0)
    types = [event.event_type for event in sink.events]
    assert types[0] == "run_started"
    assert types[-1] == "run_finished"
    assert [event.seq for event in sink.events] == list(range(1, len(types) + 1))


def test_identical_backtests_produce_identical_results() -> None:
    def run_once():
        return Engine(
            _feed([100.0, 101.0, 102.0, 99.0]),
            SimulatedVenue(),
            BuyOnce(),
            config=EngineConfig(run_id="same"),
        ).run()

    first, second = run_once(), run_once()

    assert [o.to_record() for o in first.orders] == [o.to_record() for o in second.orders]
    assert [f.to_record() for f in first.fills] == [f.to_record() for f in second.fills]
    assert first.portfolio.to_record() == second.portfolio.to_record()


def test_risk_rejection_never_reaches_venue() -> None:
    strategy = BuyOnce(quantity=10)
    venue = RecordingVenue()
    engine = Engine(
        _feed([100.0, 101.0]),
        venue,
        strategy,
        config=EngineConfig(
            run_id="risk", risk_limits=RiskLimits(max_position_per_instrument=5)
        ),
    )

    result = engine.run()

    assert venue.submitted == []
    assert result.completed
    assert result.orders[0].status is OrderStatus.REJECTED
    assert result.orders[0].reject_reason == "exceeds-position-limit"
    assert [(r.source, r.reason) for r in strategy.rejections] == [
        ("risk", "exceeds-position-limit")
    ]
    assert result.portfolio.cash == 100_000.0


def test_venue_rejections_halt_past_threshold() -> None:
    venue = SimulatedVenue(instruments=[InstrumentSpec("QQQ")])
    engine = Engine(
        _feed([100.0] * 6),
        venue,
        BuyEveryEvent(),
        config=EngineConfig(run_id="rej", max_venue_rejections=2),
    )

    result = engine.run()

    assert result.state is EngineState.HALTED
    assert result.halt_reason == "venue rejected 3 orders (limit 2)"
    assert result.events_processed == 3
    assert all(order.status is OrderStatus.REJECTED for order in result.orders)


def test_fatal_feed_gap_halts() -> None:
    events = _trades([100.0, 101.0])
    feed = ScriptedFeed([events[0], FeedGapError("SPY", 3, 5), events[1]])
    sink = MemoryEventSink()
    engine = Engine(feed, SimulatedVenue(), BuyEveryEvent(), sinks=[sink])

    result = engine.run()

    assert result.state is EngineState.HALTED
    assert result.halt_reason is not None
    assert result.halt_reason.startswith("feed gap")
    assert result.events_processed == 1
    assert sink.of_type("feed_gap")[0].payload["fatal"] is True
    assert feed.closed


def test_non_fatal_feed_gap_is_flagged_and_run_continues() -> None:
    events = _trades([100.0, 101.0])
    feed = ScriptedFeed([events[0], FeedGapError("SPY", 3, 5), events[1]])
    engine = Engine(
        feed, SimulatedVenue(), BuyOnce(), config=EngineConfig(halt_on_feed_gap=False)
    )

    result = engine.run()

    assert result.completed
    assert result.events_processed == 2
    assert len(result.data_quality_flags) == 1
    assert "expected 3 but received 5" in result.data_quality_flags[0]


def test_idle_feed_polls_until_end_of_stream() -> None:
    events = _trades([100.0, 101.0])
    feed = ScriptedFeed([None, events[0], None, None, events[1]])

    result = Engine(feed, SimulatedVenue(), BuyOnce()).run()

    assert result.completed
    assert result.events_processed == 2
    assert len(result.fills) == 1


def test_stop_halts_cooperatively() -> None:
    class StopOnSecondEvent(Strategy):
        strategy_id = "stopper"

        def __init__(self) -> None:
            self.engine: Engine | None = None
            self.count = 0

        def on_event(self, event, portfolio):
            self.count += 1
            if self.count == 2 and self.engine is not None:
                self.engine.stop()
            return []

    strategy = StopOnSecondEvent()
    engine = Engine(_feed([100.0, 101.0, 102.0, 103.0]), SimulatedVenue(), strategy)
    strategy.engine = engine

    result = engine.run()

    assert result.state is EngineState.HALTED
    assert result.halt_reason == SHUTDOWN_REASON
    assert result.events_processed == 2


def test_strategy_exception_halts_with_reason() -> None:
    class Broken(Strategy):
        strategy_id = "broken"

        def on_event(self, event, portfolio):
            raise RuntimeError("boom")

    result = Engine(_feed([100.0]), SimulatedVenue(), Broken()).run()

    assert result.state is EngineState.HALTED
    assert result.halt_reason == "strategy error in on_event: boom"


def test_unexpected_venue_error_halts_and_propagates() -> None:
    class ExplodingVenue(SimulatedVenue):
        def on_market_event(self, event):
            raise RuntimeError("disk on fire")

    engine = Engine(_feed([100.0]), ExplodingVenue(), BuyOnce())

    with pytest.raises(RuntimeError, match="disk on fire"):
        engine.run()
    assert engine.state is EngineState.HALTED
    assert engine.halt_reason == "unexpected error: disk on fire"


def test_limit_order_fills_across_events_without_overfill() -> None:
    strategy = BuyOnce(quantity=10, order_type=OrderType.LIMIT, limit_price=100.0)
    engine = Engine(
        _feed([100.0, 99.0, 100.0, 98.0, 97.0], sizes=[50, 4, 4, 4, 4]),
        SimulatedVenue(),
        strategy,
    )

    result = engine.run()

    assert [fill.quantity for fill in result.fills] == [4, 4, 2]
    order = result.orders[0]
    assert order.status is OrderStatus.FILLED
    assert order.filled_quantity == pytest.approx(10)
    assert result.portfolio.quantity("SPY") == pytest.approx(10)


def test_running_engine_cannot_be_reused() -> None:
    engine = Engine(_feed([100.0]), SimulatedVenue(), BuyOnce())
    engine.run()

    with pytest.raises(RuntimeError):
        engine.run()


def test_cancel_intent_cancels_working_order() -> None:
    class RestThenCancel(Strategy):
        strategy_id = "rest_then_cancel"

        def __init__(self) -> None:
            self.engine: Engine | None = None
            self.count = 0

        def on_event(self, event, portfolio):
            self.count += 1
            if self.count == 1:
                return [
                    OrderRequest(
                        event.instrument,
                        OrderSide.BUY,
                        1,
                        order_type=OrderType.LIMIT,
                        limit_price=50.0,
                    )
                ]
            if self.count == 2 and self.engine is not None:
                return [CancelRequest(self.engine.orders[0].order_id)]
            return []

    strategy = RestThenCancel()
    engine = Engine(_feed([100.0, 100.0, 40.0]), SimulatedVenue(), strategy)
    strategy.engine = engine

    result = engine.run()

    assert result.orders[0].status is OrderStatus.CANCELLED
    assert result.fills == ()


def test_reports_for_unknown_orders_are_conflicts() -> None:
    result, sink = _reported_run(
        {2: [_spy_fill("F-1", "ghost", 5), OrderUpdate("ghost", OrderStatus.FILLED)]}
    )

    assert result.completed
    conflicts = [event.payload for event in sink.of_type("reconciliation_conflict")]
    assert [conflict["order_id"] for conflict in conflicts] == ["ghost", "ghost"]
    assert "does not match any known order" in conflicts[0]["message"]
    assert "unknown order" in conflicts[1]["message"]
    assert result.fills == ()
    assert result.portfolio.quantity("SPY") == 0
    assert result.portfolio.cash == 100_000.0
    assert result.orders[0].status is OrderStatus.SUBMITTED


def test_fill_with_mismatched_terms_is_a_conflict() -> None:
    result, sink = _reported_run(
        {
            2: [
                _spy_fill("F-1", "rc-000001", 5, side=OrderSide.SELL),
                _spy_fill("F-2", "rc-000001", 5, instrument="QQQ"),
            ]
        }
    )

    conflicts = [event.payload for event in sink.of_type("reconciliation_conflict")]
    assert [conflict["order_id"] for conflict in conflicts] == ["rc-000001", "rc-000001"]
    assert all("does not match order terms" in c["message"] for c in conflicts)
    order = result.orders[0]
    assert order.status is OrderStatus.SUBMITTED
    assert order.filled_quantity == 0
    assert result.fills == ()
    assert result.portfolio.quantity("SPY") == 0
    assert result.portfolio.quantity("QQQ") == 0


def test_over_fill_moves_order_to_unknown() -> None:
    result, sink = _reported_run({2: [_spy_fill("F-1", "rc-000001", 12)]})

    conflicts = sink.of_type("reconciliation_conflict")
    assert len(conflicts) == 1
    assert "exceeds remaining 10" in conflicts[0].payload["message"]
    order = result.orders[0]
    assert order.status is OrderStatus.UNKNOWN
    assert order.filled_quantity == 0
    assert result.portfolio.quantity("SPY") == 0
    reasons = [event.payload.get("reason") for event in sink.of_type("order_update")]
    assert "over-fill reported" in reasons


def test_filled_report_without_enough_fills_moves_order_to_unknown() -> None:
    result, sink = _reported_run(
        {
            2: [
                _spy_fill("F-1", "rc-000001", 4),
                OrderUpdate("rc-000001", OrderStatus.FILLED),
            ]
        }
    )

    conflicts = sink.of_type("reconciliation_conflict")
    assert len(conflicts) == 1
    assert conflicts[0].payload["order_id"] == "rc-000001"
    assert "only 4 of 10" in conflicts[0].payload["message"]
    order = result.orders[0]
    assert order.status is OrderStatus.UNKNOWN
    assert order.filled_quantity == 4
    assert result.portfolio.quantity("SPY") == 4
    reasons = [event.payload.get("reason") for event in sink.of_type("order_update")]
    assert "fills missing after reconciliation" in reasons
