from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tradeloop.domain.events import TradeEvent
from tradeloop.domain.models import (
    EventKind,
    MarketEvent,
    Order,
    OrderRequest,
    OrderSide,
    OrderStatus,
)

T0 = datetime(2024, 1, 2, 9, 30, tzinfo=UTC)


def test_quote_prices_by_side_and_mid_reference() -> None:
    event = MarketEvent(T0, "SPY", EventKind.QUOTE, {"bid": 99.5, "ask": 100.5, "ask_size": 7})

    assert event.executable_price(OrderSide.BUY) == 100.5
    assert event.executable_price(OrderSide.SELL) == 99.5
    assert event.executable_size(OrderSide.BUY) == 7
    assert event.executable_size(OrderSide.SELL) is None
    assert event.reference_price() == 100.0


def test_book_delta_only_executes_against_opposite_side() -> None:
    ask_level = MarketEvent(T0, "SPY", "book_delta", {"side": "ask", "price": 101, "size": 4})
    removed = MarketEvent(T0, "SPY", "book_delta", {"side": "ask", "price": 101, "size": 0})

    assert ask_level.kind is EventKind.BOOK_DELTA
    assert ask_level.executable_price(OrderSide.BUY) == 101.0
    assert ask_level.executable_price(OrderSide.SELL) is None
    assert removed.executable_price(OrderSide.BUY) is None


def test_market_event_payload_is_read_only() -> None:
    event = MarketEvent(T0, "SPY", EventKind.TRADE, {"price": 100})

    with pytest.raises(TypeError):
        event.payload["price"] = 1  # type: ignore[index]
    assert event.with_sequence(7).sequence == 7
    assert event.sequence == 0


def test_order_tracks_partial_then_full_fill() -> None:
    order = Order.from_request("run-000001", OrderRequest("SPY", OrderSide.BUY, 10), T0)

    order.record_fill(4, 100.0)
    assert order.status is OrderStatus.PARTIALLY_FILLED
    assert order.remaining_quantity == 6

    order.record_fill(6, 105.0)
    assert order.status is OrderStatus.FILLED
    assert order.is_terminal
    assert order.average_fill_price == pytest.approx(103.0)


def test_trade_event_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        TradeEvent(run_id="r", mode="backtest", strategy_id="s", event_type="decision")
