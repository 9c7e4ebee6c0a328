from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tradeloop.adapters.base import Disconnected, OrderStatusReport
from tradeloop.domain.models import (
    CancelResult,
    Fill,
    Order,
    OrderSide,
    OrderStatus,
    OrderUpdate,
)
from tradeloop.errors import OrderRejected, VenueUnavailableError
from tradeloop.venues.live import LiveVenue

T0 = datetime(2024, 1, 2, tzinfo=UTC)


class FakeAdapter:
    def __init__(self, ack: bool = True, reject: set[str] | None = None) -> None:
        self.ack = ack
        self.reject = reject or set()
        self.reports: dict[str, OrderStatusReport] = {}
        self.fail_connects = 0
        self.connect_calls = 0
        self.order_handler = None

    def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise VenueUnavailableError("exchange down")

    def submit_order(self, order: Order) -> None:
        if order.order_id in self.reject:
            self.publish(OrderUpdate(order.order_id, OrderStatus.REJECTED, reason="no margin"))
        elif self.ack:
            self.publish(
                OrderUpdate(
                    order.order_id, OrderStatus.SUBMITTED, venue_order_id=f"V-{order.order_id}"
                )
            )

    def cancel_order(self, order_id: str) -> None:
        self.publish(OrderUpdate(order_id, OrderStatus.CANCELLED))

    def query_order(self, order_id: str) -> OrderStatusReport:
        return self.reports.get(order_id, OrderStatusReport(order_id, None))

    def subscribe_orders(self, handler) -> None:
        self.order_handler = handler

    def subscribe_market_data(self, handler) -> None:
        _ = handler

    def poll(self) -> None:
        return None

    def publish(self, message) -> None:
        assert self.order_handler is not None
        self.order_handler(message)


def _order(order_id: str, quantity: float = 1.0) -> Order:
    return Order(order_id=order_id, instrument="BTC", side=OrderSide.BUY, quantity=quantity)


def _fill(fill_id: str, order_id: str, quantity: float = 1.0) -> Fill:
    return Fill(fill_id, order_id, "BTC", OrderSide.BUY, quantity, 100.0, T0)


def _connected(adapter: FakeAdapter) -> LiveVenue:
    venue = LiveVenue(adapter, ack_timeout=0.05)
    venue.connect()
    return venue


def test_submit_returns_exchange_ack() -> None:
    venue = _connected(FakeAdapter())

    ack = venue.submit(_order("o-1"))

    assert ack.status is OrderStatus.SUBMITTED
    assert ack.venue_order_id == "V-o-1"
    assert venue.outstanding_order_ids == ["o-1"]


def test_missing_ack_leaves_order_unknown() -> None:
    venue = _connected(FakeAdapter(ack=False))

    ack = venue.submit(_order("o-1"))

    assert ack.status is OrderStatus.UNKNOWN
    assert venue.outstanding_order_ids == ["o-1"]


def test_exchange_reject_raises() -> None:
    venue = _connected(FakeAdapter(reject={"o-1"}))

    with pytest.raises(OrderRejected) as caught:
        venue.submit(_order("o-1"))

    assert caught.value.reason == "no margin"
    assert venue.outstanding_order_ids == []


def test_submit_requires_connection() -> None:
    venue = LiveVenue(FakeAdapter(), ack_timeout=0.05)

    with pytest.raises(VenueUnavailableError):
        venue.submit(_order("o-1"))


def test_offline_submit_is_cancelled_on_reconnect() -> None:
    adapter = FakeAdapter()
    venue = LiveVenue(adapter, ack_timeout=0.05)
    with pytest.raises(VenueUnavailableError):
        venue.submit(_order("o-1"))
    assert venue.outstanding_order_ids == ["o-1"]

    venue.reconnect()
    updates = venue.drain()

    assert [(u.order_id, u.status) for u in updates] == [("o-1", OrderStatus.CANCELLED)]
    assert venue.outstanding_order_ids == []


def test_duplicate_fills_are_passed_on_once() -> None:
    adapter = FakeAdapter()
    venue = _connected(adapter)
    venue.submit(_order("o-1", quantity=2.0))

    adapter.publish(_fill("F-1", "o-1"))
    adapter.publish(_fill("F-1", "o-1"))
    adapter.publish(_fill("F-2", "o-1"))

    updates = venue.drain()
    assert [update.fill_id for update in updates] == ["F-1", "F-2"]
    assert venue.outstanding_order_ids == []


def test_cancel_confirms_then_reports_terminal() -> None:
    venue = _connected(FakeAdapter())
    venue.submit(_order("o-1"))

    assert venue.cancel("o-1") is CancelResult.CANCELLED
    assert venue.cancel("o-1") is CancelResult.ALREADY_TERMINAL
    assert venue.cancel("never-sent") is CancelResult.ALREADY_TERMINAL


def test_disconnect_marks_outstanding_unknown_then_raises() -> None:
    adapter = FakeAdapter()
    venue = _connected(adapter)
    venue.submit(_order("o-1"))
    venue.submit(_order("o-2"))

    adapter.publish(Disconnected("socket closed"))
    updates = venue.drain()

    assert [(u.order_id, u.status) for u in updates] == [
        ("o-1", OrderStatus.UNKNOWN),
        ("o-2", OrderStatus.UNKNOWN),
    ]
    with pytest.raises(VenueUnavailableError, match="socket closed"):
        venue.drain()
    with pytest.raises(VenueUnavailableError):
        venue.submit(_order("o-3"))


def test_reconnect_reconciles_outstanding_orders() -> None:
    adapter = FakeAdapter()
    venue = _connected(adapter)
    venue.submit(_order("o-1"))
    venue.submit(_order("o-2"))
    adapter.publish(Disconnected())
    venue.drain()

    adapter.reports["o-1"] = OrderStatusReport(
        "o-1", OrderStatus.FILLED, fills=(_fill("F-1", "o-1"),), venue_order_id="V-o-1"
    )
    venue.reconnect()
    updates = venue.drain()

    assert adapter.connect_calls == 2
    assert isinstance(updates[0], Fill)
    statuses = [(u.order_id, u.status) for u in updates if isinstance(u, OrderUpdate)]
    assert statuses == [("o-1", OrderStatus.FILLED), ("o-2", OrderStatus.CANCELLED)]
    assert venue.outstanding_order_ids == []

    # a redelivered fill after reconciliation is dropped
    adapter.publish(_fill("F-1", "o-1"))
    assert venue.drain() == []
