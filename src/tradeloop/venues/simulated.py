"""Deterministic order matching against the event stream."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from tradeloop.domain.models import (
    QTY_EPSILON,
    CancelResult,
    Fill,
    InstrumentSpec,
    MarketEvent,
    Order,
    OrderAck,
    OrderSide,
    OrderStatus,
    OrderType,
    VenueUpdate,
)
from tradeloop.errors import OrderRejected
from tradeloop.venues.pricing import FeeModel, SlippageModel, no_fees, no_slippage


@dataclass
class _RestingOrder:
    order_id: str
    instrument: str
    side: OrderSide
    order_type: OrderType
    limit_price: float | None
    remaining: float
    submitted_at: datetime | None
    after_sequence: int


class SimulatedVenue:
    """Backtest venue that fills orders from subsequent market events only.

    An order can only trade against an event with a higher sequence number
    than the last one the venue saw before submission, and a timestamp no
    earlier than the submission time. Market orders fill completely at the
    next executable price adjusted by the slippage model. Limit orders fill
    at the event price once it crosses the limit, capped by the liquidity the
    event shows; orders resting on the same event share that liquidity in
    submission order.
    """

    def __init__(
        self,
        instruments: Iterable[InstrumentSpec] | None = None,
        slippage: SlippageModel = no_slippage,
        fees: FeeModel = no_fees,
    ) -> None:
        self.instruments = (
            None if instruments is None else {spec.instrument: spec for spec in instruments}
        )
        self.slippage = slippage
        self.fees = fees
        self._resting: dict[str, _RestingOrder] = {}
        self._finished: set[str] = set()
        self._ready: deque[VenueUpdate] = deque()
        self._last_sequence = 0
        self._last_timestamp: datetime | None = None
        self._fill_counter = 0

    def submit(self, order: Order) -> OrderAck:
        reason = self._validate(order)
        if reason is not None:
            self._finished.add(order.order_id)
            raise OrderRejected(order.order_id, reason)
        self._resting[order.order_id] = _RestingOrder(
            order_id=order.order_id,
            instrument=order.instrument,
            side=order.side,
            order_type=order.order_type,
            limit_price=order.limit_price,
            remaining=order.remaining_quantity,
            submitted_at=order.submitted_at or self._last_timestamp,
            after_sequence=self._last_sequence,
        )
        return OrderAck(
            order.order_id,
            OrderStatus.SUBMITTED,
            venue_order_id=f"SIM-{order.order_id}",
        )

    def cancel(self, order_id: str) -> CancelResult:
        if self._resting.pop(order_id, None) is None:
            return CancelResult.ALREADY_TERMINAL
        self._finished.add(order_id)
        return CancelResult.CANCELLED

    def on_market_event(self, event: MarketEvent) -> None:
        self._last_sequence = max(self._last_sequence, event.sequence)
        self._last_timestamp = event.timestamp
        consumed = {OrderSide.BUY: 0.0, OrderSide.SELL: 0.0}
        for resting in list(self._resting.values()):
            if resting.instrument != event.instrument:
                continue
            if event.sequence <= resting.after_sequence:
                continue
            if resting.submitted_at is not None and event.timestamp < resting.submitted_at:
                continue
            self._match(resting, event, consumed)

    def drain(self) -> list[VenueUpdate]:
        updates = list(self._ready)
        self._ready.clear()
        return updates

    def reconnect(self) -> None:
        return None

    @property
    def working_order_ids(self) -> list[str]:
        return list(self._resting)

    def _match(
        self,
        resting: _RestingOrder,
        event: MarketEvent,
        consumed: dict[OrderSide, float],
    ) -> None:
        price = event.executable_price(resting.side)
        if price is None:
            return
        if resting.order_type is OrderType.MARKET:
            quantity = resting.remaining
            fill_price = self.slippage(resting.side, price, event)
        else:
            limit = float(resting.limit_price or 0.0)
            if resting.side is OrderSide.BUY and price > limit + QTY_EPSILON:
                return
            if resting.side is OrderSide.SELL and price < limit - QTY_EPSILON:
                return
            fill_price = price
            quantity = resting.remaining
            size = event.executable_size(resting.side)
            if size is not None:
                available = size - consumed[resting.side]
                if available <= QTY_EPSILON:
                    return
                quantity = min(quantity, available)
                consumed[resting.side] += quantity

        self._fill_counter += 1
        self._ready.append(
            Fill(
                fill_id=f"SIM-F{self._fill_counter:08d}",
                order_id=resting.order_id,
                instrument=resting.instrument,
                side=resting.side,
                quantity=quantity,
                price=fill_price,
                timestamp=event.timestamp,
                fee=self.fees(quantity, fill_price),
            )
        )
        resting.remaining -= quantity
        if resting.remaining <= QTY_EPSILON:
            del self._resting[resting.order_id]
            self._finished.add(resting.order_id)

    def _validate(self, order: Order) -> str | None:
        if order.order_id in self._resting or order.order_id in self._finished:
            return "duplicate order id"
        if order.quantity <= 0:
            return "quantity must be positive"
        if order.order_type is OrderType.LIMIT and (
            order.limit_price is None or order.limit_price <= 0
        ):
            return "limit order requires a positive limit price"
        if self.instruments is None:
            return None
        spec = self.instruments.get(order.instrument)
        if spec is None:
            return f"unknown instrument {order.instrument}"
        if order.quantity < spec.min_size - QTY_EPSILON:
            return f"quantity {order.quantity:g} below minimum size {spec.min_size:g}"
        if spec.size_increment > 0 and not _is_multiple(order.quantity, spec.size_increment):
            return f"quantity {order.quantity:g} is not a multiple of {spec.size_increment:g}"
        if (
            order.order_type is OrderType.LIMIT
            and spec.price_increment > 0
            and not _is_multiple(float(order.limit_price or 0.0), spec.price_increment)
        ):
            return (
                f"limit price {order.limit_price:g} is not a multiple of "
                f"{spec.price_increment:g}"
            )
        return None


def _is_multiple(value: float, step: float) -> bool:
    ratio = value / step
    return abs(ratio - round(ratio)) <= 1e-6
