"""Venue that forwards orders to an exchange adapter."""

from __future__ import annotations

import logging
import queue
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from tradeloop.adapters.base import (
    AdapterMessage,
    Disconnected,
    ExchangeAdapter,
    OrderStatusReport,
)
from tradeloop.domain.models import (
    QTY_EPSILON,
    CancelResult,
    Fill,
    MarketEvent,
    Order,
    OrderAck,
    OrderStatus,
    OrderUpdate,
    VenueUpdate,
)
from tradeloop.errors import OrderRejected, VenueUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class _TrackedOrder:
    order_id: str
    quantity: float
    status: OrderStatus = OrderStatus.NEW
    filled_quantity: float = 0.0
    venue_order_id: str | None = None


class LiveVenue:
    """Live execution through an ``ExchangeAdapter``.

    Adapter messages arrive on a queue filled by the adapter's thread. The
    exchange is authoritative: acks, rejects and fills it reports are passed
    on as-is and matched to orders by id. While the connection is down every
    outstanding order is ``UNKNOWN``; ``reconnect`` asks the exchange about
    each one and reports the outcome.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        ack_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.adapter = adapter
        self.ack_timeout = ack_timeout
        self.connected = False
        self._clock = clock
        self._inbox: queue.Queue[AdapterMessage] = queue.Queue()
        self._ready: deque[VenueUpdate] = deque()
        self._tracked: dict[str, _TrackedOrder] = {}
        self._seen_fill_ids: set[str] = set()
        self._disconnect_reason = "not connected"
        adapter.subscribe_orders(self._inbox.put)

    def connect(self) -> None:
        self.adapter.connect()
        self.connected = True

    def submit(self, order: Order) -> OrderAck:
        # tracked even when offline so reconnect() queries it and settles it
        tracked = _TrackedOrder(order.order_id, order.quantity)
        self._tracked[order.order_id] = tracked
        tracked.status = OrderStatus.UNKNOWN
        self._require_connection()
        try:
            self.adapter.submit_order(order)
        except VenueUnavailableError as exc:
            self._lose_connection(str(exc))
            raise

        deadline = self._clock() + self.ack_timeout
        while True:
            message = self._next_message(deadline)
            if message is None:
                logger.warning(
                    "no acknowledgement for %s within %.1fs", order.order_id, self.ack_timeout
                )
                tracked.status = OrderStatus.UNKNOWN
                return OrderAck(order.order_id, OrderStatus.UNKNOWN)
            if isinstance(message, OrderUpdate) and message.order_id == order.order_id:
                if message.status is OrderStatus.REJECTED:
                    tracked.status = OrderStatus.REJECTED
                    raise OrderRejected(order.order_id, message.reason or "rejected by venue")
                if message.status is OrderStatus.SUBMITTED:
                    tracked.status = OrderStatus.SUBMITTED
                    tracked.venue_order_id = message.venue_order_id
                    return OrderAck(order.order_id, OrderStatus.SUBMITTED, message.venue_order_id)
            self._route(message)
            if isinstance(message, Fill) and message.order_id == order.order_id:
                return OrderAck(order.order_id, OrderStatus.SUBMITTED, tracked.venue_order_id)

    def cancel(self, order_id: str) -> CancelResult:
        tracked = self._tracked.get(order_id)
        if tracked is None or tracked.status.is_terminal:
            return CancelResult.ALREADY_TERMINAL
        self._require_connection()
        try:
            self.adapter.cancel_order(order_id)
        except VenueUnavailableError as exc:
            self._lose_connection(str(exc))
            raise

        deadline = self._clock() + self.ack_timeout
        while True:
            message = self._next_message(deadline)
            if message is None:
                return CancelResult.PENDING
            if (
                isinstance(message, OrderUpdate)
                and message.order_id == order_id
                and message.status is OrderStatus.CANCELLED
            ):
                tracked.status = OrderStatus.CANCELLED
                return CancelResult.CANCELLED
            self._route(message)
            if tracked.status.is_terminal:
                return CancelResult.ALREADY_TERMINAL

    def on_market_event(self, event: MarketEvent) -> None:
        _ = event

    def drain(self) -> list[VenueUpdate]:
        if self.connected:
            try:
                self.adapter.poll()
            except VenueUnavailableError as exc:
                self._lose_connection(str(exc))
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break
            if isinstance(message, Disconnected):
                self._lose_connection(message.reason)
                continue
            self._route(message)
        updates = list(self._ready)
        self._ready.clear()
        if not updates and not self.connected:
            raise VenueUnavailableError(self._disconnect_reason)
        return updates

    def reconnect(self) -> None:
        """Reconnect, then reconcile every order that is not known to be terminal."""
        self.adapter.connect()
        self.connected = True
        outstanding = [
            tracked for tracked in self._tracked.values() if not tracked.status.is_terminal
        ]
        for tracked in outstanding:
            report = self.adapter.query_order(tracked.order_id)
            self._reconcile(tracked, report)
        logger.info("venue reconnected, reconciled %d order(s)", len(outstanding))

    @property
    def outstanding_order_ids(self) -> list[str]:
        return [
            order_id
            for order_id, tracked in self._tracked.items()
            if not tracked.status.is_terminal
        ]

    def _reconcile(self, tracked: _TrackedOrder, report: OrderStatusReport) -> None:
        for fill in report.fills:
            self._route(fill)
        if report.status is None:
            status = OrderStatus.CANCELLED
            reason = "not found at venue after reconnect"
        else:
            status = report.status
            reason = "reconciled after reconnect"
        if status is OrderStatus.UNKNOWN:
            status = OrderStatus.SUBMITTED
        self._route(
            OrderUpdate(
                tracked.order_id,
                status,
                reason=reason,
                venue_order_id=report.venue_order_id,
            )
        )

    def _next_message(self, deadline: float) -> AdapterMessage | None:
        remaining = deadline - self._clock()
        if remaining <= 0:
            return None
        try:
            message = self._inbox.get(timeout=remaining)
        except queue.Empty:
            return None
        if isinstance(message, Disconnected):
            self._lose_connection(message.reason)
            raise VenueUnavailableError(message.reason)
        return message

    def _route(self, message: Fill | OrderUpdate) -> None:
        tracked = self._tracked.get(message.order_id)
        if isinstance(message, Fill):
            if message.fill_id in self._seen_fill_ids:
                return
            self._seen_fill_ids.add(message.fill_id)
            if tracked is not None:
                tracked.filled_quantity += message.quantity
                if tracked.filled_quantity >= tracked.quantity - QTY_EPSILON:
                    tracked.status = OrderStatus.FILLED
                elif not tracked.status.is_terminal:
                    tracked.status = OrderStatus.PARTIALLY_FILLED
        elif tracked is not None and not tracked.status.is_terminal:
            tracked.status = message.status
            if message.status is OrderStatus.SUBMITTED and tracked.filled_quantity > 0:
                tracked.status = OrderStatus.PARTIALLY_FILLED
            tracked.venue_order_id = message.venue_order_id or tracked.venue_order_id
        self._ready.append(message)

    def _lose_connection(self, reason: str) -> None:
        if not self.connected:
            return
        logger.warning("venue connection lost: %s", reason)
        self.connected = False
        self._disconnect_reason = reason
        for tracked in self._tracked.values():
            if tracked.status.is_terminal or tracked.status is OrderStatus.NEW:
                continue
            tracked.status = OrderStatus.UNKNOWN
            self._ready.append(
                OrderUpdate(tracked.order_id, OrderStatus.UNKNOWN, reason=reason)
            )

    def _require_connection(self) -> None:
        if not self.connected:
            raise VenueUnavailableError(self._disconnect_reason)
