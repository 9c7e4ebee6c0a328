"""Exchange adapter contract and the messages adapters publish."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from tradeloop.domain.models import Fill, MarketEvent, Order, OrderStatus, OrderUpdate
from tradeloop.feeds.base import EndOfStream


@dataclass(frozen=True)
class Disconnected:
    """Connection to the exchange was lost."""

    reason: str = "connection lost"


@dataclass(frozen=True)
class OrderStatusReport:
    """Exchange-side view of one order, used for reconciliation.

    ``status`` is ``None`` when the exchange has no record of the order.
    """

    order_id: str
    status: OrderStatus | None
    fills: tuple[Fill, ...] = ()
    venue_order_id: str | None = None


AdapterMessage = Fill | OrderUpdate | Disconnected
OrderHandler = Callable[[AdapterMessage], None]
MarketDataHandler = Callable[[MarketEvent | EndOfStream], None]


class ExchangeAdapter(Protocol):
    """Wire-level collaborator behind the live feed and live venue.

    Acks, rejects, cancels and fills are published through the order
    handler as ``OrderUpdate`` and ``Fill`` messages. Any call may raise
    ``VenueUnavailableError``.
    """

    def connect(self) -> None:
        """Open or re-open the exchange session."""

    def submit_order(self, order: Order) -> None:
        """Send a new order keyed by ``order.order_id``."""

    def cancel_order(self, order_id: str) -> None:
        """Request cancellation of a working order."""

    def query_order(self, order_id: str) -> OrderStatusReport:
        """Return the exchange's current view of an order."""

    def subscribe_orders(self, handler: OrderHandler) -> None:
        """Register the consumer for order traffic."""

    def subscribe_market_data(self, handler: MarketDataHandler) -> None:
        """Register the consumer for market data."""

    def poll(self) -> None:
        """Fetch pending traffic for pull-based adapters; push adapters do nothing."""
