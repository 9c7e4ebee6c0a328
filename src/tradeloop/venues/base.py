"""Execution venue contract."""

from __future__ import annotations

from typing import Protocol

from tradeloop.domain.models import CancelResult, MarketEvent, Order, OrderAck, VenueUpdate


class Venue(Protocol):
    """Interface shared by the simulated and live venues.

    ``submit`` raises ``OrderRejected`` for single-order refusals and
    ``VenueUnavailableError`` when the venue cannot be reached.
    """

    def submit(self, order: Order) -> OrderAck:
        """Accept an order for execution."""

    def cancel(self, order_id: str) -> CancelResult:
        """Cancel a working order."""

    def on_market_event(self, event: MarketEvent) -> None:
        """Observe a market event before the strategy sees it."""

    def drain(self) -> list[VenueUpdate]:
        """Return fills and order updates produced since the last drain."""

    def reconnect(self) -> None:
        """Re-establish the session and reconcile outstanding orders."""
