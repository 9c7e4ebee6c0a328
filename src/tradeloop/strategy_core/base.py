"""Event-driven strategy contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from tradeloop.domain.models import (
    Fill,
    MarketEvent,
    OrderIntent,
    PortfolioSnapshot,
    Rejection,
)


class Strategy(ABC):
    """Base strategy interface.

    Strategies only return intents. The engine owns orders and the portfolio;
    the snapshot passed in is read-only and reflects every fill produced by
    earlier events.
    """

    strategy_id: str

    @abstractmethod
    def on_event(
        self,
        event: MarketEvent,
        portfolio: PortfolioSnapshot,
    ) -> Iterable[OrderIntent]:
        """Return order or cancel intents in response to a market event."""

    def on_fill(self, fill: Fill, portfolio: PortfolioSnapshot) -> Iterable[OrderIntent]:
        """Optionally adjust after a fill has been applied."""
        _ = (fill, portfolio)
        return ()

    def on_reject(self, rejection: Rejection) -> None:
        """Observe a risk or venue rejection of one of this strategy's orders."""
        _ = rejection
