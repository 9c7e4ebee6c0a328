"""SMA crossover target-position strategy."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from tradeloop.domain.models import MarketEvent, OrderIntent, PortfolioSnapshot
from tradeloop.strategy_core.base import Strategy
from tradeloop.strategy_core.targets import orders_for_target


@dataclass(frozen=True)
class SmaCrossoverParams:
    """Parameter set for SMA crossover."""

    short_window: int = 20
    long_window: int = 50
    target_qty: float = 1.0
    allow_short: bool = True


def default_sma_crossover_params() -> SmaCrossoverParams:
    """Default SMA strategy configuration kept local to this module."""
    return SmaCrossoverParams()


class SmaCrossoverStrategy(Strategy):
    """Move between long, short, and flat by SMA regime.

    Prices are the reference price of each event, kept in a rolling window
    per instrument, so the strategy sees exactly one new price per event.
    """

    strategy_id = "sma_crossover"

    def __init__(self, params: SmaCrossoverParams) -> None:
        if params.short_window <= 0 or params.long_window <= 0:
            raise ValueError("SMA windows must be positive")
        if params.short_window >= params.long_window:
            raise ValueError("short_window must be less than long_window")
        if params.target_qty <= 0:
            raise ValueError("target_qty must be positive")
        self.params = params
        self._prices: dict[str, deque[float]] = {}

    def on_event(
        self,
        event: MarketEvent,
        portfolio: PortfolioSnapshot,
    ) -> Iterable[OrderIntent]:
        price = event.reference_price()
        if price is None:
            return []
        window = self._prices.setdefault(
            event.instrument, deque(maxlen=self.params.long_window)
        )
        window.append(price)
        target = self.target_for(event.instrument)
        if target is None:
            return []
        return orders_for_target(event.instrument, portfolio.quantity(event.instrument), target)

    def target_for(self, instrument: str) -> float | None:
        window = self._prices.get(instrument)
        if window is None or len(window) < self.params.long_window:
            return None
        prices = list(window)
        short_sma = sum(prices[-self.params.short_window :]) / self.params.short_window
        long_sma = sum(prices) / self.params.long_window
        if short_sma > long_sma:
            return self.params.target_qty
        if short_sma < long_sma:
            return -self.params.target_qty if self.params.allow_short else 0.0
        return 0.0
