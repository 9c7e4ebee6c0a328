"""Simple momentum strategy with deterministic target sizing."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from tradeloop.domain.models import MarketEvent, OrderIntent, PortfolioSnapshot
from tradeloop.strategy_core.base import Strategy
from tradeloop.strategy_core.sizing import momentum_to_target
from tradeloop.strategy_core.targets import orders_for_target


@dataclass(frozen=True)
class MomentumParams:
    """Parameter set for momentum strategy."""

    lookback_events: int = 10
    threshold: float = 0.01
    max_abs_qty: float = 2.0


def default_momentum_params() -> MomentumParams:
    return MomentumParams()


class MomentumStrategy(Strategy):
    """Target long on positive momentum and short on negative momentum."""

    strategy_id = "momentum"

    def __init__(self, params: MomentumParams) -> None:
        if params.lookback_events <= 0:
            raise ValueError("lookback_events must be positive")
        if params.max_abs_qty <= 0:
            raise ValueError("max_abs_qty must be positive")
        if params.threshold < 0:
            raise ValueError("threshold must be non-negative")
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
            event.instrument, deque(maxlen=self.params.lookback_events + 1)
        )
        window.append(price)
        if len(window) <= self.params.lookback_events:
            return []
        reference_price = window[0]
        if reference_price == 0:
            return []
        momentum_score = (price - reference_price) / reference_price
        target = momentum_to_target(
            momentum_score=momentum_score,
            max_abs_qty=self.params.max_abs_qty,
            threshold=self.params.threshold,
        )
        return orders_for_target(event.instrument, portfolio.quantity(event.instrument), target)
