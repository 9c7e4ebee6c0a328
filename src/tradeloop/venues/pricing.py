"""Slippage and fee models for the simulated venue.

Both are plain callables so that custom models can be passed in without
subclassing anything.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from tradeloop.domain.models import MarketEvent, OrderSide

SlippageModel = Callable[[OrderSide, float, MarketEvent], float]
FeeModel = Callable[[float, float], float]


def no_slippage(side: OrderSide, price: float, event: MarketEvent) -> float:
    _ = (side, event)
    return price


@dataclass(frozen=True)
class FixedBpsSlippage:
    """Move the fill price against the order by a fixed number of basis points."""

    bps: float

    def __post_init__(self) -> None:
        if self.bps < 0:
            raise ValueError("bps must be non-negative")

    def __call__(self, side: OrderSide, price: float, event: MarketEvent) -> float:
        _ = event
        return price * (1.0 + side.sign * self.bps / 10_000.0)


@dataclass(frozen=True)
class FixedAmountSlippage:
    """Move the fill price against the order by a fixed amount."""

    amount: float

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("amount must be non-negative")

    def __call__(self, side: OrderSide, price: float, event: MarketEvent) -> float:
        _ = event
        return price + side.sign * self.amount


def no_fees(quantity: float, price: float) -> float:
    _ = (quantity, price)
    return 0.0


@dataclass(frozen=True)
class PercentageFee:
    """Charge a fraction of traded notional."""

    rate: float

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError("rate must be non-negative")

    def __call__(self, quantity: float, price: float) -> float:
        return abs(quantity * price) * self.rate
