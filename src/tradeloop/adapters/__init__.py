"""Exchange adapters."""

from .alpaca import AlpacaAdapter
from .base import (
    AdapterMessage,
    Disconnected,
    ExchangeAdapter,
    MarketDataHandler,
    OrderHandler,
    OrderStatusReport,
)

__all__ = [
    "AdapterMessage",
    "AlpacaAdapter",
    "Disconnected",
    "ExchangeAdapter",
    "MarketDataHandler",
    "OrderHandler",
    "OrderStatusReport",
]
