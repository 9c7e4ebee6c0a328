"""Domain models and event types."""

from .events import TradeEvent
from .models import (
    CancelRequest,
    CancelResult,
    EventKind,
    Fill,
    InstrumentSpec,
    MarketEvent,
    Mode,
    Order,
    OrderAck,
    OrderIntent,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdate,
    PortfolioSnapshot,
    Position,
    Rejection,
    RiskLimits,
    VenueUpdate,
)

__all__ = [
    "CancelRequest",
    "CancelResult",
    "EventKind",
    "Fill",
    "InstrumentSpec",
    "MarketEvent",
    "Mode",
    "Order",
    "OrderAck",
    "OrderIntent",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "OrderUpdate",
    "PortfolioSnapshot",
    "Position",
    "Rejection",
    "RiskLimits",
    "TradeEvent",
    "VenueUpdate",
]
