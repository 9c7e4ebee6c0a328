"""Core trading domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Literal

Mode = Literal["backtest", "live"]

QTY_EPSILON = 1e-9


class OrderSide(StrEnum):
    """Supported order directions."""

    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is OrderSide.BUY else -1


class OrderType(StrEnum):
    """Supported order types."""

    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(StrEnum):
    """Order lifecycle states.

    ``UNKNOWN`` is only entered by live venues when an acknowledgement timed
    out or the connection dropped; reconciliation moves the order out of it.
    """

    NEW = "new"
    SUBMITTED = "submitted"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED}


class EventKind(StrEnum):
    """Market event categories produced by feeds."""

    QUOTE = "quote"
    TRADE = "trade"
    BOOK_DELTA = "book_delta"


class CancelResult(StrEnum):
    """Outcome of a cancel request.

    ``PENDING`` means a live venue accepted the request but has not confirmed
    it yet; the confirmation arrives later as an order update.
    """

    CANCELLED = "cancelled"
    ALREADY_TERMINAL = "already_terminal"
    PENDING = "pending"


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class MarketEvent:
    """Single quote, trade or order-book delta.

    ``sequence`` is assigned by the feed at ingestion and breaks timestamp
    ties. ``exchange_sequence`` is whatever the venue stamped on the message,
    when it stamps anything.
    """

    timestamp: datetime
    instrument: str
    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    sequence: int = 0
    exchange_sequence: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind(self.kind))
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def with_sequence(self, sequence: int) -> MarketEvent:
        return replace(self, sequence=sequence, payload=dict(self.payload))

    def executable_price(self, side: OrderSide) -> float | None:
        """Price an order on ``side`` could trade at against this event."""
        if self.kind is EventKind.TRADE:
            return _optional_float(self.payload.get("price"))
        if self.kind is EventKind.QUOTE:
            return _optional_float(self.payload.get("ask" if side is OrderSide.BUY else "bid"))
        if not self._book_side_matches(side):
            return None
        size = _optional_float(self.payload.get("size"))
        if size is not None and size <= 0:
            return None
        return _optional_float(self.payload.get("price"))

    def executable_size(self, side: OrderSide) -> float | None:
        """Size available to ``side``; ``None`` when the event carries no size."""
        if self.kind is EventKind.TRADE:
            return _optional_float(self.payload.get("size"))
        if self.kind is EventKind.QUOTE:
            key = "ask_size" if side is OrderSide.BUY else "bid_size"
            return _optional_float(self.payload.get(key))
        if not self._book_side_matches(side):
            return None
        return _optional_float(self.payload.get("size"))

    def reference_price(self) -> float | None:
        """Best single price for marking positions."""
        if self.kind is EventKind.QUOTE:
            bid = _optional_float(self.payload.get("bid"))
            ask = _optional_float(self.payload.get("ask"))
            if bid is not None and ask is not None:
                return (bid + ask) / 2.0
            return bid if bid is not None else ask
        return _optional_float(self.payload.get("price"))

    def _book_side_matches(self, side: OrderSide) -> bool:
        book_side = str(self.payload.get("side", "")).strip().lower()
        wanted = "ask" if side is OrderSide.BUY else "bid"
        return book_side == wanted

    def to_record(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "instrument": self.instrument,
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "sequence": self.sequence,
            "exchange_sequence": self.exchange_sequence,
        }


@dataclass(frozen=True)
class OrderRequest:
    """Order intent produced by a strategy."""

    instrument: str
    side: OrderSide
    quantity: float
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    tag: str | None = None

    @property
    def signed_quantity(self) -> float:
        return self.side.sign * float(self.quantity)


@dataclass(frozen=True)
class CancelRequest:
    """Intent to cancel a previously submitted order."""

    order_id: str


OrderIntent = OrderRequest | CancelRequest


@dataclass
class Order:
    """Engine-owned order record. Venues only ever see it by id."""

    order_id: str
    instrument: str
    side: OrderSide
    quantity: float
    order_type: OrderType = OrderType.MARKET
    limit_price: float | None = None
    submitted_at: datetime | None = None
    status: OrderStatus = OrderStatus.NEW
    filled_quantity: float = 0.0
    average_fill_price: float | None = None
    venue_order_id: str | None = None
    reject_reason: str | None = None
    tag: str | None = None

    @classmethod
    def from_request(
        cls,
        order_id: str,
        request: OrderRequest,
        submitted_at: datetime | None,
    ) -> Order:
        return cls(
            order_id=order_id,
            instrument=request.instrument,
            side=request.side,
            quantity=float(request.quantity),
            order_type=request.order_type,
            limit_price=request.limit_price,
            submitted_at=submitted_at,
            tag=request.tag,
        )

    @property
    def remaining_quantity(self) -> float:
        return max(self.quantity - self.filled_quantity, 0.0)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def record_fill(self, quantity: float, price: float) -> None:
        """Accumulate one fill; callers guard against over-fills."""
        previous_notional = self.filled_quantity * (self.average_fill_price or 0.0)
        self.filled_quantity += quantity
        self.average_fill_price = (previous_notional + quantity * price) / self.filled_quantity
        if self.remaining_quantity <= QTY_EPSILON:
            self.status = OrderStatus.FILLED
        else:
            self.status = OrderStatus.PARTIALLY_FILLED

    def to_record(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "instrument": self.instrument,
            "side": self.side.value,
            "quantity": self.quantity,
            "order_type": self.order_type.value,
            "limit_price": self.limit_price,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "status": self.status.value,
            "filled_quantity": self.filled_quantity,
            "average_fill_price": self.average_fill_price,
            "venue_order_id": self.venue_order_id,
            "reject_reason": self.reject_reason,
            "tag": self.tag,
        }


@dataclass(frozen=True)
class Fill:
    """Execution of some or all of an order's quantity."""

    fill_id: str
    order_id: str
    instrument: str
    side: OrderSide
    quantity: float
    price: float
    timestamp: datetime
    fee: float = 0.0

    @property
    def signed_quantity(self) -> float:
        return self.side.sign * self.quantity

    def to_record(self) -> dict[str, Any]:
        return {
            "fill_id": self.fill_id,
            "order_id": self.order_id,
            "instrument": self.instrument,
            "side": self.side.value,
            "quantity": self.quantity,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "fee": self.fee,
        }


@dataclass(frozen=True)
class OrderUpdate:
    """Non-fill order status change reported by a venue."""

    order_id: str
    status: OrderStatus
    timestamp: datetime | None = None
    reason: str | None = None
    venue_order_id: str | None = None


@dataclass(frozen=True)
class OrderAck:
    """Submission result returned by venues."""

    order_id: str
    status: OrderStatus = OrderStatus.SUBMITTED
    venue_order_id: str | None = None


VenueUpdate = Fill | OrderUpdate


@dataclass(frozen=True)
class Position:
    """Signed position for one instrument."""

    instrument: str
    quantity: float = 0.0
    average_price: float = 0.0
    realized_pnl: float = 0.0

    @property
    def is_flat(self) -> bool:
        return abs(self.quantity) <= QTY_EPSILON

    def unrealized_pnl(self, mark: float) -> float:
        return self.quantity * (mark - self.average_price)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Read-only portfolio view handed to strategies and sinks."""

    cash: float
    equity: float
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    fees: float = 0.0
    positions: Mapping[str, Position] = field(default_factory=dict)
    marks: Mapping[str, float] = field(default_factory=dict)

    def position(self, instrument: str) -> Position:
        return self.positions.get(instrument, Position(instrument=instrument))

    def quantity(self, instrument: str) -> float:
        return self.position(instrument).quantity

    def to_record(self) -> dict[str, Any]:
        return {
            "cash": round(self.cash, 8),
            "equity": round(self.equity, 8),
            "realized_pnl": round(self.realized_pnl, 8),
            "unrealized_pnl": round(self.unrealized_pnl, 8),
            "fees": round(self.fees, 8),
            "positions": {
                instrument: {
                    "quantity": position.quantity,
                    "average_price": position.average_price,
                    "realized_pnl": position.realized_pnl,
                }
                for instrument, position in sorted(self.positions.items())
            },
            "marks": dict(sorted(self.marks.items())),
        }


@dataclass(frozen=True)
class RiskLimits:
    """Pre-trade limits, fixed for the duration of a run."""

    max_position_per_instrument: float = 100.0
    max_notional_exposure: float | None = None
    max_orders_per_window: int | None = None
    rate_window_seconds: float = 1.0
    allow_short: bool = True


@dataclass(frozen=True)
class InstrumentSpec:
    """Tradability constraints the simulated venue validates against."""

    instrument: str
    min_size: float = 0.0
    size_increment: float = 0.0
    price_increment: float = 0.0


@dataclass(frozen=True)
class Rejection:
    """Order-level rejection reported back to the strategy."""

    order_id: str | None
    instrument: str
    reason: str
    source: Literal["risk", "venue"]
    timestamp: datetime | None = None
    detail: str | None = None
