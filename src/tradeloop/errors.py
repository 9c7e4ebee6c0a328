"""Exception taxonomy for the execution core."""

from __future__ import annotations


class TradeloopError(Exception):
    """Base exception for all tradeloop errors."""


class ConfigError(TradeloopError, ValueError):
    """Raised when runtime configuration is invalid or missing."""


class FeedError(TradeloopError):
    """Raised when a market data feed cannot continue."""


class FeedGapError(FeedError):
    """Raised when a live feed detects a sequence-number discontinuity."""

    def __init__(self, instrument: str, expected: int, received: int) -> None:
        super().__init__(
            f"{instrument}: sequence gap, expected {expected} but received {received}"
        )
        self.instrument = instrument
        self.expected = expected
        self.received = received


class FeedOrderError(FeedError):
    """Raised when a historical source yields events out of timestamp order."""


class VenueError(TradeloopError):
    """Raised when an execution venue operation fails."""


class VenueUnavailableError(VenueError):
    """Raised when the venue connection is lost or cannot be established."""


class OrderRejected(VenueError):
    """Raised when a venue refuses a single order."""

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"order {order_id} rejected: {reason}")
        self.order_id = order_id
        self.reason = reason


class RiskLimitExceeded(TradeloopError):
    """Raised when an order fails a pre-trade risk check."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class ReconciliationConflict(TradeloopError):
    """Raised when a live report cannot be matched to a known order."""

    def __init__(self, order_id: str | None, message: str) -> None:
        super().__init__(f"order {order_id or '<unknown>'}: {message}")
        self.order_id = order_id


class StrategyError(TradeloopError):
    """Raised when a strategy callback fails."""
