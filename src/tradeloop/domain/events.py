"""Structured report stream models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .models import Mode

EVENT_TYPES = frozenset(
    {
        "run_started",
        "market_event",
        "order_update",
        "fill",
        "rejection",
        "portfolio",
        "feed_gap",
        "reconciliation_conflict",
        "venue_reconnect",
        "halted",
        "run_finished",
    }
)


@dataclass(frozen=True)
class TradeEvent:
    """Single record of the engine's read-only report stream.

    ``ts`` is market time when the engine knows it, so that two identical
    backtests produce identical streams.
    """

    run_id: str
    mode: Mode
    strategy_id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())
    seq: int = 0

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type: {self.event_type}")

    def to_record(self) -> dict[str, Any]:
        """Convert event to serializable dict."""
        return {
            "seq": self.seq,
            "ts": self.ts,
            "run_id": self.run_id,
            "mode": self.mode,
            "strategy_id": self.strategy_id,
            "event_type": self.event_type,
            "payload": self.payload,
        }
