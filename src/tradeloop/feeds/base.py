"""Event feed and historical source contracts."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Final, Protocol

from tradeloop.domain.models import MarketEvent


class EndOfStream:
    """Marker returned by ``EventFeed.next`` once a finite feed is exhausted."""

    _instance: EndOfStream | None = None

    def __new__(cls) -> EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM: Final = EndOfStream()

FeedItem = MarketEvent | EndOfStream | None


class EventFeed(Protocol):
    """Ordered source of market events for the engine."""

    restartable: bool

    def next(self, timeout: float | None = None) -> FeedItem:
        """Return the next event, ``END_OF_STREAM``, or ``None`` when idle (live only)."""

    def close(self) -> None:
        """Release feed resources."""


class HistoricalSource(Protocol):
    """Storage collaborator consumed by the backtest feed."""

    def range(
        self,
        instrument: str,
        start: datetime | None,
        end: datetime | None,
    ) -> Iterable[MarketEvent]:
        """Return events for one instrument in exchange order."""
