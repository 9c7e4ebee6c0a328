"""Restartable backtest feed over a historical source."""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Sequence
from datetime import datetime

from tradeloop.domain.models import MarketEvent
from tradeloop.errors import FeedOrderError
from tradeloop.feeds.base import END_OF_STREAM, FeedItem, HistoricalSource

_MergeKey = tuple[datetime, int, int]


class HistoricalFeed:
    """Merge per-instrument histories into one deterministic event sequence.

    Events are ordered by timestamp; ties go to the instrument listed first,
    then to source order. Sequence numbers are assigned while merging, so
    re-opening the same range yields exactly the same stream.
    """

    restartable = True

    def __init__(
        self,
        source: HistoricalSource,
        instruments: Sequence[str],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> None:
        ordered = list(dict.fromkeys(instruments))
        if not ordered:
            raise ValueError("HistoricalFeed needs at least one instrument")
        if start is not None and end is not None and end < start:
            raise ValueError("end must not be earlier than start")
        self.source = source
        self.instruments = ordered
        self.start = start
        self.end = end
        self._iterator: Iterator[MarketEvent] | None = None

    def next(self, timeout: float | None = None) -> FeedItem:
        _ = timeout
        if self._iterator is None:
            self._iterator = self._open()
        return next(self._iterator, END_OF_STREAM)

    def restart(self) -> None:
        """Rewind to the first event of the range."""
        self.close()

    def close(self) -> None:
        if self._iterator is not None:
            close = getattr(self._iterator, "close", None)
            if close is not None:
                close()
        self._iterator = None

    def __iter__(self) -> Iterator[MarketEvent]:
        return self._open()

    def _open(self) -> Iterator[MarketEvent]:
        streams = [
            self._keyed(index, instrument) for index, instrument in enumerate(self.instruments)
        ]
        merged = heapq.merge(*streams, key=lambda item: item[0])
        for sequence, (_, event) in enumerate(merged, start=1):
            yield event.with_sequence(sequence)

    def _keyed(self, index: int, instrument: str) -> Iterator[tuple[_MergeKey, MarketEvent]]:
        previous: datetime | None = None
        events: Iterable[MarketEvent] = self.source.range(instrument, self.start, self.end)
        for position, event in enumerate(events):
            if event.instrument != instrument:
                raise FeedOrderError(
                    f"source returned {event.instrument} while reading {instrument}"
                )
            if previous is not None and event.timestamp < previous:
                raise FeedOrderError(
                    f"{instrument}: event at {event.timestamp.isoformat()} "
                    f"precedes {previous.isoformat()}"
                )
            previous = event.timestamp
            yield (event.timestamp, index, position), event
