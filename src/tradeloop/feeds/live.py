"""Live feed fed by an exchange adapter thread."""

from __future__ import annotations

import logging
import queue
from collections.abc import Sequence
from typing import TYPE_CHECKING

from tradeloop.domain.models import MarketEvent
from tradeloop.errors import FeedGapError
from tradeloop.feeds.base import END_OF_STREAM, EndOfStream, FeedItem

if TYPE_CHECKING:
    from tradeloop.adapters.base import ExchangeAdapter

logger = logging.getLogger(__name__)


class LiveFeed:
    """Hand adapter market data to the engine loop in arrival order.

    The adapter's thread is the only producer and the engine loop the only
    consumer. When an instrument's exchange sequence skips ahead,
    ``next`` raises ``FeedGapError`` and returns the revealing event on the
    following call. Replayed (lower) sequence numbers are dropped.
    """

    restartable = False

    def __init__(
        self,
        adapter: ExchangeAdapter,
        instruments: Sequence[str],
        poll_timeout: float = 0.25,
    ) -> None:
        self.instruments = frozenset(instruments)
        self.poll_timeout = poll_timeout
        self._queue: queue.Queue[MarketEvent | EndOfStream] = queue.Queue()
        self._expected: dict[str, int] = {}
        self._held: MarketEvent | None = None
        self._sequence = 0
        self._ended = False
        adapter.subscribe_market_data(self._on_market_data)

    def _on_market_data(self, item: MarketEvent | EndOfStream) -> None:
        if isinstance(item, EndOfStream) or item.instrument in self.instruments:
            self._queue.put(item)

    def next(self, timeout: float | None = None) -> FeedItem:
        if self._held is not None:
            event, self._held = self._held, None
            return self._stamp(event)
        if self._ended:
            return END_OF_STREAM
        wait = self.poll_timeout if timeout is None else timeout
        try:
            item = self._queue.get(timeout=wait)
        except queue.Empty:
            return None
        if isinstance(item, EndOfStream):
            self._ended = True
            return END_OF_STREAM
        if item.exchange_sequence is None:
            return self._stamp(item)

        expected = self._expected.get(item.instrument)
        if expected is not None and item.exchange_sequence < expected:
            logger.debug(
                "dropping replayed %s sequence %s", item.instrument, item.exchange_sequence
            )
            return None
        self._expected[item.instrument] = item.exchange_sequence + 1
        if expected is not None and item.exchange_sequence > expected:
            self._held = item
            raise FeedGapError(item.instrument, expected, item.exchange_sequence)
        return self._stamp(item)

    def close(self) -> None:
        self._ended = True

    def _stamp(self, event: MarketEvent) -> MarketEvent:
        self._sequence += 1
        return event.with_sequence(self._sequence)
