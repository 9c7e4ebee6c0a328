from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tradeloop.domain.models import EventKind, MarketEvent
from tradeloop.errors import FeedOrderError
from tradeloop.feeds.base import END_OF_STREAM
from tradeloop.feeds.historical import HistoricalFeed
from tradeloop.feeds.memory import InMemorySource

T0 = datetime(2024, 1, 2, 9, 30, tzinfo=UTC)


def _trade(instrument: str, seconds: int, price: float) -> MarketEvent:
    return MarketEvent(
        T0 + timedelta(seconds=seconds), instrument, EventKind.TRADE, {"price": price}
    )


def _drain(feed: HistoricalFeed) -> list[MarketEvent]:
    events: list[MarketEvent] = []
    while True:
        item = feed.next()
        if item is END_OF_STREAM:
            return events
        assert isinstance(item, MarketEvent)
        events.append(item)


def test_merges_by_timestamp_with_instrument_order_breaking_ties() -> None:
    source = InMemorySource(
        [
            _trade("AAA", 0, 1.0),
            _trade("AAA", 2, 2.0),
            _trade("BBB", 0, 10.0),
            _trade("BBB", 1, 11.0),
        ]
    )
    feed = HistoricalFeed(source, ["BBB", "AAA"])

    events = _drain(feed)

    assert [(e.instrument, e.payload["price"]) for e in events] == [
        ("BBB", 10.0),
        ("AAA", 1.0),
        ("BBB", 11.0),
        ("AAA", 2.0),
    ]
    assert [e.sequence for e in events] == [1, 2, 3, 4]
    assert feed.next() is END_OF_STREAM


def test_restart_replays_identical_sequence() -> None:
    source = InMemorySource([_trade("AAA", i, 100.0 + i) for i in range(5)])
    feed = HistoricalFeed(source, ["AAA"])

    first = _drain(feed)
    feed.restart()
    second = _drain(feed)

    assert [e.to_record() for e in first] == [e.to_record() for e in second]
    assert feed.restartable


def test_start_and_end_bound_the_range() -> None:
    source = InMemorySource([_trade("AAA", i, float(i)) for i in range(10)])
    feed = HistoricalFeed(
        source, ["AAA"], start=T0 + timedelta(seconds=3), end=T0 + timedelta(seconds=5)
    )

    assert [e.payload["price"] for e in _drain(feed)] == [3.0, 4.0, 5.0]


def test_out_of_order_source_is_refused() -> None:
    source = InMemorySource([_trade("AAA", 5, 1.0), _trade("AAA", 1, 2.0)])
    feed = HistoricalFeed(source, ["AAA"])

    assert isinstance(feed.next(), MarketEvent)
    with pytest.raises(FeedOrderError):
        feed.next()


def test_requires_instruments() -> None:
    with pytest.raises(ValueError):
        HistoricalFeed(InMemorySource([]), [])
