"""Market event feeds."""

from .base import END_OF_STREAM, EndOfStream, EventFeed, FeedItem, HistoricalSource
from .csv_source import CsvHistoricalSource
from .historical import HistoricalFeed
from .live import LiveFeed
from .memory import InMemorySource

__all__ = [
    "END_OF_STREAM",
    "CsvHistoricalSource",
    "EndOfStream",
    "EventFeed",
    "FeedItem",
    "HistoricalFeed",
    "HistoricalSource",
    "InMemorySource",
    "LiveFeed",
]
