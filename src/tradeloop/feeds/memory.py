"""In-memory historical source."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime

from tradeloop.domain.models import MarketEvent


class InMemorySource:
    """Serve pre-built events, grouped by instrument, in insertion order."""

    def __init__(self, events: Iterable[MarketEvent]) -> None:
        self._events: dict[str, list[MarketEvent]] = {}
        for event in events:
            self._events.setdefault(event.instrument, []).append(event)

    def range(
        self,
        instrument: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterator[MarketEvent]:
        for event in self._events.get(instrument, []):
            if start is not None and event.timestamp < start:
                continue
            if end is not None and event.timestamp > end:
                continue
            yield event

    @property
    def instruments(self) -> list[str]:
        return list(self._events)
