"""CSV-backed historical source."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import pandas as pd

from tradeloop.domain.models import EventKind, MarketEvent


class CsvHistoricalSource:
    """Load per-instrument CSV files and expose them as market events.

    Three layouts are recognised from the column names:

    * quotes: ``bid`` and ``ask`` (optional ``bid_size``/``ask_size``)
    * trades: ``price`` (optional ``size``)
    * OHLCV bars: ``open/high/low/close/volume``; each bar becomes one trade
      at the close, sized by the bar volume
    """

    date_column_candidates = ("timestamp", "datetime", "date", "time")

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._frames: dict[str, tuple[EventKind, pd.DataFrame]] = {}

    def range(
        self,
        instrument: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterator[MarketEvent]:
        kind, frame = self._load(instrument)
        if start is not None:
            frame = frame[frame.index >= pd.Timestamp(start)]
        if end is not None:
            frame = frame[frame.index <= pd.Timestamp(end)]
        for timestamp, row in zip(frame.index, frame.to_dict("records"), strict=True):
            yield MarketEvent(
                timestamp=timestamp.to_pydatetime(),
                instrument=instrument,
                kind=kind,
                payload={key: value for key, value in row.items() if not pd.isna(value)},
            )

    def _load(self, instrument: str) -> tuple[EventKind, pd.DataFrame]:
        cached = self._frames.get(instrument)
        if cached is not None:
            return cached
        path = self._resolve_path(instrument)
        if path is None:
            raise ValueError(f"No CSV found for {instrument} under {self.data_dir}")
        loaded = self._normalize(pd.read_csv(path), instrument)
        self._frames[instrument] = loaded
        return loaded

    def _resolve_path(self, instrument: str) -> Path | None:
        market, bare_symbol = self._split_market_symbol(instrument)
        names = [f"{bare_symbol.upper()}.csv", f"{bare_symbol.lower()}.csv"]
        candidates: list[Path] = []
        if market is not None:
            for directory in (market.upper(), market.lower()):
                candidates.extend(self.data_dir / directory / name for name in names)
        candidates.extend(self.data_dir / name for name in names)
        for candidate in dict.fromkeys(candidates):
            if candidate.exists():
                return candidate
        return None

    @staticmethod
    def _split_market_symbol(symbol: str) -> tuple[str | None, str]:
        value = symbol.strip()
        if ":" not in value:
            return None, value
        market, bare_symbol = (part.strip() for part in value.split(":", 1))
        if not market or not bare_symbol:
            return None, value
        return market, bare_symbol

    def _normalize(self, frame: pd.DataFrame, instrument: str) -> tuple[EventKind, pd.DataFrame]:
        frame = frame.rename(columns={column: column.strip().lower() for column in frame.columns})
        date_column = self._pick_date_column(frame)
        frame.index = pd.to_datetime(frame[date_column], utc=False)
        frame = frame.drop(columns=[date_column]).sort_index(kind="mergesort")

        if {"bid", "ask"} <= set(frame.columns):
            kind = EventKind.QUOTE
            columns = [c for c in ("bid", "ask", "bid_size", "ask_size") if c in frame.columns]
            required = ["bid", "ask"]
        elif "price" in frame.columns:
            kind = EventKind.TRADE
            columns = [c for c in ("price", "size") if c in frame.columns]
            required = ["price"]
        elif "close" in frame.columns:
            kind = EventKind.TRADE
            frame = frame.rename(columns={"close": "price", "volume": "size"})
            columns = [c for c in ("price", "size") if c in frame.columns]
            required = ["price"]
        else:
            raise ValueError(
                f"{instrument}: CSV needs bid/ask, price, or OHLCV close columns"
            )

        normalized = frame[columns].apply(pd.to_numeric, errors="coerce")
        normalized = normalized.dropna(subset=required)
        if normalized.empty:
            raise ValueError(f"{instrument}: data has no valid rows")
        return kind, normalized

    def _pick_date_column(self, frame: pd.DataFrame) -> str:
        for candidate in self.date_column_candidates:
            if candidate in frame.columns:
                return candidate
        candidates = ", ".join(self.date_column_candidates)
        raise ValueError(f"CSV missing date column. Expected one of: {candidates}")
