"""Event sinks and the per-run Plotly report generator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import pandas as pd
import plotly.express as px

from tradeloop.domain.events import TradeEvent


class EventSink(Protocol):
    """Consumer of the engine's report stream."""

    def emit(self, event: TradeEvent) -> None:
        """Record one event."""


class JsonlEventSink:
    """Append-only JSONL writer."""

    def __init__(self, path: str | Path) -> None:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.path = output_path

    def emit(self, event: TradeEvent) -> None:
        record = event.to_record()
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True))
            handle.write("\n")


class MemoryEventSink:
    """Keep events in memory, for viewers and tests."""

    def __init__(self) -> None:
        self.events: list[TradeEvent] = []

    def emit(self, event: TradeEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[TradeEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def records(self) -> list[dict[str, Any]]:
        return [event.to_record() for event in self.events]


def load_events(path: str | Path) -> list[dict[str, Any]]:
    """Load JSONL records from disk."""
    records: list[dict[str, Any]] = []
    input_path = Path(path)
    if not input_path.exists():
        return records
    with input_path.open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            records.append(json.loads(text))
    return records


def generate_plotly_report(events_jsonl_path: str | Path, output_html_path: str | Path) -> None:
    """Render equity curve, fills and event counts for one run."""
    events = load_events(events_jsonl_path)
    output = Path(output_html_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    if not events:
        empty_df = pd.DataFrame({"event_type": ["none"], "count": [0]})
        figure = px.bar(empty_df, x="event_type", y="count", title="Run Event Summary")
        figure.write_html(str(output), include_plotlyjs="cdn")
        return

    frame = pd.DataFrame(
        [
            {
                "ts": event.get("ts"),
                "seq": event.get("seq", 0),
                "event_type": event.get("event_type"),
                "payload": event.get("payload", {}),
            }
            for event in events
        ]
    )
    frame["ts"] = pd.to_datetime(frame["ts"], utc=True, errors="coerce")

    figures = []
    equity = frame[frame["event_type"] == "portfolio"]
    if not equity.empty:
        equity_frame = pd.DataFrame(
            {
                "ts": equity["ts"],
                "equity": [payload.get("equity") for payload in equity["payload"]],
                "cash": [payload.get("cash") for payload in equity["payload"]],
            }
        )
        figures.append(px.line(equity_frame, x="ts", y=["equity", "cash"], title="Equity"))

    fills = frame[frame["event_type"] == "fill"]
    if not fills.empty:
        fill_frame = pd.DataFrame(
            {
                "ts": fills["ts"],
                "price": [payload.get("price") for payload in fills["payload"]],
                "quantity": [payload.get("quantity") for payload in fills["payload"]],
                "side": [payload.get("side") for payload in fills["payload"]],
                "instrument": [payload.get("instrument") for payload in fills["payload"]],
            }
        )
        figures.append(
            px.scatter(
                fill_frame,
                x="ts",
                y="price",
                color="side",
                symbol="instrument",
                hover_data=["quantity"],
                title="Fills",
            )
        )

    summary = frame.groupby("event_type", dropna=False).size().reset_index(name="count")
    figures.append(px.bar(summary, x="event_type", y="count", title="Run Event Counts"))

    html_parts = [
        "<html><head><meta charset='utf-8'><title>tradeloop run report</title></head><body>"
    ]
    for index, figure in enumerate(figures):
        html_parts.append(
            figure.to_html(full_html=False, include_plotlyjs="cdn" if index == 0 else False)
        )
    html_parts.append("</body></html>")
    output.write_text("".join(html_parts), encoding="utf-8")
