"""Logging helpers."""

from .event_sink import (
    EventSink,
    JsonlEventSink,
    MemoryEventSink,
    generate_plotly_report,
    load_events,
)
from .logger import HumanLogger

__all__ = [
    "EventSink",
    "HumanLogger",
    "JsonlEventSink",
    "MemoryEventSink",
    "generate_plotly_report",
    "load_events",
]
