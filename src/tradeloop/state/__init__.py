"""Run archive interfaces and implementations."""

from .sqlite_store import SqliteStateStore
from .store import NoopStateStore, StateStore

__all__ = ["NoopStateStore", "SqliteStateStore", "StateStore"]
