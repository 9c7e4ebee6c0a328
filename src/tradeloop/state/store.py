"""Run archive contract used by runtime."""

from __future__ import annotations

from typing import Any, Protocol

from tradeloop.domain.models import Fill, Order


class StateStore(Protocol):
    """Persistence API for runs, orders and fills."""

    def record_run(
        self,
        run_id: str,
        mode: str,
        strategy_id: str,
        instruments: list[str],
    ) -> None:
        """Persist run metadata."""

    def save_order(self, run_id: str, order: Order) -> None:
        """Insert or update one order in its latest status."""

    def save_fill(self, run_id: str, fill: Fill) -> None:
        """Persist a fill; saving the same fill id twice is a no-op."""

    def finish_run(self, run_id: str, state: str, halt_reason: str | None) -> None:
        """Record how the run ended."""

    def list_orders(self, run_id: str) -> list[dict[str, Any]]:
        """Return archived orders for a run."""

    def list_fills(self, run_id: str) -> list[dict[str, Any]]:
        """Return archived fills for a run."""

    def close(self) -> None:
        """Close persistence resources."""


class NoopStateStore:
    """No-op state store for backtests that are not archived."""

    def record_run(self, run_id: str, mode: str, strategy_id: str, instruments: list[str]) -> None:
        _ = (run_id, mode, strategy_id, instruments)

    def save_order(self, run_id: str, order: Order) -> None:
        _ = (run_id, order)

    def save_fill(self, run_id: str, fill: Fill) -> None:
        _ = (run_id, fill)

    def finish_run(self, run_id: str, state: str, halt_reason: str | None) -> None:
        _ = (run_id, state, halt_reason)

    def list_orders(self, run_id: str) -> list[dict[str, Any]]:
        _ = run_id
        return []

    def list_fills(self, run_id: str) -> list[dict[str, Any]]:
        _ = run_id
        return []

    def close(self) -> None:
        return None
