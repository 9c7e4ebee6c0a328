"""Concise human-readable run logger."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime


class HumanLogger:
    """Console logger with fixed line types."""

    def __init__(self, level: str = "INFO") -> None:
        self._logger = logging.getLogger("tradeloop")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s | %(message)s", "%Y-%m-%d %H:%M:%S")
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    def run_started(
        self,
        run_id: str,
        mode: str,
        strategy_id: str,
        instruments: Sequence[str],
    ) -> None:
        self._logger.info(
            "start | %s | %s | %s | %s", run_id, mode, strategy_id, ",".join(instruments)
        )

    def order_submit(
        self,
        instrument: str,
        side: str,
        qty: float,
        order_id: str,
        reference_price: float | None = None,
    ) -> None:
        normalized_side = side.strip().lower()
        buy_amount = qty if normalized_side == "buy" else 0.0
        sell_amount = qty if normalized_side == "sell" else 0.0
        buy_amount_text = self._format_qty(buy_amount)
        sell_amount_text = self._format_qty(sell_amount)
        if reference_price is not None:
            buy_amount_text = f"{buy_amount_text} (${buy_amount * reference_price:,.2f})"
            sell_amount_text = f"{sell_amount_text} (${sell_amount * reference_price:,.2f})"
        parts = [
            f"submit | {instrument} | buy_amount {buy_amount_text} "
            f"| sell_amount {sell_amount_text}",
            f"id {self._short_id(order_id)}",
        ]
        if reference_price is not None:
            parts.append(f"ref ${reference_price:,.3f}")
        self._logger.info(" | ".join(parts))

    def order_update(
        self,
        order_id: str,
        status: str,
        reason: str | None = None,
        at: datetime | None = None,
    ) -> None:
        parts = [f"update | {self._short_id(order_id)} | {self._human_status(status)}"]
        if reason:
            parts.append(reason)
        if at is not None:
            parts.append(f"at {at.strftime('%H:%M:%S')}")
        self._logger.info(" | ".join(parts))

    def fill(
        self,
        instrument: str,
        side: str,
        qty: float,
        price: float,
        fee: float = 0.0,
    ) -> None:
        parts = [
            f"fill | {instrument} | {side} {self._format_qty(qty)} @ ${price:,.3f}",
            f"usd ${qty * price:,.2f}",
        ]
        if fee:
            parts.append(f"fee ${fee:,.4f}")
        self._logger.info(" | ".join(parts))

    def rejection(self, instrument: str, reason: str, source: str) -> None:
        self._logger.warning("reject | %s | %s | %s", instrument, source, reason)

    def feed_gap(self, message: str, fatal: bool) -> None:
        self._logger.warning("gap | %s | %s", "halting" if fatal else "continuing", message)

    def reconnect(self, attempt: int, delay: float, succeeded: bool) -> None:
        outcome = "ok" if succeeded else "failed"
        self._logger.warning(
            "reconnect | attempt %d | after %.2fs | %s", attempt, delay, outcome
        )

    def halted(self, reason: str) -> None:
        self._logger.error("halt | %s", reason)

    def portfolio(self, cash: float, equity: float, realized: float, unrealized: float) -> None:
        self._logger.info(
            "portfolio | cash $%s | equity $%s | realized %s | unrealized %s",
            f"{cash:,.2f}",
            f"{equity:,.2f}",
            f"{realized:+,.2f}",
            f"{unrealized:+,.2f}",
        )

    def position(self, instrument: str, qty: float, average_price: float) -> None:
        self._logger.info(
            "position | %s | qty %s | avg $%s",
            instrument,
            self._format_qty(qty, signed=True),
            f"{average_price:,.3f}",
        )

    def error(self, message: str) -> None:
        self._logger.error("error | %s", message)

    def run_pnl(
        self,
        equity: float,
        pnl: float,
        pnl_pct: float,
        start_equity: float | None = None,
    ) -> None:
        if start_equity is None:
            start_equity = equity - pnl
        self._logger.info(
            "pnl | session_start_equity $%s | session_end_equity $%s "
            "| session_pnl %s | session_pnl%% %s",
            f"{start_equity:,.2f}",
            f"{equity:,.2f}",
            f"{pnl:+,.2f}",
            f"{pnl_pct * 100.0:+,.3f}%",
        )

    @staticmethod
    def _short_id(value: str | None, head: int = 10, tail: int = 6) -> str:
        if not value:
            return ""
        text = str(value)
        if len(text) <= head + tail + 1:
            return text
        return f"{text[:head]}...{text[-tail:]}"

    @staticmethod
    def _format_qty(value: float, signed: bool = False, precision: int = 8) -> str:
        normalized = 0.0 if abs(float(value)) < 1e-9 else float(value)
        template = f"{{:{'+' if signed else ''}.{max(0, precision)}f}}"
        text = template.format(normalized).rstrip("0").rstrip(".")
        if text in {"", "+", "-", "-0"}:
            return "+0" if signed else "0"
        return text

    @staticmethod
    def _human_status(status: str) -> str:
        mapping = {
            "partially_filled": "partial",
            "unknown": "unknown (awaiting reconciliation)",
        }
        return mapping.get(status, status)
