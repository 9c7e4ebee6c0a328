"""SQLite archive of runs, orders and fills."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tradeloop.domain.models import Fill, Order


class SqliteStateStore:
    """SQLite-backed implementation of the run archive.

    Orders are never deleted; saving an order again records its latest status.
    """

    def __init__(self, db_path: str | Path) -> None:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(path)
        self.connection.row_factory = sqlite3.Row
        self._initialize_schema()

    def record_run(
        self,
        run_id: str,
        mode: str,
        strategy_id: str,
        instruments: list[str],
    ) -> None:
        self.connection.execute(
            """
            INSERT OR REPLACE INTO runs(run_id, mode, strategy_id, instruments, started_ts)
            VALUES(?, ?, ?, ?, ?)
            """,
            (run_id, mode, strategy_id, ",".join(instruments), self._utc_now()),
        )
        self.connection.commit()

    def save_order(self, run_id: str, order: Order) -> None:
        self.connection.execute(
            """
            INSERT OR REPLACE INTO orders(
                order_id,
                run_id,
                instrument,
                side,
                quantity,
                order_type,
                limit_price,
                status,
                filled_quantity,
                average_fill_price,
                venue_order_id,
                reject_reason,
                submitted_ts,
                updated_ts
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.order_id,
                run_id,
                order.instrument,
                order.side.value,
                order.quantity,
                order.order_type.value,
                order.limit_price,
                order.status.value,
                order.filled_quantity,
                order.average_fill_price,
                order.venue_order_id,
                order.reject_reason,
                order.submitted_at.isoformat() if order.submitted_at else None,
                self._utc_now(),
            ),
        )
        self.connection.commit()

    def save_fill(self, run_id: str, fill: Fill) -> None:
        self.connection.execute(
            """
            INSERT OR IGNORE INTO fills(
                fill_id, run_id, order_id, instrument, side, quantity, price, fee, ts
            )
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                fill.fill_id,
                run_id,
                fill.order_id,
                fill.instrument,
                fill.side.value,
                fill.quantity,
                fill.price,
                fill.fee,
                fill.timestamp.isoformat(),
            ),
        )
        self.connection.commit()

    def finish_run(self, run_id: str, state: str, halt_reason: str | None) -> None:
        self.connection.execute(
            """
            UPDATE runs
            SET finished_ts = ?, state = ?, halt_reason = ?
            WHERE run_id = ?
            """,
            (self._utc_now(), state, halt_reason, run_id),
        )
        self.connection.commit()

    def list_orders(self, run_id: str) -> list[dict[str, Any]]:
        rows = self.connection.execute(
            """
            SELECT * FROM orders
            WHERE run_id = ?
            ORDER BY order_id ASC
            """,
            (run_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_fills(self, run_id: str) -> list[dict[str, Any]]:
        rows = self.connection.execute(
            """
            SELECT * FROM fills
            WHERE run_id = ?
            ORDER BY ts ASC, fill_id ASC
            """,
            (run_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        self.connection.close()

    def _initialize_schema(self) -> None:
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS runs(
                run_id TEXT PRIMARY KEY,
                mode TEXT NOT NULL,
                strategy_id TEXT NOT NULL,
                instruments TEXT NOT NULL,
                started_ts TEXT NOT NULL,
                finished_ts TEXT,
                state TEXT,
                halt_reason TEXT
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS orders(
                order_id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                instrument TEXT NOT NULL,
                side TEXT NOT NULL,
                quantity REAL NOT NULL,
                order_type TEXT NOT NULL,
                limit_price REAL,
                status TEXT NOT NULL,
                filled_quantity REAL NOT NULL,
                average_fill_price REAL,
                venue_order_id TEXT,
                reject_reason TEXT,
                submitted_ts TEXT,
                updated_ts TEXT NOT NULL
            )
            """
        )
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS fills(
                fill_id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                order_id TEXT NOT NULL,
                instrument TEXT NOT NULL,
                side TEXT NOT NULL,
                quantity REAL NOT NULL,
                price REAL NOT NULL,
                fee REAL NOT NULL,
                ts TEXT NOT NULL
            )
            """
        )
        self.connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_orders_run
            ON orders(run_id)
            """
        )
        self.connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_fills_run
            ON fills(run_id)
            """
        )
        self.connection.commit()

    @staticmethod
    def _utc_now() -> str:
        return datetime.now(tz=UTC).isoformat()
