from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from tradeloop.domain.models import Fill, Order, OrderSide, OrderStatus
from tradeloop.state.sqlite_store import SqliteStateStore

T0 = datetime(2024, 1, 2, tzinfo=UTC)


def test_sqlite_store_archives_latest_order_status(tmp_path: Path) -> None:
    db_path = tmp_path / "state.db"
    store = SqliteStateStore(db_path)
    store.record_run("run-1", "live", "momentum", ["SPY"])
    order = Order("run-1-000001", "SPY", OrderSide.BUY, 2.0, submitted_at=T0)
    store.save_order("run-1", order)
    order.record_fill(2.0, 100.0)
    store.save_order("run-1", order)
    fill = Fill("F-1", order.order_id, "SPY", OrderSide.BUY, 2.0, 100.0, T0, fee=0.1)
    store.save_fill("run-1", fill)
    store.save_fill("run-1", fill)
    store.finish_run("run-1", "completed", None)
    store.close()

    reopened = SqliteStateStore(db_path)
    orders = reopened.list_orders("run-1")
    fills = reopened.list_fills("run-1")
    reopened.close()

    assert len(orders) == 1
    assert orders[0]["status"] == OrderStatus.FILLED.value
    assert orders[0]["average_fill_price"] == 100.0
    assert [(f["fill_id"], f["fee"]) for f in fills] == [("F-1", 0.1)]

    connection = sqlite3.connect(db_path)
    row = connection.execute(
        "SELECT mode, strategy_id, instruments, state FROM runs WHERE run_id='run-1'"
    ).fetchone()
    connection.close()
    assert row == ("live", "momentum", "SPY", "completed")


def test_runs_are_kept_apart(tmp_path: Path) -> None:
    store = SqliteStateStore(tmp_path / "state.db")
    store.save_order("a", Order("a-000001", "SPY", OrderSide.BUY, 1.0))
    store.save_order("b", Order("b-000001", "QQQ", OrderSide.SELL, 1.0))

    assert [row["order_id"] for row in store.list_orders("a")] == ["a-000001"]
    assert store.list_fills("a") == []
    store.close()
