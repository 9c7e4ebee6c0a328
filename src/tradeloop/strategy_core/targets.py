"""Target-position helpers."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_DOWN, Decimal

from tradeloop.domain.models import OrderRequest, OrderSide, OrderType, PortfolioSnapshot


def orders_for_target(
    instrument: str,
    current_qty: float,
    target_qty: float,
    order_type: OrderType = OrderType.MARKET,
    limit_price: float | None = None,
    min_trade_qty: float = 0.0001,
    qty_precision: int = 6,
    tag: str | None = None,
) -> list[OrderRequest]:
    """Translate a target position into at most one delta order."""
    delta = float(target_qty) - float(current_qty)
    qty = _quantize_down(abs(delta), max(0, int(qty_precision)))
    if qty < max(float(min_trade_qty), 1e-9):
        return []
    side = OrderSide.BUY if delta > 0 else OrderSide.SELL
    return [
        OrderRequest(
            instrument=instrument,
            side=side,
            quantity=qty,
            order_type=order_type,
            limit_price=limit_price,
            tag=tag,
        )
    ]


def orders_for_targets(
    portfolio: PortfolioSnapshot,
    targets: Mapping[str, float],
    order_type: OrderType = OrderType.MARKET,
    min_trade_qty: float = 0.0001,
    qty_precision: int = 6,
) -> list[OrderRequest]:
    """Translate several targets, in instrument order."""
    orders: list[OrderRequest] = []
    for instrument, target_qty in sorted(targets.items()):
        orders.extend(
            orders_for_target(
                instrument,
                portfolio.quantity(instrument),
                target_qty,
                order_type=order_type,
                min_trade_qty=min_trade_qty,
                qty_precision=qty_precision,
            )
        )
    return orders


def _quantize_down(value: float, precision: int) -> float:
    """Round toward zero at fixed precision to avoid oversizing fractional orders."""
    if precision <= 0:
        quantum = Decimal("1")
    else:
        quantum = Decimal("1").scaleb(-precision)
    decimal_value = Decimal(str(max(value, 0.0)))
    return float(decimal_value.quantize(quantum, rounding=ROUND_DOWN))
