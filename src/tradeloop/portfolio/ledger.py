"""Position, cash and PnL accounting driven exclusively by fills."""

from __future__ import annotations

from dataclasses import replace
from types import MappingProxyType

from tradeloop.domain.models import QTY_EPSILON, Fill, PortfolioSnapshot, Position


class Portfolio:
    """Mutable ledger owned by the engine for the duration of a run.

    ``apply`` is the only way cash and positions change. Strategies and sinks
    only ever see ``snapshot()``.
    """

    def __init__(self, starting_cash: float = 100_000.0) -> None:
        self.starting_cash = float(starting_cash)
        self.cash = float(starting_cash)
        self.realized_pnl = 0.0
        self.fees = 0.0
        self._positions: dict[str, Position] = {}
        self._marks: dict[str, float] = {}
        self._applied_fill_ids: set[str] = set()

    def apply(self, fill: Fill) -> bool:
        """Book one fill. Returns ``False`` when the fill id was already applied."""
        if fill.fill_id in self._applied_fill_ids:
            return False
        if fill.quantity <= 0:
            raise ValueError(f"fill {fill.fill_id} has non-positive quantity {fill.quantity}")
        current = self.position(fill.instrument)
        updated, realized = apply_fill_to_position(current, fill)
        self._applied_fill_ids.add(fill.fill_id)
        self._positions[fill.instrument] = updated
        self.cash -= fill.signed_quantity * fill.price + fill.fee
        self.fees += fill.fee
        self.realized_pnl += realized
        self._marks.setdefault(fill.instrument, fill.price)
        return True

    def has_applied(self, fill_id: str) -> bool:
        return fill_id in self._applied_fill_ids

    def mark(self, instrument: str, price: float) -> None:
        """Record the latest market price for mark-to-market valuation."""
        self._marks[instrument] = float(price)

    def position(self, instrument: str) -> Position:
        return self._positions.get(instrument, Position(instrument=instrument))

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._positions)

    def snapshot(self) -> PortfolioSnapshot:
        market_value = 0.0
        unrealized = 0.0
        for instrument, position in self._positions.items():
            mark = self._marks.get(instrument, position.average_price)
            market_value += position.quantity * mark
            unrealized += position.unrealized_pnl(mark)
        return PortfolioSnapshot(
            cash=self.cash,
            equity=self.cash + market_value,
            realized_pnl=self.realized_pnl,
            unrealized_pnl=unrealized,
            fees=self.fees,
            positions=MappingProxyType(dict(self._positions)),
            marks=MappingProxyType(dict(self._marks)),
        )


def apply_fill_to_position(position: Position, fill: Fill) -> tuple[Position, float]:
    """Return the position after ``fill`` and the PnL it realized.

    Increases re-weight the average entry price. Reductions realize PnL
    against the average price; the remainder of a sign flip opens at the
    fill price.
    """
    quantity = position.quantity
    delta = fill.signed_quantity
    price = fill.price
    if abs(quantity) <= QTY_EPSILON or (quantity > 0) == (delta > 0):
        new_quantity = quantity + delta
        average = (abs(quantity) * position.average_price + abs(delta) * price) / abs(
            new_quantity
        )
        return replace(position, quantity=new_quantity, average_price=average), 0.0

    closed = min(abs(delta), abs(quantity))
    direction = 1.0 if quantity > 0 else -1.0
    realized = closed * (price - position.average_price) * direction
    new_quantity = quantity + delta
    if abs(new_quantity) <= QTY_EPSILON:
        new_quantity = 0.0
        average = 0.0
    elif (new_quantity > 0) != (quantity > 0):
        average = price
    else:
        average = position.average_price
    updated = replace(
        position,
        quantity=new_quantity,
        average_price=average,
        realized_pnl=position.realized_pnl + realized,
    )
    return updated, realized
