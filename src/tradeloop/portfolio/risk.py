"""Pre-trade risk checks for outbound orders."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from tradeloop.domain.models import (
    QTY_EPSILON,
    Order,
    OrderRequest,
    OrderSide,
    OrderType,
    PortfolioSnapshot,
    RiskLimits,
)
from tradeloop.errors import RiskLimitExceeded


class RejectReason(StrEnum):
    """Reasons the risk ledger refuses an order."""

    EXCEEDS_POSITION_LIMIT = "exceeds-position-limit"
    EXCEEDS_NOTIONAL_LIMIT = "exceeds-notional-limit"
    RATE_LIMIT_EXCEEDED = "rate-limit-exceeded"
    SHORT_NOT_ALLOWED = "short-not-allowed"


@dataclass(frozen=True)
class RiskDecision:
    """Approved, or rejected with a reason."""

    approved: bool
    reason: RejectReason | None = None
    detail: str = ""

    @classmethod
    def approve(cls) -> RiskDecision:
        return cls(approved=True)

    @classmethod
    def reject(cls, reason: RejectReason, detail: str = "") -> RiskDecision:
        return cls(approved=False, reason=reason, detail=detail)

    def raise_for_rejection(self) -> None:
        if not self.approved and self.reason is not None:
            raise RiskLimitExceeded(self.reason.value, self.detail)


def check_order(
    order: OrderRequest,
    portfolio: PortfolioSnapshot,
    limits: RiskLimits,
    *,
    open_orders: Iterable[Order] = (),
    recent_order_times: Sequence[datetime] = (),
    now: datetime | None = None,
    reference_price: float | None = None,
) -> RiskDecision:
    """Check one order against the limits without mutating anything.

    Working orders count towards the projected position on the side they
    would move it, so that several resting orders cannot jointly breach a
    limit none of them breaches alone.
    """
    working = [item for item in open_orders if not item.is_terminal]

    if limits.max_orders_per_window is not None and now is not None:
        window_start = now - timedelta(seconds=limits.rate_window_seconds)
        recent = sum(1 for ts in recent_order_times if ts > window_start)
        if recent >= limits.max_orders_per_window:
            return RiskDecision.reject(
                RejectReason.RATE_LIMIT_EXCEEDED,
                f"{recent} orders in the last {limits.rate_window_seconds:g}s",
            )

    proposed = _projected_quantity(order.instrument, order.side, portfolio, working)
    proposed += order.signed_quantity
    if proposed < -QTY_EPSILON and not limits.allow_short:
        return RiskDecision.reject(
            RejectReason.SHORT_NOT_ALLOWED,
            f"{order.instrument} would go to {proposed:g}",
        )
    if abs(proposed) > limits.max_position_per_instrument + QTY_EPSILON:
        return RiskDecision.reject(
            RejectReason.EXCEEDS_POSITION_LIMIT,
            f"{order.instrument} would go to {proposed:g}, "
            f"limit {limits.max_position_per_instrument:g}",
        )

    if limits.max_notional_exposure is not None:
        price = order.limit_price if order.order_type is OrderType.LIMIT else None
        if price is None:
            price = reference_price
        if price is None:
            price = portfolio.marks.get(order.instrument)
        if price is None:
            return RiskDecision.reject(
                RejectReason.EXCEEDS_NOTIONAL_LIMIT,
                f"no reference price to value {order.instrument}",
            )
        exposure = abs(proposed) * price
        instruments = set(portfolio.positions) | {item.instrument for item in working}
        for instrument in sorted(instruments - {order.instrument}):
            mark = portfolio.marks.get(instrument, portfolio.position(instrument).average_price)
            long_side = _projected_quantity(instrument, OrderSide.BUY, portfolio, working)
            short_side = _projected_quantity(instrument, OrderSide.SELL, portfolio, working)
            exposure += max(abs(long_side), abs(short_side)) * mark
        if exposure > limits.max_notional_exposure + QTY_EPSILON:
            return RiskDecision.reject(
                RejectReason.EXCEEDS_NOTIONAL_LIMIT,
                f"exposure {exposure:,.2f} over limit {limits.max_notional_exposure:,.2f}",
            )

    return RiskDecision.approve()


def _projected_quantity(
    instrument: str,
    side: OrderSide,
    portfolio: PortfolioSnapshot,
    working: list[Order],
) -> float:
    projected = portfolio.quantity(instrument)
    for item in working:
        if item.instrument == instrument and item.side is side:
            projected += side.sign * item.remaining_quantity
    return projected


class RiskLedger:
    """Risk limits plus the rolling window of approved submission times."""

    def __init__(self, limits: RiskLimits) -> None:
        self.limits = limits
        self._order_times: deque[datetime] = deque()

    def check(
        self,
        order: OrderRequest,
        portfolio: PortfolioSnapshot,
        *,
        open_orders: Iterable[Order] = (),
        now: datetime | None = None,
        reference_price: float | None = None,
    ) -> RiskDecision:
        if now is not None:
            self._prune(now)
        return check_order(
            order,
            portfolio,
            self.limits,
            open_orders=open_orders,
            recent_order_times=tuple(self._order_times),
            now=now,
            reference_price=reference_price,
        )

    def record_submission(self, timestamp: datetime | None) -> None:
        if timestamp is None:
            return
        self._order_times.append(timestamp)
        self._prune(timestamp)

    def _prune(self, now: datetime) -> None:
        window_start = now - timedelta(seconds=self.limits.rate_window_seconds)
        while self._order_times and self._order_times[0] <= window_start:
            self._order_times.popleft()
