from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tradeloop.domain.models import (
    Order,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    PortfolioSnapshot,
    Position,
    RiskLimits,
)
from tradeloop.errors import RiskLimitExceeded
from tradeloop.portfolio.risk import RejectReason, RiskLedger, check_order

T0 = datetime(2024, 1, 2, tzinfo=UTC)


def _snapshot(quantity: float = 0.0, mark: float = 100.0) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        cash=10_000.0,
        equity=10_000.0,
        positions={"SPY": Position("SPY", quantity=quantity, average_price=mark)},
        marks={"SPY": mark},
    )


def test_working_orders_count_towards_position_limit() -> None:
    limits = RiskLimits(max_position_per_instrument=10)
    working = Order("o-1", "SPY", OrderSide.BUY, 6, status=OrderStatus.SUBMITTED)

    alone = check_order(OrderRequest("SPY", OrderSide.BUY, 5), _snapshot(), limits)
    combined = check_order(
        OrderRequest("SPY", OrderSide.BUY, 5), _snapshot(), limits, open_orders=[working]
    )

    assert alone.approved
    assert not combined.approved
    assert combined.reason is RejectReason.EXCEEDS_POSITION_LIMIT


def test_terminal_orders_do_not_count() -> None:
    limits = RiskLimits(max_position_per_instrument=10)
    done = Order("o-1", "SPY", OrderSide.BUY, 6, status=OrderStatus.CANCELLED)

    decision = check_order(
        OrderRequest("SPY", OrderSide.BUY, 5), _snapshot(), limits, open_orders=[done]
    )

    assert decision.approved


def test_short_not_allowed() -> None:
    limits = RiskLimits(allow_short=False)

    closing = check_order(OrderRequest("SPY", OrderSide.SELL, 3), _snapshot(3), limits)
    shorting = check_order(OrderRequest("SPY", OrderSide.SELL, 4), _snapshot(3), limits)

    assert closing.approved
    assert shorting.reason is RejectReason.SHORT_NOT_ALLOWED


def test_notional_limit_uses_limit_price_then_reference() -> None:
    limits = RiskLimits(max_position_per_instrument=1_000, max_notional_exposure=5_000)

    by_limit = check_order(
        OrderRequest("SPY", OrderSide.BUY, 40, OrderType.LIMIT, limit_price=150.0),
        _snapshot(),
        limits,
    )
    by_reference = check_order(
        OrderRequest("SPY", OrderSide.BUY, 40), _snapshot(), limits, reference_price=100.0
    )

    assert by_limit.reason is RejectReason.EXCEEDS_NOTIONAL_LIMIT
    assert by_reference.approved
    with pytest.raises(RiskLimitExceeded):
        by_limit.raise_for_rejection()


def test_ledger_enforces_rolling_order_rate() -> None:
    ledger = RiskLedger(RiskLimits(max_orders_per_window=2, rate_window_seconds=1.0))
    request = OrderRequest("SPY", OrderSide.BUY, 1)

    for offset in (0.0, 0.1):
        now = T0 + timedelta(seconds=offset)
        assert ledger.check(request, _snapshot(), now=now).approved
        ledger.record_submission(now)

    blocked = ledger.check(request, _snapshot(), now=T0 + timedelta(seconds=0.5))
    reopened = ledger.check(request, _snapshot(), now=T0 + timedelta(seconds=1.05))

    assert blocked.reason is RejectReason.RATE_LIMIT_EXCEEDED
    assert reopened.approved
