"""Stop-loss, take-profit and trailing-stop exits around another strategy."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from tradeloop.config import Settings
from tradeloop.domain.models import (
    Fill,
    MarketEvent,
    OrderIntent,
    OrderRequest,
    PortfolioSnapshot,
    Position,
    Rejection,
)
from tradeloop.strategy_core.base import Strategy
from tradeloop.strategy_core.targets import orders_for_target

logger = logging.getLogger(__name__)

EXIT_TAG = "levels-exit"


class TriggerKind(StrEnum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"


class ExitAction(StrEnum):
    CLOSE = "close"
    CLOSE_ALL_AND_TIMEOUT = "close_all_and_timeout"
    CLOSE_ALL_AND_QUIT = "close_all_and_quit"


@dataclass(frozen=True)
class Trigger:
    """Exit rule on a position's return relative to its entry price.

    ``threshold`` is a fraction: 0.05 fires a stop loss at -5%, a take
    profit at +5%, or a trailing stop 5 points below the best return seen.
    """

    kind: TriggerKind
    threshold: float
    action: ExitAction = ExitAction.CLOSE
    timeout_seconds: float = 0.0


@dataclass(frozen=True)
class LevelsParams:
    inner: str = "sma_crossover"
    triggers: tuple[Trigger, ...] = (
        Trigger(TriggerKind.STOP_LOSS, 0.05),
        Trigger(TriggerKind.TAKE_PROFIT, 0.10),
    )


def default_levels_params() -> LevelsParams:
    return LevelsParams()


def relative_pnl(position: Position, mark: float) -> float | None:
    """Signed return of ``position`` at ``mark``; ``None`` when it has no entry price."""
    if position.is_flat or position.average_price <= 0:
        return None
    direction = 1.0 if position.quantity > 0 else -1.0
    return (mark - position.average_price) / position.average_price * direction


class LevelsStrategy(Strategy):
    """Wrap an inner strategy and flatten positions when a trigger fires.

    ``CLOSE`` flattens the position that fired. ``CLOSE_ALL_AND_TIMEOUT``
    flattens everything and suppresses the inner strategy until the timeout
    has passed. ``CLOSE_ALL_AND_QUIT`` flattens everything for good.
    """

    strategy_id = "levels"

    def __init__(
        self,
        params: LevelsParams,
        settings: Settings | None = None,
        inner: Strategy | None = None,
    ) -> None:
        for trigger in params.triggers:
            if trigger.threshold < 0:
                raise ValueError("trigger thresholds must be non-negative")
        if inner is None:
            from tradeloop.strategy_core.registry import create_strategy, normalize_strategy_id

            if normalize_strategy_id(params.inner) == self.strategy_id:
                raise ValueError("levels cannot wrap itself")
            inner = create_strategy(params.inner, settings or Settings())
        self.params = params
        self.inner = inner
        self.quit = False
        self.timeout_until: datetime | None = None
        self._peaks: dict[str, float] = {}
        self._exiting: set[str] = set()

    def on_event(
        self,
        event: MarketEvent,
        portfolio: PortfolioSnapshot,
    ) -> Iterable[OrderIntent]:
        now = event.timestamp
        # the inner strategy keeps its history current even while its intents are dropped
        intents = list(self.inner.on_event(event, portfolio))

        to_close = self._evaluate_triggers(portfolio, now)
        if self.quit or self._in_timeout(now):
            intents = []
            to_close = {
                instrument
                for instrument, position in portfolio.positions.items()
                if not position.is_flat
            }
        if not to_close:
            return intents

        intents = [
            intent
            for intent in intents
            if not (isinstance(intent, OrderRequest) and intent.instrument in to_close)
        ]
        for instrument in sorted(to_close - self._exiting):
            exits = orders_for_target(
                instrument, portfolio.quantity(instrument), 0.0, tag=EXIT_TAG
            )
            if exits:
                self._exiting.add(instrument)
                intents.extend(exits)
        return intents

    def on_fill(self, fill: Fill, portfolio: PortfolioSnapshot) -> Iterable[OrderIntent]:
        if portfolio.position(fill.instrument).is_flat:
            self._exiting.discard(fill.instrument)
            self._peaks.pop(fill.instrument, None)
        intents = list(self.inner.on_fill(fill, portfolio))
        if self.quit:
            return ()
        return intents

    def on_reject(self, rejection: Rejection) -> None:
        self._exiting.discard(rejection.instrument)
        self.inner.on_reject(rejection)

    def _in_timeout(self, now: datetime) -> bool:
        return self.timeout_until is not None and now <= self.timeout_until

    def _evaluate_triggers(self, portfolio: PortfolioSnapshot, now: datetime) -> set[str]:
        to_close: set[str] = set()
        for instrument, position in sorted(portfolio.positions.items()):
            mark = portfolio.marks.get(instrument)
            current = None if mark is None else relative_pnl(position, mark)
            if current is None:
                self._peaks.pop(instrument, None)
                continue
            peak = max(self._peaks.get(instrument, 0.0), current)
            self._peaks[instrument] = peak
            for trigger in self.params.triggers:
                if not self._fired(trigger, current, peak):
                    continue
                logger.warning(
                    "%s trigger %s at %.4f executing %s",
                    instrument,
                    trigger.kind.value,
                    current,
                    trigger.action.value,
                )
                if trigger.action is ExitAction.CLOSE:
                    to_close.add(instrument)
                elif trigger.action is ExitAction.CLOSE_ALL_AND_QUIT:
                    self.quit = True
                else:
                    until = now + timedelta(seconds=trigger.timeout_seconds)
                    if self.timeout_until is None or until > self.timeout_until:
                        self.timeout_until = until
        return to_close

    @staticmethod
    def _fired(trigger: Trigger, current: float, peak: float) -> bool:
        if trigger.kind is TriggerKind.STOP_LOSS:
            return current <= -trigger.threshold
        if trigger.kind is TriggerKind.TAKE_PROFIT:
            return current >= trigger.threshold
        return current <= peak - trigger.threshold
