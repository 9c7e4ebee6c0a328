"""Strategy interface, registry and target helpers."""

from .base import Strategy
from .sizing import momentum_to_target
from .targets import orders_for_target, orders_for_targets

__all__ = ["Strategy", "momentum_to_target", "orders_for_target", "orders_for_targets"]
