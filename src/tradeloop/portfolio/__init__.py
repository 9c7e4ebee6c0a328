"""Portfolio ledger and pre-trade risk checks."""

from .ledger import Portfolio, apply_fill_to_position
from .risk import RejectReason, RiskDecision, RiskLedger, check_order

__all__ = [
    "Portfolio",
    "RejectReason",
    "RiskDecision",
    "RiskLedger",
    "apply_fill_to_position",
    "check_order",
]
