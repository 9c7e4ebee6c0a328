"""Execution venues."""

from .base import Venue
from .live import LiveVenue
from .pricing import (
    FeeModel,
    FixedAmountSlippage,
    FixedBpsSlippage,
    PercentageFee,
    SlippageModel,
    no_fees,
    no_slippage,
)
from .simulated import SimulatedVenue

__all__ = [
    "FeeModel",
    "FixedAmountSlippage",
    "FixedBpsSlippage",
    "LiveVenue",
    "PercentageFee",
    "SimulatedVenue",
    "SlippageModel",
    "Venue",
    "no_fees",
    "no_slippage",
]
