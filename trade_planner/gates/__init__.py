"""
Confirmation gates.

Gates sit after the optimizer and decide whether a plan may be released
now, must wait for a better candle, or needs higher-timeframe evidence.
"""

from .candle import CandleConfirmationGate
from .timeframe import MultiTimeframeGate, TimeframeContext

__all__ = [
    "CandleConfirmationGate",
    "MultiTimeframeGate",
    "TimeframeContext",
]
