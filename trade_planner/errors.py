"""
Error taxonomy for the trade planner.

Data problems (too little history, crossed books, malformed bars) are
fatal to the single analysis call that hit them.  The outcome errors
(no signal, conflicting consensus, gate rejection) describe valid
"no trade" results; the pipeline reports them on ``PlanResult`` and
only raises them through ``PlanResult.raise_for_outcome()``.
"""

from __future__ import annotations

from typing import Sequence, Tuple


class TradePlannerError(Exception):
    """Base class for every error raised by the planner."""


class InsufficientDataError(TradePlannerError):
    """A series is shorter than the lookback a computation needs."""

    def __init__(self, what: str, required: int, available: int):
        self.what = what
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            f"{what} needs at least {self.required} values, got {self.available}"
        )


class CrossedBookError(TradePlannerError):
    """Order book snapshot with best bid >= best ask."""

    def __init__(self, best_bid: float, best_ask: float):
        self.best_bid = best_bid
        self.best_ask = best_ask
        super().__init__(f"Crossed order book: bid {best_bid} >= ask {best_ask}")


class InvalidBarError(TradePlannerError, ValueError):
    """Price bar violating low <= open/close <= high or its time ordering."""


class InvalidTradePlanError(TradePlannerError, ValueError):
    """Trade plan whose stop/entry/target ordering is inconsistent."""


class NoSignalError(TradePlannerError):
    """Nothing cleared the confidence thresholds."""


class ConflictingConsensusError(TradePlannerError):
    """Signal sources disagree too much to commit to a direction."""

    def __init__(self, message: str, conflicts: Sequence[str] = ()):
        self.conflicts: Tuple[str, ...] = tuple(conflicts)
        super().__init__(message)


class GateRejectedError(TradePlannerError):
    """A confirmation gate declined to release the plan."""

    def __init__(self, reason: str, missing_timeframes: Sequence[str] = ()):
        self.reason = reason
        self.missing_timeframes: Tuple[str, ...] = tuple(missing_timeframes)
        super().__init__(reason)
