"""
Market Structure Classifier

Reads trend from swing pivots:
- Uptrend: the last two swing highs AND the last two swing lows are rising
- Downtrend: both falling
- Sideways: anything else

A structure break is an uptrend printing a lower swing low (or a
downtrend printing a higher swing high).  It invalidates the prior trend
and is handed to the consensus builder as a conflict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .errors import InsufficientDataError
from .indicators import highs_of, lows_of, swing_highs, swing_lows
from .types import Direction, PriceBar, TrendState, Vote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketStructure:
    trend: TrendState
    swing_highs: Tuple[float, ...]
    swing_lows: Tuple[float, ...]
    structure_break: bool
    key_levels: Tuple[float, ...]
    reason: str = ""


def _trend_from(highs: Sequence[float], lows: Sequence[float]) -> TrendState:
    if len(highs) < 2 or len(lows) < 2:
        return TrendState.SIDEWAYS
    if highs[-1] > highs[-2] and lows[-1] > lows[-2]:
        return TrendState.UPTREND
    if highs[-1] < highs[-2] and lows[-1] < lows[-2]:
        return TrendState.DOWNTREND
    return TrendState.SIDEWAYS


def _path(levels: List[float]) -> str:
    return "->".join(f"{v:.4g}" for v in levels[-2:])


class MarketStructureClassifier:
    """Swing-pivot trend and structure-break detection."""

    MIN_BARS = 3

    def __init__(self, pivot_strength: int = 1, key_level_count: int = 3):
        self.pivot_strength = pivot_strength
        self.key_level_count = key_level_count

    def _pivots(self, values: np.ndarray, idx: List[int]) -> List[float]:
        # No interior pivot at all (monotonic staircase): read the raw bars
        if idx:
            return [float(values[i]) for i in idx]
        return [float(v) for v in values[-2:]]

    def classify(self, bars: Sequence[PriceBar]) -> MarketStructure:
        if len(bars) < self.MIN_BARS:
            raise InsufficientDataError("Market structure", self.MIN_BARS, len(bars))

        highs = highs_of(bars)
        lows = lows_of(bars)
        sh_idx = swing_highs(highs, self.pivot_strength)
        sl_idx = swing_lows(lows, self.pivot_strength)

        sh = self._pivots(highs, sh_idx)
        sl = self._pivots(lows, sl_idx)
        trend = _trend_from(sh, sl)

        structure_break = False
        reason = f"{trend.name.lower()}: highs {_path(sh)}, lows {_path(sl)}"

        # The trend one pivot earlier, broken by the newest pivot
        prior = _trend_from(sh[:-1], sl[:-1]) if len(sh) >= 3 and len(sl) >= 3 else None
        if prior is TrendState.UPTREND and sl[-1] < sl[-2]:
            structure_break = True
            reason = f"Uptrend broken: lower swing low {sl[-1]:.4g} < {sl[-2]:.4g}"
        elif prior is TrendState.DOWNTREND and sh[-1] > sh[-2]:
            structure_break = True
            reason = f"Downtrend broken: higher swing high {sh[-1]:.4g} > {sh[-2]:.4g}"

        # Pending break: price already through the latest swing after it formed
        if not structure_break and sl_idx and sh_idx:
            if trend is TrendState.UPTREND:
                after = lows[sl_idx[-1] + 1:]
                if len(after) and float(np.min(after)) < sl[-1]:
                    structure_break = True
                    reason = f"Uptrend broken: price undercut swing low {sl[-1]:.4g}"
            elif trend is TrendState.DOWNTREND:
                after = highs[sh_idx[-1] + 1:]
                if len(after) and float(np.max(after)) > sh[-1]:
                    structure_break = True
                    reason = f"Downtrend broken: price exceeded swing high {sh[-1]:.4g}"

        n = self.key_level_count
        key_levels = tuple(sorted(set(
            [float(highs[i]) for i in sh_idx[-n:]] + [float(lows[i]) for i in sl_idx[-n:]]
        )))

        if structure_break:
            logger.debug("Structure break detected: %s", reason)

        return MarketStructure(
            trend=trend,
            swing_highs=tuple(float(highs[i]) for i in sh_idx),
            swing_lows=tuple(float(lows[i]) for i in sl_idx),
            structure_break=structure_break,
            key_levels=key_levels,
            reason=reason,
        )

    def get_vote(self, structure: MarketStructure) -> Vote:
        """Structure as a consensus vote; a broken trend casts no direction."""
        data = {"trend": structure.trend.name, "structure_break": structure.structure_break}
        if structure.structure_break:
            return Vote("MarketStructure", Direction.NEUTRAL, 0.5, structure.reason, data)
        if structure.trend is TrendState.UPTREND:
            return Vote("MarketStructure", Direction.BULLISH, 0.6, structure.reason, data)
        if structure.trend is TrendState.DOWNTREND:
            return Vote("MarketStructure", Direction.BEARISH, 0.6, structure.reason, data)
        return Vote("MarketStructure", Direction.NEUTRAL, 0.3, structure.reason, data)
