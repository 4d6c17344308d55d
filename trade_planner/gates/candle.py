"""
Candle Confirmation Gate

Stops entries "one candle too early".  The most recently closed bar must
confirm the trade direction before a plan is released.

Decision order:
    1. Market condition veto: volume or range far below the 5-bar average
       -> AVOID_TRADE, whatever the candle looks like
    2. Aligned candle with enough strength (and at the key level for
       non-scalping styles) -> READY_TO_ENTER
    3. Otherwise WAIT_NEXT_CANDLE / WAIT_FOR_SETUP with a wait horizon
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..config import CandleConfig
from ..indicators import atr
from ..types import (
    CandleClass,
    CandleDecision,
    GateState,
    PriceBar,
    TradeDirection,
    TradingStyle,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandleReading:
    candle_class: CandleClass
    strength: float  # 0-100
    reason: str


def classify_candle(bar: PriceBar, atr_value: float) -> CandleReading:
    """Body/wick proportions of ``bar`` against its ATR-normalized size."""
    total = bar.range
    if total <= 0:
        return CandleReading(CandleClass.INDECISION, 30.0, "Zero-range candle, needs confirmation")

    body_pct = abs(bar.close - bar.open) / total * 100.0
    upper_pct = (bar.high - max(bar.open, bar.close)) / total * 100.0
    lower_pct = (min(bar.open, bar.close) - bar.low) / total * 100.0
    size_pct = total / atr_value * 100.0 if atr_value > 0 else 0.0

    if bar.close > bar.open:
        confirm, against_wick, label = CandleClass.BULLISH_CONFIRMATION, upper_pct, "bullish"
    else:
        confirm, against_wick, label = CandleClass.BEARISH_CONFIRMATION, lower_pct, "bearish"

    if body_pct > 60 and size_pct > 50:
        return CandleReading(
            confirm, min(90.0, body_pct + size_pct / 2),
            f"Strong {label} candle: {body_pct:.0f}% body, {size_pct:.0f}% of ATR",
        )
    if body_pct > 40 and against_wick < 30:
        return CandleReading(
            confirm, min(75.0, body_pct + 30),
            f"Moderate {label} confirmation with small rejection wick",
        )
    if against_wick > 50:
        return CandleReading(
            CandleClass.INDECISION, 40.0,
            f"{label.capitalize()} candle with large rejection wick ({against_wick:.0f}%)",
        )
    return CandleReading(
        CandleClass.INDECISION, 30.0,
        f"Small/unclear candle ({body_pct:.0f}% body)",
    )


class CandleConfirmationGate:
    """State machine over the latest closed bar."""

    def __init__(self, config: Optional[CandleConfig] = None):
        self.cfg = config or CandleConfig()

    def market_condition(self, bar: PriceBar, previous_bars: Sequence[PriceBar]):
        """('good' | 'normal' | 'unsuitable', volume ratio, range ratio)."""
        recent = previous_bars[-self.cfg.condition_window:]
        avg_volume = float(np.mean([b.volume for b in recent]))
        avg_range = float(np.mean([b.range for b in recent]))
        volume_ratio = bar.volume / avg_volume if avg_volume > 0 else 1.0
        range_ratio = bar.range / avg_range if avg_range > 0 else 1.0

        cfg = self.cfg
        if volume_ratio < cfg.avoid_volume_ratio or range_ratio < cfg.avoid_range_ratio:
            condition = "unsuitable"
        elif volume_ratio > cfg.good_volume_ratio and range_ratio > cfg.good_range_ratio:
            condition = "good"
        else:
            condition = "normal"
        return condition, volume_ratio, range_ratio

    def evaluate(
        self,
        bar: PriceBar,
        previous_bars: Sequence[PriceBar],
        direction: TradeDirection,
        style: TradingStyle,
        key_level: float,
    ) -> CandleDecision:
        cfg = self.cfg
        atr_value = atr(previous_bars, cfg.atr_period)
        reading = classify_candle(bar, atr_value)
        at_key_level = key_level > 0 and abs(bar.close - key_level) / key_level < cfg.key_level_tolerance

        condition, volume_ratio, range_ratio = self.market_condition(bar, previous_bars)

        def decide(state: GateState, reason: str, wait: Optional[str] = None) -> CandleDecision:
            logger.debug("Candle gate %s: %s", state.value, reason)
            return CandleDecision(
                state=state,
                candle_class=reading.candle_class,
                strength=reading.strength,
                at_key_level=at_key_level,
                market_condition=condition,
                reason=reason,
                wait_horizon=wait,
            )

        if condition == "unsuitable":
            return decide(
                GateState.AVOID_TRADE,
                f"Poor conditions: volume {volume_ratio:.0%} / range {range_ratio:.0%} of recent average",
                "3-10 candles",
            )

        wanted = (
            CandleClass.BULLISH_CONFIRMATION if direction is TradeDirection.LONG
            else CandleClass.BEARISH_CONFIRMATION
        )
        aligned = reading.candle_class is wanted

        if style is TradingStyle.SCALPING:
            if aligned and reading.strength >= cfg.scalp_min_strength:
                return decide(GateState.READY_TO_ENTER, f"Scalping momentum confirmed: {reading.reason}")
        elif aligned and reading.strength >= cfg.min_strength and at_key_level:
            return decide(GateState.READY_TO_ENTER, f"Strong confirmation at key level: {reading.reason}")

        if not aligned:
            return decide(
                GateState.WAIT_NEXT_CANDLE,
                f"Candle ({reading.candle_class.value}) does not confirm {direction.value}",
                "1-3 candles",
            )
        threshold = cfg.scalp_min_strength if style is TradingStyle.SCALPING else cfg.min_strength
        if reading.strength < threshold:
            return decide(
                GateState.WAIT_NEXT_CANDLE,
                f"Weak confirmation strength ({reading.strength:.0f}/100)",
                "1-2 candles",
            )
        return decide(GateState.WAIT_FOR_SETUP, "Not at key support/resistance level", "2-5 candles")
