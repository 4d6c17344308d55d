"""
Multi-Timeframe Confirmation Gate

Decides when a working-timeframe signal needs corroboration from higher
timeframes, and withholds the plan until that evidence arrives.

Mandatory triggers (any one suffices):
    - weak signal (< 70)                      -> next higher timeframe
    - conflicting signals                     -> first critical timeframe
    - working timeframe <= 30m                -> next higher timeframe
    - swing / position style                  -> next higher timeframe
    - choppy, high-volatility market          -> next higher timeframe
    - major level (> 80 strength, high volume)-> mapped reference timeframe
    - high-impact trade (> 85, strong trend)  -> second higher timeframe

The high-impact rule is counter-intuitive: the STRONGER the signal, the
more evidence is demanded.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import TimeframeConfig
from ..types import (
    ConfirmationDecision,
    ConfirmationRequest,
    Direction,
    TimeframeConfirmation,
    TradeDirection,
    TradingStyle,
)

logger = logging.getLogger(__name__)

TIMEFRAME_ORDER: Tuple[str, ...] = (
    "1m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d", "3d", "1w", "1M",
)

# Reference timeframe for major structural levels
_MAJOR_LEVEL_TIMEFRAME: Dict[str, str] = {
    "1m": "1d", "5m": "1d", "15m": "4h", "30m": "4h",
    "1h": "1d", "2h": "1d", "4h": "1d", "6h": "1w",
    "8h": "1w", "12h": "1w", "1d": "1w", "3d": "1w",
}

_STYLE_BY_TIMEFRAME: Dict[str, TradingStyle] = {
    "1m": TradingStyle.SCALPING, "5m": TradingStyle.SCALPING, "15m": TradingStyle.SCALPING,
    "30m": TradingStyle.DAY_TRADING, "1h": TradingStyle.DAY_TRADING, "2h": TradingStyle.DAY_TRADING,
    "4h": TradingStyle.SWING_TRADING, "6h": TradingStyle.SWING_TRADING,
    "8h": TradingStyle.SWING_TRADING, "12h": TradingStyle.SWING_TRADING,
    "1d": TradingStyle.SWING_TRADING,
    "3d": TradingStyle.POSITION_TRADING, "1w": TradingStyle.POSITION_TRADING,
    "1M": TradingStyle.POSITION_TRADING,
}

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 1440, "w": 10080, "M": 43200}
_TIMEFRAME_RE = re.compile(r"^(\d+)([mhdwM])$")


def timeframe_minutes(timeframe: str) -> Optional[int]:
    match = _TIMEFRAME_RE.match(timeframe)
    if match is None:
        return None
    return int(match.group(1)) * _UNIT_MINUTES[match.group(2)]


def higher_timeframes(timeframe: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """(next three, next two critical) timeframes above ``timeframe``."""
    if timeframe not in TIMEFRAME_ORDER:
        return ("1d", "1w"), ("1d",)
    above = TIMEFRAME_ORDER[TIMEFRAME_ORDER.index(timeframe) + 1:]
    return above[:3], above[:2]


def style_for_timeframe(timeframe: str) -> TradingStyle:
    return _STYLE_BY_TIMEFRAME.get(timeframe, TradingStyle.DAY_TRADING)


@dataclass(frozen=True)
class TimeframeContext:
    """What the gate needs to know about the working-timeframe analysis."""
    timeframe: str
    signal_strength: float  # 0-100
    style: TradingStyle
    conflicting_signals: Tuple[str, ...] = ()
    high_volatility: bool = False
    choppy: bool = False
    strong_trend: bool = False
    high_volume: bool = False


class MultiTimeframeGate:
    """Higher-timeframe corroboration policy."""

    def __init__(self, config: Optional[TimeframeConfig] = None):
        self.cfg = config or TimeframeConfig()

    # ── Request ───────────────────────────────────────────────────────

    def evaluate(self, ctx: TimeframeContext) -> Optional[ConfirmationRequest]:
        """A ConfirmationRequest when any trigger fires, else None."""
        cfg = self.cfg
        nxt, critical = higher_timeframes(ctx.timeframe)
        required: List[str] = []
        reasons: List[str] = []

        def need(tf: Optional[str], reason: str) -> None:
            reasons.append(reason)
            if tf and tf not in required:
                required.append(tf)

        first = nxt[0] if nxt else None
        if ctx.signal_strength < cfg.weak_signal_threshold:
            need(first, f"Signal strength {ctx.signal_strength:.0f}% is below {cfg.weak_signal_threshold:.0f}%")
        if ctx.conflicting_signals:
            need(critical[0] if critical else None,
                 f"Conflicting signals on {ctx.timeframe}: {'; '.join(ctx.conflicting_signals)}")
        minutes = timeframe_minutes(ctx.timeframe)
        if minutes is not None and minutes <= cfg.lower_timeframe_max_minutes:
            need(first, f"{ctx.timeframe} is a lower timeframe and needs higher timeframe context")
        if ctx.style in (TradingStyle.SWING_TRADING, TradingStyle.POSITION_TRADING):
            need(first, f"{ctx.style.value} requires higher timeframe alignment")
        if ctx.high_volatility and ctx.choppy:
            need(first, "High volatility in a choppy market")
        if ctx.signal_strength > cfg.major_level_strength and ctx.high_volume:
            need(_MAJOR_LEVEL_TIMEFRAME.get(ctx.timeframe, "1w"),
                 "Major structural level on high volume needs reference timeframe context")
        if ctx.signal_strength > cfg.high_impact_threshold and ctx.strong_trend:
            # Counter-intuitive on purpose: strong trending setups need MORE evidence
            need(nxt[1] if len(nxt) > 1 else None,
                 "High-impact setup needs comprehensive multi-timeframe analysis")

        if not required:
            if reasons:
                logger.debug("No higher timeframe above %s to confirm: %s", ctx.timeframe, "; ".join(reasons))
            return None

        recommended = tuple(tf for tf in nxt if tf not in required)
        message = (
            f"Cannot provide a trade plan for {ctx.timeframe} yet. "
            f"Required higher timeframe analysis: {', '.join(required) or 'none'}. "
            f"Reasons: {'; '.join(reasons)}."
        )
        request = ConfirmationRequest(
            working_timeframe=ctx.timeframe,
            required_timeframes=tuple(required),
            recommended_timeframes=recommended,
            reasons=tuple(reasons),
            message=message,
        )
        logger.info(
            "Higher timeframe confirmation required for %s: %s",
            ctx.timeframe, ", ".join(required),
        )
        return request

    # ── Decision ──────────────────────────────────────────────────────

    def process(
        self,
        request: ConfirmationRequest,
        confirmations: Sequence[TimeframeConfirmation],
        direction: Optional[TradeDirection] = None,
    ) -> ConfirmationDecision:
        # Latest confirmation per timeframe wins
        by_tf: Dict[str, TimeframeConfirmation] = {}
        for conf in confirmations:
            by_tf[conf.timeframe] = conf

        missing = tuple(tf for tf in request.required_timeframes if tf not in by_tf)
        missing_recommended = tuple(tf for tf in request.recommended_timeframes if tf not in by_tf)
        if missing:
            received_required = any(tf in by_tf for tf in request.required_timeframes)
            return ConfirmationDecision(
                can_proceed=False,
                status="partial" if received_required else "none",
                missing_timeframes=missing,
                missing_recommended=missing_recommended,
                reason=f"Still missing required {', '.join(missing)} analysis",
            )

        received = list(by_tf.values())
        weights = {d: 0.0 for d in Direction}
        for conf in received:
            weights[conf.bias] += conf.confidence
        total = sum(weights.values())
        avg_conf = sum(c.confidence for c in received) / len(received) if received else 0.0

        has_bull = weights[Direction.BULLISH] > 0
        has_bear = weights[Direction.BEARISH] > 0
        conflicts = ()
        if has_bull and has_bear:
            conflicts = tuple(
                f"{c.timeframe} {c.bias.value} ({c.confidence:.0f}%)"
                for c in received if c.bias is not Direction.NEUTRAL
            )

        majority = None
        if total > 0:
            for bias in Direction:
                if weights[bias] > total / 2:
                    majority = bias
                    break

        if majority is None:
            status = "conflicting" if has_bull and has_bear else "mixed"
            return ConfirmationDecision(
                can_proceed=False,
                status=status,
                confidence=avg_conf * 0.5,
                missing_recommended=missing_recommended,
                conflicts=conflicts,
                reason=(
                    f"No strict majority across timeframes: bullish {weights[Direction.BULLISH]:.0f}, "
                    f"bearish {weights[Direction.BEARISH]:.0f}, neutral {weights[Direction.NEUTRAL]:.0f}"
                ),
            )

        share = weights[majority] / total
        if direction is not None and majority is not direction.bias:
            return ConfirmationDecision(
                can_proceed=False,
                status="opposed",
                overall_bias=majority,
                confidence=avg_conf,
                missing_recommended=missing_recommended,
                conflicts=conflicts,
                reason=f"Higher timeframes lean {majority.value} ({share:.0%}), against {direction.value}",
            )

        return ConfirmationDecision(
            can_proceed=True,
            status="confirmed",
            overall_bias=majority,
            confidence=avg_conf * (0.7 if majority is Direction.NEUTRAL else 1.0),
            missing_recommended=missing_recommended,
            conflicts=conflicts,
            reason=f"{share:.0%} of timeframe weight {majority.value}, average confidence {avg_conf:.0f}%",
        )
