"""
Trade-Plan Optimizer

Turns a directional bias into concrete levels:

1. Entry    - pullback to the nearest support (long) or bounce into the
              nearest resistance (short), depth set by trading style
2. Stop     - beyond the nearest structural level within 3 ATR, else a
              volatility stop of multiplier x ATR, never tighter than a floor
3. Targets  - risk-multiple ladder per style with one structural rung
4. Sizing   - base % by risk tolerance, adjusted for R/R and confidence

Every plan leaving this module has passed TradePlan.validate().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .config import OptimizerConfig
from .errors import InvalidTradePlanError
from .recommendation import (
    format_price,
    format_risk_reward,
    get_price_precision,
    risk_reward_ratio,
)
from .types import (
    EntryZone,
    ProfitTarget,
    RiskTolerance,
    StopLoss,
    TradeDirection,
    TradePlan,
    TradingStyle,
    TrailingStop,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Rung:
    """One target slot: risk multiple, hit probability %, exit %, structural?"""
    multiple: float
    probability: float
    exit_percent: float
    structural: bool = False
    cap_multiple: Optional[float] = None
    atr_fallback: Optional[float] = None


_TARGET_LADDERS = {
    TradingStyle.SCALPING: (
        _Rung(1.0, 85, 50),
        _Rung(1.5, 65, 50),
    ),
    TradingStyle.DAY_TRADING: (
        _Rung(1.5, 75, 40),
        _Rung(2.5, 55, 40, structural=True, cap_multiple=2.5, atr_fallback=2.0),
        _Rung(3.5, 35, 20),
    ),
    TradingStyle.SWING_TRADING: (
        _Rung(2.0, 70, 30),
        _Rung(3.0, 55, 40, structural=True),
        _Rung(4.5, 35, 30),
    ),
    TradingStyle.POSITION_TRADING: (
        _Rung(3.0, 65, 25),
        _Rung(5.0, 45, 25),
        _Rung(8.0, 25, 50),
    ),
}

_EXPECTED_HOLD = {
    TradingStyle.SCALPING: "5-30 minutes",
    TradingStyle.DAY_TRADING: "2-8 hours",
    TradingStyle.SWING_TRADING: "1-5 days",
    TradingStyle.POSITION_TRADING: "1-4 weeks",
}


class TradePlanOptimizer:
    """
    Entry, stop, target and size placement for one direction.

    Usage:
        optimizer = TradePlanOptimizer()
        plan = optimizer.optimize(price, TradeDirection.LONG, atr,
                                  supports, resistances,
                                  TradingStyle.SWING_TRADING,
                                  RiskTolerance.MODERATE, 0.8)
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.cfg = config or OptimizerConfig()

    # ── Entry ─────────────────────────────────────────────────────────

    def entry_zone(
        self,
        price: float,
        direction: TradeDirection,
        atr: float,
        supports: Sequence[float],
        resistances: Sequence[float],
        style: TradingStyle,
        asset: str = "",
    ) -> EntryZone:
        cfg = self.cfg
        sign = direction.sign
        band = cfg.level_search_percent
        precision = get_price_precision(asset, price)

        if direction is TradeDirection.LONG:
            nearby = [s for s in supports if price * (1 - band) < s < price]
        else:
            nearby = [r for r in resistances if price < r < price * (1 + band)]
        level = min(nearby, key=lambda lv: abs(price - lv)) if nearby else None

        if style is TradingStyle.SCALPING:
            optimal = price * (1 - sign * cfg.scalp_entry_offset)
            confidence = 75.0
            rationale = "Scalping entry near current price"
        elif style is TradingStyle.SWING_TRADING:
            if level is not None:
                optimal = level + sign * cfg.swing_level_atr * atr
                confidence = 85.0
                rationale = f"Swing entry on pullback to {format_price(level, precision)}"
            else:
                optimal = price * (1 - sign * cfg.swing_fallback_offset)
                confidence = 70.0
                rationale = "Swing entry on fixed pullback, no nearby level"
        else:
            if level is not None:
                optimal = level + sign * cfg.default_level_atr * atr
                rationale = f"Entry with level confirmation at {format_price(level, precision)}"
            else:
                optimal = price * (1 - sign * cfg.default_fallback_offset)
                rationale = "Entry on shallow pullback, no nearby level"
            confidence = 80.0

        # Never chase: longs at or below market, shorts at or above
        optimal = min(optimal, price) if sign > 0 else max(optimal, price)

        w = cfg.zone_width
        return EntryZone(
            optimal=optimal,
            conservative=optimal * (1 - sign * w),
            aggressive=optimal * (1 + sign * w),
            confidence=confidence,
            rationale=rationale,
        )

    # ── Stop ──────────────────────────────────────────────────────────

    def volatility_multiplier(self, style: TradingStyle, risk_tolerance: RiskTolerance) -> float:
        return self.cfg.tolerance_multipliers[risk_tolerance] * self.cfg.style_multipliers[style]

    def stop_loss(
        self,
        entry: float,
        direction: TradeDirection,
        atr: float,
        supports: Sequence[float],
        resistances: Sequence[float],
        style: TradingStyle,
        risk_tolerance: RiskTolerance,
        asset: str = "",
    ) -> StopLoss:
        cfg = self.cfg
        sign = direction.sign
        precision = get_price_precision(asset, entry)

        candidates = supports if sign > 0 else resistances
        beyond = [lv for lv in candidates if sign * (entry - lv) > 0]
        key_level = min(beyond, key=lambda lv: abs(entry - lv)) if beyond else None

        if key_level is not None and abs(entry - key_level) < cfg.key_level_atr_range * atr:
            buffer = max(cfg.structural_buffer_atr * atr, cfg.structural_buffer_percent * entry)
            price = key_level - sign * buffer
            side = "below support" if sign > 0 else "above resistance"
            rationale = f"Technical stop {side} {format_price(key_level, precision)}"
        else:
            multiplier = self.volatility_multiplier(style, risk_tolerance)
            buffer = multiplier * atr
            price = entry - sign * buffer
            rationale = f"Volatility stop at {multiplier:.2f}x ATR"

        floor = cfg.min_stop_percent_scalp if style is TradingStyle.SCALPING else cfg.min_stop_percent
        if abs(entry - price) < entry * floor:
            price = entry - sign * entry * floor
            rationale += f" (widened to minimum {floor * 100:.1f}% distance)"

        trailing = None
        if style is not TradingStyle.SCALPING:
            risk_pct = abs(entry - price) / entry * 100.0
            trailing = TrailingStop(
                trigger_percent=max(risk_pct * 1.5, 2.0),
                trail_percent=max(risk_pct * 0.8, 1.0),
            )

        return StopLoss(
            price=price,
            buffer_amount=buffer,
            rationale=rationale,
            invalidation_price=price * (1 - sign * cfg.invalidation_offset),
            trailing=trailing,
        )

    # ── Targets ───────────────────────────────────────────────────────

    def targets(
        self,
        entry: float,
        stop: float,
        direction: TradeDirection,
        atr: float,
        supports: Sequence[float],
        resistances: Sequence[float],
        style: TradingStyle,
    ) -> Tuple[ProfitTarget, ...]:
        sign = direction.sign
        risk = abs(entry - stop)
        ladder = _TARGET_LADDERS[style]

        levels = resistances if sign > 0 else supports
        ahead = [lv for lv in levels if sign * (lv - entry) > 0]
        structural = min(ahead, key=lambda lv: abs(lv - entry)) if ahead else None

        out: List[ProfitTarget] = []
        previous = entry
        for i, rung in enumerate(ladder):
            price = entry + sign * rung.multiple * risk
            rationale = f"{rung.multiple:g}R target"
            if rung.structural:
                candidate = structural
                label = "structural level"
                if candidate is None and rung.atr_fallback is not None:
                    candidate = entry + sign * rung.atr_fallback * atr
                    label = f"{rung.atr_fallback:g} ATR session move"
                if candidate is not None and rung.cap_multiple is not None:
                    cap = entry + sign * rung.cap_multiple * risk
                    candidate = min(candidate, cap) if sign > 0 else max(candidate, cap)
                if candidate is not None and i + 1 < len(ladder):
                    nxt = entry + sign * ladder[i + 1].multiple * risk
                    candidate = min(candidate, nxt) if sign > 0 else max(candidate, nxt)
                if candidate is not None and sign * (candidate - previous) > 0:
                    price = candidate
                    rationale = label
            out.append(ProfitTarget(
                price=price,
                probability=rung.probability,
                partial_exit_percent=rung.exit_percent,
                risk_multiple=risk_reward_ratio(entry, price, stop),
                rationale=rationale,
            ))
            previous = price
        return tuple(out)

    # ── Sizing / risk ─────────────────────────────────────────────────

    @staticmethod
    def blended_risk_reward(entry: float, stop: float, targets: Sequence[ProfitTarget]) -> float:
        """Probability- and exit-weighted reward over risk."""
        risk = abs(entry - stop)
        if risk == 0:
            return 0.0
        reward = sum(
            abs(t.price - entry) * (t.partial_exit_percent / 100.0) * (t.probability / 100.0)
            for t in targets
        )
        return reward / risk

    def position_size(self, risk_reward: float, risk_tolerance: RiskTolerance,
                      signal_confidence: float) -> Tuple[float, float]:
        cfg = self.cfg
        base = cfg.base_position_percent[risk_tolerance]
        multiplier = 1.0 + min(cfg.max_rr_bonus, risk_reward / 10.0)
        if risk_reward < 1.0:
            multiplier -= cfg.low_rr_penalty
        multiplier += signal_confidence - cfg.confidence_pivot
        multiplier = max(0.5, min(1.5, multiplier))
        return base * multiplier, base * 2.0

    @staticmethod
    def stop_probability(entry: float, stop: float, atr: float, style: TradingStyle) -> float:
        """Rough chance (%) the stop is hit before a target."""
        risk_pct = abs(entry - stop) / entry * 100.0
        atr_pct = atr / entry * 100.0
        if risk_pct < atr_pct * 0.5:
            prob = 60.0
        elif risk_pct < atr_pct * 1.0:
            prob = 40.0
        elif risk_pct < atr_pct * 1.5:
            prob = 25.0
        else:
            prob = 15.0
        if style is TradingStyle.SCALPING:
            prob += 10.0
        elif style is TradingStyle.POSITION_TRADING:
            prob -= 5.0
        return max(10.0, min(70.0, prob))

    # ── Full plan ─────────────────────────────────────────────────────

    def optimize(
        self,
        price: float,
        direction: TradeDirection,
        atr: float,
        supports: Sequence[float],
        resistances: Sequence[float],
        style: TradingStyle,
        risk_tolerance: RiskTolerance,
        signal_confidence: float,
        asset: str = "",
    ) -> TradePlan:
        """Build and validate a plan; ``signal_confidence`` is 0 to 1."""
        if price <= 0:
            raise InvalidTradePlanError(f"Cannot plan around non-positive price {price}")

        zone = self.entry_zone(price, direction, atr, supports, resistances, style, asset)
        stop = self.stop_loss(zone.optimal, direction, atr, supports, resistances,
                              style, risk_tolerance, asset)
        targets = self.targets(zone.optimal, stop.price, direction, atr,
                               supports, resistances, style)

        rr = self.blended_risk_reward(zone.optimal, stop.price, targets)
        size, max_size = self.position_size(rr, risk_tolerance, signal_confidence)

        plan = TradePlan(
            direction=direction,
            entry_zone=zone,
            stop_loss=stop,
            targets=targets,
            risk_reward_ratio=rr,
            position_size_percent=size,
            max_position_percent=max_size,
            style=style,
            risk_tolerance=risk_tolerance,
            stop_probability=self.stop_probability(zone.optimal, stop.price, atr, style),
            expected_hold=_EXPECTED_HOLD[style],
        ).validate()

        logger.debug(
            "%s %s/%s plan: entry=%.6g stop=%.6g t1=%.6g rr=%s size=%.2f%%",
            direction.value, style.value, risk_tolerance.value,
            zone.optimal, stop.price, targets[0].price,
            format_risk_reward(rr), size,
        )
        return plan
