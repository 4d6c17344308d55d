"""
Harmonic Pattern Detector (XABCD)

Scans close-price pivots for Gartley, Butterfly, Bat and Crab structures.

Geometry (bullish; bearish is the mirror):
    X low -> A high -> B low (AB retraces XA) -> C high -> D low

For each X, A, B, C combination whose legs clear the AB/XA and BC/AB
ratio bands, D is projected from C using the template's ideal CD/BC.
The pattern is complete when a later pivot prints within 2% of the
projection; completed patterns are then checked on CD/BC and AD/XA too.

    validation = mean(1 - deviation from ideal) over ratios, 0 for invalid ones
    confidence = valid ratios / checked ratios * 100

Trading levels: entry at D, stop 23.6% of XA beyond X, targets at
0.382 / 0.618 / 0.786 / 1.0 / 1.272 of AD measured from D.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config import HarmonicConfig
from ..errors import InsufficientDataError
from ..indicators import closes_of
from ..types import Direction, PriceBar, Vote

logger = logging.getLogger(__name__)

STOP_BUFFER_RATIO = 0.236
TARGET_RATIOS = (0.382, 0.618, 0.786, 1.0, 1.272)


# =============================================================================
# TEMPLATES
# =============================================================================


@dataclass(frozen=True)
class RatioBand:
    min: float
    max: float
    ideal: float


@dataclass(frozen=True)
class HarmonicTemplate:
    name: str
    ab_xa: RatioBand
    bc_ab: RatioBand
    cd_bc: RatioBand
    ad_xa: RatioBand
    reliability: float  # 0-100


HARMONIC_TEMPLATES: Tuple[HarmonicTemplate, ...] = (
    HarmonicTemplate(
        "gartley",
        RatioBand(0.568, 0.618, 0.618), RatioBand(0.382, 0.886, 0.618),
        RatioBand(1.13, 1.618, 1.272), RatioBand(0.786, 0.786, 0.786),
        75.0,
    ),
    HarmonicTemplate(
        "butterfly",
        RatioBand(0.786, 0.786, 0.786), RatioBand(0.382, 0.886, 0.618),
        RatioBand(1.618, 2.618, 1.618), RatioBand(1.27, 1.618, 1.27),
        70.0,
    ),
    HarmonicTemplate(
        "bat",
        RatioBand(0.382, 0.5, 0.382), RatioBand(0.382, 0.886, 0.618),
        RatioBand(1.618, 2.618, 1.618), RatioBand(0.886, 0.886, 0.886),
        80.0,
    ),
    HarmonicTemplate(
        "crab",
        RatioBand(0.382, 0.618, 0.618), RatioBand(0.382, 0.886, 0.618),
        RatioBand(2.24, 3.618, 2.618), RatioBand(1.618, 1.618, 1.618),
        85.0,
    ),
)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class Pivot:
    index: int
    price: float


@dataclass(frozen=True)
class RatioCheck:
    name: str       # 'AB/XA', 'BC/AB', 'CD/BC', 'AD/XA'
    actual: float
    ideal: float
    deviation: float
    valid: bool


@dataclass(frozen=True)
class HarmonicPattern:
    name: str
    direction: Direction
    x: Pivot
    a: Pivot
    b: Pivot
    c: Pivot
    d: Optional[Pivot]
    ratios: Tuple[RatioCheck, ...]
    projected_d: float
    validation_score: float  # 0 to 1
    confidence: float        # 0-100
    reliability: float       # 0-100
    entry: float
    stop_loss: float
    targets: Tuple[float, ...]
    risk_reward: float

    @property
    def is_complete(self) -> bool:
        return self.d is not None


@dataclass(frozen=True)
class HarmonicScan:
    patterns: Tuple[HarmonicPattern, ...]
    average_reliability: float
    fibonacci_accuracy: float

    @property
    def completed(self) -> Tuple[HarmonicPattern, ...]:
        return tuple(p for p in self.patterns if p.is_complete)

    @property
    def potential(self) -> Tuple[HarmonicPattern, ...]:
        return tuple(p for p in self.patterns if not p.is_complete)


# =============================================================================
# DETECTOR
# =============================================================================


class HarmonicPatternDetector:
    """XABCD template matcher over strength-N close pivots."""

    def __init__(self, config: Optional[HarmonicConfig] = None):
        self.cfg = config or HarmonicConfig()

    # ── Pivots ────────────────────────────────────────────────────────

    def find_pivots(self, closes: np.ndarray) -> List[Pivot]:
        k = self.cfg.pivot_strength
        pivots = []
        for i in range(k, len(closes) - k):
            window = np.delete(closes[i - k:i + k + 1], k)
            price = closes[i]
            if np.all(window < price) or np.all(window > price):
                pivots.append(Pivot(i, float(price)))
        return pivots

    # ── Ratio checks ──────────────────────────────────────────────────

    def _check(self, name: str, actual: float, band: RatioBand) -> RatioCheck:
        tol = self.cfg.tolerance
        deviation = abs(actual - band.ideal) / band.ideal
        valid = band.min * (1 - tol) <= actual <= band.max * (1 + tol)
        return RatioCheck(name, actual, band.ideal, deviation, valid)

    @staticmethod
    def _validation_score(ratios: Sequence[RatioCheck]) -> float:
        if not ratios:
            return 0.0
        return sum(max(0.0, 1.0 - r.deviation) for r in ratios if r.valid) / len(ratios)

    @staticmethod
    def _sequence_ok(x: Pivot, a: Pivot, b: Pivot, c: Pivot, sign: int) -> bool:
        # sign +1: X low, A high, B low above X, C high below A
        return (
            sign * (a.price - x.price) > 0
            and sign * (a.price - b.price) > 0
            and sign * (b.price - x.price) > 0
            and sign * (c.price - b.price) > 0
            and sign * (a.price - c.price) > 0
        )

    def _timing_ok(self, x: Pivot, a: Pivot, b: Pivot, c: Pivot) -> bool:
        leg = self.cfg.min_leg_bars
        return (
            a.index - x.index >= leg
            and b.index - a.index >= leg
            and c.index - b.index >= leg
            and c.index - x.index <= self.cfg.max_span_bars
        )

    def _find_completion(self, pivots: Sequence[Pivot], projected: float, after: int) -> Optional[Pivot]:
        limit = abs(projected) * self.cfg.completion_tolerance
        for p in pivots:
            if p.index > after and abs(p.price - projected) <= limit:
                return p
        return None

    # ── Levels ────────────────────────────────────────────────────────

    @staticmethod
    def trading_levels(x: Pivot, a: Pivot, d_price: float, sign: int) -> Tuple[float, float, Tuple[float, ...], float]:
        """(entry, stop, targets, first-target reward/risk) for a D price."""
        xa = abs(a.price - x.price)
        stop = x.price - sign * xa * STOP_BUFFER_RATIO
        ad = abs(d_price - a.price)
        targets = tuple(d_price + sign * ad * r for r in TARGET_RATIOS)
        risk = abs(d_price - stop)
        rr = abs(targets[0] - d_price) / risk if risk > 0 else 0.0
        return d_price, stop, targets, rr

    @staticmethod
    def completion_probability(pattern: HarmonicPattern, current_price: float) -> float:
        """Chance (0-100) a potential pattern completes from the current price."""
        total_move = abs(pattern.c.price - pattern.a.price)
        if total_move == 0:
            return 0.0
        proximity = max(0.0, 1.0 - abs(current_price - pattern.projected_d) / total_move)
        return (proximity * 0.6 + pattern.validation_score * 0.4) * 100.0

    # ── Scan ──────────────────────────────────────────────────────────

    def _match(
        self,
        template: HarmonicTemplate,
        sign: int,
        x: Pivot, a: Pivot, b: Pivot, c: Pivot,
        pivots: Sequence[Pivot],
    ) -> Optional[HarmonicPattern]:
        xa = abs(a.price - x.price)
        ab = abs(b.price - a.price)
        bc = abs(c.price - b.price)
        ratios = [
            self._check("AB/XA", ab / xa, template.ab_xa),
            self._check("BC/AB", bc / ab, template.bc_ab),
        ]
        if not all(r.valid for r in ratios):
            return None

        projected = c.price - sign * bc * template.cd_bc.ideal
        d = self._find_completion(pivots, projected, c.index)
        if d is not None:
            ratios.append(self._check("CD/BC", abs(d.price - c.price) / bc, template.cd_bc))
            ratios.append(self._check("AD/XA", abs(d.price - a.price) / xa, template.ad_xa))

        score = self._validation_score(ratios)
        if score <= self.cfg.min_validation_score:
            return None

        d_price = d.price if d is not None else projected
        entry, stop, targets, rr = self.trading_levels(x, a, d_price, sign)
        return HarmonicPattern(
            name=template.name,
            direction=Direction.BULLISH if sign > 0 else Direction.BEARISH,
            x=x, a=a, b=b, c=c, d=d,
            ratios=tuple(ratios),
            projected_d=projected,
            validation_score=score,
            confidence=sum(1 for r in ratios if r.valid) / len(ratios) * 100.0,
            reliability=template.reliability,
            entry=entry,
            stop_loss=stop,
            targets=targets,
            risk_reward=rr,
        )

    def scan(self, bars: Sequence[PriceBar]) -> HarmonicScan:
        if len(bars) < self.cfg.min_bars:
            raise InsufficientDataError("Harmonic scan", self.cfg.min_bars, len(bars))

        pivots = self.find_pivots(closes_of(bars))
        found: List[HarmonicPattern] = []
        n = len(pivots)
        for ix in range(n - 3):
            x = pivots[ix]
            for ia in range(ix + 1, n - 2):
                a = pivots[ia]
                if a.index - x.index > self.cfg.max_span_bars:
                    break
                for ib in range(ia + 1, n - 1):
                    b = pivots[ib]
                    if b.index - x.index > self.cfg.max_span_bars:
                        break
                    for ic in range(ib + 1, n):
                        c = pivots[ic]
                        if c.index - x.index > self.cfg.max_span_bars:
                            break
                        if not self._timing_ok(x, a, b, c):
                            continue
                        for sign in (1, -1):
                            if not self._sequence_ok(x, a, b, c, sign):
                                continue
                            for template in HARMONIC_TEMPLATES:
                                pattern = self._match(template, sign, x, a, b, c, pivots)
                                if pattern is not None:
                                    found.append(pattern)

        if found:
            avg_rel = float(np.mean([p.reliability for p in found]))
            accuracy = float(np.mean([p.validation_score for p in found]))
        else:
            avg_rel = accuracy = 0.0

        logger.debug(
            "Harmonic scan: %d pivots, %d patterns (%d complete)",
            n, len(found), sum(1 for p in found if p.is_complete),
        )
        return HarmonicScan(tuple(found), avg_rel, accuracy)

    # ── Vote ──────────────────────────────────────────────────────────

    @staticmethod
    def get_vote(scan: HarmonicScan) -> Optional[Vote]:
        completed = scan.completed
        if not completed:
            return None
        best = max(completed, key=lambda p: (p.validation_score, p.reliability, p.d.index))
        return Vote(
            "HarmonicPatterns",
            best.direction,
            best.confidence / 100.0,
            f"{best.direction.value} {best.name} completed at {best.entry:.4g} "
            f"(validation {best.validation_score:.2f})",
            {"pattern": best.name, "entry": best.entry, "stop_loss": best.stop_loss},
        )
