"""
Analyzer: Volume Profile / Auction Theory

Analyzes where volume traded inside the lookback range.

Key concepts from auction market theory:
- Value Area: Where 70% of volume occurs (fair value zone)
- Point of Control (POC): Price with most volume (strongest level)
- Profile shape: p-shaped (short covering / accumulation), b-shaped
  (long liquidation / distribution), balanced, or d-shaped
- Institutional levels: bins with outsized volume, typed by buy/sell skew
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..config import VolumeProfileConfig
from ..errors import InsufficientDataError
from ..types import (
    Direction,
    InstitutionalLevel,
    LevelKind,
    PriceBar,
    ProfileShape,
    Significance,
    Vote,
    VolumeNode,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VolumeProfile:
    """Immutable volume-at-price histogram for one analysis window."""
    nodes: Tuple[VolumeNode, ...]
    poc_index: int
    value_area_low: float
    value_area_high: float
    value_area_volume: float
    total_volume: float
    bin_size: float
    shape: ProfileShape

    @property
    def poc(self) -> VolumeNode:
        return self.nodes[self.poc_index]

    @property
    def average_node_volume(self) -> float:
        return self.total_volume / len(self.nodes) if self.nodes else 0.0


@dataclass(frozen=True)
class VolumeImbalance:
    price: float
    buy_volume: float
    sell_volume: float
    ratio: float      # Buy share
    strength: float   # 0-100
    direction: Direction


@dataclass(frozen=True)
class ProfileStructure:
    trend: str   # 'trending', 'accumulation', 'distribution', 'balanced'
    phase: str   # 'early', 'middle', 'late'
    strength: float


@dataclass(frozen=True)
class TradingImplications:
    supports: Tuple[float, ...]
    resistances: Tuple[float, ...]
    target_zones: Tuple[float, ...]
    risk_zones: Tuple[float, ...]


@dataclass(frozen=True)
class VolumeProfileAnalysis:
    profile: VolumeProfile
    institutional_levels: Tuple[InstitutionalLevel, ...]
    imbalances: Tuple[VolumeImbalance, ...]
    structure: ProfileStructure
    implications: TradingImplications
    current_price: float


@dataclass(frozen=True)
class ProfileComparison:
    similarity: float       # 0-1
    correlation: float
    poc_shift: float        # Relative POC move vs the historical profile
    divergences: Tuple[str, ...] = field(default_factory=tuple)


class VolumeProfileAnalyzer:
    """
    Builds volume profiles and reads auction structure from them.

    Trading implications:
    - Price above VA and POC (or below both): trending auction
    - P-shaped profile: accumulation, supports hold
    - B-shaped profile: distribution, resistances cap rallies
    - Thin nodes: price moves fast through these
    """

    def __init__(self, config: Optional[VolumeProfileConfig] = None):
        self.cfg = config or VolumeProfileConfig()

    # ── Profile construction ──────────────────────────────────────────

    def build_profile(self, bars: Sequence[PriceBar]) -> VolumeProfile:
        """
        Distribute each bar's volume over the bins its range overlaps.

        Buy volume is estimated from where the bar closed inside its range.
        Node volumes always sum to the window's total volume.
        """
        window = list(bars[-self.cfg.lookback:])
        if len(window) < self.cfg.min_bars:
            raise InsufficientDataError("Volume profile", self.cfg.min_bars, len(window))

        min_price = min(b.low for b in window)
        max_price = max(b.high for b in window)
        total = float(sum(b.volume for b in window))

        if max_price == min_price:
            # Flat window: one node holds everything
            buy = sum(b.volume * b.close_position for b in window)
            node = VolumeNode(min_price, total, buy, total - buy, 100.0 if total > 0 else 0.0)
            return VolumeProfile(
                nodes=(node,),
                poc_index=0,
                value_area_low=min_price,
                value_area_high=max_price,
                value_area_volume=total,
                total_volume=total,
                bin_size=0.0,
                shape=ProfileShape.BALANCED,
            )

        n_bins = self.cfg.bins
        bin_size = (max_price - min_price) / n_bins
        vol = np.zeros(n_bins)
        buy = np.zeros(n_bins)

        def bin_of(price: float) -> int:
            return min(int((price - min_price) / bin_size), n_bins - 1)

        for bar in window:
            if bar.volume <= 0:
                continue
            close_pos = bar.close_position
            if bar.range == 0:
                idx = bin_of(bar.close)
                vol[idx] += bar.volume
                buy[idx] += bar.volume * close_pos
                continue

            start, end = bin_of(bar.low), bin_of(bar.high)
            for i in range(start, end + 1):
                lo = max(bar.low, min_price + i * bin_size)
                hi = min(bar.high, min_price + (i + 1) * bin_size)
                if i == end:
                    hi = bar.high
                share = max(hi - lo, 0.0) / bar.range
                vol[i] += bar.volume * share
                buy[i] += bar.volume * share * close_pos

        nodes = tuple(
            VolumeNode(
                price_level=min_price + (i + 0.5) * bin_size,
                volume=float(vol[i]),
                buy_volume=float(buy[i]),
                sell_volume=float(vol[i] - buy[i]),
                volume_percent=float(vol[i] / total * 100.0) if total > 0 else 0.0,
            )
            for i in range(n_bins)
        )

        poc_idx = int(np.argmax(vol))
        low_idx, high_idx, va_volume = self._value_area(vol, poc_idx, total)

        return VolumeProfile(
            nodes=nodes,
            poc_index=poc_idx,
            value_area_low=nodes[low_idx].price_level,
            value_area_high=nodes[high_idx].price_level,
            value_area_volume=va_volume,
            total_volume=total,
            bin_size=bin_size,
            shape=self._classify_shape(vol, poc_idx),
        )

    def _value_area(self, vol: np.ndarray, poc_idx: int, total: float) -> Tuple[int, int, float]:
        target_volume = total * self.cfg.value_area_percent
        last = len(vol) - 1

        va_volume = float(vol[poc_idx])
        low_idx = poc_idx
        high_idx = poc_idx

        while va_volume < target_volume and (low_idx > 0 or high_idx < last):
            # Expand to whichever side has more volume
            low_vol = float(vol[low_idx - 1]) if low_idx > 0 else 0.0
            high_vol = float(vol[high_idx + 1]) if high_idx < last else 0.0

            if low_vol >= high_vol and low_idx > 0:
                low_idx -= 1
                va_volume += low_vol
            else:
                high_idx += 1
                va_volume += high_vol

        return low_idx, high_idx, va_volume

    @staticmethod
    def _classify_shape(vol: np.ndarray, poc_idx: int) -> ProfileShape:
        n = len(vol)
        poc_position = poc_idx / n
        upper = float(np.sum(vol[poc_idx:]))
        lower = float(np.sum(vol[:poc_idx + 1]))
        upper_ratio = upper / (upper + lower) if (upper + lower) > 0 else 0.5

        if poc_position < 0.3 and upper_ratio > 0.6:
            return ProfileShape.P_SHAPED
        if poc_position > 0.7 and upper_ratio < 0.4:
            return ProfileShape.B_SHAPED
        if 0.3 <= poc_position <= 0.7 and abs(upper_ratio - 0.5) < 0.1:
            return ProfileShape.BALANCED
        return ProfileShape.D_SHAPED

    # ── Derived readings ──────────────────────────────────────────────

    def institutional_levels(self, profile: VolumeProfile) -> List[InstitutionalLevel]:
        avg = profile.average_node_volume
        if avg <= 0:
            return []

        levels = []
        for node in profile.nodes:
            if node.volume <= avg * self.cfg.high_volume_threshold:
                continue
            strength = min(100.0, node.volume / avg * 20.0)
            if node.imbalance > 0.8:
                kind = LevelKind.ACCUMULATION
            elif node.imbalance < 0.2:
                kind = LevelKind.DISTRIBUTION
            elif node.volume > avg * 3:
                kind = LevelKind.LIQUIDITY_ZONE
            else:
                kind = LevelKind.HIGH_VOLUME_NODE

            if strength > 80:
                significance = Significance.CRITICAL
            elif strength > 50:
                significance = Significance.MAJOR
            else:
                significance = Significance.MINOR

            levels.append(InstitutionalLevel(node.price_level, node.volume, kind, strength, significance))

        levels.sort(key=lambda lvl: lvl.strength, reverse=True)
        return levels

    def imbalances(self, bars: Sequence[PriceBar]) -> List[VolumeImbalance]:
        """Buy/sell skew per close price (rounded to cents)."""
        grouped: Dict[float, List[float]] = {}
        for bar in bars[-self.cfg.lookback:]:
            key = round(bar.close, 2)
            buy_sell = grouped.setdefault(key, [0.0, 0.0])
            buy_sell[0] += bar.volume * bar.close_position
            buy_sell[1] += bar.volume * (1 - bar.close_position)

        thr = self.cfg.imbalance_threshold
        out = []
        for price, (buy_vol, sell_vol) in sorted(grouped.items()):
            total = buy_vol + sell_vol
            if total <= 0:
                continue
            ratio = buy_vol / total
            if ratio > thr or ratio < 1 - thr:
                out.append(VolumeImbalance(
                    price=price,
                    buy_volume=buy_vol,
                    sell_volume=sell_vol,
                    ratio=ratio,
                    strength=abs(ratio - 0.5) * 200.0,
                    direction=Direction.BULLISH if ratio > 0.5 else Direction.BEARISH,
                ))
        return out

    def read_structure(self, profile: VolumeProfile, price: float) -> ProfileStructure:
        poc = profile.poc.price_level
        if (price > profile.value_area_high and price > poc) or (
            price < profile.value_area_low and price < poc
        ):
            trend = "trending"
        elif profile.shape is ProfileShape.P_SHAPED:
            trend = "accumulation"
        elif profile.shape is ProfileShape.B_SHAPED:
            trend = "distribution"
        else:
            trend = "balanced"

        distance = abs(price - poc) / poc if poc > 0 else 0.0
        if distance < 0.02:
            phase = "early"
        elif distance > 0.05:
            phase = "late"
        else:
            phase = "middle"

        avg = profile.average_node_volume
        strength = min(100.0, profile.poc.volume / avg * 20.0) if avg > 0 else 0.0
        return ProfileStructure(trend=trend, phase=phase, strength=strength)

    def implications(
        self,
        profile: VolumeProfile,
        levels: Sequence[InstitutionalLevel],
        imbalances: Sequence[VolumeImbalance],
        price: float,
    ) -> TradingImplications:
        k = self.cfg.max_levels_per_side
        supports = [
            lvl.price for lvl in levels
            if lvl.price < price and lvl.kind is not LevelKind.DISTRIBUTION
        ][:k]
        resistances = [
            lvl.price for lvl in levels
            if lvl.price > price and lvl.kind is not LevelKind.ACCUMULATION
        ][:k]
        targets = [imb.price for imb in imbalances if imb.strength > self.cfg.target_zone_strength]

        avg = profile.average_node_volume
        risk_zones = [
            node.price_level for node in profile.nodes
            if node.volume < avg * self.cfg.risk_zone_ratio
        ]
        return TradingImplications(
            supports=tuple(supports),
            resistances=tuple(resistances),
            target_zones=tuple(targets),
            risk_zones=tuple(risk_zones),
        )

    def analyze(self, bars: Sequence[PriceBar]) -> VolumeProfileAnalysis:
        profile = self.build_profile(bars)
        price = bars[-1].close
        levels = self.institutional_levels(profile)
        imbalances = self.imbalances(bars)
        structure = self.read_structure(profile, price)

        logger.debug(
            "Profile POC=%.4f VA=[%.4f, %.4f] shape=%s trend=%s",
            profile.poc.price_level, profile.value_area_low, profile.value_area_high,
            profile.shape.value, structure.trend,
        )
        return VolumeProfileAnalysis(
            profile=profile,
            institutional_levels=tuple(levels),
            imbalances=tuple(imbalances),
            structure=structure,
            implications=self.implications(profile, levels, imbalances, price),
            current_price=price,
        )

    # ── Historical comparison ─────────────────────────────────────────

    def compare_profiles(
        self,
        current: VolumeProfile,
        historical: Sequence[VolumeProfile],
    ) -> List[ProfileComparison]:
        """
        Score the current profile against earlier ones.

        similarity = 0.6 * distribution correlation + 0.3 * POC proximity
                     + 0.1 * same shape
        """
        out = []
        cur = np.array([n.volume for n in current.nodes])
        cur_poc = current.poc.price_level
        for past in historical:
            prev = np.array([n.volume for n in past.nodes])
            corr = _resampled_correlation(cur, prev)

            past_poc = past.poc.price_level
            shift = (cur_poc - past_poc) / past_poc if past_poc > 0 else 0.0
            poc_similarity = max(0.0, 1.0 - abs(shift) / 0.05)
            shape_similarity = 1.0 if current.shape is past.shape else 0.0

            divergences = []
            if current.shape is not past.shape:
                divergences.append(f"Profile shape changed from {past.shape.value} to {current.shape.value}")
            if abs(shift) > 0.05:
                divergences.append(f"POC shifted {shift * 100:+.1f}%")

            out.append(ProfileComparison(
                similarity=max(0.0, corr) * 0.6 + poc_similarity * 0.3 + shape_similarity * 0.1,
                correlation=corr,
                poc_shift=shift,
                divergences=tuple(divergences),
            ))
        return out

    # ── Vote ──────────────────────────────────────────────────────────

    def get_vote(self, analysis: VolumeProfileAnalysis) -> Vote:
        """Get voting signal based on volume profile structure."""
        structure = analysis.structure
        poc = analysis.profile.poc.price_level
        confidence = structure.strength / 100.0
        data = {
            "poc": poc,
            "value_area_low": analysis.profile.value_area_low,
            "value_area_high": analysis.profile.value_area_high,
            "shape": analysis.profile.shape.value,
            "trend": structure.trend,
            "phase": structure.phase,
        }

        if structure.trend == "accumulation":
            return Vote("VolumeProfile", Direction.BULLISH, confidence,
                        f"P-shaped profile, accumulation ({structure.phase} phase)", data)
        if structure.trend == "distribution":
            return Vote("VolumeProfile", Direction.BEARISH, confidence,
                        f"B-shaped profile, distribution ({structure.phase} phase)", data)
        if structure.trend == "trending":
            if analysis.current_price > poc:
                return Vote("VolumeProfile", Direction.BULLISH, confidence,
                            "Price accepted above value area and POC", data)
            return Vote("VolumeProfile", Direction.BEARISH, confidence,
                        "Price accepted below value area and POC", data)
        return Vote("VolumeProfile", Direction.NEUTRAL, confidence * 0.5,
                    "Balanced auction inside value", data)


def _resampled_correlation(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation of two volume distributions on a common grid."""
    n = min(len(a), len(b))
    if n < 2:
        return 0.0
    grid = np.linspace(0.0, 1.0, n)
    a_r = np.interp(grid, np.linspace(0.0, 1.0, len(a)), a)
    b_r = np.interp(grid, np.linspace(0.0, 1.0, len(b)), b)
    if np.std(a_r) < 1e-12 or np.std(b_r) < 1e-12:
        return 0.0
    corr = float(np.corrcoef(a_r, b_r)[0, 1])
    return 0.0 if np.isnan(corr) else corr
