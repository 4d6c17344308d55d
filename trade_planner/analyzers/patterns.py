"""
Heuristic Pattern Detector

Deterministic, explainable scorer for chart-pattern families.  It is not
a trained model: every pattern has a fixed weight table over a fixed
feature vector, and the same bars always produce the same scores.

Scoring:
    1. Extract features from the price/volume window
    2. Squash each feature: expit(scale * (value - center))
    3. Pattern score = sum(|w| * squashed) / sum(|w|), where a negative
       weight means the pattern wants that feature LOW
    4. Emit patterns scoring >= 0.6, ranked by score x historical success

Historical statistics per pattern (success rate, realized risk/reward,
best timeframes) are updated only through add_training_example(), which
is serialized by a lock and publishes a fresh immutable snapshot.
Scoring always reads one snapshot reference, never a table mid-update.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy import stats
from scipy.spatial.distance import cosine
from scipy.special import expit

from ..config import IndicatorConfig, PatternConfig
from ..errors import InsufficientDataError
from ..indicators import closes_of, highs_of, lows_of, macd, rsi_divergence, volumes_of
from ..types import Direction, PatternPrediction, PatternType, PriceBar, Vote

logger = logging.getLogger(__name__)


# =============================================================================
# FEATURES AND WEIGHTS
# =============================================================================

FEATURE_NAMES: Tuple[str, ...] = (
    "price_range",
    "volatility",
    "momentum",
    "trend_strength",
    "volume_trend",
    "volume_confirmation",
    "rsi_divergence",
    "macd_signal",
    "fibonacci_level",
    "support_resistance",
    "higher_highs",
    "higher_lows",
    "lower_highs",
    "lower_lows",
    "structure_break",
    "liquidity_zone",
)

# (center, scale) for the sigmoid squash of each feature
FEATURE_TRANSFORMS: Dict[str, Tuple[float, float]] = {
    "price_range": (0.05, 20.0),
    "volatility": (0.01, 100.0),
    "momentum": (0.0, 20.0),
    "trend_strength": (0.0, 20.0),
    "volume_trend": (0.0, 2.0),
    "volume_confirmation": (0.5, 6.0),
    "rsi_divergence": (0.0, 3.0),
    "macd_signal": (0.0, 200.0),
    "fibonacci_level": (0.9, 20.0),
    "support_resistance": (0.3, 6.0),
    "higher_highs": (0.5, 8.0),
    "higher_lows": (0.5, 8.0),
    "lower_highs": (0.5, 8.0),
    "lower_lows": (0.5, 8.0),
    "structure_break": (0.0, 20.0),
    "liquidity_zone": (0.5, 6.0),
}

PATTERN_WEIGHTS: Dict[PatternType, Dict[str, float]] = {
    PatternType.BULL_FLAG: {
        "trend_strength": 0.30, "volume_confirmation": 0.25, "momentum": 0.20,
        "structure_break": 0.15, "higher_lows": 0.10,
    },
    PatternType.BEAR_FLAG: {
        "trend_strength": -0.30, "volume_confirmation": 0.25, "momentum": -0.20,
        "structure_break": 0.15, "lower_highs": 0.10,
    },
    PatternType.HEAD_SHOULDERS: {
        "support_resistance": 0.30, "volume_confirmation": 0.25, "rsi_divergence": -0.20,
        "structure_break": 0.15, "fibonacci_level": 0.10,
    },
    PatternType.INVERSE_HEAD_SHOULDERS: {
        "support_resistance": 0.30, "volume_confirmation": 0.25, "rsi_divergence": 0.20,
        "structure_break": 0.15, "fibonacci_level": 0.10,
    },
    PatternType.ASCENDING_TRIANGLE: {
        "higher_lows": 0.30, "support_resistance": 0.25, "volume_trend": 0.20,
        "trend_strength": 0.15, "momentum": 0.10,
    },
    PatternType.DESCENDING_TRIANGLE: {
        "lower_highs": 0.30, "support_resistance": 0.25, "volume_trend": 0.20,
        "trend_strength": -0.15, "momentum": -0.10,
    },
    PatternType.DOUBLE_TOP: {
        "support_resistance": 0.35, "rsi_divergence": -0.25, "volume_confirmation": 0.20,
        "fibonacci_level": 0.15, "liquidity_zone": 0.05,
    },
    PatternType.DOUBLE_BOTTOM: {
        "support_resistance": 0.35, "rsi_divergence": 0.25, "volume_confirmation": 0.20,
        "fibonacci_level": 0.15, "liquidity_zone": 0.05,
    },
    PatternType.CUP_HANDLE: {
        "higher_lows": 0.25, "volume_trend": 0.20, "momentum": 0.20,
        "fibonacci_level": 0.20, "support_resistance": 0.15,
    },
    PatternType.WEDGE_RISING: {
        "higher_highs": 0.25, "higher_lows": 0.25, "momentum": -0.20,
        "volume_trend": -0.15, "macd_signal": -0.15,
    },
    PatternType.WEDGE_FALLING: {
        "lower_highs": 0.25, "lower_lows": 0.25, "momentum": 0.20,
        "volume_trend": -0.15, "macd_signal": 0.15,
    },
    PatternType.RECTANGLE: {
        "support_resistance": 0.35, "price_range": -0.25, "volatility": -0.20,
        "liquidity_zone": 0.10, "volume_trend": -0.10,
    },
}

_missing = set(PatternType) - set(PATTERN_WEIGHTS)
if _missing:
    raise RuntimeError(f"Pattern weight table missing {sorted(p.value for p in _missing)}")
_unknown = {f for w in PATTERN_WEIGHTS.values() for f in w} - set(FEATURE_NAMES)
if _unknown:
    raise RuntimeError(f"Pattern weight table uses unknown features {sorted(_unknown)}")


def squash(name: str, value: float, sign: float = 1.0) -> float:
    center, scale = FEATURE_TRANSFORMS[name]
    return float(expit(sign * scale * (value - center)))


def score_pattern(pattern: PatternType, features: Mapping[str, float]) -> float:
    """Weighted sigmoid score in [0, 1] for one pattern."""
    weights = PATTERN_WEIGHTS[pattern]
    total = 0.0
    norm = 0.0
    for name, w in weights.items():
        total += abs(w) * squash(name, features.get(name, 0.0), 1.0 if w >= 0 else -1.0)
        norm += abs(w)
    return total / norm if norm > 0 else 0.0


# =============================================================================
# STATISTICS
# =============================================================================


@dataclass(frozen=True)
class TrainingExample:
    """Realized outcome of a previously detected pattern."""
    pattern_type: PatternType
    features: Dict[str, float]
    success: bool
    actual_move: float          # Signed fraction realized
    timeframe: str = ""


@dataclass(frozen=True)
class PatternStats:
    """Running outcome statistics for one pattern type."""
    pattern_type: PatternType
    sample_count: int = 0
    success_count: int = 0
    success_move_sum: float = 0.0
    timeframe_counts: Tuple[Tuple[str, int], ...] = ()

    def success_rate(self, default: float) -> float:
        if self.sample_count == 0:
            return default
        return self.success_count / self.sample_count

    def avg_risk_reward(self, default: float) -> float:
        if self.sample_count == 0:
            return default
        if self.success_count == 0:
            return 1.0
        return self.success_move_sum / self.success_count

    def expected_move_magnitude(self, default: float) -> float:
        if self.success_count == 0:
            return default
        return self.success_move_sum / self.success_count

    def best_timeframes(self, default: Tuple[str, ...]) -> Tuple[str, ...]:
        if not self.timeframe_counts:
            return default
        ranked = sorted(self.timeframe_counts, key=lambda kv: (-kv[1], kv[0]))
        return tuple(tf for tf, _ in ranked[:3])

    def record(self, example: TrainingExample) -> "PatternStats":
        """Return a new PatternStats with ``example`` folded in."""
        counts = dict(self.timeframe_counts)
        if example.success and example.timeframe:
            counts[example.timeframe] = counts.get(example.timeframe, 0) + 1
        return replace(
            self,
            sample_count=self.sample_count + 1,
            success_count=self.success_count + (1 if example.success else 0),
            success_move_sum=self.success_move_sum + (abs(example.actual_move) if example.success else 0.0),
            timeframe_counts=tuple(sorted(counts.items())),
        )


@dataclass(frozen=True)
class _Snapshot:
    stats: Dict[PatternType, PatternStats]
    vectors: Dict[PatternType, Tuple[np.ndarray, ...]] = field(default_factory=dict)


def feature_vector(features: Mapping[str, float]) -> np.ndarray:
    return np.array([features.get(name, 0.0) for name in FEATURE_NAMES], dtype=np.float64)


# =============================================================================
# DETECTOR
# =============================================================================


class PatternDetector:
    """
    Weighted-feature pattern scorer with running outcome statistics.

    Usage:
        detector = PatternDetector()
        predictions = detector.detect(bars)
        detector.add_training_example(TrainingExample(...))
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        indicator_config: Optional[IndicatorConfig] = None,
    ):
        self.cfg = config or PatternConfig()
        self.ind = indicator_config or IndicatorConfig()
        self._lock = threading.Lock()
        self._snapshot = _Snapshot(stats={p: PatternStats(p) for p in PatternType})

    # ── Feature extraction ────────────────────────────────────────────

    def extract_features(self, bars: Sequence[PriceBar]) -> Dict[str, float]:
        if len(bars) < self.cfg.min_bars:
            raise InsufficientDataError("Pattern features", self.cfg.min_bars, len(bars))

        p = closes_of(bars)
        h = highs_of(bars)
        lo = lows_of(bars)
        v = volumes_of(bars)
        n = len(p)
        current = float(p[-1])

        log_returns = np.diff(np.log(p))
        returns = np.diff(p) / p[:-1]

        period = min(self.cfg.momentum_period, n - 1)
        momentum = float(p[-1] / p[-1 - period] - 1.0)

        regression = stats.linregress(np.arange(n, dtype=np.float64), p)
        trend_strength = float(regression.slope * (n - 1) / p[0])

        if n >= 40:
            recent_vol, prior_vol = np.mean(v[-20:]), np.mean(v[-40:-20])
        else:
            half = n // 2
            recent_vol, prior_vol = np.mean(v[half:]), np.mean(v[:half])
        volume_trend = float(recent_vol / prior_vol - 1.0) if prior_vol > 0 else 0.0

        moved = np.diff(p) != 0
        rising_volume = np.diff(v) > 0
        volume_confirmation = float(np.mean(moved & rising_volume))

        divergence = float(rsi_divergence(p, self.ind.rsi_period))

        macd_signal = 0.0
        if n >= self.ind.macd_slow + self.ind.macd_signal - 1:
            result = macd(p, self.ind.macd_fast, self.ind.macd_slow, self.ind.macd_signal)
            macd_signal = result.histogram / current

        hi, lo_price = float(np.max(p)), float(np.min(p))
        fibonacci_level = 0.0
        if hi > lo_price:
            position = (current - lo_price) / (hi - lo_price)
            fibonacci_level = 1.0 - min(abs(position - r) for r in (0.236, 0.382, 0.5, 0.618, 0.786))

        support_resistance = float(np.mean(np.abs(p - current) / current <= self.cfg.support_band))

        heavy = p[v > np.mean(v) * 1.5]
        liquidity_zone = 0.0
        if len(heavy):
            distance = float(np.min(np.abs(heavy - current)) / current)
            liquidity_zone = max(0.0, 1.0 - distance / self.cfg.liquidity_band)

        return {
            "price_range": float((hi - lo_price) / p[0]),
            "volatility": float(np.std(log_returns)),
            "momentum": momentum,
            "trend_strength": trend_strength,
            "volume_trend": volume_trend,
            "volume_confirmation": volume_confirmation,
            "rsi_divergence": divergence,
            "macd_signal": float(macd_signal),
            "fibonacci_level": float(fibonacci_level),
            "support_resistance": support_resistance,
            "higher_highs": float(np.mean(np.diff(h) > 0)),
            "higher_lows": float(np.mean(np.diff(lo) > 0)),
            "lower_highs": float(np.mean(np.diff(h) < 0)),
            "lower_lows": float(np.mean(np.diff(lo) < 0)),
            "structure_break": float(np.mean(np.abs(returns) > self.cfg.structure_break_move)),
            "liquidity_zone": liquidity_zone,
        }

    # ── Scoring ───────────────────────────────────────────────────────

    @staticmethod
    def score_patterns(features: Mapping[str, float]) -> Dict[PatternType, float]:
        return {p: score_pattern(p, features) for p in PatternType}

    @staticmethod
    def _similarity(vec: np.ndarray, history: Sequence[np.ndarray]) -> float:
        best = 0.0
        if not np.any(vec):
            return best
        for past in history:
            if not np.any(past):
                continue
            best = max(best, 1.0 - float(cosine(vec, past)))
        return float(np.clip(best, 0.0, 1.0))

    def detect(self, bars: Sequence[PriceBar]) -> List[PatternPrediction]:
        """Patterns clearing the cutoff, best rank first."""
        window = bars[-self.cfg.lookback:]
        features = self.extract_features(window)
        vec = feature_vector(features)
        snap = self._snapshot  # one consistent view for the whole call

        momentum_sign = float(np.sign(features["momentum"]))
        predictions = []
        for pattern, score in self.score_patterns(features).items():
            if score < self.cfg.confidence_cutoff:
                continue
            pstats = snap.stats[pattern]
            direction = pattern.bias if pattern.bias != 0 else momentum_sign
            magnitude = pstats.expected_move_magnitude(self.cfg.default_expected_move)
            predictions.append(PatternPrediction(
                pattern_type=pattern,
                confidence=score,
                historical_success_rate=pstats.success_rate(self.cfg.default_success_rate),
                expected_move=direction * magnitude,
                similarity=self._similarity(vec, snap.vectors.get(pattern, ())),
                avg_risk_reward=pstats.avg_risk_reward(self.cfg.default_risk_reward),
                best_timeframes=pstats.best_timeframes(self.cfg.default_best_timeframes),
                source_features=dict(features),
            ))

        predictions.sort(key=lambda pr: pr.rank_score, reverse=True)
        logger.debug(
            "Pattern scan: %d/%d above %.2f%s",
            len(predictions), len(PatternType), self.cfg.confidence_cutoff,
            f", top={predictions[0].pattern_type.value}" if predictions else "",
        )
        return predictions

    # ── Training ──────────────────────────────────────────────────────

    def add_training_example(self, example: TrainingExample) -> PatternStats:
        """Fold a realized outcome into the statistics table."""
        with self._lock:
            snap = self._snapshot
            updated = snap.stats[example.pattern_type].record(example)

            new_stats = dict(snap.stats)
            new_stats[example.pattern_type] = updated

            new_vectors = dict(snap.vectors)
            history = new_vectors.get(example.pattern_type, ()) + (feature_vector(example.features),)
            new_vectors[example.pattern_type] = history[-self.cfg.max_training_examples:]

            self._snapshot = _Snapshot(stats=new_stats, vectors=new_vectors)

        logger.info(
            "Training example for %s: success=%s move=%.4f (n=%d, rate=%.2f)",
            example.pattern_type.value, example.success, example.actual_move,
            updated.sample_count, updated.success_rate(self.cfg.default_success_rate),
        )
        return updated

    def stats_for(self, pattern: PatternType) -> PatternStats:
        return self._snapshot.stats[pattern]

    def export_stats(self) -> Dict[PatternType, PatternStats]:
        return dict(self._snapshot.stats)

    def load_stats(self, loaded: Mapping[PatternType, PatternStats]) -> None:
        with self._lock:
            snap = self._snapshot
            merged = dict(snap.stats)
            merged.update(loaded)
            self._snapshot = _Snapshot(stats=merged, vectors=snap.vectors)

    # ── Vote ──────────────────────────────────────────────────────────

    @staticmethod
    def get_vote(predictions: Sequence[PatternPrediction]) -> Optional[Vote]:
        if not predictions:
            return None
        top = predictions[0]
        if top.expected_move > 0:
            direction = Direction.BULLISH
        elif top.expected_move < 0:
            direction = Direction.BEARISH
        else:
            direction = Direction.NEUTRAL
        return Vote(
            "PatternDetector",
            direction,
            top.confidence,
            f"{top.pattern_type.value} ({top.confidence:.2f} conf, "
            f"{top.historical_success_rate:.0%} hist. success)",
            {"pattern": top.pattern_type.value, "expected_move": top.expected_move},
        )
