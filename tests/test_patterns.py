"""Tests for the heuristic pattern detector."""

import threading
from datetime import datetime, timedelta

import numpy as np
import pytest

from trade_planner.analyzers.patterns import (
    FEATURE_NAMES,
    PATTERN_WEIGHTS,
    PatternDetector,
    PatternStats,
    TrainingExample,
    score_pattern,
    squash,
)
from trade_planner.config import PatternConfig
from trade_planner.errors import InsufficientDataError
from trade_planner.types import Direction, PatternType, PriceBar

_T0 = datetime(2024, 1, 1)
_RNG = np.random.RandomState(42)


def _bars(closes, volumes=None):
    volumes = volumes if volumes is not None else [1000.0] * len(closes)
    out = []
    prev = closes[0]
    for i, (c, v) in enumerate(zip(closes, volumes)):
        out.append(PriceBar(
            open_time=_T0 + timedelta(hours=i),
            close_time=_T0 + timedelta(hours=i + 1),
            open=float(prev), high=float(max(prev, c) + 0.2), low=float(min(prev, c) - 0.2),
            close=float(c), volume=float(v),
        ))
        prev = c
    return out


def _trend_bars(n=60, drift=0.5):
    closes = 100 + drift * np.arange(n) + _RNG.randn(n) * 0.3
    volumes = 1000 + 10 * np.arange(n)
    return _bars(closes, volumes)


# =========================================================================
# Weight table
# =========================================================================


class TestWeightTable:
    def test_every_pattern_has_weights(self):
        assert set(PATTERN_WEIGHTS) == set(PatternType)

    def test_weights_use_known_features(self):
        for weights in PATTERN_WEIGHTS.values():
            assert set(weights) <= set(FEATURE_NAMES)

    def test_squash_center_is_half(self):
        assert squash("momentum", 0.0) == pytest.approx(0.5)
        assert squash("momentum", 1.0) > 0.99
        assert squash("momentum", 1.0, sign=-1.0) < 0.01

    def test_score_bounded(self):
        for pattern in PatternType:
            assert 0.0 <= score_pattern(pattern, {}) <= 1.0

    def test_bull_flag_prefers_uptrend(self):
        up = {"trend_strength": 0.2, "momentum": 0.1, "volume_confirmation": 0.8,
              "structure_break": 0.1, "higher_lows": 0.8}
        down = {"trend_strength": -0.2, "momentum": -0.1, "volume_confirmation": 0.8,
                "structure_break": 0.1, "higher_lows": 0.2}
        assert score_pattern(PatternType.BULL_FLAG, up) > score_pattern(PatternType.BULL_FLAG, down)
        assert score_pattern(PatternType.BEAR_FLAG, down) > score_pattern(PatternType.BEAR_FLAG, up)


# =========================================================================
# Features and detection
# =========================================================================


class TestDetection:
    def test_features_complete(self):
        features = PatternDetector().extract_features(_trend_bars())
        assert set(features) == set(FEATURE_NAMES)
        assert features["trend_strength"] > 0
        assert features["momentum"] > 0
        assert 0.0 <= features["higher_highs"] <= 1.0

    def test_too_few_bars(self):
        with pytest.raises(InsufficientDataError):
            PatternDetector().extract_features(_trend_bars(29))

    def test_detect_is_deterministic_and_ranked(self):
        bars = _trend_bars()
        detector = PatternDetector()
        first = detector.detect(bars)
        second = detector.detect(bars)
        assert [p.pattern_type for p in first] == [p.pattern_type for p in second]
        assert [p.confidence for p in first] == [p.confidence for p in second]
        ranks = [p.rank_score for p in first]
        assert ranks == sorted(ranks, reverse=True)
        assert all(p.confidence >= 0.6 for p in first)

    def test_strong_uptrend_votes_bullish(self):
        detector = PatternDetector()
        predictions = detector.detect(_trend_bars(drift=1.0))
        assert predictions
        assert any(p.pattern_type is PatternType.BULL_FLAG for p in predictions)
        vote = detector.get_vote(predictions)
        assert vote.source == "PatternDetector"
        assert vote.direction is Direction.BULLISH

    def test_no_predictions_abstain(self):
        assert PatternDetector.get_vote([]) is None

    def test_cutoff_above_one_emits_nothing(self):
        detector = PatternDetector(PatternConfig(confidence_cutoff=1.01))
        assert detector.detect(_trend_bars()) == []


# =========================================================================
# Statistics
# =========================================================================


class TestStatistics:
    def test_defaults_without_samples(self):
        stats = PatternStats(PatternType.DOUBLE_TOP)
        assert stats.success_rate(0.65) == pytest.approx(0.65)
        assert stats.avg_risk_reward(2.0) == pytest.approx(2.0)
        assert stats.best_timeframes(("4h", "1d")) == ("4h", "1d")

    def test_training_updates_snapshot(self):
        detector = PatternDetector()
        before = detector.stats_for(PatternType.BULL_FLAG)
        detector.add_training_example(TrainingExample(PatternType.BULL_FLAG, {"momentum": 0.1}, True, 0.04, "1h"))
        detector.add_training_example(TrainingExample(PatternType.BULL_FLAG, {"momentum": 0.2}, False, -0.02, "1h"))
        after = detector.stats_for(PatternType.BULL_FLAG)

        assert before.sample_count == 0
        assert after.sample_count == 2
        assert after.success_rate(0.65) == pytest.approx(0.5)
        assert after.expected_move_magnitude(0.05) == pytest.approx(0.04)
        assert after.best_timeframes(()) == ("1h",)

    def test_failures_only_give_unit_risk_reward(self):
        stats = PatternStats(PatternType.RECTANGLE).record(
            TrainingExample(PatternType.RECTANGLE, {}, False, -0.01))
        assert stats.avg_risk_reward(2.0) == pytest.approx(1.0)

    def test_learned_move_flows_into_predictions(self):
        detector = PatternDetector()
        bars = _trend_bars(drift=1.0)
        for pattern in PatternType:
            detector.add_training_example(TrainingExample(pattern, {"momentum": 0.3}, True, 0.10, "4h"))
        for prediction in detector.detect(bars):
            assert abs(prediction.expected_move) == pytest.approx(0.10)
            assert prediction.historical_success_rate == pytest.approx(1.0)
            assert prediction.best_timeframes == ("4h",)

    def test_concurrent_training_loses_nothing(self):
        detector = PatternDetector()

        def train():
            for _ in range(50):
                detector.add_training_example(TrainingExample(PatternType.CUP_HANDLE, {}, True, 0.03))

        threads = [threading.Thread(target=train) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert detector.stats_for(PatternType.CUP_HANDLE).sample_count == 200

    def test_load_stats_merges(self):
        detector = PatternDetector()
        loaded = {PatternType.DOUBLE_BOTTOM: PatternStats(PatternType.DOUBLE_BOTTOM, 10, 7, 0.35, (("1d", 7),))}
        detector.load_stats(loaded)
        assert detector.stats_for(PatternType.DOUBLE_BOTTOM).success_rate(0.0) == pytest.approx(0.7)
        assert detector.stats_for(PatternType.DOUBLE_TOP).sample_count == 0
