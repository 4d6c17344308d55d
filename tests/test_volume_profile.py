"""Tests for the volume profile analyzer."""

from datetime import datetime, timedelta

import numpy as np
import pytest

from trade_planner.analyzers.volume_profile import VolumeProfileAnalyzer
from trade_planner.config import VolumeProfileConfig
from trade_planner.errors import InsufficientDataError
from trade_planner.types import Direction, PriceBar, ProfileShape

_T0 = datetime(2024, 1, 1)
_RNG = np.random.RandomState(42)


def _bar(i, open_, high, low, close, volume):
    return PriceBar(
        open_time=_T0 + timedelta(hours=i),
        close_time=_T0 + timedelta(hours=i + 1),
        open=open_, high=high, low=low, close=close, volume=volume,
    )


def _random_bars(n=30):
    closes = 100 + np.cumsum(_RNG.randn(n) * 0.5)
    bars = []
    prev = closes[0]
    for i, c in enumerate(closes):
        hi = max(prev, c) + abs(_RNG.randn()) * 0.3
        lo = min(prev, c) - abs(_RNG.randn()) * 0.3
        bars.append(_bar(i, float(prev), float(hi), float(lo), float(c), float(_RNG.uniform(500, 1500))))
        prev = c
    return bars


class TestVolumeProfile:
    def test_node_volumes_sum_to_total(self):
        bars = _random_bars()
        profile = VolumeProfileAnalyzer().build_profile(bars)
        assert len(profile.nodes) == 100
        assert sum(n.volume for n in profile.nodes) == pytest.approx(sum(b.volume for b in bars))
        assert sum(n.volume_percent for n in profile.nodes) == pytest.approx(100.0)

    def test_value_area_holds_seventy_percent(self):
        profile = VolumeProfileAnalyzer().build_profile(_random_bars())
        assert profile.value_area_volume >= 0.7 * profile.total_volume - 1e-9
        assert profile.value_area_low <= profile.poc.price_level <= profile.value_area_high

    def test_poc_at_heavy_price(self):
        bars = [_bar(i, 100.0, 100.5, 99.5, 100.0, 1000.0) for i in range(20)]
        bars.append(_bar(20, 100.0, 110.0, 90.0, 100.0, 100.0))
        profile = VolumeProfileAnalyzer().build_profile(bars)
        assert abs(profile.poc.price_level - 100.0) < 0.6

    def test_flat_window_single_node(self):
        bars = [_bar(i, 100.0, 100.0, 100.0, 100.0, 10.0) for i in range(6)]
        profile = VolumeProfileAnalyzer().build_profile(bars)
        assert len(profile.nodes) == 1
        assert profile.shape is ProfileShape.BALANCED
        assert profile.total_volume == pytest.approx(60.0)

    def test_too_few_bars(self):
        with pytest.raises(InsufficientDataError):
            VolumeProfileAnalyzer().build_profile(_random_bars(4))

    def test_lookback_limits_window(self):
        bars = _random_bars(50)
        profile = VolumeProfileAnalyzer(VolumeProfileConfig(lookback=10)).build_profile(bars)
        assert profile.total_volume == pytest.approx(sum(b.volume for b in bars[-10:]))

    def test_value_area_grows_upward_from_bottom_edge(self):
        vol = np.array([5.0, 1.0, 1.0, 1.0, 2.0])
        low, high, va = VolumeProfileAnalyzer()._value_area(vol, 0, 10.0)
        assert (low, high) == (0, 2)
        assert va == pytest.approx(7.0)

    def test_value_area_grows_downward_from_top_edge(self):
        vol = np.array([1.0, 1.0, 1.0, 5.0])
        low, high, va = VolumeProfileAnalyzer()._value_area(vol, 3, 8.0)
        assert (low, high) == (2, 3)
        assert va == pytest.approx(6.0)


class TestVolumeAnalysis:
    def test_price_above_value_is_trending_bullish(self):
        bars = [_bar(i, 100.0, 100.5, 99.5, 100.0, 1000.0) for i in range(20)]
        bars.append(_bar(20, 100.0, 110.0, 99.5, 110.0, 100.0))
        analyzer = VolumeProfileAnalyzer()
        analysis = analyzer.analyze(bars)
        assert analysis.structure.trend == "trending"
        assert analysis.structure.phase == "late"

        vote = analyzer.get_vote(analysis)
        assert vote.source == "VolumeProfile"
        assert vote.direction is Direction.BULLISH
        assert 0.0 < vote.confidence <= 1.0

    def test_supports_below_and_resistances_above(self):
        analysis = VolumeProfileAnalyzer().analyze(_random_bars())
        price = analysis.current_price
        assert all(s < price for s in analysis.implications.supports)
        assert all(r > price for r in analysis.implications.resistances)
        assert len(analysis.implications.supports) <= 3

    def test_imbalances_flag_one_sided_closes(self):
        # Closing on the high every bar is all buy volume
        bars = [_bar(i, 100.0, 101.0, 100.0, 101.0, 100.0) for i in range(6)]
        imbalances = VolumeProfileAnalyzer().imbalances(bars)
        assert len(imbalances) == 1
        assert imbalances[0].direction is Direction.BULLISH
        assert imbalances[0].strength == pytest.approx(100.0)

    def test_compare_profile_with_itself(self):
        analyzer = VolumeProfileAnalyzer()
        profile = analyzer.build_profile(_random_bars())
        [comparison] = analyzer.compare_profiles(profile, [profile])
        assert comparison.similarity == pytest.approx(1.0)
        assert comparison.poc_shift == pytest.approx(0.0)
        assert comparison.divergences == ()
