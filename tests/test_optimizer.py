"""Tests for entry / stop / target / size placement."""

import pytest

from trade_planner.errors import InvalidTradePlanError
from trade_planner.optimizer import TradePlanOptimizer, format_risk_reward
from trade_planner.types import RiskTolerance, TradeDirection, TradingStyle


def _day_long_plan():
    return TradePlanOptimizer().optimize(
        100.0, TradeDirection.LONG, 2.0, [98.0], [106.0],
        TradingStyle.DAY_TRADING, RiskTolerance.MODERATE, 0.8,
    )


class TestEntryAndStop:
    def test_long_entry_anchors_to_support(self):
        plan = _day_long_plan()
        assert plan.entry_zone.optimal == pytest.approx(99.0)
        assert plan.entry_zone.conservative == pytest.approx(99.0 * 0.998)
        assert plan.entry_zone.aggressive == pytest.approx(99.0 * 1.002)
        assert "98.000" in plan.entry_zone.rationale

    def test_structural_stop_below_support(self):
        stop = _day_long_plan().stop_loss
        assert stop.price == pytest.approx(97.4)
        assert stop.buffer_amount == pytest.approx(0.6)
        assert stop.rationale.startswith("Technical stop below support")
        assert stop.invalidation_price < stop.price
        assert stop.trailing is not None
        assert stop.trailing.trigger_percent == pytest.approx(1.6 / 99.0 * 150.0)

    def test_short_without_levels_uses_volatility_stop(self):
        plan = TradePlanOptimizer().optimize(
            100.0, TradeDirection.SHORT, 2.0, [], [],
            TradingStyle.SWING_TRADING, RiskTolerance.CONSERVATIVE, 0.7,
        )
        assert plan.entry_zone.optimal == pytest.approx(100.8)
        assert plan.stop_loss.price == pytest.approx(105.0)
        assert "2.10x ATR" in plan.stop_loss.rationale
        prices = [t.price for t in plan.targets]
        assert prices == pytest.approx([92.4, 88.2, 81.9])

    def test_scalp_stop_widened_to_floor(self):
        plan = TradePlanOptimizer().optimize(
            100.0, TradeDirection.LONG, 0.01, [], [],
            TradingStyle.SCALPING, RiskTolerance.MODERATE, 0.7,
        )
        entry = plan.entry_zone.optimal
        assert entry == pytest.approx(99.85)
        assert plan.stop_loss.price == pytest.approx(entry * 0.998)
        assert "widened" in plan.stop_loss.rationale
        assert plan.stop_loss.trailing is None

    def test_never_chases_price(self):
        zone = TradePlanOptimizer().entry_zone(
            100.0, TradeDirection.LONG, 10.0, [99.0], [], TradingStyle.DAY_TRADING)
        assert zone.optimal <= 100.0


class TestTargets:
    def test_day_ladder_caps_structural_rung(self):
        targets = _day_long_plan().targets
        assert [t.price for t in targets] == pytest.approx([101.4, 103.0, 104.6])
        assert targets[1].rationale == "structural level"
        assert [t.risk_multiple for t in targets] == pytest.approx([1.5, 2.5, 3.5])
        assert sum(t.partial_exit_percent for t in targets) == pytest.approx(100.0)

    def test_day_ladder_atr_fallback(self):
        plan = TradePlanOptimizer().optimize(
            100.0, TradeDirection.LONG, 2.0, [98.0], [],
            TradingStyle.DAY_TRADING, RiskTolerance.MODERATE, 0.8,
        )
        # 2 ATR from 99 is 103, inside the 2.5R cap
        assert plan.targets[1].price == pytest.approx(103.0)
        assert plan.targets[1].rationale == "2 ATR session move"

    def test_blended_risk_reward(self):
        plan = _day_long_plan()
        assert plan.risk_reward_ratio == pytest.approx(1.992 / 1.6)
        assert format_risk_reward(plan.risk_reward_ratio) == "1.2:1"

    def test_every_style_validates(self):
        optimizer = TradePlanOptimizer()
        for style in TradingStyle:
            for direction in TradeDirection:
                plan = optimizer.optimize(50.0, direction, 1.0, [49.0, 47.5], [51.0, 52.5],
                                          style, RiskTolerance.MODERATE, 0.75)
                assert plan.validate() is plan
                assert plan.expected_hold


class TestSizingAndRisk:
    def test_position_size(self):
        plan = _day_long_plan()
        assert plan.position_size_percent == pytest.approx(2.0 * (1.0 + 0.1245 + 0.1))
        assert plan.max_position_percent == pytest.approx(4.0)

    def test_position_size_clamped(self):
        size, max_size = TradePlanOptimizer().position_size(0.5, RiskTolerance.AGGRESSIVE, 0.2)
        assert size == pytest.approx(1.5)
        assert max_size == pytest.approx(6.0)

    def test_stop_probability(self):
        assert _day_long_plan().stop_probability == pytest.approx(40.0)
        tight = TradePlanOptimizer.stop_probability(100.0, 99.9, 1.0, TradingStyle.SCALPING)
        assert tight == pytest.approx(70.0)
        wide = TradePlanOptimizer.stop_probability(100.0, 90.0, 1.0, TradingStyle.POSITION_TRADING)
        assert wide == pytest.approx(10.0)

    def test_format_risk_reward(self):
        assert format_risk_reward(1.94) == "1.9:1"
        assert format_risk_reward(0.0) == "0:1"
        assert format_risk_reward(float("inf")) == "0:1"

    def test_non_positive_price_rejected(self):
        with pytest.raises(InvalidTradePlanError):
            TradePlanOptimizer().optimize(0.0, TradeDirection.LONG, 1.0, [], [],
                                          TradingStyle.DAY_TRADING, RiskTolerance.MODERATE, 0.7)
