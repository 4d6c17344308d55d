"""Tests for value extraction, precision and level validation."""

import pytest

from trade_planner.optimizer import TradePlanOptimizer
from trade_planner.recommendation import (
    PriceField,
    RawRecommendation,
    extract_asset_symbol,
    extract_price,
    format_price,
    get_price_precision,
    plan_to_recommendation,
    process_recommendation,
    risk_reward_ratio,
    validate_price_level,
)
from trade_planner.types import RiskTolerance, TradeDirection, TradingStyle


def _raw(entry, targets, stop):
    return RawRecommendation(
        entry_price=PriceField(entry, "Pullback into BTC support"),
        take_profit=tuple(PriceField(t, None) for t in targets),
        stop_loss=PriceField(stop, None),
    )


class TestParsing:
    @pytest.mark.parametrize("text, expected", [
        ("$42,350", 42350.0),
        ("around 0.5432 USDT", 0.5432),
        ("Entry at 1.2345 on the retest", 1.2345),
        ("€1,234.56", 1234.56),
    ])
    def test_extract_price(self, text, expected):
        assert extract_price(text) == pytest.approx(expected)

    def test_extract_price_nothing(self):
        assert extract_price("no number here") is None
        assert extract_price(None) is None

    def test_asset_symbol(self):
        assert extract_asset_symbol("BTC/USDT") == "BTC"
        assert extract_asset_symbol("ethusdt") == "ETH"
        assert extract_asset_symbol("SOL-BTC") == "SOL"
        assert extract_asset_symbol("AAPL") == "AAPL"


class TestPrecision:
    def test_bitcoin_precision(self):
        assert get_price_precision("BTC", 43000.0).decimals == 0
        assert get_price_precision("BTCUSDT", 5000.0).decimals == 1

    def test_small_caps(self):
        assert get_price_precision("DOGE", 0.08).decimals == 6
        assert get_price_precision("XYZ", 0.001).decimals == 8

    def test_format_rounds_to_tick(self):
        precision = get_price_precision("ETH", 2345.67)
        assert format_price(2345.67, precision) == "2345.7"

    def test_risk_reward(self):
        assert risk_reward_ratio(100.0, 110.0, 95.0) == pytest.approx(2.0)
        assert risk_reward_ratio(100.0, 110.0, 100.0) == 0.0


class TestValidation:
    def test_entry_too_far(self):
        assert validate_price_level(120.0, 100.0, "entry") is not None
        assert validate_price_level(105.0, 100.0, "entry") is None

    def test_take_profit_side(self):
        assert "above" in validate_price_level(95.0, 100.0, "take_profit")
        assert "below" in validate_price_level(105.0, 100.0, "take_profit", TradeDirection.SHORT)
        assert "too close" in validate_price_level(100.5, 100.0, "take_profit")

    def test_stop_loss_bounds(self):
        assert "too tight" in validate_price_level(99.8, 100.0, "stop_loss")
        assert "too wide" in validate_price_level(85.0, 100.0, "stop_loss")
        assert validate_price_level(97.0, 100.0, "stop_loss") is None
        assert validate_price_level(103.0, 100.0, "stop_loss", TradeDirection.SHORT) is None

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            validate_price_level(100.0, 100.0, "breakeven")


class TestProcessRecommendation:
    def test_valid_long(self):
        result = process_recommendation(_raw("$42,000", ["$44,000", "$46,000"], "$41,000"))
        assert result.is_valid
        assert result.direction is TradeDirection.LONG
        assert result.take_profit_levels == (44000.0, 46000.0)
        assert result.risk_reward_ratios == pytest.approx((2.0, 4.0))
        assert result.precision.asset == "BTC"
        assert result.warnings == ()

    def test_short_inferred_from_stop(self):
        result = process_recommendation(_raw("$100", ["$95"], "$103"), asset="SOL")
        assert result.direction is TradeDirection.SHORT
        assert result.potential_risk == pytest.approx(3.0)

    def test_unparseable_levels(self):
        result = process_recommendation(_raw("soon", ["$110", "moon"], "$95"))
        assert not result.is_valid
        assert "Could not extract numerical entry price" in result.errors
        assert "Some take profit levels could not be parsed" in result.warnings

    def test_low_risk_reward_warning(self):
        result = process_recommendation(_raw("$100", ["$102"], "$96"), asset="XYZ")
        assert "Low risk-reward ratio: 0.5:1" in result.warnings

    def test_enhanced_formats_prices(self):
        result = process_recommendation(_raw("$42,000.4", ["$44,000"], "$41,000"))
        enhanced = result.enhanced()
        assert enhanced.entry_price.value == "$42000"
        assert enhanced.risk_reward_ratio == "2.0:1"
        assert enhanced.stop_loss.reason == "Risk management level"


class TestPlanFormatting:
    def test_plan_to_recommendation_round_trips(self):
        plan = TradePlanOptimizer().optimize(
            100.0, TradeDirection.LONG, 2.0, [98.0], [106.0],
            TradingStyle.DAY_TRADING, RiskTolerance.MODERATE, 0.8,
        )
        raw = plan_to_recommendation(plan, "XYZ")
        assert raw.entry_price.value == "$99.000"
        assert len(raw.take_profit) == 3
        result = process_recommendation(raw, current_price=100.0, asset="XYZ")
        assert result.is_valid
        assert result.entry_price == pytest.approx(99.0)
        assert result.stop_loss == pytest.approx(97.4)
