"""Tests for the multi-timeframe confirmation gate."""

import pytest

from trade_planner.gates.timeframe import (
    MultiTimeframeGate,
    TimeframeContext,
    higher_timeframes,
    style_for_timeframe,
    timeframe_minutes,
)
from trade_planner.types import (
    ConfirmationRequest,
    Direction,
    TimeframeConfirmation,
    TradeDirection,
    TradingStyle,
)


def _ctx(timeframe="1h", strength=75.0, style=TradingStyle.DAY_TRADING, **kwargs):
    return TimeframeContext(timeframe=timeframe, signal_strength=strength, style=style, **kwargs)


def _request(required=("4h",), recommended=("1d",)):
    return ConfirmationRequest("1h", required, recommended, ("test",), "test")


# =========================================================================
# Timeframe helpers
# =========================================================================


class TestHelpers:
    def test_minutes(self):
        assert timeframe_minutes("15m") == 15
        assert timeframe_minutes("4h") == 240
        assert timeframe_minutes("1w") == 10080
        assert timeframe_minutes("soon") is None

    def test_higher_timeframes(self):
        assert higher_timeframes("1h") == (("2h", "4h", "6h"), ("2h", "4h"))
        assert higher_timeframes("1w") == (("1M",), ("1M",))
        assert higher_timeframes("7m") == (("1d", "1w"), ("1d",))

    def test_style_for_timeframe(self):
        assert style_for_timeframe("5m") is TradingStyle.SCALPING
        assert style_for_timeframe("1h") is TradingStyle.DAY_TRADING
        assert style_for_timeframe("4h") is TradingStyle.SWING_TRADING
        assert style_for_timeframe("1w") is TradingStyle.POSITION_TRADING
        assert style_for_timeframe("7m") is TradingStyle.DAY_TRADING


# =========================================================================
# Triggers
# =========================================================================


class TestTriggers:
    def test_clean_intraday_signal_needs_nothing(self):
        assert MultiTimeframeGate().evaluate(_ctx()) is None

    def test_weak_signal(self):
        request = MultiTimeframeGate().evaluate(_ctx(strength=60.0))
        assert request.required_timeframes == ("2h",)
        assert request.recommended_timeframes == ("4h", "6h")
        assert "below 70%" in request.reasons[0]
        assert request.message.startswith("Cannot provide a trade plan for 1h yet.")

    def test_lower_timeframe(self):
        request = MultiTimeframeGate().evaluate(_ctx(timeframe="15m", style=TradingStyle.SCALPING))
        assert request.required_timeframes == ("30m",)

    def test_swing_style(self):
        request = MultiTimeframeGate().evaluate(_ctx(timeframe="4h", style=TradingStyle.SWING_TRADING))
        assert request.required_timeframes == ("6h",)

    def test_conflicts_need_critical_timeframe(self):
        request = MultiTimeframeGate().evaluate(_ctx(conflicting_signals=("Balanced bullish/bearish signals",)))
        assert request.required_timeframes == ("2h",)
        assert "Balanced bullish/bearish signals" in request.reasons[0]

    def test_choppy_high_volatility(self):
        gate = MultiTimeframeGate()
        assert gate.evaluate(_ctx(high_volatility=True)) is None
        request = gate.evaluate(_ctx(high_volatility=True, choppy=True))
        assert request.required_timeframes == ("2h",)

    def test_major_level_uses_reference_timeframe(self):
        request = MultiTimeframeGate().evaluate(_ctx(strength=82.0, high_volume=True))
        assert request.required_timeframes == ("1d",)

    def test_high_impact_demands_more_evidence(self):
        gate = MultiTimeframeGate()
        assert gate.evaluate(_ctx(strength=90.0)) is None
        request = gate.evaluate(_ctx(strength=90.0, strong_trend=True))
        assert request.required_timeframes == ("4h",)
        assert request.recommended_timeframes == ("2h", "6h")

    def test_triggers_accumulate_without_duplicates(self):
        request = MultiTimeframeGate().evaluate(
            _ctx(timeframe="15m", strength=60.0, style=TradingStyle.SCALPING, high_volatility=True, choppy=True))
        assert request.required_timeframes == ("30m",)
        assert len(request.reasons) == 3

    def test_top_timeframe_cannot_be_confirmed(self):
        assert MultiTimeframeGate().evaluate(_ctx(timeframe="1M", strength=50.0)) is None


# =========================================================================
# Decisions
# =========================================================================


class TestProcess:
    def test_nothing_received(self):
        decision = MultiTimeframeGate().process(_request(), [])
        assert not decision.can_proceed
        assert decision.status == "none"
        assert decision.missing_timeframes == ("4h",)

    def test_partial(self):
        decision = MultiTimeframeGate().process(
            _request(required=("4h", "1d"), recommended=()),
            [TimeframeConfirmation("4h", Direction.BULLISH, 80.0)],
        )
        assert not decision.can_proceed
        assert decision.status == "partial"
        assert decision.missing_timeframes == ("1d",)

    def test_confirmed(self):
        decision = MultiTimeframeGate().process(
            _request(),
            [TimeframeConfirmation("4h", Direction.BULLISH, 80.0)],
            TradeDirection.LONG,
        )
        assert decision.can_proceed
        assert decision.status == "confirmed"
        assert decision.overall_bias is Direction.BULLISH
        assert decision.confidence == pytest.approx(80.0)
        assert decision.missing_recommended == ("1d",)

    def test_opposed_majority_blocks(self):
        decision = MultiTimeframeGate().process(
            _request(),
            [TimeframeConfirmation("4h", Direction.BEARISH, 80.0)],
            TradeDirection.LONG,
        )
        assert not decision.can_proceed
        assert decision.status == "opposed"
        assert decision.overall_bias is Direction.BEARISH

    def test_split_is_conflicting(self):
        decision = MultiTimeframeGate().process(
            _request(required=("4h", "1d")),
            [
                TimeframeConfirmation("4h", Direction.BULLISH, 70.0),
                TimeframeConfirmation("1d", Direction.BEARISH, 70.0),
            ],
        )
        assert not decision.can_proceed
        assert decision.status == "conflicting"
        assert decision.confidence == pytest.approx(35.0)
        assert len(decision.conflicts) == 2

    def test_no_majority_without_bears_is_mixed(self):
        decision = MultiTimeframeGate().process(
            _request(required=("4h", "1d")),
            [
                TimeframeConfirmation("4h", Direction.BULLISH, 50.0),
                TimeframeConfirmation("1d", Direction.NEUTRAL, 50.0),
            ],
        )
        assert decision.status == "mixed"
        assert not decision.can_proceed

    def test_neutral_majority_discounted(self):
        decision = MultiTimeframeGate().process(
            _request(),
            [TimeframeConfirmation("4h", Direction.NEUTRAL, 60.0)],
        )
        assert decision.can_proceed
        assert decision.overall_bias is Direction.NEUTRAL
        assert decision.confidence == pytest.approx(42.0)

    def test_latest_confirmation_wins(self):
        decision = MultiTimeframeGate().process(
            _request(),
            [
                TimeframeConfirmation("4h", Direction.BEARISH, 90.0),
                TimeframeConfirmation("4h", Direction.BULLISH, 65.0),
            ],
            TradeDirection.LONG,
        )
        assert decision.status == "confirmed"
        assert decision.confidence == pytest.approx(65.0)
