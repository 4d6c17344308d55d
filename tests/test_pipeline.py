"""
End-to-end tests for TradePlanner.

Consensus and the candle gate are patched where a test needs a specific
branch of the outcome ladder.  TestEndToEnd and TestDeterminism run the
whole pipeline unpatched.
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta
from unittest import mock

import numpy as np
import pytest

from trade_planner import PlanRequest, TradePlanner
from trade_planner.analyzers.patterns import PatternDetector, TrainingExample
from trade_planner.cache import TTLMemo
from trade_planner.config import PlannerConfig
from trade_planner.errors import (
    ConflictingConsensusError,
    GateRejectedError,
    InsufficientDataError,
    NoSignalError,
)
from trade_planner.persistence import SqlitePatternStore
from trade_planner.types import (
    CandleClass,
    CandleDecision,
    ConsensusResult,
    Direction,
    GateState,
    OrderBookSnapshot,
    PatternType,
    PlanOutcome,
    PriceBar,
    RiskTolerance,
    TimeframeConfirmation,
    TradeDirection,
    Vote,
)

logging.disable(logging.CRITICAL)


# =============================================================================
# HELPERS
# =============================================================================

_START = datetime(2024, 1, 1)


def _bars(n: int = 60, seed: int = 42, step: float = 0.1):
    """Gentle noisy uptrend around 100 with ~0.5% bars."""
    rng = np.random.RandomState(seed)
    bars = []
    prev_close = 100.0
    for i in range(n):
        close = 100.0 + step * i + rng.normal(0, 0.3)
        open_ = prev_close
        high = max(open_, close) + rng.uniform(0.05, 0.3)
        low = min(open_, close) - rng.uniform(0.05, 0.3)
        t = _START + timedelta(hours=i)
        bars.append(PriceBar(t, t + timedelta(hours=1), open_, high, low, close, rng.uniform(900, 1100)))
        prev_close = close
    return tuple(bars)


def _consensus(direction=Direction.BULLISH, confidence=75.0, agreement=100.0, conflicts=()):
    vote = Vote("Test", direction, confidence / 100.0, "patched")
    return ConsensusResult(
        overall_direction=direction,
        confidence=confidence,
        agreement_score=agreement,
        conflicting_signals=tuple(conflicts),
        bullish_weight=vote.confidence if direction is Direction.BULLISH else 0.0,
        bearish_weight=vote.confidence if direction is Direction.BEARISH else 0.0,
        votes=(vote,),
    )


_READY = CandleDecision(GateState.READY_TO_ENTER, CandleClass.BULLISH_CONFIRMATION, 80.0, True, "good", "test")
_WAIT = CandleDecision(GateState.WAIT_NEXT_CANDLE, CandleClass.INDECISION, 40.0, False, "normal",
                       "Indecision candle", "1-3 candles")


# =============================================================================
# DATA REQUIREMENTS
# =============================================================================


class TestDataRequirements:
    def test_min_bars_default(self):
        assert TradePlanner().min_bars == 30

    def test_too_few_bars_raises(self):
        planner = TradePlanner()
        with pytest.raises(InsufficientDataError) as exc:
            planner.plan(PlanRequest("TEST", "1h", _bars(10)))
        assert exc.value.required == 30
        assert exc.value.available == 10

    def test_short_window_skips_harmonics_with_warning(self):
        result = TradePlanner().plan(PlanRequest("TEST", "1h", _bars(40)))
        assert result.harmonics is None
        assert any(w.startswith("Harmonic scan skipped") for w in result.warnings)
        assert "No order book or trade data; microstructure is neutral" in result.warnings
        assert result.quality["data_completeness"] <= 80.0

    def test_crossed_snapshot_in_history_is_dropped(self):
        books = [
            OrderBookSnapshot(_START + timedelta(seconds=i), ((100.0, 10.0),), ((100.1, 10.0),))
            for i in range(20)
        ]
        books[3] = OrderBookSnapshot(_START + timedelta(seconds=3), ((100.5, 10.0),), ((100.4, 10.0),))
        result = TradePlanner().plan(PlanRequest("TEST", "1h", _bars(), order_books=tuple(books)))
        assert result.microstructure.rejected_books == 1
        assert not result.microstructure.is_default
        assert "Dropped 1 crossed order book snapshot(s)" in result.warnings


# =============================================================================
# CONSENSUS OUTCOMES
# =============================================================================


class TestConsensusOutcomes:
    def test_neutral_consensus_is_no_signal(self):
        planner = TradePlanner()
        with mock.patch.object(planner.consensus_builder, "build",
                               return_value=_consensus(Direction.NEUTRAL, 10.0, 40.0)):
            result = planner.plan(PlanRequest("TEST", "1h", _bars()))
        assert result.outcome is PlanOutcome.NO_SIGNAL
        assert result.plans == ()
        with pytest.raises(NoSignalError):
            result.raise_for_outcome()

    def test_low_agreement_is_conflicting(self):
        planner = TradePlanner()
        conflicts = ("Mixed signals across methodologies (agreement 50%)",)
        with mock.patch.object(planner.consensus_builder, "build",
                               return_value=_consensus(agreement=50.0, conflicts=conflicts)):
            result = planner.plan(PlanRequest("TEST", "1h", _bars()))
        assert result.outcome is PlanOutcome.CONFLICTING_CONSENSUS
        with pytest.raises(ConflictingConsensusError) as exc:
            result.raise_for_outcome()
        assert exc.value.conflicts == conflicts

    def test_weak_confidence_is_no_signal(self):
        planner = TradePlanner()
        with mock.patch.object(planner.consensus_builder, "build",
                               return_value=_consensus(confidence=55.0)):
            result = planner.plan(PlanRequest("TEST", "1h", _bars()))
        assert result.outcome is PlanOutcome.NO_SIGNAL
        assert "below 60%" in result.reason


# =============================================================================
# GATES
# =============================================================================


class TestGates:
    def _planner(self):
        planner = TradePlanner()
        planner.consensus_builder.build = mock.Mock(return_value=_consensus())
        planner.candle_gate.evaluate = mock.Mock(return_value=_READY)
        return planner

    def test_plan_released_without_confirmation(self):
        planner = self._planner()
        result = planner.plan(PlanRequest("TEST", "1h", _bars()))
        assert result.outcome is PlanOutcome.PLAN_READY
        assert result.raise_for_outcome() is result
        assert len(result.plans) == 3
        assert result.primary_plan.direction is TradeDirection.LONG
        assert result.primary_plan.risk_tolerance is RiskTolerance.MODERATE
        assert [p.risk_tolerance for p in result.plans[1:]] == [
            RiskTolerance.CONSERVATIVE, RiskTolerance.AGGRESSIVE,
        ]
        for plan in result.plans:
            plan.validate()

    def test_alternates_disabled(self):
        planner = TradePlanner(PlannerConfig(include_alternates=False))
        planner.consensus_builder.build = mock.Mock(return_value=_consensus())
        planner.candle_gate.evaluate = mock.Mock(return_value=_READY)
        result = planner.plan(PlanRequest("TEST", "1h", _bars(), risk_tolerance=RiskTolerance.AGGRESSIVE))
        assert len(result.plans) == 1
        assert result.primary_plan.risk_tolerance is RiskTolerance.AGGRESSIVE

    def test_candle_gate_withholds_plans(self):
        planner = self._planner()
        planner.candle_gate.evaluate = mock.Mock(return_value=_WAIT)
        result = planner.plan(PlanRequest("TEST", "1h", _bars()))
        assert result.outcome is PlanOutcome.GATE_REJECTED
        assert result.plans == ()
        assert result.candle_decision is _WAIT
        assert result.reason.startswith("Candle gate:")
        with pytest.raises(GateRejectedError):
            result.raise_for_outcome()

    def test_swing_timeframe_requires_confirmation(self):
        planner = self._planner()
        result = planner.plan(PlanRequest("TEST", "4h", _bars()))
        assert result.outcome is PlanOutcome.CONFIRMATION_REQUIRED
        assert result.plans == ()
        assert result.confirmation_request.required_timeframes == ("6h",)
        with pytest.raises(GateRejectedError) as exc:
            result.raise_for_outcome()
        assert exc.value.missing_timeframes == ("6h",)

    def test_agreeing_confirmation_releases_plan(self):
        planner = self._planner()
        confirmations = (TimeframeConfirmation("6h", Direction.BULLISH, 80.0),)
        result = planner.plan(PlanRequest("TEST", "4h", _bars(), confirmations=confirmations))
        assert result.outcome is PlanOutcome.PLAN_READY
        assert result.timeframe_decision.status == "confirmed"
        assert result.primary_plan is not None

    def test_opposing_confirmation_rejects(self):
        planner = self._planner()
        confirmations = (TimeframeConfirmation("6h", Direction.BEARISH, 80.0),)
        result = planner.plan(PlanRequest("TEST", "4h", _bars(), confirmations=confirmations))
        assert result.outcome is PlanOutcome.GATE_REJECTED
        assert result.timeframe_decision.status == "opposed"
        assert result.plans == ()
        with pytest.raises(GateRejectedError):
            result.raise_for_outcome()


# =============================================================================
# CACHE AND PERSISTENCE
# =============================================================================


class TestCacheAndStore:
    def test_memo_serves_repeated_window(self):
        memo = TTLMemo(ttl_seconds=60, max_size=100)
        planner = TradePlanner(memo=memo)
        bars = _bars()
        first = planner.plan(PlanRequest("TEST", "1h", bars))
        assert memo.hits == 0
        second = planner.plan(PlanRequest("TEST", "1h", bars))
        # structure, volume, microstructure, patterns; harmonics raises and is never stored
        assert memo.hits == 4
        assert first.consensus == second.consensus

    def test_cache_enabled_in_config_builds_memo(self):
        cfg = PlannerConfig()
        cfg.cache.enabled = True
        assert isinstance(TradePlanner(cfg).memo, TTLMemo)
        assert TradePlanner().memo is None

    def test_store_statistics_loaded_and_saved(self):
        fd, path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(fd)
        try:
            trained = PatternDetector()
            trained.add_training_example(TrainingExample(PatternType.DOUBLE_BOTTOM, {}, True, 0.06, "4h"))
            trained.add_training_example(TrainingExample(PatternType.DOUBLE_BOTTOM, {}, False, -0.02, "4h"))
            store = SqlitePatternStore(path)
            store.save_stats(trained.export_stats())
            store.close()

            planner = TradePlanner(PlannerConfig(db_path=path))
            assert planner.pattern_detector.stats_for(PatternType.DOUBLE_BOTTOM).sample_count == 2

            planner.record_outcome(TrainingExample(PatternType.DOUBLE_BOTTOM, {}, True, 0.04, "1d"))
            assert planner.save_pattern_stats() == len(PatternType)
            planner.close()
            assert planner.store is None

            store = SqlitePatternStore(path)
            assert store.load_stats()[PatternType.DOUBLE_BOTTOM].sample_count == 3
            store.close()
        finally:
            os.remove(path)

    def test_save_without_store_is_noop(self):
        assert TradePlanner().save_pattern_stats() == 0


# =============================================================================
# UNPATCHED RUNS
# =============================================================================


class TestEndToEnd:
    def test_unpatched_run_releases_long_plan(self):
        result = TradePlanner().plan(PlanRequest("TEST", "1h", _bars(120, seed=1, step=0.05)))
        assert result.outcome is PlanOutcome.PLAN_READY
        assert result.consensus.overall_direction is Direction.BULLISH
        assert result.candle_decision.state is GateState.READY_TO_ENTER
        assert result.confirmation_request is None
        assert result.primary_plan.direction is TradeDirection.LONG
        for plan in result.plans:
            plan.validate()


class TestDeterminism:
    def test_repeated_runs_match(self):
        bars = _bars(120)
        a = TradePlanner().plan(PlanRequest("TEST", "1h", bars))
        b = TradePlanner().plan(PlanRequest("TEST", "1h", bars))
        assert a.outcome is b.outcome
        assert a.consensus == b.consensus
        assert a.quality == b.quality
        assert a.plans == b.plans
        assert a.reason == b.reason
