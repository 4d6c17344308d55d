"""
Trade Planner Pipeline

Runs one planning pass over a window of bars:

    structure -> {volume profile, microstructure, patterns, harmonics}
              -> consensus -> optimizer -> candle gate -> timeframe gate

The four analyzers are independent and run on a thread pool.  Every
"no trade" result (no signal, conflicting consensus, gate rejection,
higher-timeframe confirmation required) is reported on PlanResult.outcome
rather than raised; call ``raise_for_outcome()`` to get exceptions.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .analyzers.harmonics import HarmonicPatternDetector, HarmonicScan
from .analyzers.microstructure import MicrostructureAnalysis, MicrostructureAnalyzer
from .analyzers.patterns import PatternDetector, PatternStats, TrainingExample
from .analyzers.volume_profile import VolumeProfileAnalysis, VolumeProfileAnalyzer
from .cache import TTLMemo
from .config import PlannerConfig
from .consensus import ConsensusBuilder
from .errors import (
    ConflictingConsensusError,
    GateRejectedError,
    InsufficientDataError,
    NoSignalError,
)
from .gates.candle import CandleConfirmationGate
from .gates.timeframe import MultiTimeframeGate, TimeframeContext, style_for_timeframe
from .indicators import atr, closes_of, support_resistance, volumes_of
from .optimizer import TradePlanOptimizer
from .persistence import SqlitePatternStore
from .structure import MarketStructure, MarketStructureClassifier
from .types import (
    CandleDecision,
    ConfirmationDecision,
    ConfirmationRequest,
    ConsensusResult,
    Direction,
    OrderBookSnapshot,
    PatternPrediction,
    PlanOutcome,
    PriceBar,
    RiskFactor,
    RiskTolerance,
    TimeframeConfirmation,
    Trade,
    TradeDirection,
    TradePlan,
    TradingStyle,
    TrendState,
    Vote,
)

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST / RESULT
# =============================================================================


@dataclass(frozen=True)
class PlanRequest:
    """One planning pass.  ``style=None`` derives the style from the timeframe."""
    symbol: str
    timeframe: str
    bars: Tuple[PriceBar, ...]
    order_books: Tuple[OrderBookSnapshot, ...] = ()
    trades: Tuple[Trade, ...] = ()
    style: Optional[TradingStyle] = None
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    confirmations: Optional[Tuple[TimeframeConfirmation, ...]] = None


@dataclass(frozen=True)
class PlanResult:
    symbol: str
    timeframe: str
    outcome: PlanOutcome
    consensus: Optional[ConsensusResult] = None
    plans: Tuple[TradePlan, ...] = ()
    risk_factors: Tuple[RiskFactor, ...] = ()
    confirmation_request: Optional[ConfirmationRequest] = None
    candle_decision: Optional[CandleDecision] = None
    timeframe_decision: Optional[ConfirmationDecision] = None
    structure: Optional[MarketStructure] = None
    volume: Optional[VolumeProfileAnalysis] = None
    microstructure: Optional[MicrostructureAnalysis] = None
    patterns: Tuple[PatternPrediction, ...] = ()
    harmonics: Optional[HarmonicScan] = None
    quality: Dict[str, float] = field(default_factory=dict)
    reason: str = ""
    warnings: Tuple[str, ...] = ()

    @property
    def primary_plan(self) -> Optional[TradePlan]:
        return self.plans[0] if self.plans else None

    def raise_for_outcome(self) -> "PlanResult":
        """Return self when a plan is ready, else raise the matching error."""
        if self.outcome is PlanOutcome.PLAN_READY:
            return self
        if self.outcome is PlanOutcome.NO_SIGNAL:
            raise NoSignalError(self.reason)
        if self.outcome is PlanOutcome.CONFLICTING_CONSENSUS:
            conflicts = self.consensus.conflicting_signals if self.consensus else ()
            raise ConflictingConsensusError(self.reason, conflicts)
        if self.outcome is PlanOutcome.CONFIRMATION_REQUIRED:
            missing = self.confirmation_request.required_timeframes if self.confirmation_request else ()
            raise GateRejectedError(self.reason, missing)
        missing = self.timeframe_decision.missing_timeframes if self.timeframe_decision else ()
        raise GateRejectedError(self.reason, missing)


# =============================================================================
# PLANNER
# =============================================================================


class TradePlanner:
    """
    Multi-methodology trade planner.

    ``memo`` wraps every analyzer call when given (or when
    ``config.cache.enabled``).  ``store`` (or ``config.db_path``) supplies
    persisted pattern statistics, loaded once at construction.
    """

    def __init__(
        self,
        config: Optional[PlannerConfig] = None,
        memo: Optional[TTLMemo] = None,
        pattern_detector: Optional[PatternDetector] = None,
        store: Optional[SqlitePatternStore] = None,
    ):
        self.config = config or PlannerConfig()
        cfg = self.config

        self.structure_classifier = MarketStructureClassifier()
        self.volume_analyzer = VolumeProfileAnalyzer(cfg.volume_profile)
        self.microstructure_analyzer = MicrostructureAnalyzer(cfg.microstructure)
        self.pattern_detector = pattern_detector or PatternDetector(cfg.patterns, cfg.indicators)
        self.harmonic_detector = HarmonicPatternDetector(cfg.harmonics)
        self.consensus_builder = ConsensusBuilder(cfg.consensus)
        self.optimizer = TradePlanOptimizer(cfg.optimizer)
        self.candle_gate = CandleConfirmationGate(cfg.candle)
        self.timeframe_gate = MultiTimeframeGate(cfg.timeframe)

        if memo is None and cfg.cache.enabled:
            memo = TTLMemo(cfg.cache.ttl_seconds, cfg.cache.max_size)
        self.memo = memo

        self._owns_store = store is None and cfg.db_path is not None
        if self._owns_store:
            store = SqlitePatternStore(cfg.db_path)
        self.store = store
        if self.store is not None:
            loaded = self.store.load_stats()
            self.pattern_detector.load_stats(loaded)
            logger.info("Loaded statistics for %d pattern types", len(loaded))

    @property
    def min_bars(self) -> int:
        cfg = self.config
        return max(
            cfg.patterns.min_bars,
            cfg.volume_profile.min_bars,
            cfg.indicators.atr_period + 1,
            cfg.candle.atr_period + 2,
            cfg.candle.condition_window + 1,
            MarketStructureClassifier.MIN_BARS,
        )

    # ── Pattern statistics ────────────────────────────────────────────

    def record_outcome(self, example: TrainingExample) -> PatternStats:
        return self.pattern_detector.add_training_example(example)

    def save_pattern_stats(self) -> int:
        if self.store is None:
            return 0
        return self.store.save_stats(self.pattern_detector.export_stats())

    def close(self) -> None:
        if self._owns_store and self.store is not None:
            self.store.close()
            self.store = None

    # ── Stages ────────────────────────────────────────────────────────

    def _call(self, fn: Callable, *args) -> Any:
        if self.memo is not None:
            return self.memo.get_or_compute(fn, *args)
        return fn(*args)

    def _run_analyzers(
        self,
        request: PlanRequest,
        bars: Tuple[PriceBar, ...],
        warnings: List[str],
    ) -> Dict[str, Any]:
        jobs: Dict[str, Tuple[Callable, tuple]] = {
            "volume": (self.volume_analyzer.analyze, (bars,)),
            "microstructure": (
                self.microstructure_analyzer.analyze,
                (tuple(request.order_books), tuple(request.trades)),
            ),
            "patterns": (self.pattern_detector.detect, (bars,)),
            "harmonics": (self.harmonic_detector.scan, (bars,)),
        }
        results: Dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self._call, fn, *args): name
                for name, (fn, args) in jobs.items()
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except InsufficientDataError as e:
                    if name != "harmonics":
                        raise
                    warnings.append(f"Harmonic scan skipped: {e}")
                    logger.warning("Harmonic scan skipped for %s: %s", request.symbol, e)
                    results[name] = None
        return results

    @staticmethod
    def _merge_levels(price: float, *groups: Sequence[float]) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
        levels = {round(float(p), 10) for group in groups for p in group if p > 0}
        supports = tuple(sorted((p for p in levels if p < price), reverse=True))
        resistances = tuple(sorted(p for p in levels if p > price))
        return supports, resistances

    def _timeframe_context(
        self,
        request: PlanRequest,
        bars: Tuple[PriceBar, ...],
        structure: MarketStructure,
        consensus: ConsensusResult,
        style: TradingStyle,
        atr_value: float,
    ) -> TimeframeContext:
        cfg = self.config
        price = bars[-1].close

        window = closes_of(bars[-cfg.patterns.lookback:])
        slope = stats.linregress(np.arange(len(window)), window).slope
        move = abs(slope * (len(window) - 1) / window[0]) if window[0] > 0 else 0.0
        strong_trend = (
            structure.trend is not TrendState.SIDEWAYS
            and not structure.structure_break
            and move >= cfg.strong_trend_move
        )

        volumes = volumes_of(bars)
        avg_volume = float(np.mean(volumes[:-1]))
        high_volume = avg_volume > 0 and volumes[-1] > avg_volume * cfg.high_volume_ratio

        return TimeframeContext(
            timeframe=request.timeframe,
            signal_strength=consensus.confidence,
            style=style,
            conflicting_signals=consensus.conflicting_signals,
            high_volatility=atr_value / price * 100.0 > cfg.high_volatility_atr_percent,
            choppy=structure.trend is TrendState.SIDEWAYS,
            strong_trend=strong_trend,
            high_volume=bool(high_volume),
        )

    def _risk_factors(
        self,
        price: float,
        atr_value: float,
        structure: MarketStructure,
        consensus: ConsensusResult,
        volume: VolumeProfileAnalysis,
        micro: MicrostructureAnalysis,
    ) -> Tuple[RiskFactor, ...]:
        factors: List[RiskFactor] = []
        if structure.structure_break:
            factors.append(RiskFactor(structure.reason, "high", "MarketStructure",
                                      "Wait for a new swing before adding size"))
        for conflict in consensus.conflicting_signals:
            if conflict == structure.reason:
                continue
            factors.append(RiskFactor(conflict, "medium", "Consensus", "Reduce position size"))
        atr_percent = atr_value / price * 100.0
        if atr_percent > self.config.high_volatility_atr_percent:
            factors.append(RiskFactor(f"ATR is {atr_percent:.1f}% of price", "high", "Volatility",
                                      "Use the conservative stop and a smaller position"))
        band = self.config.optimizer.level_search_percent
        for zone in volume.implications.risk_zones:
            if abs(zone - price) / price <= band:
                factors.append(RiskFactor(f"Thin volume node at {zone:.6g}", "low", "VolumeProfile",
                                          "Expect price to move fast through this zone"))
        for risk in micro.risk_factors:
            factors.append(RiskFactor(risk, "medium", "Microstructure"))
        return tuple(factors)

    # ── Plan ──────────────────────────────────────────────────────────

    def plan(self, request: PlanRequest) -> PlanResult:
        cfg = self.config
        bars = tuple(request.bars)
        if len(bars) < self.min_bars:
            raise InsufficientDataError("Trade plan", self.min_bars, len(bars))

        warnings: List[str] = []
        structure: MarketStructure = self._call(self.structure_classifier.classify, bars)
        results = self._run_analyzers(request, bars, warnings)
        volume: VolumeProfileAnalysis = results["volume"]
        micro: MicrostructureAnalysis = results["microstructure"]
        patterns: List[PatternPrediction] = results["patterns"]
        harmonics: Optional[HarmonicScan] = results["harmonics"]

        if micro.rejected_books:
            warnings.append(f"Dropped {micro.rejected_books} crossed order book snapshot(s)")
        if micro.is_default:
            warnings.append("No order book or trade data; microstructure is neutral")

        candidates = [
            self.structure_classifier.get_vote(structure),
            self.volume_analyzer.get_vote(volume),
            self.microstructure_analyzer.get_vote(micro),
            self.pattern_detector.get_vote(patterns),
            self.harmonic_detector.get_vote(harmonics) if harmonics is not None else None,
        ]
        votes: List[Vote] = [v for v in candidates if v is not None]
        extra = (structure.reason,) if structure.structure_break else ()
        consensus = self.consensus_builder.build(votes, extra)

        price = bars[-1].close
        atr_value = atr(bars, cfg.indicators.atr_period)
        quality = {
            "data_completeness": len(votes) / len(candidates) * 100.0,
            "signal_strength": consensus.confidence,
            "agreement": consensus.agreement_score,
            "market_quality": micro.quality.overall,
            "atr_percent": atr_value / price * 100.0,
        }

        base = dict(
            symbol=request.symbol,
            timeframe=request.timeframe,
            consensus=consensus,
            risk_factors=self._risk_factors(price, atr_value, structure, consensus, volume, micro),
            structure=structure,
            volume=volume,
            microstructure=micro,
            patterns=tuple(patterns),
            harmonics=harmonics,
            quality=quality,
        )

        def finish(outcome: PlanOutcome, reason: str, **extra_fields) -> PlanResult:
            logger.info("%s %s: %s (%s)", request.symbol, request.timeframe, outcome.name, reason)
            return PlanResult(outcome=outcome, reason=reason, warnings=tuple(warnings),
                              **base, **extra_fields)

        # ── Consensus outcomes ────────────────────────────────────────
        if consensus.overall_direction is Direction.NEUTRAL:
            return finish(PlanOutcome.NO_SIGNAL,
                          f"No directional consensus across {len(votes)} sources")
        if consensus.agreement_score < cfg.consensus.agreement_threshold:
            return finish(PlanOutcome.CONFLICTING_CONSENSUS,
                          f"Sources disagree: {'; '.join(consensus.conflicting_signals)}")
        if consensus.confidence < cfg.consensus.min_signal_confidence:
            return finish(PlanOutcome.NO_SIGNAL,
                          f"Consensus confidence {consensus.confidence:.0f}% is below "
                          f"{cfg.consensus.min_signal_confidence:.0f}%")

        # ── Optimizer ─────────────────────────────────────────────────
        direction = TradeDirection.LONG if consensus.overall_direction is Direction.BULLISH else TradeDirection.SHORT
        style = request.style or style_for_timeframe(request.timeframe)
        sr = support_resistance(bars, cfg.indicators.sr_min_touches, cfg.indicators.sr_tolerance)
        supports, resistances = self._merge_levels(
            price,
            volume.implications.supports, volume.implications.resistances,
            sr.supports, sr.resistances,
            structure.key_levels,
        )

        confidence = consensus.confidence / 100.0
        tolerances = [request.risk_tolerance]
        if cfg.include_alternates:
            tolerances += [t for t in RiskTolerance if t is not request.risk_tolerance]
        plans = tuple(
            self.optimizer.optimize(price, direction, atr_value, supports, resistances,
                                    style, tolerance, confidence, request.symbol)
            for tolerance in tolerances
        )
        primary = plans[0]

        # ── Candle gate ───────────────────────────────────────────────
        if direction is TradeDirection.LONG:
            key_level = supports[0] if supports else primary.entry_zone.optimal
        else:
            key_level = resistances[0] if resistances else primary.entry_zone.optimal
        candle = self.candle_gate.evaluate(bars[-1], bars[:-1], direction, style, key_level)
        if not candle.ready:
            return finish(PlanOutcome.GATE_REJECTED, f"Candle gate: {candle.reason}",
                          candle_decision=candle)

        # ── Timeframe gate ────────────────────────────────────────────
        ctx = self._timeframe_context(request, bars, structure, consensus, style, atr_value)
        confirmation = self.timeframe_gate.evaluate(ctx)
        if confirmation is None:
            return finish(PlanOutcome.PLAN_READY, f"{direction.value} plan released",
                          plans=plans, candle_decision=candle)
        if not request.confirmations:
            return finish(PlanOutcome.CONFIRMATION_REQUIRED, confirmation.message,
                          confirmation_request=confirmation, candle_decision=candle)

        decision = self.timeframe_gate.process(confirmation, request.confirmations, direction)
        if not decision.can_proceed:
            return finish(PlanOutcome.GATE_REJECTED, f"Timeframe gate ({decision.status}): {decision.reason}",
                          confirmation_request=confirmation, candle_decision=candle,
                          timeframe_decision=decision)
        return finish(PlanOutcome.PLAN_READY, f"{direction.value} plan confirmed: {decision.reason}",
                      plans=plans, confirmation_request=confirmation, candle_decision=candle,
                      timeframe_decision=decision)
