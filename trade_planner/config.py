"""
Trade Planner Configuration

Every threshold that shapes a trade plan lives here as a tunable
dataclass field, grouped per pipeline stage, so profiles can be swapped
without touching the analyzers.

Includes:
- Default (PlannerConfig): the production thresholds.
- Scalping profile (create_scalping_config): shorter windows and a lower
  signal bar for 1m-15m charts.
- PlannerConfig.from_env(): deployment knobs read from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .types import RiskTolerance, TradingStyle


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None or value == "" else value


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class IndicatorConfig:
    """Lookbacks and thresholds for the indicator library."""

    rsi_period: int = 14
    """Wilder RSI lookback."""

    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0

    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    bollinger_period: int = 20
    bollinger_std: float = 2.0

    squeeze_threshold: float = 10.0
    """Bandwidth (% of middle band) below which the bands are in a squeeze."""

    expansion_threshold: float = 20.0
    """Bandwidth (% of middle band) above which the bands are expanding."""

    atr_period: int = 14
    """ATR lookback; the volatility unit for every stop and buffer."""

    mfi_period: int = 14

    sr_min_touches: int = 3
    """Touches needed before a price becomes a support/resistance level."""

    sr_tolerance: float = 0.002
    """Relative distance within which two highs/lows count as the same level."""


@dataclass
class VolumeProfileConfig:
    """Volume-at-price histogram parameters."""

    bins: int = 100
    """Number of price bins across the lookback range."""

    lookback: int = 30
    """Bars included in the profile."""

    min_bars: int = 5
    """Fewer bars than this raise InsufficientDataError."""

    value_area_percent: float = 0.70
    """Share of volume the value area must hold."""

    high_volume_threshold: float = 1.5
    """Node volume / average node volume that marks an institutional level."""

    imbalance_threshold: float = 0.7
    """Buy share above this (or below 1 - this) flags a buy/sell imbalance."""

    max_levels_per_side: int = 3
    """Supports/resistances reported in the trading implications."""

    target_zone_strength: float = 70.0
    """Imbalance strength above which an imbalance becomes a target zone."""

    risk_zone_ratio: float = 0.3
    """Nodes below this fraction of average volume are thin, fast-move zones."""


@dataclass
class MicrostructureConfig:
    """Order book / trade tape parameters."""

    large_trade_percentile: float = 0.95
    """Trade-size percentile that separates institutional from retail prints."""

    flow_window: int = 50
    """Most recent trades used for order-flow metrics."""

    liquidity_lookback: int = 100
    """Most recent snapshots retained for liquidity history."""

    spread_window: int = 10
    """Snapshots compared (first half vs last half) for the spread trend."""

    spread_trend_threshold: float = 0.10
    """Relative change in mean spread that counts as widening/tightening."""

    whale_multiple: float = 5.0
    """A print this many times the large-trade threshold is whale activity."""

    reference_order_size: float = 1.0
    """Order size used for the impact-cost estimate."""


@dataclass
class PatternConfig:
    """Heuristic pattern scorer parameters."""

    min_bars: int = 30
    """Fewer bars than this raise InsufficientDataError."""

    lookback: int = 60
    """Most recent bars fed to feature extraction."""

    confidence_cutoff: float = 0.6
    """Patterns scoring below this are not emitted."""

    momentum_period: int = 14
    support_band: float = 0.02
    """Prices within this fraction of the current price count as a touch."""

    structure_break_move: float = 0.05
    """Bar-to-bar move that counts toward the structure-break rate."""

    liquidity_band: float = 0.02
    """Distance (fraction of price) at which liquidity-zone proximity reaches 0."""

    default_success_rate: float = 0.65
    default_risk_reward: float = 2.0
    default_expected_move: float = 0.05
    default_best_timeframes: Tuple[str, ...] = ("4h", "1d")

    max_training_examples: int = 500
    """Feature vectors kept per pattern type for similarity lookups."""


@dataclass
class HarmonicConfig:
    """XABCD harmonic scanner parameters."""

    pivot_strength: int = 3
    """Bars on each side a pivot must dominate."""

    min_bars: int = 80
    min_leg_bars: int = 20
    """Minimum bars between consecutive XABC pivots."""

    max_span_bars: int = 200
    """Maximum bars between X and C."""

    tolerance: float = 0.05
    """Relative slack applied to each template ratio band."""

    completion_tolerance: float = 0.02
    """A pivot this close to projected D completes the pattern."""

    min_validation_score: float = 0.7


@dataclass
class ConsensusConfig:
    """Vote reconciliation thresholds."""

    dominance_ratio: float = 1.2
    """A side must carry this multiple of the other side's weight to win."""

    agreement_threshold: float = 70.0
    """Agreement (%) below which the consensus is flagged as mixed."""

    balance_threshold: float = 0.3
    """|bull - bear| / total below this flags balanced opposing signals."""

    min_signal_confidence: float = 60.0
    """Consensus confidence (%) needed before a plan is built at all."""


@dataclass
class OptimizerConfig:
    """Entry / stop / target / sizing parameters."""

    # ── Entry ─────────────────────────────────────────────────────────
    scalp_entry_offset: float = 0.0015
    """Scalps enter this fraction inside the current price."""

    swing_level_atr: float = 0.25
    """Swing entries sit this many ATR off the nearest level."""

    default_level_atr: float = 0.5
    """Day/position entries sit this many ATR off the nearest level."""

    swing_fallback_offset: float = 0.008
    default_fallback_offset: float = 0.005
    level_search_percent: float = 0.05
    """Only levels within this fraction of price anchor the entry."""

    zone_width: float = 0.002
    """Conservative/aggressive entries sit this fraction around optimal."""

    # ── Stop ──────────────────────────────────────────────────────────
    key_level_atr_range: float = 3.0
    """Structural stops only use levels within this many ATR of entry."""

    structural_buffer_atr: float = 0.3
    structural_buffer_percent: float = 0.002

    min_stop_percent_scalp: float = 0.002
    min_stop_percent: float = 0.005
    invalidation_offset: float = 0.005

    tolerance_multipliers: Dict[RiskTolerance, float] = field(default_factory=lambda: {
        RiskTolerance.CONSERVATIVE: 2.1,
        RiskTolerance.MODERATE: 1.575,
        RiskTolerance.AGGRESSIVE: 1.26,
    })
    """ATR stop multiplier per risk tolerance (wider for conservative)."""

    style_multipliers: Dict[TradingStyle, float] = field(default_factory=lambda: {
        TradingStyle.SCALPING: 0.63,
        TradingStyle.DAY_TRADING: 0.84,
        TradingStyle.SWING_TRADING: 1.0,
        TradingStyle.POSITION_TRADING: 1.575,
    })
    """Scales the tolerance multiplier per trading style."""

    # ── Sizing ────────────────────────────────────────────────────────
    base_position_percent: Dict[RiskTolerance, float] = field(default_factory=lambda: {
        RiskTolerance.CONSERVATIVE: 1.0,
        RiskTolerance.MODERATE: 2.0,
        RiskTolerance.AGGRESSIVE: 3.0,
    })
    """Account % risked per trade before quality adjustments."""

    max_rr_bonus: float = 0.5
    low_rr_penalty: float = 0.5
    """Subtracted from the size multiplier when risk/reward is below 1."""

    confidence_pivot: float = 0.7
    """Signal confidence (0-1) at which confidence neither adds nor removes size."""


@dataclass
class CandleConfig:
    """Candle confirmation gate thresholds."""

    atr_period: int = 14
    key_level_tolerance: float = 0.005
    """Close within this fraction of the key level counts as at the level."""

    condition_window: int = 5
    """Preceding bars averaged for the volume/range condition check."""

    scalp_min_strength: float = 50.0
    min_strength: float = 70.0

    avoid_volume_ratio: float = 0.6
    avoid_range_ratio: float = 0.4
    good_volume_ratio: float = 1.2
    good_range_ratio: float = 0.8


@dataclass
class TimeframeConfig:
    """Multi-timeframe gate thresholds."""

    weak_signal_threshold: float = 70.0
    high_impact_threshold: float = 85.0
    major_level_strength: float = 80.0
    lower_timeframe_max_minutes: int = 30


@dataclass
class CacheConfig:
    """Memoization of analyzer calls (off unless asked for)."""

    enabled: bool = False
    ttl_seconds: float = 300.0
    max_size: int = 1000


@dataclass
class PlannerConfig:
    """
    Complete configuration for the trade planner pipeline.

    Defaults reproduce the production thresholds; pass a modified copy to
    run sensitivity checks or a different profile.
    """

    # ── Stage configs ─────────────────────────────────────────────────
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    volume_profile: VolumeProfileConfig = field(default_factory=VolumeProfileConfig)
    microstructure: MicrostructureConfig = field(default_factory=MicrostructureConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    harmonics: HarmonicConfig = field(default_factory=HarmonicConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    candle: CandleConfig = field(default_factory=CandleConfig)
    timeframe: TimeframeConfig = field(default_factory=TimeframeConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    # ── Market-condition flags fed to the timeframe gate ──────────────
    high_volatility_atr_percent: float = 3.0
    """ATR as % of price above which the market counts as highly volatile."""

    strong_trend_move: float = 0.05
    """Regression-implied move over the window that marks a strong trend."""

    high_volume_ratio: float = 1.5
    """Last bar volume / average volume that counts as high volume."""

    # ── Runtime ───────────────────────────────────────────────────────
    max_workers: int = 4
    """Threads used to run the independent analyzers concurrently."""

    include_alternates: bool = True
    """Also build plans for the other risk tolerances."""

    db_path: Optional[str] = None
    """Sqlite file holding pattern statistics (None = in-memory only)."""

    @staticmethod
    def from_env() -> "PlannerConfig":
        cache = CacheConfig(
            enabled=_get_env_bool("TRADE_PLANNER_CACHE_ENABLED", False),
            ttl_seconds=_get_env_float("TRADE_PLANNER_CACHE_TTL_SECONDS", 300.0),
            max_size=_get_env_int("TRADE_PLANNER_CACHE_MAX_SIZE", 1000),
        )
        return PlannerConfig(
            cache=cache,
            max_workers=_get_env_int("TRADE_PLANNER_MAX_WORKERS", 4),
            include_alternates=_get_env_bool("TRADE_PLANNER_INCLUDE_ALTERNATES", True),
            db_path=(_get_env("TRADE_PLANNER_DB_PATH", "").strip() or None),
        )


def create_scalping_config() -> PlannerConfig:
    """
    Profile for 1m-15m charts.

    Key differences from default:
    - 20-bar volume profile with 50 bins (vs 30 / 100)
    - 40-bar pattern window (vs 60)
    - Lower consensus bar (55 vs 60) since fast charts rarely agree fully
    - No alternates; scalps are planned for one tolerance at a time
    """
    return PlannerConfig(
        volume_profile=VolumeProfileConfig(bins=50, lookback=20),
        patterns=PatternConfig(lookback=40),
        consensus=ConsensusConfig(min_signal_confidence=55.0),
        include_alternates=False,
    )
