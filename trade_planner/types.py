"""
Core type definitions for the trade planner.

This module contains the enums and dataclasses shared by the indicator
library, the analyzers, the consensus builder, the optimizer and the
confirmation gates.  Inputs and outputs are frozen: every analysis call
produces new values and never edits the ones it was given.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidBarError, InvalidTradePlanError


# ── Enumerations ──────────────────────────────────────────────────────


class Direction(Enum):
    """Directional bias of a signal source."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class TradeDirection(Enum):
    """Side of a trade plan."""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is TradeDirection.LONG else -1

    @property
    def bias(self) -> Direction:
        return Direction.BULLISH if self is TradeDirection.LONG else Direction.BEARISH


class Side(Enum):
    """Taker aggressor side of a trade print."""
    BUY = "buy"
    SELL = "sell"


class TradingStyle(Enum):
    """Holding-period persona, drives entry depth, stop width and targets."""
    SCALPING = "scalping"
    DAY_TRADING = "day_trading"
    SWING_TRADING = "swing_trading"
    POSITION_TRADING = "position_trading"


class RiskTolerance(Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class TrendState(Enum):
    """Swing-structure trend classification."""
    UPTREND = auto()
    DOWNTREND = auto()
    SIDEWAYS = auto()


class ProfileShape(Enum):
    """Shape of a volume profile."""
    BALANCED = "balanced"    # POC centred, volume symmetric
    P_SHAPED = "p_shaped"    # POC low in the range, volume skewed up
    B_SHAPED = "b_shaped"    # POC high in the range, volume skewed down
    D_SHAPED = "d_shaped"    # Anything else


class LevelKind(Enum):
    ACCUMULATION = "accumulation"
    DISTRIBUTION = "distribution"
    LIQUIDITY_ZONE = "liquidity_zone"
    HIGH_VOLUME_NODE = "high_volume_node"


class Significance(Enum):
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class PatternType(Enum):
    """Closed set of chart-pattern families scored by the pattern detector."""
    BULL_FLAG = "bull_flag"
    BEAR_FLAG = "bear_flag"
    HEAD_SHOULDERS = "head_shoulders"
    INVERSE_HEAD_SHOULDERS = "inverse_head_shoulders"
    ASCENDING_TRIANGLE = "ascending_triangle"
    DESCENDING_TRIANGLE = "descending_triangle"
    DOUBLE_TOP = "double_top"
    DOUBLE_BOTTOM = "double_bottom"
    CUP_HANDLE = "cup_handle"
    WEDGE_RISING = "wedge_rising"
    WEDGE_FALLING = "wedge_falling"
    RECTANGLE = "rectangle"

    @property
    def bias(self) -> int:
        """+1 continuation/reversal up, -1 down, 0 for direction-neutral patterns."""
        return _PATTERN_BIAS[self]


_PATTERN_BIAS: Dict[PatternType, int] = {
    PatternType.BULL_FLAG: 1,
    PatternType.BEAR_FLAG: -1,
    PatternType.HEAD_SHOULDERS: -1,
    PatternType.INVERSE_HEAD_SHOULDERS: 1,
    PatternType.ASCENDING_TRIANGLE: 1,
    PatternType.DESCENDING_TRIANGLE: -1,
    PatternType.DOUBLE_TOP: -1,
    PatternType.DOUBLE_BOTTOM: 1,
    PatternType.CUP_HANDLE: 1,
    PatternType.WEDGE_RISING: -1,
    PatternType.WEDGE_FALLING: 1,
    PatternType.RECTANGLE: 0,
}


class CandleClass(Enum):
    BULLISH_CONFIRMATION = "bullish_confirmation"
    BEARISH_CONFIRMATION = "bearish_confirmation"
    INDECISION = "indecision"


class GateState(Enum):
    """Candle gate decision."""
    READY_TO_ENTER = "enter_now"
    WAIT_NEXT_CANDLE = "wait_next_candle"
    WAIT_FOR_SETUP = "wait_for_setup"
    AVOID_TRADE = "avoid_trade"


class PlanOutcome(Enum):
    """How a pipeline run ended."""
    PLAN_READY = auto()
    NO_SIGNAL = auto()
    CONFLICTING_CONSENSUS = auto()
    GATE_REJECTED = auto()
    CONFIRMATION_REQUIRED = auto()


# ── Market data ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceBar:
    """A closed OHLCV bar."""
    open_time: datetime
    close_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self) -> None:
        if self.close_time <= self.open_time:
            raise InvalidBarError(
                f"close_time {self.close_time} must be after open_time {self.open_time}"
            )
        if not (self.low <= min(self.open, self.close) and max(self.open, self.close) <= self.high):
            raise InvalidBarError(
                f"Bar violates low <= open/close <= high: "
                f"o={self.open} h={self.high} l={self.low} c={self.close}"
            )
        if self.volume < 0:
            raise InvalidBarError(f"Negative volume {self.volume}")

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def close_position(self) -> float:
        """Where the close sits inside the bar, 0 at the low and 1 at the high."""
        if self.high == self.low:
            return 0.5
        return (self.close - self.low) / (self.high - self.low)


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Top-of-book ladder.  Bids sorted by price descending, asks ascending."""
    timestamp: datetime
    bids: Tuple[Tuple[float, float], ...]
    asks: Tuple[Tuple[float, float], ...]

    @property
    def best_bid(self) -> float:
        return self.bids[0][0] if self.bids else 0.0

    @property
    def best_ask(self) -> float:
        return self.asks[0][0] if self.asks else 0.0

    @property
    def is_crossed(self) -> bool:
        """True when the book is crossed or locked (bid >= ask)."""
        if not self.bids or not self.asks:
            return False
        return self.best_bid >= self.best_ask

    @property
    def bid_size(self) -> float:
        return sum(size for _, size in self.bids)

    @property
    def ask_size(self) -> float:
        return sum(size for _, size in self.asks)


@dataclass(frozen=True)
class Trade:
    """A single trade print."""
    timestamp: datetime
    price: float
    size: float
    side: Side
    trade_id: str = ""


# ── Analyzer outputs ──────────────────────────────────────────────────


@dataclass(frozen=True)
class VolumeNode:
    """Volume traded inside one price bin."""
    price_level: float
    volume: float
    buy_volume: float
    sell_volume: float
    volume_percent: float  # Share of total profile volume, 0-100

    @property
    def imbalance(self) -> float:
        """Buy share of the node volume (0.5 when empty)."""
        total = self.buy_volume + self.sell_volume
        return self.buy_volume / total if total > 0 else 0.5


@dataclass(frozen=True)
class InstitutionalLevel:
    price: float
    volume: float
    kind: LevelKind
    strength: float  # 0-100
    significance: Significance


@dataclass(frozen=True)
class PatternPrediction:
    """A pattern that cleared the confidence cutoff."""
    pattern_type: PatternType
    confidence: float               # 0 to 1
    historical_success_rate: float  # 0 to 1
    expected_move: float            # Signed fraction of price
    similarity: float               # 0 to 1
    avg_risk_reward: float = 0.0
    best_timeframes: Tuple[str, ...] = ()
    source_features: Dict[str, float] = field(default_factory=dict)

    @property
    def rank_score(self) -> float:
        return self.confidence * self.historical_success_rate


@dataclass(frozen=True)
class Vote:
    """Directional opinion from one signal source."""
    source: str
    direction: Direction
    confidence: float  # 0 to 1
    reason: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConsensusResult:
    overall_direction: Direction
    confidence: float       # 0-100
    agreement_score: float  # 0-100
    conflicting_signals: Tuple[str, ...] = ()
    bullish_weight: float = 0.0
    bearish_weight: float = 0.0
    votes: Tuple[Vote, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicting_signals)


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    severity: str  # 'low', 'medium', 'high'
    source: str
    mitigation: str = ""


# ── Trade plan ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EntryZone:
    optimal: float
    conservative: float
    aggressive: float
    confidence: float = 0.0  # 0-100
    rationale: str = ""


@dataclass(frozen=True)
class TrailingStop:
    trigger_percent: float  # Profit % that arms the trail
    trail_percent: float    # Trail distance once armed


@dataclass(frozen=True)
class StopLoss:
    price: float
    buffer_amount: float
    rationale: str
    invalidation_price: float = 0.0
    trailing: Optional[TrailingStop] = None


@dataclass(frozen=True)
class ProfitTarget:
    price: float
    probability: float           # 0-100
    partial_exit_percent: float  # 0-100
    risk_multiple: float = 0.0
    rationale: str = ""


@dataclass(frozen=True)
class TradePlan:
    direction: TradeDirection
    entry_zone: EntryZone
    stop_loss: StopLoss
    targets: Tuple[ProfitTarget, ...]
    risk_reward_ratio: float
    position_size_percent: float
    max_position_percent: float = 0.0
    style: TradingStyle = TradingStyle.DAY_TRADING
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    stop_probability: float = 0.0  # Estimated chance (0-100) the stop is hit first
    expected_hold: str = ""

    def validate(self) -> "TradePlan":
        """Raise InvalidTradePlanError unless stop/entry/targets are ordered."""
        if not self.targets:
            raise InvalidTradePlanError("Trade plan has no targets")

        sign = self.direction.sign
        entry = self.entry_zone.optimal
        if sign * (entry - self.stop_loss.price) <= 0:
            raise InvalidTradePlanError(
                f"{self.direction.value} stop {self.stop_loss.price} is not beyond entry {entry}"
            )
        if sign * (self.targets[0].price - entry) <= 0:
            raise InvalidTradePlanError(
                f"{self.direction.value} first target {self.targets[0].price} does not clear entry {entry}"
            )
        for prev, nxt in zip(self.targets, self.targets[1:]):
            if sign * (nxt.price - prev.price) < 0:
                raise InvalidTradePlanError(
                    f"Targets out of order: {prev.price} then {nxt.price}"
                )

        total_exit = sum(t.partial_exit_percent for t in self.targets)
        if total_exit > 100.0 + 1e-9:
            raise InvalidTradePlanError(f"Partial exits sum to {total_exit:.1f}% (> 100%)")
        return self


# ── Confirmation gate tokens ──────────────────────────────────────────


@dataclass(frozen=True)
class CandleDecision:
    state: GateState
    candle_class: CandleClass
    strength: float  # 0-100
    at_key_level: bool
    market_condition: str  # 'good', 'normal', 'unsuitable'
    reason: str
    wait_horizon: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state is GateState.READY_TO_ENTER


@dataclass(frozen=True)
class TimeframeConfirmation:
    """Higher-timeframe analysis supplied back to the gate."""
    timeframe: str
    bias: Direction
    confidence: float  # 0-100
    notes: str = ""


@dataclass(frozen=True)
class ConfirmationRequest:
    working_timeframe: str
    required_timeframes: Tuple[str, ...]
    recommended_timeframes: Tuple[str, ...]
    reasons: Tuple[str, ...]
    message: str


@dataclass(frozen=True)
class ConfirmationDecision:
    can_proceed: bool
    status: str  # 'confirmed', 'partial', 'none', 'conflicting', 'mixed', 'opposed'
    overall_bias: Optional[Direction] = None
    confidence: float = 0.0  # 0-100
    missing_timeframes: Tuple[str, ...] = ()
    missing_recommended: Tuple[str, ...] = ()
    conflicts: Tuple[str, ...] = ()
    reason: str = ""
