"""
Trade Planner - Multi-Methodology Trade Plan Synthesis

Turns price, volume and order-flow history into a risk-managed trade plan:
a directional bias, an entry zone, a stop and probability-weighted targets,
released only once the confirmation gates agree.

=============================================================================
PHILOSOPHY
=============================================================================

A single indicator says "RSI < 30, buy".  The planner asks instead:
"Do independent readings of this market agree, and is now the moment?"
  - Evidence first (structure, auction, flow and patterns each vote)
  - Consensus (a side must clearly outweigh the other)
  - Structure-aware exits (stops and targets anchor to real levels)
  - Patience (candle and higher-timeframe gates can withhold a plan)

=============================================================================
PIPELINE
=============================================================================

1. MARKET STRUCTURE      swing highs/lows, trend, structure breaks
2. VOLUME PROFILE        POC, value area, institutional levels
3. MICROSTRUCTURE        spread, liquidity, order flow, smart money
4. PATTERNS              heuristic chart-pattern scores, XABCD harmonics
5. CONSENSUS             weighted vote, agreement, conflicts
6. OPTIMIZER             entry zone, stop, target ladder, position size
7. CANDLE GATE           confirmation candle at a key level
8. TIMEFRAME GATE        higher-timeframe corroboration

Usage:
    from trade_planner import PlanRequest, TradePlanner

    planner = TradePlanner()
    result = planner.plan(PlanRequest("BTCUSDT", "1h", bars))
    plan = result.raise_for_outcome().primary_plan
"""

from .config import PlannerConfig, create_scalping_config
from .errors import (
    ConflictingConsensusError,
    CrossedBookError,
    GateRejectedError,
    InsufficientDataError,
    InvalidBarError,
    InvalidTradePlanError,
    NoSignalError,
    TradePlannerError,
)
from .pipeline import PlanRequest, PlanResult, TradePlanner
from .types import (
    Direction,
    OrderBookSnapshot,
    PlanOutcome,
    PriceBar,
    RiskTolerance,
    TimeframeConfirmation,
    Trade,
    TradeDirection,
    TradePlan,
    TradingStyle,
)

__all__ = [
    "PlannerConfig",
    "create_scalping_config",
    "TradePlanner",
    "PlanRequest",
    "PlanResult",
    "PlanOutcome",
    "Direction",
    "TradeDirection",
    "TradingStyle",
    "RiskTolerance",
    "PriceBar",
    "OrderBookSnapshot",
    "Trade",
    "TimeframeConfirmation",
    "TradePlan",
    "TradePlannerError",
    "InsufficientDataError",
    "CrossedBookError",
    "InvalidBarError",
    "InvalidTradePlanError",
    "NoSignalError",
    "ConflictingConsensusError",
    "GateRejectedError",
]
