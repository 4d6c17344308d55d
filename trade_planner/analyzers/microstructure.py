"""
Analyzer: Market Microstructure / Order Flow

Reads the order book and trade tape:
- Spread and spread trend (widening books precede volatility)
- Resting liquidity, book imbalance and how stable liquidity is
- Order-flow pressure from taker aggressor side
- Smart money: prints at or above the 95th-percentile size

Order book and tape are optional inputs.  When both are missing the
analyzer returns a documented neutral default instead of failing, and
the default abstains from the consensus vote.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config import MicrostructureConfig
from ..errors import CrossedBookError
from ..types import Direction, OrderBookSnapshot, Side, Trade, Vote

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class SpreadMetrics:
    current: float
    percent: float   # Spread as % of mid
    average: float
    trend: str       # 'widening', 'tightening', 'stable'


@dataclass(frozen=True)
class LiquidityMetrics:
    bid_liquidity: float
    ask_liquidity: float
    total: float
    imbalance: float        # (bid - ask) / total, -1 to 1
    level: str              # 'high', 'medium', 'low'
    depth_levels: int
    depth_average_size: float
    resiliency: float       # 0-100, higher = steadier liquidity
    impact_cost: float


@dataclass(frozen=True)
class OrderFlowMetrics:
    buy_volume: float
    sell_volume: float
    buy_pressure: float     # Buy share of volume, 0-100
    net_flow: float
    flow_imbalance: float   # |net| / total, 0-1
    vwap: float
    trade_count: int


@dataclass(frozen=True)
class SmartMoneyMetrics:
    large_trade_threshold: float
    large_trade_count: int
    institutional_flow: float
    retail_flow: float
    whale_activity: bool
    direction: Direction
    confidence: float       # 0-100


@dataclass(frozen=True)
class MarketQuality:
    efficiency: float
    fairness: float
    transparency: float
    overall: float
    grade: str  # 'excellent', 'good', 'fair', 'poor'


@dataclass(frozen=True)
class MicrostructureSignal:
    kind: str
    direction: Direction
    strength: float  # 0-100
    description: str


@dataclass(frozen=True)
class MicrostructureAnalysis:
    spread: SpreadMetrics
    liquidity: LiquidityMetrics
    order_flow: OrderFlowMetrics
    smart_money: SmartMoneyMetrics
    quality: MarketQuality
    optimal_execution_size: float
    risk_factors: Tuple[str, ...]
    opportunities: Tuple[str, ...]
    signals: Tuple[MicrostructureSignal, ...]
    is_default: bool = False
    rejected_books: int = 0  # Crossed snapshots dropped before analysis


# Neutral readings used when a data source is absent
_DEFAULT_SPREAD = SpreadMetrics(current=0.0, percent=0.1, average=0.0, trend="stable")
_DEFAULT_LIQUIDITY = LiquidityMetrics(
    bid_liquidity=1000.0,
    ask_liquidity=1000.0,
    total=2000.0,
    imbalance=0.0,
    level="medium",
    depth_levels=10,
    depth_average_size=200.0,
    resiliency=75.0,
    impact_cost=0.0,
)
_NEUTRAL_FLOW = OrderFlowMetrics(0.0, 0.0, 50.0, 0.0, 0.0, 0.0, 0)
_NEUTRAL_SMART_MONEY = SmartMoneyMetrics(0.0, 0, 0.0, 0.0, False, Direction.NEUTRAL, 0.0)


def check_book(book: OrderBookSnapshot) -> None:
    """Reject crossed or locked books before anything is computed from them."""
    if book.is_crossed:
        raise CrossedBookError(book.best_bid, book.best_ask)


def spread_of(book: OrderBookSnapshot) -> float:
    check_book(book)
    if not book.bids or not book.asks:
        return 0.0
    return book.best_ask - book.best_bid


class MicrostructureAnalyzer:
    """
    Order book and tape analytics.

    Output feeds the consensus vote (smart-money direction) and the
    pipeline's risk-factor list (thin books, wide spreads, one-sided flow).
    """

    def __init__(self, config: Optional[MicrostructureConfig] = None):
        self.cfg = config or MicrostructureConfig()

    # ── Order book ────────────────────────────────────────────────────

    def spread_metrics(self, books: Sequence[OrderBookSnapshot]) -> SpreadMetrics:
        current_book = books[-1]
        current = spread_of(current_book)
        mid = (current_book.best_bid + current_book.best_ask) / 2
        percent = current / mid * 100.0 if mid > 0 else 0.0

        window = [spread_of(b) for b in books[-self.cfg.spread_window:]]
        average = float(np.mean(window))

        trend = "stable"
        if len(window) >= self.cfg.spread_window:
            half = len(window) // 2
            first = float(np.mean(window[:half]))
            last = float(np.mean(window[half:]))
            if first > 0:
                change = (last - first) / first
                if change > self.cfg.spread_trend_threshold:
                    trend = "widening"
                elif change < -self.cfg.spread_trend_threshold:
                    trend = "tightening"

        return SpreadMetrics(current=current, percent=percent, average=average, trend=trend)

    def resiliency(self, books: Sequence[OrderBookSnapshot]) -> float:
        """100 minus the relative mean absolute deviation of total liquidity."""
        if len(books) < 5:
            return 50.0
        totals = np.array([b.bid_size + b.ask_size for b in books[-10:]])
        avg = float(np.mean(totals))
        if avg <= 0:
            return 0.0
        mad = float(np.mean(np.abs(totals - avg)))
        return float(np.clip(100.0 - mad / avg * 100.0, 0.0, 100.0))

    def liquidity_metrics(
        self,
        books: Sequence[OrderBookSnapshot],
        spread: SpreadMetrics,
    ) -> LiquidityMetrics:
        book = books[-1]
        bid_liq = book.bid_size
        ask_liq = book.ask_size
        total = bid_liq + ask_liq
        imbalance = (bid_liq - ask_liq) / total if total > 0 else 0.0

        if total > 1000 and spread.percent < 0.1:
            level = "high"
        elif total > 100 and spread.percent < 0.5:
            level = "medium"
        else:
            level = "low"

        depth_levels = len(book.bids) + len(book.asks)
        mid = (book.best_bid + book.best_ask) / 2
        near = sum(size for _, size in book.asks[:5])
        impact = spread.current / 2
        if near > 0:
            impact += self.cfg.reference_order_size / near * mid * 0.001

        return LiquidityMetrics(
            bid_liquidity=bid_liq,
            ask_liquidity=ask_liq,
            total=total,
            imbalance=imbalance,
            level=level,
            depth_levels=depth_levels,
            depth_average_size=total / depth_levels if depth_levels else 0.0,
            resiliency=self.resiliency(books),
            impact_cost=impact,
        )

    # ── Trade tape ────────────────────────────────────────────────────

    def order_flow(self, trades: Sequence[Trade]) -> OrderFlowMetrics:
        recent = trades[-self.cfg.flow_window:]
        buy_vol = sum(t.size for t in recent if t.side is Side.BUY)
        sell_vol = sum(t.size for t in recent if t.side is Side.SELL)
        total = buy_vol + sell_vol
        notional = sum(t.price * t.size for t in recent)
        net = buy_vol - sell_vol
        return OrderFlowMetrics(
            buy_volume=buy_vol,
            sell_volume=sell_vol,
            buy_pressure=buy_vol / total * 100.0 if total > 0 else 50.0,
            net_flow=net,
            flow_imbalance=abs(net) / total if total > 0 else 0.0,
            vwap=notional / total if total > 0 else 0.0,
            trade_count=len(recent),
        )

    def large_trade_threshold(self, trades: Sequence[Trade]) -> float:
        sizes = sorted(t.size for t in trades)
        if not sizes:
            return 0.0
        idx = min(int(math.floor(len(sizes) * self.cfg.large_trade_percentile)), len(sizes) - 1)
        return sizes[idx]

    def smart_money(self, trades: Sequence[Trade]) -> SmartMoneyMetrics:
        """
        Split the tape at the 95th-percentile size.

        Direction is only called when institutional net flow outweighs half
        the retail net flow; confidence is the share of institutional volume
        the net flow explains.
        """
        if not trades:
            return _NEUTRAL_SMART_MONEY
        threshold = self.large_trade_threshold(trades)

        large_buy = large_sell = small_buy = small_sell = 0.0
        large_count = 0
        for t in trades:
            if t.size >= threshold:
                large_count += 1
                if t.side is Side.BUY:
                    large_buy += t.size
                else:
                    large_sell += t.size
            elif t.side is Side.BUY:
                small_buy += t.size
            else:
                small_sell += t.size

        inst_flow = large_buy - large_sell
        retail_flow = small_buy - small_sell
        inst_total = large_buy + large_sell

        direction = Direction.NEUTRAL
        if abs(inst_flow) > 0.5 * abs(retail_flow):
            if inst_flow > 0:
                direction = Direction.BULLISH
            elif inst_flow < 0:
                direction = Direction.BEARISH

        confidence = min(100.0, abs(inst_flow) / inst_total * 100.0) if inst_total > 0 else 0.0
        whale = any(t.size >= threshold * self.cfg.whale_multiple for t in trades) if threshold > 0 else False

        return SmartMoneyMetrics(
            large_trade_threshold=threshold,
            large_trade_count=large_count,
            institutional_flow=inst_flow,
            retail_flow=retail_flow,
            whale_activity=whale,
            direction=direction,
            confidence=confidence,
        )

    # ── Synthesis ─────────────────────────────────────────────────────

    @staticmethod
    def market_quality(
        spread: SpreadMetrics,
        liquidity: LiquidityMetrics,
        flow: OrderFlowMetrics,
    ) -> MarketQuality:
        efficiency = {"high": 80.0, "medium": 60.0, "low": 40.0}[liquidity.level]
        if spread.percent < 0.1:
            efficiency += 20.0
        elif spread.percent < 0.5:
            efficiency += 10.0

        fairness = (100.0 - flow.flow_imbalance * 100.0) * 0.6 + (100.0 - abs(liquidity.imbalance) * 100.0) * 0.4

        if liquidity.depth_levels > 10:
            transparency = 80.0
        elif liquidity.depth_levels > 5:
            transparency = 60.0
        else:
            transparency = 40.0
        if liquidity.resiliency > 70:
            transparency += 20.0
        elif liquidity.resiliency > 50:
            transparency += 10.0

        overall = (efficiency + fairness + transparency) / 3.0
        if overall >= 80:
            grade = "excellent"
        elif overall >= 65:
            grade = "good"
        elif overall >= 50:
            grade = "fair"
        else:
            grade = "poor"
        return MarketQuality(efficiency, fairness, transparency, overall, grade)

    @staticmethod
    def _implications(
        spread: SpreadMetrics,
        liquidity: LiquidityMetrics,
        flow: OrderFlowMetrics,
        smart: SmartMoneyMetrics,
    ) -> Tuple[float, List[str], List[str]]:
        optimal_size = min(liquidity.total * 0.1, liquidity.depth_average_size * 5)

        risks = []
        if liquidity.level == "low":
            risks.append("Low liquidity - expect slippage on entry and exit")
        if spread.percent > 0.5:
            risks.append(f"Wide spread ({spread.percent:.2f}%) raises execution cost")
        if flow.flow_imbalance > 0.7:
            risks.append("Strongly one-sided order flow - reversal risk if it exhausts")
        if liquidity.resiliency < 50:
            risks.append("Unstable resting liquidity - book may thin out quickly")

        opportunities = []
        if spread.percent < 0.1:
            opportunities.append("Tight spread supports precise limit entries")
        if smart.direction is not Direction.NEUTRAL and smart.confidence > 50:
            opportunities.append(f"Institutional {smart.direction.value} flow to follow")
        if abs(liquidity.imbalance) > 0.3:
            side = "bids" if liquidity.imbalance > 0 else "asks"
            opportunities.append(f"Resting liquidity skewed to the {side}")
        return optimal_size, risks, opportunities

    def detect_signals(
        self,
        books: Sequence[OrderBookSnapshot],
        trades: Sequence[Trade],
    ) -> List[MicrostructureSignal]:
        signals = []

        if len(books) >= 5:
            before = books[-5].bid_size + books[-5].ask_size
            now = books[-1].bid_size + books[-1].ask_size
            if before > 0 and (before - now) / before > 0.5:
                signals.append(MicrostructureSignal(
                    "liquidity_withdrawal", Direction.NEUTRAL,
                    min(100.0, (before - now) / before * 100.0),
                    "Resting liquidity dropped by more than half over 5 snapshots",
                ))

        if len(books) >= self.cfg.spread_window:
            window = [spread_of(b) for b in books[-self.cfg.spread_window:]]
            avg = float(np.mean(window))
            if avg > 0 and window[-1] > 2 * avg:
                signals.append(MicrostructureSignal(
                    "spread_anomaly", Direction.NEUTRAL,
                    min(100.0, window[-1] / avg * 25.0),
                    "Spread more than twice its recent average",
                ))

        recent = trades[-20:]
        if recent:
            flow = self.order_flow(recent)
            if flow.flow_imbalance > 0.7:
                direction = Direction.BULLISH if flow.net_flow > 0 else Direction.BEARISH
                signals.append(MicrostructureSignal(
                    "flow_imbalance", direction, flow.flow_imbalance * 100.0,
                    f"{'Buy' if flow.net_flow > 0 else 'Sell'} flow dominates the last {len(recent)} trades",
                ))

            threshold = self.large_trade_threshold(trades)
            large = [t for t in recent if t.size >= threshold]
            buys = sum(1 for t in large if t.side is Side.BUY)
            sells = len(large) - buys
            if len(large) >= 3:
                if buys >= 2 * max(sells, 1) and buys > sells:
                    signals.append(MicrostructureSignal(
                        "smart_money", Direction.BULLISH, min(100.0, buys / len(large) * 100.0),
                        f"Smart money accumulation: {buys} of {len(large)} large prints are buys",
                    ))
                elif sells >= 2 * max(buys, 1) and sells > buys:
                    signals.append(MicrostructureSignal(
                        "smart_money", Direction.BEARISH, min(100.0, sells / len(large) * 100.0),
                        f"Smart money distribution: {sells} of {len(large)} large prints are sells",
                    ))
        return signals

    def default_analysis(self) -> MicrostructureAnalysis:
        """Neutral reading used when neither book nor tape is supplied."""
        return MicrostructureAnalysis(
            spread=_DEFAULT_SPREAD,
            liquidity=_DEFAULT_LIQUIDITY,
            order_flow=_NEUTRAL_FLOW,
            smart_money=_NEUTRAL_SMART_MONEY,
            quality=MarketQuality(75.0, 75.0, 75.0, 75.0, "good"),
            optimal_execution_size=0.0,
            risk_factors=(),
            opportunities=(),
            signals=(),
            is_default=True,
        )

    def analyze(
        self,
        order_books: Sequence[OrderBookSnapshot] = (),
        trades: Sequence[Trade] = (),
    ) -> MicrostructureAnalysis:
        window = list(order_books[-self.cfg.liquidity_lookback:])
        books = [book for book in window if not book.is_crossed]
        rejected = len(window) - len(books)
        if rejected:
            logger.warning("Dropped %d crossed order book snapshot(s) of %d", rejected, len(window))

        if not books and not trades:
            logger.debug("No usable order book or trades, using neutral microstructure")
            return replace(self.default_analysis(), rejected_books=rejected)

        if books:
            spread = self.spread_metrics(books)
            liquidity = self.liquidity_metrics(books, spread)
        else:
            spread, liquidity = _DEFAULT_SPREAD, _DEFAULT_LIQUIDITY

        flow = self.order_flow(trades) if trades else _NEUTRAL_FLOW
        smart = self.smart_money(trades[-self.cfg.flow_window:])
        quality = self.market_quality(spread, liquidity, flow)
        optimal_size, risks, opportunities = self._implications(spread, liquidity, flow, smart)

        return MicrostructureAnalysis(
            spread=spread,
            liquidity=liquidity,
            order_flow=flow,
            smart_money=smart,
            quality=quality,
            optimal_execution_size=optimal_size,
            risk_factors=tuple(risks),
            opportunities=tuple(opportunities),
            signals=tuple(self.detect_signals(books, trades)),
            rejected_books=rejected,
        )

    def get_vote(self, analysis: MicrostructureAnalysis) -> Optional[Vote]:
        """Smart-money direction as a vote; abstains without a tape."""
        if analysis.is_default or analysis.order_flow.trade_count == 0:
            return None
        smart = analysis.smart_money
        data = {
            "institutional_flow": smart.institutional_flow,
            "retail_flow": smart.retail_flow,
            "whale_activity": smart.whale_activity,
            "buy_pressure": analysis.order_flow.buy_pressure,
        }
        if smart.direction is Direction.NEUTRAL:
            return Vote("Microstructure", Direction.NEUTRAL, 0.3,
                        "Institutional flow does not outweigh retail flow", data)
        return Vote("Microstructure", smart.direction, smart.confidence / 100.0,
                    f"Smart money {smart.direction.value}, {smart.large_trade_count} large prints", data)
