"""
Recommendation value extraction and formatting.

The narrative layer speaks in strings ("around $42,350", "TP1: 44.5k
level").  This module pulls numbers back out of that text, checks that
the levels make technical sense, and formats trade plans with the tick
precision an asset actually trades at.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .types import TradeDirection, TradePlan

logger = logging.getLogger(__name__)


# ── Precision ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PricePrecision:
    asset: str
    current_price: float
    decimals: int
    tick_size: float


def get_price_precision(asset: str, price: float) -> PricePrecision:
    """Decimal places and tick size for ``asset`` trading at ``price``."""
    name = (asset or "").upper()

    if "BTC" in name or "BITCOIN" in name:
        if price >= 10000:
            decimals = 0
        elif price >= 1000:
            decimals = 1
        else:
            decimals = 2
    elif any(tag in name for tag in ("ETH", "ETHEREUM", "BNB", "SOL", "SOLANA")):
        if price >= 1000:
            decimals = 1
        elif price >= 100:
            decimals = 2
        else:
            decimals = 3
    elif price >= 10:
        decimals = 3
    elif price >= 1:
        decimals = 4
    elif price >= 0.1:
        decimals = 5
    elif price >= 0.01:
        decimals = 6
    else:
        decimals = 8

    return PricePrecision(asset, price, decimals, 10.0 ** -decimals)


def format_price(price: float, precision: PricePrecision) -> str:
    rounded = round(price / precision.tick_size) * precision.tick_size
    return f"{rounded:.{precision.decimals}f}"


def risk_reward_ratio(entry: float, target: float, stop: float) -> float:
    """Reward / risk for a single target, 0 when there is no risk."""
    risk = abs(entry - stop)
    if risk == 0:
        return 0.0
    return abs(target - entry) / risk


def format_risk_reward(ratio: float) -> str:
    if not math.isfinite(ratio) or ratio == 0:
        return "0:1"
    return f"{ratio:.1f}:1"


# ── Parsing ───────────────────────────────────────────────────────────

_CURRENCY = re.compile(r"[$€£¥₿]")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")

_PAIR_PATTERNS = (
    re.compile(r"^([A-Z]+?)[/\-]?USDT?$"),
    re.compile(r"^([A-Z]+?)[/\-]?BTC$"),
)

_ASSET_MENTIONS = (
    re.compile(r"\b(BTC|BITCOIN)\b", re.IGNORECASE),
    re.compile(r"\b(ETH|ETHEREUM)\b", re.IGNORECASE),
    re.compile(r"\b(BNB|BINANCE)\b", re.IGNORECASE),
    re.compile(r"\b(SOL|SOLANA)\b", re.IGNORECASE),
    re.compile(r"\b(ADA|CARDANO)\b", re.IGNORECASE),
    re.compile(r"\b(DOT|POLKADOT)\b", re.IGNORECASE),
    re.compile(r"\b(MATIC|POLYGON)\b", re.IGNORECASE),
    re.compile(r"\b(LINK|CHAINLINK)\b", re.IGNORECASE),
    re.compile(r"\b([A-Z]{3,6})/?(?:USDT?|USD|BTC)\b", re.IGNORECASE),
)


def extract_price(text: Optional[str]) -> Optional[float]:
    """First price-looking number in ``text``, or None."""
    if not text:
        return None
    cleaned = _CURRENCY.sub("", text).replace(",", "")
    match = _NUMBER.search(cleaned)
    if match is None:
        return None
    return float(match.group(0))


def extract_asset_symbol(pair: str) -> str:
    """Base asset of a trading pair: 'BTC/USDT' -> 'BTC'."""
    upper = pair.upper()
    for pattern in _PAIR_PATTERNS:
        match = pattern.match(upper)
        if match:
            return match.group(1)
    parts = re.split(r"[/\-_]", upper)
    return parts[0] or upper[:6]


# ── Validation ────────────────────────────────────────────────────────


def validate_price_level(
    price: float,
    reference: float,
    kind: str,
    direction: TradeDirection = TradeDirection.LONG,
) -> Optional[str]:
    """
    Sanity-check one level against a reference price.

    ``kind`` is 'entry', 'take_profit' or 'stop_loss'.  Returns the reason
    the level is unreasonable, or None when it passes.
    """
    if price <= 0:
        return "Price must be positive"
    change = abs(price - reference) / reference
    sign = direction.sign

    if kind == "entry":
        if change > 0.15:
            return "Entry price too far from current market price"
    elif kind == "take_profit":
        if sign * (price - reference) <= 0:
            side = "above" if sign > 0 else "below"
            return f"Take profit must be {side} entry for {direction.value} positions"
        if change < 0.01:
            return "Take profit too close to entry (minimum 1% recommended)"
    elif kind == "stop_loss":
        if sign * (reference - price) <= 0:
            side = "below" if sign > 0 else "above"
            return f"Stop loss must be {side} entry for {direction.value} positions"
        if change < 0.005:
            return "Stop loss too tight (minimum 0.5% recommended)"
        if change > 0.10:
            return "Stop loss too wide (maximum 10% recommended)"
    else:
        raise ValueError(f"Unknown price level kind: {kind!r}")
    return None


# ── Recommendations ───────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceField:
    value: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class RawRecommendation:
    """Narrative-layer trade levels, prices still as text."""
    entry_price: PriceField
    take_profit: Tuple[PriceField, ...]
    stop_loss: PriceField
    risk_reward_ratio: Optional[str] = None


@dataclass(frozen=True)
class ProcessedRecommendation:
    raw: RawRecommendation
    precision: PricePrecision
    direction: TradeDirection
    entry_price: float = 0.0
    take_profit_levels: Tuple[float, ...] = ()
    stop_loss: float = 0.0
    risk_reward_ratios: Tuple[float, ...] = ()
    potential_risk: float = 0.0
    potential_rewards: Tuple[float, ...] = ()
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def enhanced(self) -> RawRecommendation:
        """Raw recommendation rewritten with parsed, tick-rounded prices."""
        p = self.precision
        reasons = [tp.reason for tp in self.raw.take_profit]
        return RawRecommendation(
            entry_price=PriceField(
                f"${format_price(self.entry_price, p)}",
                self.raw.entry_price.reason or "Technical entry level",
            ),
            take_profit=tuple(
                PriceField(
                    f"${format_price(tp, p)}",
                    (reasons[i] if i < len(reasons) else None) or "Technical target level",
                )
                for i, tp in enumerate(self.take_profit_levels)
            ),
            stop_loss=PriceField(
                f"${format_price(self.stop_loss, p)}",
                self.raw.stop_loss.reason or "Risk management level",
            ),
            risk_reward_ratio=(
                format_risk_reward(self.risk_reward_ratios[0])
                if self.risk_reward_ratios else self.raw.risk_reward_ratio
            ),
        )


def detect_asset(raw: RawRecommendation, default: str = "BTC") -> str:
    text = " ".join(
        [raw.entry_price.reason or "", raw.stop_loss.reason or ""]
        + [tp.reason or "" for tp in raw.take_profit]
    )
    for pattern in _ASSET_MENTIONS:
        match = pattern.search(text)
        if match:
            return extract_asset_symbol(match.group(1))
    return default


def process_recommendation(
    raw: RawRecommendation,
    current_price: Optional[float] = None,
    asset: Optional[str] = None,
) -> ProcessedRecommendation:
    """
    Parse and check a narrative recommendation.

    Problems that make the levels unusable go to ``errors``; questionable
    but usable levels go to ``warnings``.  Direction is read from the
    stop's side of the entry.
    """
    errors: List[str] = []
    warnings: List[str] = []

    entry = extract_price(raw.entry_price.value)
    stop = extract_price(raw.stop_loss.value)
    parsed = [extract_price(tp.value) for tp in raw.take_profit]
    targets = tuple(tp for tp in parsed if tp is not None)

    if entry is None:
        errors.append("Could not extract numerical entry price")
    if stop is None:
        errors.append("Could not extract numerical stop loss")
    if not targets:
        errors.append("Could not extract any numerical take profit levels")
    if len(targets) != len(raw.take_profit):
        warnings.append("Some take profit levels could not be parsed")

    symbol = asset or detect_asset(raw)
    precision = get_price_precision(symbol, current_price or entry or 50000.0)

    direction = TradeDirection.LONG
    if entry is not None and stop is not None and stop > entry:
        direction = TradeDirection.SHORT

    ratios: Tuple[float, ...] = ()
    risk = 0.0
    rewards: Tuple[float, ...] = ()
    if entry and stop and targets:
        risk = abs(entry - stop)
        rewards = tuple(abs(tp - entry) for tp in targets)
        ratios = tuple(risk_reward_ratio(entry, tp, stop) for tp in targets)

        problem = validate_price_level(entry, current_price or entry, "entry", direction)
        if problem:
            warnings.append(f"Entry price: {problem}")
        problem = validate_price_level(stop, entry, "stop_loss", direction)
        if problem:
            warnings.append(f"Stop loss: {problem}")
        for i, tp in enumerate(targets, start=1):
            problem = validate_price_level(tp, entry, "take_profit", direction)
            if problem:
                warnings.append(f"Take profit {i}: {problem}")

        if ratios[0] < 1:
            warnings.append(f"Low risk-reward ratio: {format_risk_reward(ratios[0])}")

    for message in errors:
        logger.error("Recommendation rejected: %s", message)
    for message in warnings:
        logger.warning("Recommendation check: %s", message)

    return ProcessedRecommendation(
        raw=raw,
        precision=precision,
        direction=direction,
        entry_price=entry or 0.0,
        take_profit_levels=targets,
        stop_loss=stop or 0.0,
        risk_reward_ratios=ratios,
        potential_risk=risk,
        potential_rewards=rewards,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )


def plan_to_recommendation(plan: TradePlan, asset: str = "") -> RawRecommendation:
    """Format a trade plan for the narrative layer."""
    entry = plan.entry_zone.optimal
    precision = get_price_precision(asset, entry)
    return RawRecommendation(
        entry_price=PriceField(f"${format_price(entry, precision)}", plan.entry_zone.rationale),
        take_profit=tuple(
            PriceField(
                f"${format_price(t.price, precision)}",
                f"{t.rationale} ({t.probability:.0f}% hit, exit {t.partial_exit_percent:.0f}%)",
            )
            for t in plan.targets
        ),
        stop_loss=PriceField(f"${format_price(plan.stop_loss.price, precision)}", plan.stop_loss.rationale),
        risk_reward_ratio=format_risk_reward(plan.risk_reward_ratio),
    )
