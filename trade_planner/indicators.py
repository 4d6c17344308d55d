"""
Indicator library.

Pure functions over close series or PriceBar sequences.  Every function
raises InsufficientDataError when handed fewer values than its lookback
needs; nothing is padded or guessed.

Conventions:
- RSI uses Wilder smoothing (Wilder 1978).
- EMA is seeded with the SMA of its first ``period`` values.
- Bollinger bands use the population standard deviation.
- ATR is the mean of the last ``period`` true ranges.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

from .errors import InsufficientDataError
from .types import PriceBar

Series = Union[Sequence[float], np.ndarray]

RETRACEMENT_RATIOS: Tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)
EXTENSION_RATIOS: Tuple[float, ...] = (1.272, 1.618, 2.618, 4.236)


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class RSIResult:
    value: float
    signal: str  # 'overbought', 'oversold', 'neutral'


@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float
    histogram: float
    crossover: str  # 'bullish', 'bearish', 'none'


@dataclass(frozen=True)
class BollingerResult:
    upper: float
    middle: float
    lower: float
    bandwidth: float  # (upper - lower) / middle, in percent
    squeeze: bool
    expansion: bool


@dataclass(frozen=True)
class MFIResult:
    value: float
    signal: str  # 'bullish' (oversold), 'bearish' (overbought), 'neutral'
    strength: float


@dataclass(frozen=True)
class SupportResistance:
    supports: Tuple[float, ...]      # Nearest first (descending)
    resistances: Tuple[float, ...]   # Nearest first (ascending)
    touches: Dict[float, int]


# =============================================================================
# HELPERS
# =============================================================================


def _as_array(values: Series) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _require(what: str, available: int, required: int) -> None:
    if available < required:
        raise InsufficientDataError(what, required, available)


def closes_of(bars: Sequence[PriceBar]) -> np.ndarray:
    return np.array([b.close for b in bars], dtype=np.float64)


def highs_of(bars: Sequence[PriceBar]) -> np.ndarray:
    return np.array([b.high for b in bars], dtype=np.float64)


def lows_of(bars: Sequence[PriceBar]) -> np.ndarray:
    return np.array([b.low for b in bars], dtype=np.float64)


def volumes_of(bars: Sequence[PriceBar]) -> np.ndarray:
    return np.array([b.volume for b in bars], dtype=np.float64)


# =============================================================================
# MOVING AVERAGES
# =============================================================================


def sma(values: Series, period: int) -> float:
    """Simple moving average of the last ``period`` values."""
    arr = _as_array(values)
    _require(f"SMA({period})", len(arr), period)
    return float(np.mean(arr[-period:]))


def ema_series(values: Series, period: int) -> np.ndarray:
    """
    EMA at every index from ``period - 1`` onward.

    The result has ``len(values) - period + 1`` entries; the first one is
    the SMA seed.
    """
    arr = _as_array(values)
    _require(f"EMA({period})", len(arr), period)
    alpha = 2.0 / (period + 1)
    out = np.empty(len(arr) - period + 1)
    out[0] = np.mean(arr[:period])
    for i, price in enumerate(arr[period:], start=1):
        out[i] = alpha * price + (1 - alpha) * out[i - 1]
    return out


def ema(values: Series, period: int) -> float:
    """Current EMA value."""
    return float(ema_series(values, period)[-1])


# =============================================================================
# MOMENTUM
# =============================================================================


def _wilder_averages(closes: np.ndarray, period: int) -> Tuple[np.ndarray, np.ndarray]:
    changes = np.diff(closes)
    gains = np.where(changes > 0, changes, 0.0)
    losses = np.where(changes < 0, -changes, 0.0)

    n = len(changes) - period + 1
    avg_gain = np.empty(n)
    avg_loss = np.empty(n)
    avg_gain[0] = np.mean(gains[:period])
    avg_loss[0] = np.mean(losses[:period])
    for i in range(1, n):
        avg_gain[i] = (avg_gain[i - 1] * (period - 1) + gains[period + i - 1]) / period
        avg_loss[i] = (avg_loss[i - 1] * (period - 1) + losses[period + i - 1]) / period
    return avg_gain, avg_loss


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    if avg_gain == 0:
        return 0.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi_series(closes: Series, period: int = 14) -> np.ndarray:
    """
    RSI at every close from index ``period`` onward.

    Element ``k`` of the result belongs to ``closes[period + k]``.
    """
    arr = _as_array(closes)
    _require(f"RSI({period})", len(arr), period + 1)
    avg_gain, avg_loss = _wilder_averages(arr, period)
    return np.array([_rsi_from_averages(g, l) for g, l in zip(avg_gain, avg_loss)])


def rsi(
    closes: Series,
    period: int = 14,
    overbought: float = 70.0,
    oversold: float = 30.0,
) -> RSIResult:
    """
    Relative Strength Index with Wilder smoothing.

    RSI = 100 - 100 / (1 + RS), RS = smoothed gain / smoothed loss.
    Pinned to 100 when no losses occurred, 0 when no gains occurred and 50
    for a flat series.
    """
    value = float(rsi_series(closes, period)[-1])
    if value > overbought:
        signal = "overbought"
    elif value < oversold:
        signal = "oversold"
    else:
        signal = "neutral"
    return RSIResult(value=value, signal=signal)


def macd(
    closes: Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """
    MACD line, signal line and histogram.

    A crossover is reported when the histogram changed sign on the last bar.
    """
    arr = _as_array(closes)
    _require(f"MACD({fast},{slow},{signal})", len(arr), slow + signal - 1)

    fast_ema = ema_series(arr, fast)
    slow_ema = ema_series(arr, slow)
    # Align both EMAs on the indices where the slow one exists
    macd_line = fast_ema[slow - fast:] - slow_ema
    signal_line = ema_series(macd_line, signal)
    histogram = macd_line[signal - 1:] - signal_line

    crossover = "none"
    if len(histogram) >= 2:
        prev, curr = histogram[-2], histogram[-1]
        if prev <= 0 < curr:
            crossover = "bullish"
        elif prev >= 0 > curr:
            crossover = "bearish"

    return MACDResult(
        macd=float(macd_line[-1]),
        signal=float(signal_line[-1]),
        histogram=float(histogram[-1]),
        crossover=crossover,
    )


# =============================================================================
# VOLATILITY
# =============================================================================


def bollinger_bands(
    closes: Series,
    period: int = 20,
    num_std: float = 2.0,
    squeeze_threshold: float = 10.0,
    expansion_threshold: float = 20.0,
) -> BollingerResult:
    arr = _as_array(closes)
    _require(f"Bollinger({period})", len(arr), period)
    window = arr[-period:]
    middle = float(np.mean(window))
    std = float(np.std(window))
    upper = middle + num_std * std
    lower = middle - num_std * std
    bandwidth = (upper - lower) / middle * 100.0 if middle != 0 else 0.0
    return BollingerResult(
        upper=upper,
        middle=middle,
        lower=lower,
        bandwidth=bandwidth,
        squeeze=bandwidth < squeeze_threshold,
        expansion=bandwidth > expansion_threshold,
    )


def true_range(bars: Sequence[PriceBar]) -> np.ndarray:
    """True range of every bar after the first: max(H-L, |H-Cprev|, |L-Cprev|)."""
    _require("True range", len(bars), 2)
    highs = highs_of(bars)[1:]
    lows = lows_of(bars)[1:]
    prev_close = closes_of(bars)[:-1]
    return np.maximum(
        highs - lows,
        np.maximum(np.abs(highs - prev_close), np.abs(lows - prev_close)),
    )


def atr(bars: Sequence[PriceBar], period: int = 14) -> float:
    """Average True Range over the last ``period`` bars (needs ``period + 1``)."""
    _require(f"ATR({period})", len(bars), period + 1)
    tr = true_range(bars[-(period + 1):])
    return float(np.mean(tr))


# =============================================================================
# VOLUME
# =============================================================================


def vwap(bars: Sequence[PriceBar]) -> float:
    """Volume-weighted typical price over the whole sequence."""
    _require("VWAP", len(bars), 1)
    typical = (highs_of(bars) + lows_of(bars) + closes_of(bars)) / 3.0
    volumes = volumes_of(bars)
    total = float(np.sum(volumes))
    if total <= 0:
        return float(bars[-1].close)
    return float(np.sum(typical * volumes) / total)


def mfi(bars: Sequence[PriceBar], period: int = 14) -> MFIResult:
    """
    Money Flow Index.

    Above 80 reads as overbought (bearish), below 20 as oversold (bullish).
    """
    _require(f"MFI({period})", len(bars), period + 1)
    window = bars[-(period + 1):]
    typical = (highs_of(window) + lows_of(window) + closes_of(window)) / 3.0
    money_flow = typical * volumes_of(window)

    up = typical[1:] > typical[:-1]
    down = typical[1:] < typical[:-1]
    positive = float(np.sum(money_flow[1:][up]))
    negative = float(np.sum(money_flow[1:][down]))

    if negative == 0:
        value = 100.0 if positive > 0 else 50.0
    else:
        value = 100.0 - 100.0 / (1.0 + positive / negative)

    if value > 80:
        signal = "bearish"
    elif value < 20:
        signal = "bullish"
    else:
        signal = "neutral"
    return MFIResult(value=value, signal=signal, strength=abs(value - 50.0) * 2.0)


# =============================================================================
# LEVELS
# =============================================================================


def fibonacci_retracements(high: float, low: float) -> Dict[float, float]:
    """Retracement prices measured down from ``high``, keyed by ratio."""
    diff = high - low
    return {ratio: high - diff * ratio for ratio in RETRACEMENT_RATIOS}


def fibonacci_extensions(high: float, low: float) -> Dict[float, float]:
    """Extension prices projected from ``low`` past ``high``, keyed by ratio."""
    diff = high - low
    return {ratio: low + diff * ratio for ratio in EXTENSION_RATIOS}


def support_resistance(
    bars: Sequence[PriceBar],
    min_touches: int = 3,
    tolerance: float = 0.002,
) -> SupportResistance:
    """
    Cluster bar highs and lows into levels touched at least ``min_touches`` times.

    Prices within ``tolerance`` (relative) of a cluster's first price join it;
    the level is the cluster mean.
    """
    _require("Support/resistance", len(bars), min_touches)
    prices = np.sort(np.concatenate([highs_of(bars), lows_of(bars)]))

    touches: Dict[float, int] = {}
    cluster: List[float] = [float(prices[0])]
    for price in prices[1:]:
        if price <= cluster[0] * (1 + tolerance):
            cluster.append(float(price))
            continue
        if len(cluster) >= min_touches:
            touches[float(np.mean(cluster))] = len(cluster)
        cluster = [float(price)]
    if len(cluster) >= min_touches:
        touches[float(np.mean(cluster))] = len(cluster)

    current = bars[-1].close
    supports = tuple(sorted((p for p in touches if p < current), reverse=True))
    resistances = tuple(sorted(p for p in touches if p > current))
    return SupportResistance(supports=supports, resistances=resistances, touches=touches)


# =============================================================================
# SWINGS AND DIVERGENCE
# =============================================================================


def swing_highs(values: Series, strength: int = 1) -> List[int]:
    """Indices whose value beats the ``strength`` values on either side."""
    arr = _as_array(values)
    out = []
    for i in range(strength, len(arr) - strength):
        left = arr[i - strength:i]
        right = arr[i + 1:i + 1 + strength]
        if np.all(arr[i] > left) and np.all(arr[i] > right):
            out.append(i)
    return out


def swing_lows(values: Series, strength: int = 1) -> List[int]:
    arr = _as_array(values)
    out = []
    for i in range(strength, len(arr) - strength):
        left = arr[i - strength:i]
        right = arr[i + 1:i + 1 + strength]
        if np.all(arr[i] < left) and np.all(arr[i] < right):
            out.append(i)
    return out


def swing_points(values: Series, strength: int = 1) -> Tuple[List[int], List[int]]:
    """(swing high indices, swing low indices) of one series."""
    return swing_highs(values, strength), swing_lows(values, strength)


def rsi_divergence(closes: Series, period: int = 14) -> int:
    """
    Compare the last two price swings with RSI at the same bars.

    Returns +1 for bullish divergence (lower price low, higher RSI low),
    -1 for bearish divergence (higher price high, lower RSI high), 0 when
    neither is present.  If both are present the more recent one wins.
    """
    arr = _as_array(closes)
    _require(f"RSI divergence({period})", len(arr), period + 3)
    rsi_vals = rsi_series(arr, period)

    # Only pivots where RSI is defined
    swing_hi, swing_lo = swing_points(arr)
    lows = [i for i in swing_lo if i >= period]
    highs = [i for i in swing_hi if i >= period]

    bullish_at = -1
    if len(lows) >= 2:
        a, b = lows[-2], lows[-1]
        if arr[b] < arr[a] and rsi_vals[b - period] > rsi_vals[a - period]:
            bullish_at = b

    bearish_at = -1
    if len(highs) >= 2:
        a, b = highs[-2], highs[-1]
        if arr[b] > arr[a] and rsi_vals[b - period] < rsi_vals[a - period]:
            bearish_at = b

    if bullish_at < 0 and bearish_at < 0:
        return 0
    return 1 if bullish_at > bearish_at else -1
