"""Technical indicators for signal generation.

All functions are pure: they take an ordered candle window and return a
list of points aligned to the trailing sub-range of the input for which
the indicator is defined. Each point carries the ``open_time`` of the
candle it belongs to.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from signal_core.models import Candle


# =============================================================================
# Indicator points
# =============================================================================

@dataclass(slots=True, frozen=True)
class BollingerPoint:
    time: int
    middle: float
    upper: float
    lower: float


@dataclass(slots=True, frozen=True)
class DonchianPoint:
    time: int
    upper: float
    lower: float
    middle: float


@dataclass(slots=True, frozen=True)
class StochasticPoint:
    time: int
    k: float  # smoothed %K
    d: float  # %D, moving average of smoothed %K


@dataclass(slots=True, frozen=True)
class RsiPoint:
    time: int
    rsi: float


@dataclass(slots=True, frozen=True)
class SupportResistancePoint:
    time: int
    resistance: float | None
    support: float | None


@dataclass(slots=True, frozen=True)
class CandleColorPoint:
    time: int
    run: int  # >0 green streak length, <0 red streak length, 0 doji


# Raw %K reported when the lookback range is flat (highest high == lowest low)
FLAT_RANGE_K = 50.0


# =============================================================================
# Helpers
# =============================================================================

def _check_period(name: str, value: int) -> None:
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")


def _array(candles: Sequence[Candle], field: str) -> np.ndarray:
    return np.array([getattr(c, field) for c in candles], dtype=np.float64)


def _rolling_max(values: np.ndarray, period: int) -> np.ndarray:
    """Trailing max for every index >= period - 1."""
    return sliding_window_view(values, period).max(axis=1)


def _rolling_min(values: np.ndarray, period: int) -> np.ndarray:
    """Trailing min for every index >= period - 1."""
    return sliding_window_view(values, period).min(axis=1)


def _seeded_ema(values: np.ndarray, period: int) -> np.ndarray:
    """EMA with alpha = 2 / (period + 1), seeded with the first raw value.

    This is not a warm-up EMA (no SMA seed); RSI depends on this exact seeding.
    """
    alpha = 2.0 / (period + 1)
    result = np.empty_like(values)
    if len(values) == 0:
        return result

    result[0] = values[0]
    for i in range(1, len(values)):
        result[i] = alpha * values[i] + (1 - alpha) * result[i - 1]
    return result


# =============================================================================
# Public API
# =============================================================================

def bollinger_bands(
    candles: Sequence[Candle],
    period: int = 20,
    std_dev: float = 2.0,
) -> list[BollingerPoint]:
    """
    Calculate Bollinger Bands over closing prices.

    middle = SMA(close, period), upper/lower = middle +/- std_dev * sigma,
    where sigma is the population standard deviation of the same window.

    Args:
        candles: Ordered candle window
        period: Lookback period
        std_dev: Band width multiplier

    Returns:
        One point per candle from index period - 1 onwards
    """
    _check_period("period", period)
    if len(candles) < period:
        return []

    windows = sliding_window_view(_array(candles, "close"), period)
    middle = windows.mean(axis=1)
    sigma = windows.std(axis=1)  # ddof=0: population

    return [
        BollingerPoint(
            time=candles[i + period - 1].open_time,
            middle=float(middle[i]),
            upper=float(middle[i] + sigma[i] * std_dev),
            lower=float(middle[i] - sigma[i] * std_dev),
        )
        for i in range(len(middle))
    ]


def donchian_channel(
    candles: Sequence[Candle],
    period: int = 20,
) -> list[DonchianPoint]:
    """
    Calculate the Donchian Channel.

    upper = highest high, lower = lowest low over the trailing window,
    middle = (upper + lower) / 2.
    """
    _check_period("period", period)
    if len(candles) < period:
        return []

    upper = _rolling_max(_array(candles, "high"), period)
    lower = _rolling_min(_array(candles, "low"), period)

    return [
        DonchianPoint(
            time=candles[i + period - 1].open_time,
            upper=float(upper[i]),
            lower=float(lower[i]),
            middle=float((upper[i] + lower[i]) / 2),
        )
        for i in range(len(upper))
    ]


def stochastic(
    candles: Sequence[Candle],
    k_period: int = 13,
    d_period: int = 3,
    smoothing: int = 3,
) -> list[StochasticPoint]:
    """
    Calculate the Stochastic Oscillator.

    raw %K = (close - lowest low) / (highest high - lowest low) * 100
    over k_period; %K is smoothed with a trailing mean of width ``smoothing``
    (shorter windows at the start); %D is the trailing mean of smoothed %K
    over d_period.

    A flat range (highest high == lowest low) yields raw %K = 50.

    Args:
        candles: Ordered candle window
        k_period: Lookback for highest high / lowest low
        d_period: %D averaging period
        smoothing: %K smoothing width (1 disables smoothing)

    Returns:
        Points aligned to candles from index k_period + d_period - 2
    """
    _check_period("k_period", k_period)
    _check_period("d_period", d_period)
    _check_period("smoothing", smoothing)
    if len(candles) < k_period:
        return []

    highest = _rolling_max(_array(candles, "high"), k_period)
    lowest = _rolling_min(_array(candles, "low"), k_period)
    closes = _array(candles, "close")[k_period - 1:]

    span = highest - lowest
    raw_k = np.full_like(span, FLAT_RANGE_K)
    nonflat = span != 0
    raw_k[nonflat] = (closes[nonflat] - lowest[nonflat]) / span[nonflat] * 100

    if smoothing > 1:
        smoothed_k = np.array([
            raw_k[max(0, i - smoothing + 1): i + 1].mean()
            for i in range(len(raw_k))
        ])
    else:
        smoothed_k = raw_k

    if len(smoothed_k) < d_period:
        return []

    d_values = sliding_window_view(smoothed_k, d_period).mean(axis=1)

    result = []
    for j in range(d_period - 1, len(smoothed_k)):
        result.append(
            StochasticPoint(
                time=candles[j + k_period - 1].open_time,
                k=float(smoothed_k[j]),
                d=float(d_values[j - d_period + 1]),
            )
        )
    return result


def rsi(candles: Sequence[Candle], period: int = 14) -> list[RsiPoint]:
    """
    Calculate the Relative Strength Index over closing prices.

    Average gain/loss use a seeded EMA (alpha = 2 / (period + 1), first
    value taken as-is). RSI is 100 when the average loss is zero.

    Returns:
        Points aligned to candles from index ``period``; empty when fewer
        than period + 1 candles are given
    """
    _check_period("period", period)
    if len(candles) < period + 1:
        return []

    deltas = np.diff(_array(candles, "close"))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gains = _seeded_ema(gains, period)
    avg_losses = _seeded_ema(losses, period)

    result = []
    for i in range(period - 1, len(deltas)):
        avg_gain = avg_gains[i]
        avg_loss = avg_losses[i]
        if avg_loss == 0:
            value = 100.0
        else:
            value = 100 - 100 / (1 + avg_gain / avg_loss)
        # delta i is the move into candle i + 1
        result.append(RsiPoint(time=candles[i + 1].open_time, rsi=float(value)))
    return result


def support_resistance(
    candles: Sequence[Candle],
    box_period: int = 25,
) -> list[SupportResistancePoint]:
    """
    Calculate rolling support and resistance levels.

    A candle whose high reaches the rolling highest high marks a new
    resistance; a candle whose low reaches the rolling lowest low marks a
    new support. Both levels are forward-filled.

    Returns:
        One point per candle. Levels are None until ``box_period`` candles
        have accumulated (and for every candle when the window is shorter).
    """
    _check_period("box_period", box_period)
    if len(candles) < box_period:
        return [SupportResistancePoint(c.open_time, None, None) for c in candles]

    highs = _array(candles, "high")
    lows = _array(candles, "low")
    highest = _rolling_max(highs, box_period)
    lowest = _rolling_min(lows, box_period)

    result = []
    last_resistance: float | None = None
    last_support: float | None = None

    for i, candle in enumerate(candles):
        if i >= box_period - 1:
            w = i - box_period + 1
            if highs[i] >= highest[w]:
                last_resistance = float(highs[i])
            if lows[i] <= lowest[w]:
                last_support = float(lows[i])

        result.append(
            SupportResistancePoint(
                time=candle.open_time,
                resistance=last_resistance,
                support=last_support,
            )
        )

    return result


def consecutive_candle_colors(candles: Sequence[Candle]) -> list[CandleColorPoint]:
    """
    Calculate the signed run of same-coloured candles ending at each candle.

    A candle extends the run only when it and the previous candle share the
    same non-doji colour. Otherwise the run restarts at +1 (green) or -1
    (red). A doji scores 0, so the candle following a doji always starts a
    new run.
    """
    result = []
    run = 0

    for i, candle in enumerate(candles):
        if i > 0 and not candle.is_doji:
            prev = candles[i - 1]
            same_colour = (
                (candle.is_green and prev.is_green)
                or (candle.is_red and prev.is_red)
            )
            if same_colour and not prev.is_doji:
                run = abs(run) + 1 if candle.is_green else -(abs(run) + 1)
            else:
                run = 1 if candle.is_green else -1
        else:
            if candle.is_green:
                run = 1
            elif candle.is_red:
                run = -1
            else:
                run = 0

        result.append(CandleColorPoint(time=candle.open_time, run=run))

    return result
