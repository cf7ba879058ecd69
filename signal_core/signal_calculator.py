"""Signal decision engine.

This module is pure business logic with no I/O dependencies. Given a
candle window it computes every indicator, takes the latest aligned value
of each and decides between PUT, CALL and HOLD. Identical windows always
produce identical results.
"""

import logging
from typing import Sequence

from signal_core.indicators import (
    bollinger_bands,
    consecutive_candle_colors,
    donchian_channel,
    rsi,
    stochastic,
    support_resistance,
)
from signal_core.models import (
    BollingerPosition,
    Candle,
    DonchianBreakout,
    SignalConfig,
    SignalDetails,
    SignalResult,
    SignalType,
    StochasticPosition,
)

logger = logging.getLogger(__name__)


def calculate_signal(
    candles: Sequence[Candle],
    config: SignalConfig | None = None,
) -> SignalResult:
    """
    Evaluate the rule set on a candle window.

    PUT (resistance zone) requires all of: price near resistance, an upper
    Donchian breakout, high above the upper Bollinger band, stochastic
    overbought and a green run of at least the threshold. CALL is the
    mirror image on the support side. Anything else is HOLD.

    Args:
        candles: Ordered candle window (oldest first)
        config: Indicator periods and thresholds

    Returns:
        SignalResult with the decision and every intermediate value
    """
    config = config or SignalConfig()

    if len(candles) < config.min_candles:
        logger.debug(
            "Not enough candles to calculate signal: %d < %d",
            len(candles), config.min_candles,
        )
        return SignalResult.hold()

    sr_data = support_resistance(candles, config.support_resistance_period)
    donchian_data = donchian_channel(candles, config.donchian_period)
    bollinger_data = bollinger_bands(
        candles, config.bollinger_period, config.bollinger_std_dev
    )
    stochastic_data = stochastic(
        candles,
        config.stochastic_k_period,
        config.stochastic_d_period,
        config.stochastic_smoothing,
    )
    rsi_data = rsi(candles, config.rsi_period)
    color_data = consecutive_candle_colors(candles)

    if not (sr_data and donchian_data and bollinger_data
            and stochastic_data and rsi_data and color_data):
        return SignalResult.hold()

    last_sr = sr_data[-1]
    if last_sr.resistance is None or last_sr.support is None:
        return SignalResult.hold()

    last_candle = candles[-1]
    last_bollinger = bollinger_data[-1]
    last_stochastic = stochastic_data[-1]

    # Support/resistance zones
    mid = (last_sr.resistance + last_sr.support) / 2
    upper_zone_height = last_sr.resistance - mid
    lower_zone_height = mid - last_sr.support

    resistance_position = (
        (last_candle.high - mid) / upper_zone_height if upper_zone_height > 0 else 0.0
    )
    support_position = (
        (mid - last_candle.low) / lower_zone_height if lower_zone_height > 0 else 0.0
    )
    is_near_resistance = (
        upper_zone_height > 0 and resistance_position >= config.near_zone_threshold
    )
    is_near_support = (
        lower_zone_height > 0 and support_position >= config.near_zone_threshold
    )

    # Breakouts are measured against the previous channel, not the current one
    prev_donchian = donchian_data[-2] if len(donchian_data) >= 2 else None
    upper_breakout = prev_donchian is not None and last_candle.high > prev_donchian.upper
    lower_breakout = prev_donchian is not None and last_candle.low < prev_donchian.lower

    above_upper_bb = last_candle.high > last_bollinger.upper
    below_lower_bb = last_candle.low < last_bollinger.lower

    overbought = last_stochastic.k > config.stochastic_overbought
    oversold = last_stochastic.k < config.stochastic_oversold

    run = color_data[-1].run

    put_conditions = (
        is_near_resistance
        and upper_breakout
        and above_upper_bb
        and overbought
        and run >= config.consecutive_threshold
    )
    call_conditions = (
        is_near_support
        and lower_breakout
        and below_lower_bb
        and oversold
        and run <= -config.consecutive_threshold
    )

    if put_conditions:
        signal = SignalType.PUT
    elif call_conditions:
        signal = SignalType.CALL
    else:
        signal = SignalType.HOLD

    return SignalResult(
        signal=signal,
        details=SignalDetails(
            is_near_resistance=is_near_resistance,
            is_near_support=is_near_support,
            resistance_zone_height=upper_zone_height,
            support_zone_height=lower_zone_height,
            resistance_zone_position=resistance_position,
            support_zone_position=support_position,
            donchian_breakout=DonchianBreakout(
                upper=upper_breakout, lower=lower_breakout
            ),
            bollinger_position=BollingerPosition(
                above_upper=above_upper_bb, below_lower=below_lower_bb
            ),
            stochastic_position=StochasticPosition(
                overbought=overbought, oversold=oversold, k_value=last_stochastic.k
            ),
            consecutive_candles=run,
            rsi_value=rsi_data[-1].rsi,
            above_upper_bb=above_upper_bb,
            below_lower_bb=below_lower_bb,
        ),
    )


class SignalCalculator:
    """Decision engine bound to one configuration."""

    def __init__(self, config: SignalConfig | None = None):
        self.config = config or SignalConfig()

    def calculate(self, candles: Sequence[Candle]) -> SignalResult:
        """Evaluate the rule set on ``candles``."""
        return calculate_signal(candles, self.config)

    @property
    def min_candles(self) -> int:
        return self.config.min_candles
