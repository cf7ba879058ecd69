"""Technical indicators (pure math, no I/O)."""

from signal_core.indicators.indicators import (
    FLAT_RANGE_K,
    BollingerPoint,
    CandleColorPoint,
    DonchianPoint,
    RsiPoint,
    StochasticPoint,
    SupportResistancePoint,
    bollinger_bands,
    consecutive_candle_colors,
    donchian_channel,
    rsi,
    stochastic,
    support_resistance,
)

__all__ = [
    "FLAT_RANGE_K",
    "BollingerPoint",
    "CandleColorPoint",
    "DonchianPoint",
    "RsiPoint",
    "StochasticPoint",
    "SupportResistancePoint",
    "bollinger_bands",
    "consecutive_candle_colors",
    "donchian_channel",
    "rsi",
    "stochastic",
    "support_resistance",
]
