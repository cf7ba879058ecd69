"""Data models."""

from signal_core.models.candle import Candle, Instrument, ProcessorKey
from signal_core.models.config import SignalConfig
from signal_core.models.signal import (
    BollingerPosition,
    DonchianBreakout,
    SignalDetails,
    SignalResult,
    SignalType,
    StochasticPosition,
    TradeSignal,
)
from signal_core.models.state import ConnectionState, ProcessorState

__all__ = [
    "Candle",
    "Instrument",
    "ProcessorKey",
    "SignalConfig",
    "BollingerPosition",
    "DonchianBreakout",
    "SignalDetails",
    "SignalResult",
    "SignalType",
    "StochasticPosition",
    "TradeSignal",
    "ConnectionState",
    "ProcessorState",
]
