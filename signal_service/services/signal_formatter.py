"""Signal formatting: pure data transformation for logging and persistence."""

import re
from datetime import datetime, timezone

from signal_core.models import Instrument, SignalType, TradeSignal

# Feed names carry an "-op" suffix that is not shown to users
_NAME_SUFFIX = re.compile(r"-op$", re.IGNORECASE)

TIMEFRAME_NAMES = {
    60: "oneMinute",
    300: "fiveMinutes",
}


def timeframe_name(candle_size: int) -> str:
    """Destination name for a candle size; anything but 1m maps to fiveMinutes."""
    return TIMEFRAME_NAMES.get(candle_size, "fiveMinutes")


def format_signal(
    signal: SignalType,
    instrument: Instrument,
    candle_size: int,
    created: datetime | None = None,
) -> TradeSignal:
    """
    Build the persisted record for an actionable signal.

    Args:
        signal: PUT or CALL
        instrument: Instrument with metadata overlaid
        candle_size: Candle duration in seconds
        created: Creation time (defaults to now, UTC)

    Returns:
        TradeSignal ready to be logged and saved
    """
    is_put = signal == SignalType.PUT
    zone = "Resistance zone" if is_put else "Support zone"
    arrow = "🔻" if is_put else "🔺"
    message = f"{_NAME_SUFFIX.sub('', instrument.name)} | {arrow}  [{zone}]"

    return TradeSignal(
        message=message,
        created=created or datetime.now(timezone.utc),
        instrument_id=instrument.id,
        instrument_name=instrument.name,
        display_name=instrument.display_name or instrument.name,
        image_url=instrument.image_url,
        action="BUY" if signal == SignalType.CALL else "SELL",
        zone=zone,
        timeframe=timeframe_name(candle_size),
        is_otc=instrument.is_otc,
    )


def format_for_logging(trade_signal: TradeSignal) -> str:
    """One-line human readable form of a formatted signal."""
    return f"Signal detected: {trade_signal.message} - {trade_signal.timeframe}"
