"""Signal handler: formats signal changes and hands them to storage."""

import logging
from typing import Awaitable, Callable

from signal_core.models import Instrument, SignalResult, SignalType, TradeSignal
from signal_service.services.signal_formatter import format_for_logging, format_signal

logger = logging.getLogger(__name__)

SaveSignalCallback = Callable[[TradeSignal], Awaitable[None]]


class SignalHandler:
    """Receives signal changes from processors.

    HOLD transitions are only logged. PUT and CALL are formatted, logged
    and saved. A failed save is logged and never reaches the processor.
    """

    def __init__(self, save_signal: SaveSignalCallback | None = None):
        """
        Args:
            save_signal: Persistence callback (e.g. SignalRepository.save);
                None runs in log-only mode
        """
        self._save_signal = save_signal
        self.recorded = 0
        self.failed = 0

    async def record_signal(
        self,
        signal: SignalResult,
        instrument: Instrument,
        candle_size: int,
        previous_signal: SignalType | None,
    ) -> None:
        if signal.signal == SignalType.HOLD:
            logger.debug(
                f"{instrument.name} ({candle_size}s): "
                f"{previous_signal.value if previous_signal else None} -> HOLD"
            )
            return

        trade_signal = format_signal(signal.signal, instrument, candle_size)
        logger.info(format_for_logging(trade_signal))

        if self._save_signal is None:
            return

        try:
            await self._save_signal(trade_signal)
            self.recorded += 1
        except Exception as e:
            self.failed += 1
            logger.error(f"Error saving signal for {instrument.id}: {e}")
