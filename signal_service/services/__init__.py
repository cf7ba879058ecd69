"""Live signal services."""

from signal_service.services.connection_manager import (
    ConnectionManager,
    ConnectionRetryExhausted,
)
from signal_service.services.instrument_processor import InstrumentProcessor
from signal_service.services.processing_supervisor import ProcessingSupervisor
from signal_service.services.purge_service import PurgeService
from signal_service.services.signal_formatter import (
    format_for_logging,
    format_signal,
    timeframe_name,
)
from signal_service.services.signal_handler import SignalHandler

__all__ = [
    "ConnectionManager",
    "ConnectionRetryExhausted",
    "InstrumentProcessor",
    "ProcessingSupervisor",
    "PurgeService",
    "SignalHandler",
    "format_signal",
    "format_for_logging",
    "timeframe_name",
]
