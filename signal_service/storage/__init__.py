"""Data storage layer."""

from signal_service.storage.database import (
    SIGNAL_TABLES,
    Database,
    init_database,
)
from signal_service.storage.signal_repo import SignalRepository, generate_signal_id

__all__ = [
    "SIGNAL_TABLES",
    "Database",
    "init_database",
    "SignalRepository",
    "generate_signal_id",
]
