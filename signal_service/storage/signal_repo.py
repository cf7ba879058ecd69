"""Signal repository: routes signals to their destination table."""

import hashlib
import logging
from datetime import datetime

from sqlalchemy import delete, insert

from signal_core.models import TradeSignal
from signal_service.storage.database import SIGNAL_TABLES, Database

logger = logging.getLogger(__name__)


def generate_signal_id(trade_signal: TradeSignal) -> str:
    """Deterministic ID so a re-sent signal maps onto the same row."""
    ts_str = trade_signal.created.strftime("%Y%m%d%H%M%S%f")
    key = (
        f"{trade_signal.instrument_id}:{trade_signal.timeframe}:"
        f"{ts_str}:{trade_signal.action}"
    )
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class SignalRepository:
    """Repository for signal data operations."""

    def __init__(self, database: Database):
        self.database = database

    async def save(self, trade_signal: TradeSignal) -> bool:
        """Save a signal to the table for its timeframe and OTC flag.

        Returns:
            False when no destination exists for the signal
        """
        table = SIGNAL_TABLES.get((trade_signal.timeframe, trade_signal.is_otc))
        if table is None:
            logger.error(
                f"No destination for timeframe: {trade_signal.timeframe}, "
                f"is_otc: {trade_signal.is_otc}"
            )
            return False

        async with self.database.session() as session:
            stmt = insert(table).values(
                id=generate_signal_id(trade_signal),
                message=trade_signal.message,
                created=trade_signal.created,
                instrument_id=trade_signal.instrument_id,
                instrument_name=trade_signal.instrument_name,
                display_name=trade_signal.display_name,
                image_url=trade_signal.image_url,
                action=trade_signal.action,
                zone=trade_signal.zone,
                timeframe=trade_signal.timeframe,
                is_otc=trade_signal.is_otc,
            )
            await session.execute(stmt)
        return True

    async def purge_table(self, table, threshold: datetime) -> int:
        """Delete rows created before ``threshold`` from one table."""
        async with self.database.session() as session:
            result = await session.execute(
                delete(table).where(table.created < threshold)
            )
            return result.rowcount or 0

    async def purge_older_than(self, threshold: datetime) -> int:
        """Delete old signals from every table.

        A failing table is logged and skipped.

        Returns:
            Total number of deleted rows
        """
        total = 0
        for table in SIGNAL_TABLES.values():
            try:
                deleted = await self.purge_table(table, threshold)
                total += deleted
                logger.debug(f"Purged {deleted} rows from {table.__tablename__}")
            except Exception as e:
                logger.error(f"Failed to purge table '{table.__tablename__}': {e}")
        return total
