"""Tests for signal persistence routing."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_core.models import TradeSignal
from signal_service.storage import SIGNAL_TABLES, SignalRepository, generate_signal_id

CREATED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_signal(timeframe: str = "oneMinute", is_otc: bool = False) -> TradeSignal:
    return TradeSignal(
        message="EURUSD | 🔻  [Resistance zone]",
        created=CREATED,
        instrument_id=76,
        instrument_name="EURUSD-op",
        display_name="EUR/USD",
        action="SELL",
        zone="Resistance zone",
        timeframe=timeframe,
        is_otc=is_otc,
    )


def make_database(session: AsyncMock) -> MagicMock:
    @asynccontextmanager
    async def session_scope():
        yield session

    database = MagicMock()
    database.session = session_scope
    return database


class TestSave:
    """Tests for SignalRepository.save routing."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "timeframe,is_otc,table",
        [
            ("oneMinute", False, "signals_1m"),
            ("oneMinute", True, "signals_1m_otc"),
            ("fiveMinutes", False, "signals_5m"),
            ("fiveMinutes", True, "signals_5m_otc"),
        ],
    )
    async def test_routes_by_timeframe_and_otc(self, timeframe, is_otc, table):
        session = AsyncMock()
        repo = SignalRepository(make_database(session))

        assert await repo.save(make_signal(timeframe, is_otc)) is True

        stmt = session.execute.await_args.args[0]
        assert stmt.table.name == table

    @pytest.mark.asyncio
    async def test_unknown_destination_dropped(self):
        session = AsyncMock()
        repo = SignalRepository(make_database(session))

        assert await repo.save(make_signal("fifteenMinutes")) is False
        session.execute.assert_not_awaited()


class TestPurge:
    """Tests for old signal removal."""

    @pytest.mark.asyncio
    async def test_purges_every_table(self):
        session = AsyncMock()
        session.execute.return_value = MagicMock(rowcount=2)
        repo = SignalRepository(make_database(session))

        deleted = await repo.purge_older_than(CREATED)

        assert deleted == 2 * len(SIGNAL_TABLES)
        purged = {call.args[0].table.name for call in session.execute.await_args_list}
        assert purged == {"signals_1m", "signals_1m_otc", "signals_5m", "signals_5m_otc"}

    @pytest.mark.asyncio
    async def test_failing_table_skipped(self):
        session = AsyncMock()
        session.execute.side_effect = [
            MagicMock(rowcount=1),
            RuntimeError("lock timeout"),
            MagicMock(rowcount=4),
            MagicMock(rowcount=0),
        ]
        repo = SignalRepository(make_database(session))

        assert await repo.purge_older_than(CREATED) == 5


class TestSignalId:
    """Tests for deterministic signal IDs."""

    def test_deterministic(self):
        assert generate_signal_id(make_signal()) == generate_signal_id(make_signal())
        assert len(generate_signal_id(make_signal())) == 32

    def test_differs_by_timeframe(self):
        assert generate_signal_id(make_signal("oneMinute")) != generate_signal_id(
            make_signal("fiveMinutes")
        )
