"""Tests for the processing supervisor."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from signal_core.models import (
    Instrument,
    SignalConfig,
    SignalDetails,
    SignalResult,
    SignalType,
)
from signal_core.protocols import SignalChangeEvent
from signal_service.services.processing_supervisor import ProcessingSupervisor

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

INSTRUMENTS = [
    Instrument(id=1, name="EURUSD-op"),
    Instrument(id=2, name="GBPUSD-op"),
    Instrument(id=3, name="USDJPY-OTC", is_otc=True),
]


def make_source(instruments=None) -> MagicMock:
    source = MagicMock()
    source.current_time = MagicMock(return_value=NOW)
    source.list_tradable_instruments = AsyncMock(
        return_value=INSTRUMENTS if instruments is None else instruments
    )
    source.get_instrument = AsyncMock(side_effect=lambda i: Instrument(id=i, name=f"#{i}"))
    source.fetch_candles = AsyncMock(return_value=[])
    source.subscribe_last_candle = AsyncMock()
    source.unsubscribe_last_candle = AsyncMock()
    return source


def make_connection(source) -> MagicMock:
    connection = MagicMock()
    connection.get_source = MagicMock(return_value=source)
    connection.wait_for_connection = AsyncMock(return_value=source)
    return connection


def make_supervisor(connection, sink=None, timeframes=None) -> ProcessingSupervisor:
    return ProcessingSupervisor(
        connection=connection,
        sink=sink or MagicMock(record_signal=AsyncMock()),
        timeframes=timeframes or [60, 300],
        evaluation_interval_ms=3_600_000,
        refresh_interval_ms=3_600_000,
    )


class TestRefresh:
    """Tests for the full rebuild cycle."""

    @pytest.mark.asyncio
    async def test_one_processor_per_instrument_and_timeframe(self):
        source = make_source()
        supervisor = make_supervisor(make_connection(source))

        await supervisor.refresh()

        keys = sorted(str(k) for k in supervisor.processors)
        assert keys == ["1-300", "1-60", "2-300", "2-60", "3-300", "3-60"]
        assert supervisor.refresh_count == 1
        assert supervisor.last_refresh is not None
        source.list_tradable_instruments.assert_awaited_once_with(NOW)
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_refresh_replaces_processors(self):
        """Test that a second refresh stops the previous generation."""
        source = make_source()
        supervisor = make_supervisor(make_connection(source), timeframes=[60])

        await supervisor.refresh()
        old = supervisor.get_processor(1, 60)
        await supervisor.refresh()
        new = supervisor.get_processor(1, 60)

        assert old is not new
        assert old.state.value == "stopped"
        assert new.state.value == "running"
        assert len(supervisor.processors) == 3
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_missing_id_skipped(self):
        source = make_source([Instrument(id=None, name="ghost"), Instrument(id=7, name="ok")])
        supervisor = make_supervisor(make_connection(source), timeframes=[60])

        await supervisor.refresh()

        assert [str(k) for k in supervisor.processors] == ["7-60"]
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_start_failure_isolated(self):
        """Test that one failing start leaves the other instruments running."""
        source = make_source()
        supervisor = make_supervisor(make_connection(source), timeframes=[60])
        created = []

        def factory(**kwargs):
            processor = MagicMock()
            processor.stop = AsyncMock()
            if kwargs["instrument"].id == 2:
                processor.start = AsyncMock(side_effect=RuntimeError("boom"))
            else:
                processor.start = AsyncMock()
            created.append((kwargs["instrument"].id, processor))
            return processor

        with patch(
            "signal_service.services.processing_supervisor.InstrumentProcessor",
            side_effect=factory,
        ):
            await supervisor.refresh()

        assert sorted(k.instrument_id for k in supervisor.processors) == [1, 3]
        failed = dict(created)[2]
        failed.stop.assert_awaited_once()
        assert supervisor.refresh_count == 1
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_refreshes_are_serialized(self):
        """Test that overlapping refresh triggers never rebuild concurrently."""
        source = make_source()
        release = asyncio.Event()
        active = 0
        peak = 0

        async def list_instruments(as_of):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1
            return INSTRUMENTS

        source.list_tradable_instruments.side_effect = list_instruments
        supervisor = make_supervisor(make_connection(source), timeframes=[60])

        first = asyncio.create_task(supervisor.refresh())
        second = asyncio.create_task(supervisor.refresh())
        await asyncio.sleep(0)
        assert supervisor.is_refreshing

        release.set()
        await asyncio.gather(first, second)

        assert peak == 1
        assert supervisor.refresh_count == 2
        assert not supervisor.is_refreshing
        assert len(supervisor.processors) == 3
        await supervisor.stop()


class TestProcessInstrument:
    """Tests for single processor creation."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_processor(self):
        source = make_source()
        supervisor = make_supervisor(make_connection(source))
        instrument = Instrument(id=5, name="AUDUSD")

        await asyncio.gather(
            supervisor.process_instrument(instrument, 60),
            supervisor.process_instrument(instrument, 60),
            supervisor.process_instrument(instrument, 60),
        )

        assert len(supervisor.processors) == 1
        source.subscribe_last_candle.assert_awaited_once()
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_waits_for_connection_when_disconnected(self):
        source = make_source()
        connection = make_connection(source)
        connection.get_source.return_value = None
        supervisor = make_supervisor(connection)

        await supervisor.process_instrument(Instrument(id=5, name="AUDUSD"), 60)

        connection.wait_for_connection.assert_awaited_once()
        assert supervisor.get_processor(5, 60) is not None
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_signal_change_reaches_sink_with_metadata(self):
        """Test that processor events are forwarded with metadata overlaid."""
        source = make_source()
        sink = MagicMock(record_signal=AsyncMock())
        supervisor = make_supervisor(make_connection(source), sink=sink)
        captured = {}

        def factory(**kwargs):
            captured.update(kwargs)
            processor = MagicMock()
            processor.start = AsyncMock()
            processor.stop = AsyncMock()
            return processor

        instrument = Instrument(id=5, name="AUDUSD-op")
        with patch(
            "signal_service.services.processing_supervisor.InstrumentProcessor",
            side_effect=factory,
        ):
            await supervisor.process_instrument(instrument, 300)

        signal = SignalResult(signal=SignalType.PUT, details=SignalDetails.empty())
        metadata = Instrument(id=5, name="AUDUSD-op", display_name="AUD/USD", is_otc=True)
        await captured["on_signal_change"](
            SignalChangeEvent(
                signal=signal,
                previous_signal=SignalType.HOLD,
                instrument=instrument,
                candle_size=300,
                metadata=metadata,
            )
        )

        args = sink.record_signal.await_args.args
        assert args[0] == signal
        assert args[1].display_name == "AUD/USD"
        assert args[1].is_otc is True
        assert args[2] == 300
        assert args[3] == SignalType.HOLD
        await supervisor.stop()


class TestLifecycle:
    """Tests for initialize/attach/stop."""

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self):
        source = make_source()
        supervisor = make_supervisor(make_connection(source))

        await supervisor.initialize()
        await supervisor.initialize()

        assert supervisor.refresh_count == 1
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_connected_triggers_refresh(self):
        source = make_source()
        connection = make_connection(source)
        supervisor = make_supervisor(connection, timeframes=[60])

        supervisor.attach()
        callback = connection.on_connected.call_args.args[0]
        await callback()
        # The refresh runs in the background
        for _ in range(50):
            await asyncio.sleep(0)
            if supervisor.refresh_count:
                break

        assert supervisor.refresh_count == 1
        await supervisor.stop()
        connection.off_connected.assert_called_once_with(callback)

    @pytest.mark.asyncio
    async def test_disconnect_stops_every_processor(self):
        """Test that a lost session stops the fleet instead of leaving it ticking."""
        source = make_source()
        connection = make_connection(source)
        supervisor = make_supervisor(connection, timeframes=[60])
        await supervisor.refresh()
        processors = list(supervisor.processors.values())

        supervisor.attach()
        callback = connection.on_disconnected.call_args.args[0]
        await callback()
        for _ in range(50):
            await asyncio.sleep(0)
            if not supervisor.processors:
                break

        assert supervisor.processors == {}
        assert all(p.state.value == "stopped" for p in processors)
        await supervisor.stop()
        connection.off_disconnected.assert_called_once_with(callback)

    def test_default_calculator_uses_default_config(self):
        supervisor = make_supervisor(make_connection(make_source()))

        assert supervisor._calculator.config == SignalConfig()

    @pytest.mark.asyncio
    async def test_stop_stops_every_processor(self):
        source = make_source()
        supervisor = make_supervisor(make_connection(source))
        await supervisor.refresh()
        processors = list(supervisor.processors.values())

        await supervisor.stop()

        assert supervisor.processors == {}
        assert all(p.state.value == "stopped" for p in processors)

    @pytest.mark.asyncio
    async def test_status(self):
        source = make_source()
        supervisor = make_supervisor(make_connection(source), timeframes=[60])
        await supervisor.refresh()

        status = supervisor.status()

        assert status["processors"] == 3
        assert status["keys"] == ["1-60", "2-60", "3-60"]
        assert status["refresh_count"] == 1
        assert status["refreshing"] is False
        await supervisor.stop()
