"""Processing supervisor: owns the fleet of instrument processors.

Refresh cycle (full rebuild):
1. Wait for an active feed connection
2. Stop and discard every registered processor
3. List instruments tradable at the current server time
4. For each timeframe, start one processor per instrument concurrently

Refreshes run once at initialization, on every (re)connect and on a fixed
interval. They are serialized: a trigger arriving while a rebuild is in
progress waits for it before rebuilding again.
"""

import asyncio
import logging
from datetime import datetime, timezone

from signal_core.models import Instrument, ProcessorKey
from signal_core.protocols import SignalChangeEvent, SignalSink
from signal_core.signal_calculator import SignalCalculator
from signal_service.services.connection_manager import ConnectionManager
from signal_service.services.instrument_processor import InstrumentProcessor

logger = logging.getLogger(__name__)


class ProcessingSupervisor:
    """Keeps at most one InstrumentProcessor per (instrument, candle size)."""

    def __init__(
        self,
        connection: ConnectionManager,
        sink: SignalSink,
        timeframes: list[int] | None = None,
        candle_number: int = 100,
        evaluation_interval_ms: int = 5000,
        refresh_interval_ms: int = 60 * 60 * 1000,
        calculator: SignalCalculator | None = None,
    ):
        """
        Args:
            connection: Connection manager providing the feed session
            sink: Destination for signal changes
            timeframes: Candle sizes in seconds (default 1m and 5m)
            candle_number: Candles per evaluation window
            evaluation_interval_ms: Per-processor timer period
            refresh_interval_ms: Instrument list refresh period
            calculator: Decision engine shared by all processors
        """
        self._connection = connection
        self._sink = sink
        self.timeframes = timeframes or [60, 300]
        self.candle_number = candle_number
        self.evaluation_interval_ms = evaluation_interval_ms
        self.refresh_interval = refresh_interval_ms / 1000
        self._calculator = calculator or SignalCalculator()

        self._processors: dict[ProcessorKey, InstrumentProcessor] = {}
        self._refresh_lock = asyncio.Lock()
        self._refreshing = False
        self._refresh_task: asyncio.Task | None = None
        self._triggered: set[asyncio.Task] = set()
        self._initialized = False

        self.refresh_count = 0
        self.last_refresh: datetime | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def processors(self) -> dict[ProcessorKey, InstrumentProcessor]:
        """Snapshot of the registry."""
        return dict(self._processors)

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def get_processor(self, instrument_id: int, candle_size: int) -> InstrumentProcessor | None:
        return self._processors.get(
            ProcessorKey(instrument_id=instrument_id, candle_size=candle_size)
        )

    def status(self) -> dict:
        """Summary used by the HTTP status route."""
        return {
            "processors": len(self._processors),
            "keys": sorted(str(key) for key in self._processors),
            "refreshing": self._refreshing,
            "refresh_count": self.refresh_count,
            "last_refresh": self.last_refresh.isoformat() if self.last_refresh else None,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Refresh on every (re)connect of the feed, stop the fleet when it drops."""
        self._connection.on_connected(self._on_connected)
        self._connection.on_disconnected(self._on_disconnected)

    async def initialize(self) -> None:
        """Run the first refresh and start the periodic refresh timer."""
        if self._initialized:
            logger.warning("Processing supervisor already initialized, skipping")
            return

        self._initialized = True
        await self.refresh()

        self._refresh_task = asyncio.create_task(self._run_periodic_refresh())
        logger.info(
            f"Processing supervisor initialized with refresh interval: "
            f"{self.refresh_interval / 60:.0f} minutes"
        )

    async def stop(self) -> None:
        """Stop the refresh timer and every processor."""
        self._connection.off_connected(self._on_connected)
        self._connection.off_disconnected(self._on_disconnected)

        tasks = [t for t in (self._refresh_task, *self._triggered) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None
        self._triggered.clear()

        await self.stop_all()
        self._initialized = False
        logger.info("Processing supervisor stopped")

    async def stop_all(self) -> None:
        """Stop and discard every registered processor."""
        processors = list(self._processors.values())
        self._processors.clear()
        for processor in processors:
            await processor.stop()
        if processors:
            logger.info(f"Stopped {len(processors)} processors")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _on_connected(self) -> None:
        # Run in the background so the connection manager keeps notifying
        task = asyncio.create_task(self._safe_refresh("connected"))
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)

    async def _on_disconnected(self) -> None:
        # Processors of a lost session would keep ticking on a closed source
        task = asyncio.create_task(self._safe_stop_all())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)

    async def _safe_stop_all(self) -> None:
        try:
            await self.stop_all()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Stopping processors after disconnect failed: {e}")

    async def _run_periodic_refresh(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            logger.info(
                f"Periodic refresh triggered "
                f"(every {self.refresh_interval / 60:.0f} minutes)"
            )
            await self._safe_refresh("periodic")

    async def _safe_refresh(self, reason: str) -> None:
        try:
            await self.refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Refresh ({reason}) failed: {e}")

    async def refresh(self) -> None:
        """Rebuild the processor fleet from the current instrument list."""
        async with self._refresh_lock:
            self._refreshing = True
            try:
                await self._rebuild()
            finally:
                self._refreshing = False

    async def _rebuild(self) -> None:
        source = await self._connection.wait_for_connection()

        await self.stop_all()

        now = source.current_time()
        instruments = await source.list_tradable_instruments(now)
        logger.info(f"Found {len(instruments)} instruments available for trading at {now}")

        for candle_size in self.timeframes:
            results = await asyncio.gather(
                *(self.process_instrument(i, candle_size) for i in instruments),
                return_exceptions=True,
            )
            for instrument, result in zip(instruments, results):
                if isinstance(result, BaseException):
                    logger.error(
                        f"Failed to process instrument {instrument.id} "
                        f"({instrument.name}): {result}"
                    )
            logger.info(
                f"Started processing {len(instruments)} instruments "
                f"for timeframe {candle_size}s"
            )

        self.refresh_count += 1
        self.last_refresh = datetime.now(timezone.utc)

    async def process_instrument(self, instrument: Instrument, candle_size: int) -> None:
        """Create, register and start the processor for one key.

        The processor is registered before its start is awaited, so
        concurrent calls for the same key create a single processor.
        """
        if instrument.id is None:
            logger.warning(f"Instrument id is missing for {instrument!r}, skipping")
            return

        key = ProcessorKey(instrument_id=instrument.id, candle_size=candle_size)
        if key in self._processors:
            logger.info(f"Instrument {key} is already being processed, skipping")
            return

        source = self._connection.get_source()
        if source is None:
            source = await self._connection.wait_for_connection()
            if key in self._processors:
                return

        async def on_signal_change(event: SignalChangeEvent) -> None:
            await self._sink.record_signal(
                event.signal,
                event.instrument.with_metadata(event.metadata),
                event.candle_size,
                event.previous_signal,
            )

        processor = InstrumentProcessor(
            source=source,
            instrument=instrument,
            candle_size=candle_size,
            on_signal_change=on_signal_change,
            candle_number=self.candle_number,
            evaluation_interval_ms=self.evaluation_interval_ms,
            calculator=self._calculator,
        )
        self._processors[key] = processor

        try:
            await processor.start()
        except Exception:
            if self._processors.get(key) is processor:
                del self._processors[key]
            await processor.stop()
            raise
