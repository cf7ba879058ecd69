"""Per-(instrument, candle size) signal processor.

A processor periodically pulls the trailing candle window for its
instrument, evaluates the decision engine and reports only signal
changes.

Lifecycle:
    IDLE -> STARTING -> RUNNING -> STOPPED (terminal)

Tick guards:
- busy flag: at most one evaluation in flight per processor
- scheduler second: ticks landing in the same monotonic second collapse
  into one evaluation
"""

import asyncio
import logging
import time
from typing import Callable

from signal_core.models import (
    Candle,
    Instrument,
    ProcessorKey,
    ProcessorState,
    SignalResult,
    SignalType,
)
from signal_core.protocols import CandleSource, SignalChangeCallback, SignalChangeEvent
from signal_core.signal_calculator import SignalCalculator

logger = logging.getLogger(__name__)


class InstrumentProcessor:
    """Scheduled signal evaluation for one instrument and candle size."""

    def __init__(
        self,
        source: CandleSource,
        instrument: Instrument,
        candle_size: int,
        on_signal_change: SignalChangeCallback,
        candle_number: int = 100,
        evaluation_interval_ms: int = 5000,
        calculator: SignalCalculator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            source: Live feed session
            instrument: Instrument as listed by the feed
            candle_size: Candle duration in seconds
            on_signal_change: Awaited with a SignalChangeEvent on every change
            candle_number: Candles per evaluation window
            evaluation_interval_ms: Timer period
            calculator: Decision engine (defaults to published parameters)
            clock: Monotonic clock used for the once-per-second guard
        """
        self._source = source
        self.instrument = instrument
        self.candle_size = candle_size
        self._on_signal_change = on_signal_change
        self.candle_number = candle_number
        self.interval = evaluation_interval_ms / 1000
        self._calculator = calculator or SignalCalculator()
        self._clock = clock

        self._state = ProcessorState.IDLE
        self._timer: asyncio.Task | None = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._subscribed = False

        # Per-processor mutable state, reset by stop()
        self._last_tick: int | None = None
        self._last_signal: SignalType | None = None
        self._busy = False
        self._metadata: Instrument | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProcessorState:
        return self._state

    @property
    def instrument_id(self) -> int | None:
        return self.instrument.id

    @property
    def key(self) -> ProcessorKey:
        return ProcessorKey(instrument_id=self.instrument.id, candle_size=self.candle_size)

    @property
    def last_signal(self) -> SignalType | None:
        return self._last_signal

    @property
    def metadata(self) -> Instrument | None:
        return self._metadata

    @property
    def is_busy(self) -> bool:
        return self._busy

    def _label(self) -> str:
        return f"{self.instrument.id} ({self.instrument.name}, {self.candle_size}s)"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Fetch metadata, subscribe to the forming candle and start the timer.

        Metadata and subscription failures are logged; the timer still starts.

        Raises:
            RuntimeError: If the processor was already stopped.
        """
        if self._state in (ProcessorState.STARTING, ProcessorState.RUNNING):
            logger.info(f"Instrument {self._label()} is already being processed, skipping")
            return

        if self._state == ProcessorState.STOPPED:
            raise RuntimeError(f"Processor {self._label()} is stopped")

        instrument_id = self.instrument.id
        if instrument_id is None:
            logger.warning(f"Instrument id is missing for {self.instrument!r}")
            return

        self._state = ProcessorState.STARTING

        try:
            if self._metadata is None:
                try:
                    self._metadata = await self._source.get_instrument(instrument_id)
                except Exception as e:
                    logger.error(f"Failed to fetch metadata for {instrument_id}: {e}")

            try:
                await self._source.subscribe_last_candle(
                    instrument_id, self.candle_size, self._on_last_candle
                )
                self._subscribed = True
            except Exception as e:
                logger.error(
                    f"Failed to subscribe to last candle for {instrument_id}: {e}"
                )

            if self._state != ProcessorState.STARTING:
                # stop() ran while we were awaiting
                await self._unsubscribe()
                return

            self._timer = asyncio.create_task(self._run_timer())
            self._state = ProcessorState.RUNNING
            logger.info(
                f"Started monitoring {self._label()} "
                f"every {self.interval * 1000:.0f}ms"
            )
        except Exception as e:
            logger.error(f"Failed to start processor {self._label()}: {e}")
            self._state = ProcessorState.IDLE
            raise

    async def stop(self) -> None:
        """Cancel the timer, release the subscription and reset state.

        Idempotent and never raises. An evaluation already in flight finishes
        without reporting.
        """
        if self._state == ProcessorState.STOPPED:
            return

        self._state = ProcessorState.STOPPED
        try:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

            await self._unsubscribe()
        except Exception as e:
            logger.error(f"Failed during stop for {self._label()}: {e}")
        finally:
            self._timer = None
            self._last_tick = None
            self._last_signal = None
            self._busy = False
            self._metadata = None

        logger.debug(f"Stopped processing {self._label()}")

    async def _unsubscribe(self) -> None:
        if not self._subscribed:
            return
        self._subscribed = False
        try:
            await self._source.unsubscribe_last_candle(
                self.instrument.id, self.candle_size, self._on_last_candle
            )
        except Exception as e:
            logger.error(f"Failed to unsubscribe {self._label()}: {e}")

    async def _on_last_candle(self, candle: Candle) -> None:
        # Keeps the feed streaming this chart; evaluation is timer driven
        logger.debug(f"Last candle update for {self._label()}: {candle.open_time}")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def _run_timer(self) -> None:
        while self._state == ProcessorState.RUNNING:
            await asyncio.sleep(self.interval)
            if self._state != ProcessorState.RUNNING:
                break
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def tick(self) -> SignalResult | None:
        """Run one scheduled evaluation.

        Returns:
            The evaluation result, or None when the tick was skipped, found no
            candles, failed, or the processor stopped while it was in flight.
        """
        if self._state != ProcessorState.RUNNING:
            return None

        if self._busy:
            logger.debug(f"{self._label()} is still evaluating, skipping tick")
            return None

        second = int(self._clock())
        if second == self._last_tick:
            return None
        self._last_tick = second

        self._busy = True
        try:
            result = await self._evaluate()
            if result is None or self._state != ProcessorState.RUNNING:
                return None
            await self._handle_result(result)
            return result
        except Exception as e:
            logger.error(f"Error during candle analysis for {self._label()}: {e}")
            return None
        finally:
            self._busy = False

    async def _evaluate(self) -> SignalResult | None:
        now = self._source.current_time()
        from_time = int(now.timestamp()) - self.candle_size * self.candle_number

        candles = await self._source.fetch_candles(
            self.instrument.id, self.candle_size, from_time
        )
        if not candles:
            return None

        return self._calculator.calculate(candles[-self.candle_number:])

    async def _handle_result(self, result: SignalResult) -> None:
        """Report the result if it differs from the previous evaluation."""
        previous = self._last_signal
        self._last_signal = result.signal

        # A processor that has not evaluated yet is considered to hold
        if result.signal == (previous or SignalType.HOLD):
            return

        try:
            await self._on_signal_change(
                SignalChangeEvent(
                    signal=result,
                    previous_signal=previous,
                    instrument=self.instrument,
                    candle_size=self.candle_size,
                    metadata=self._metadata,
                )
            )
        except Exception as e:
            logger.error(f"Failed to handle signal change for {self._label()}: {e}")
