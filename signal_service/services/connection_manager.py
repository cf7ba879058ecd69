"""Connection manager for the upstream market data feed.

Owns the single feed session of the process:
- Opens the first connection and repairs it with bounded retries
- Hands the live session to callers through wait_for_connection()
- Notifies an ordered list of subscribers on every (re)connect

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> CONNECTING  (transport reported a disconnect)
    CONNECTING -> DISCONNECTED  (retries exhausted, terminal until reconnect())
"""

import asyncio
import logging

from signal_core.models import ConnectionState
from signal_core.protocols import CandleSource, ConnectedCallback, ConnectionTransport

logger = logging.getLogger(__name__)


class ConnectionRetryExhausted(RuntimeError):
    """All reconnection attempts failed."""


class ConnectionManager:
    """Single owner of the feed connection with bounded-retry reconnection."""

    def __init__(
        self,
        transport: ConnectionTransport,
        max_attempts: int = 5,
        retry_delay_ms: int = 3000,
    ):
        """
        Args:
            transport: Builds feed sessions and reports state changes
            max_attempts: Reconnection attempts before giving up
            retry_delay_ms: Fixed delay before every attempt
        """
        self._transport = transport
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay_ms / 1000

        self._state = ConnectionState.DISCONNECTED
        self._source: CandleSource | None = None
        self._attempts = 0
        self._exhausted = False
        self._closing = False
        self._listening = False

        # Shared handle for every wait_for_connection() caller; resolved or
        # rejected only by the connect routine, then cleared.
        self._pending: asyncio.Future[CandleSource] | None = None

        self._retry_task: asyncio.Task | None = None
        self._connected_callbacks: list[ConnectedCallback] = []
        self._disconnected_callbacks: list[ConnectedCallback] = []
        self._notify_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        """Consecutive failed reconnection attempts."""
        return self._attempts

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._source is not None

    def get_source(self) -> CandleSource | None:
        """The live session, or None when not connected."""
        return self._source if self.is_connected() else None

    def on_connected(self, callback: ConnectedCallback) -> None:
        """Register a subscriber invoked after every successful (re)connect."""
        self._connected_callbacks.append(callback)

    def off_connected(self, callback: ConnectedCallback) -> None:
        """Unregister a connected subscriber."""
        if callback in self._connected_callbacks:
            self._connected_callbacks.remove(callback)

    def on_disconnected(self, callback: ConnectedCallback) -> None:
        """Register a subscriber invoked when a live session is lost or
        reconnection gives up."""
        self._disconnected_callbacks.append(callback)

    def off_disconnected(self, callback: ConnectedCallback) -> None:
        """Unregister a disconnected subscriber."""
        if callback in self._disconnected_callbacks:
            self._disconnected_callbacks.remove(callback)

    async def initialize(self) -> CandleSource:
        """Open the first connection.

        A failed first attempt enters the retry path instead of raising.

        Raises:
            ConnectionRetryExhausted: If every retry failed.
        """
        if not self._listening:
            self._transport.on_state_change(self._handle_transport_state)
            self._listening = True

        self._closing = False
        try:
            return await self._connect()
        except Exception as e:
            logger.error(f"Initial connection failed: {e}")

        return await self._start_retry()

    async def reconnect(self) -> CandleSource:
        """Restart the retry path manually, e.g. after exhaustion."""
        self._exhausted = False
        self._attempts = 0
        return await self._start_retry()

    async def wait_for_connection(self) -> CandleSource:
        """Return the live session, waiting for the next connect if needed.

        Every concurrent caller shares the same pending handle.

        Raises:
            ConnectionRetryExhausted: If retries are exhausted.
        """
        source = self.get_source()
        if source is not None:
            return source

        if self._exhausted:
            raise ConnectionRetryExhausted(
                f"Max retry attempts ({self.max_attempts}) reached"
            )

        if self._pending is None:
            self._pending = asyncio.get_running_loop().create_future()

        # Shield: a cancelled caller must not cancel the shared handle
        return await asyncio.shield(self._pending)

    async def close(self) -> None:
        """Stop retrying and close the transport."""
        self._closing = True

        if self._retry_task and not self._retry_task.done():
            self._retry_task.cancel()
            try:
                await self._retry_task
            except (asyncio.CancelledError, ConnectionRetryExhausted):
                pass
        self._retry_task = None

        for task in list(self._notify_tasks):
            task.cancel()
        self._notify_tasks.clear()

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

        try:
            await self._transport.close()
        except Exception as e:
            logger.warning(f"Error closing feed transport: {e}")

        self._source = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("Connection manager closed")

    # ------------------------------------------------------------------
    # Connect / retry
    # ------------------------------------------------------------------

    async def _connect(self) -> CandleSource:
        """Single connection attempt; notifies subscribers on success."""
        self._state = ConnectionState.CONNECTING
        try:
            source = await self._transport.connect()
        except Exception:
            self._source = None
            raise

        self._source = source
        self._state = ConnectionState.CONNECTED
        logger.info("Connected to market data feed")

        await self._notify_connected()
        return source

    async def _notify_connected(self) -> None:
        """Resolve waiters, then deliver to every subscriber in order."""
        self._attempts = 0
        self._exhausted = False

        if self._pending is not None:
            if not self._pending.done() and self._source is not None:
                self._pending.set_result(self._source)
            self._pending = None

        for callback in list(self._connected_callbacks):
            try:
                await callback()
            except Exception as e:
                logger.error(f"Error in connected callback: {e}")

    def _schedule_disconnected(self) -> None:
        # Called from sync contexts, so delivery runs as a task
        if not self._disconnected_callbacks or self._closing:
            return
        task = asyncio.create_task(self._notify_disconnected())
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _notify_disconnected(self) -> None:
        """Deliver to every disconnected subscriber in order."""
        for callback in list(self._disconnected_callbacks):
            try:
                await callback()
            except Exception as e:
                logger.error(f"Error in disconnected callback: {e}")

    def _start_retry(self) -> "asyncio.Task[CandleSource]":
        """Start the retry loop, or join the one already running."""
        if self._retry_task is None or self._retry_task.done():
            self._retry_task = asyncio.create_task(self._retry_loop())
            self._retry_task.add_done_callback(self._on_retry_done)
        else:
            logger.info("Reconnection already in progress, joining it")
        return self._retry_task

    async def _retry_loop(self) -> CandleSource:
        self._state = ConnectionState.CONNECTING

        while True:
            if self._attempts >= self.max_attempts:
                self._give_up()

            self._attempts += 1
            logger.info(
                f"Attempting to reconnect... "
                f"(attempt {self._attempts}/{self.max_attempts})"
            )
            await asyncio.sleep(self.retry_delay)

            try:
                return await self._connect()
            except Exception as e:
                logger.error(f"Reconnection attempt {self._attempts} failed: {e}")

    def _give_up(self) -> None:
        """Reject every waiter and stop retrying."""
        logger.error(
            f"Max retry attempts ({self.max_attempts}) reached. "
            f"Stopping reconnection attempts."
        )
        self._exhausted = True
        self._state = ConnectionState.DISCONNECTED
        error = ConnectionRetryExhausted(
            f"Max retry attempts ({self.max_attempts}) reached"
        )

        if self._pending is not None:
            if not self._pending.done():
                self._pending.set_exception(error)
            self._pending = None

        self._schedule_disconnected()
        raise error

    def _on_retry_done(self, task: asyncio.Task) -> None:
        # Retrieve the outcome so disconnect-triggered loops never leak
        # "exception was never retrieved" warnings
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, ConnectionRetryExhausted):
            logger.error(f"Reconnection loop failed: {error}")

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _handle_transport_state(self, state: ConnectionState) -> None:
        """Called by the transport on its own state changes."""
        if self._closing:
            return

        if state == ConnectionState.DISCONNECTED:
            if self._state != ConnectionState.CONNECTED:
                return  # connect or retry routine already in charge
            logger.warning("Feed connection lost")
            self._state = ConnectionState.CONNECTING
            self._source = None
            self._schedule_disconnected()
            if self._exhausted:
                return
            self._start_retry()
