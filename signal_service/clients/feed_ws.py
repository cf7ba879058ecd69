"""Market data feed WebSocket client for live candle updates using picows."""

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable

from picows import ws_connect, WSFrame, WSTransport, WSListener, WSMsgType, WSCloseCode

from signal_core.models import Candle, ConnectionState
from signal_core.protocols import CandleCallback
from signal_service.clients.feed_rest import FeedSessionClosed, parse_candle

logger = logging.getLogger(__name__)


def stream_name(instrument_id: int, candle_size: int) -> str:
    """Stream identifier for one instrument chart."""
    return f"candle.{instrument_id}.{candle_size}"


class FeedCandleListener(WSListener):
    """picows listener for the candle update stream."""

    def __init__(
        self,
        callbacks: dict[str, list[CandleCallback]],
        on_state: Callable[[ConnectionState], None],
        loop: asyncio.AbstractEventLoop,
    ):
        self._callbacks = callbacks
        self._on_state = on_state
        self._transport: WSTransport | None = None
        # Store loop at init time; picows callbacks may run from other threads
        self._loop = loop

    def on_ws_connected(self, transport: WSTransport):
        """Called when WebSocket connection is established."""
        self._transport = transport
        logger.info("picows: feed WebSocket connected")

        # Resubscribe every registered stream
        if self._callbacks:
            self._send("SUBSCRIBE", list(self._callbacks.keys()))

        self._loop.call_soon_threadsafe(self._on_state, ConnectionState.CONNECTED)

    def on_ws_disconnected(self, transport: WSTransport):
        """Called when WebSocket is disconnected."""
        logger.info("picows: feed WebSocket disconnected")
        self._transport = None
        self._loop.call_soon_threadsafe(self._on_state, ConnectionState.DISCONNECTED)

    def on_ws_frame(self, transport: WSTransport, frame: WSFrame):
        """Called when a new frame is received."""
        if frame.msg_type == WSMsgType.TEXT:
            self._handle_message(frame.get_payload_as_utf8_text())
        elif frame.msg_type == WSMsgType.PING:
            transport.send_pong(frame.get_payload_as_bytes())

    def _send(self, method: str, streams: list[str]) -> None:
        if not self._transport:
            return

        msg = {
            "method": method,
            "params": streams,
            "id": int(datetime.now().timestamp() * 1000),
        }
        self._transport.send(WSMsgType.TEXT, json.dumps(msg).encode())
        logger.debug(f"{method} candle streams: {streams}")

    def send_subscribe(self, streams: list[str]) -> None:
        self._send("SUBSCRIBE", streams)

    def send_unsubscribe(self, streams: list[str]) -> None:
        self._send("UNSUBSCRIBE", streams)

    def _handle_message(self, message: str) -> None:
        """Handle incoming WebSocket message."""
        try:
            data = json.loads(message)

            # Ignore subscription confirmations
            if "result" in data or "id" in data:
                return

            if data.get("e") == "candle":
                self._dispatch(data["s"], parse_candle(data["k"]))

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse candle message: {e}")
        except Exception as e:
            logger.error(f"Error handling candle message: {e}")

    def _dispatch(self, stream: str, candle: Candle) -> None:
        for callback in list(self._callbacks.get(stream, [])):
            asyncio.run_coroutine_threadsafe(
                self._safe_callback(callback, candle), self._loop
            )

    async def _safe_callback(self, callback: CandleCallback, candle: Candle) -> None:
        """Safely execute async callback."""
        try:
            await callback(candle)
        except Exception as e:
            logger.error(f"Candle callback error: {e}")

    def disconnect(self) -> None:
        """Disconnect the WebSocket."""
        if self._transport:
            self._transport.send_close(WSCloseCode.OK)
            self._transport.disconnect()


class FeedWebSocket:
    """One WebSocket session to the feed's candle stream.

    Reconnection is owned by the connection manager: a dropped socket is
    reported through ``on_state`` and a new FeedWebSocket is built.
    """

    def __init__(self, url: str, on_state: Callable[[ConnectionState], None]):
        self.url = url
        self._on_state = on_state
        self._callbacks: dict[str, list[CandleCallback]] = {}
        self._listener: FeedCandleListener | None = None
        self._stopped = False

    @property
    def is_connected(self) -> bool:
        return self._listener is not None and self._listener._transport is not None

    async def start(self) -> None:
        """Open the WebSocket connection."""
        loop = asyncio.get_running_loop()

        def listener_factory():
            self._listener = FeedCandleListener(
                callbacks=self._callbacks,
                on_state=self._report,
                loop=loop,
            )
            return self._listener

        logger.info(f"Connecting to {self.url}")
        await ws_connect(
            listener_factory,
            self.url,
            enable_auto_ping=True,
            auto_ping_idle_timeout=30,
            auto_ping_reply_timeout=10,
        )

    def _report(self, state: ConnectionState) -> None:
        # Events from a session closed on purpose are not forwarded
        if self._stopped:
            return
        self._on_state(state)

    async def stop(self) -> None:
        """Close the WebSocket connection."""
        self._stopped = True
        if self._listener:
            self._listener.disconnect()
            self._listener = None

    async def subscribe(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        """Subscribe to candle updates for one instrument chart."""
        if self._stopped:
            raise FeedSessionClosed(f"Feed WebSocket {self.url} is closed")
        stream = stream_name(instrument_id, candle_size)
        is_new = stream not in self._callbacks
        self._callbacks.setdefault(stream, []).append(callback)

        if is_new and self._listener:
            self._listener.send_subscribe([stream])

    async def unsubscribe(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        """Remove a callback; the stream is dropped with its last callback."""
        stream = stream_name(instrument_id, candle_size)
        callbacks = self._callbacks.get(stream)
        if not callbacks or callback not in callbacks:
            return

        callbacks.remove(callback)
        if not callbacks:
            del self._callbacks[stream]
            if self._listener:
                self._listener.send_unsubscribe([stream])
