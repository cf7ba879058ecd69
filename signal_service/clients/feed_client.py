"""Feed session: REST and WebSocket clients behind the CandleSource protocol."""

import logging
import time
from datetime import datetime, timedelta, timezone

from signal_core.models import Candle, ConnectionState, Instrument
from signal_core.protocols import CandleCallback, CandleSource, StateCallback
from signal_service.clients.feed_rest import FeedRestClient
from signal_service.clients.feed_ws import FeedWebSocket

logger = logging.getLogger(__name__)


class FeedClient:
    """One live feed session.

    Server time is synchronized once at connect; current_time() applies the
    measured offset to the local clock.
    """

    def __init__(
        self,
        rest: FeedRestClient,
        ws: FeedWebSocket,
        time_offset: float = 0.0,
    ):
        self.rest = rest
        self.ws = ws
        self.time_offset = time_offset

    def current_time(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.time_offset)

    async def list_tradable_instruments(self, as_of: datetime) -> list[Instrument]:
        return await self.rest.get_instruments(as_of)

    async def get_instrument(self, instrument_id: int) -> Instrument:
        return await self.rest.get_instrument(instrument_id)

    async def fetch_candles(
        self,
        instrument_id: int,
        candle_size: int,
        from_time: int,
    ) -> list[Candle]:
        return await self.rest.get_candles(instrument_id, candle_size, from_time)

    async def subscribe_last_candle(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        await self.ws.subscribe(instrument_id, candle_size, callback)

    async def unsubscribe_last_candle(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        await self.ws.unsubscribe(instrument_id, candle_size, callback)

    async def close(self) -> None:
        await self.ws.stop()
        await self.rest.close()


class FeedTransport:
    """Builds FeedClient sessions for the connection manager."""

    def __init__(
        self,
        http_url: str,
        ws_url: str,
        api_key: str = "",
        request_timeout: float = 10.0,
    ):
        self.http_url = http_url
        self.ws_url = ws_url
        self.api_key = api_key
        self.request_timeout = request_timeout
        self._client: FeedClient | None = None
        self._listeners: list[StateCallback] = []

    @property
    def client(self) -> FeedClient | None:
        return self._client

    def on_state_change(self, callback: StateCallback) -> None:
        self._listeners.append(callback)

    def _emit(self, state: ConnectionState) -> None:
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in connection state listener: {e}")

    def _build_rest(self) -> FeedRestClient:
        return FeedRestClient(
            base_url=self.http_url,
            api_key=self.api_key,
            timeout=self.request_timeout,
        )

    def _build_ws(self) -> FeedWebSocket:
        return FeedWebSocket(self.ws_url, on_state=self._emit)

    async def connect(self) -> CandleSource:
        """Open a new session, replacing the current one.

        Raises:
            httpx.HTTPError: If the server time check fails.
            Exception: Whatever the WebSocket handshake raises.
        """
        await self.close()

        rest = self._build_rest()
        ws = self._build_ws()
        try:
            started = time.time()
            server_time = await rest.get_server_time()
            # Midpoint of the round trip approximates the server's reading
            local = (started + time.time()) / 2
            offset = server_time.timestamp() - local

            await ws.start()
        except Exception:
            await ws.stop()
            await rest.close()
            raise

        self._client = FeedClient(rest, ws, time_offset=offset)
        logger.info(f"Feed session opened (server time offset {offset:+.3f}s)")
        return self._client

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.close()
        logger.info("Feed session closed")
