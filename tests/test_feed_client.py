"""Tests for the market data feed adapter."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from signal_core.models import Candle, ConnectionState
from signal_core.protocols import CandleSource, ConnectionTransport
from signal_service.clients import (
    FeedCandleListener,
    FeedClient,
    FeedRestClient,
    FeedSessionClosed,
    FeedTransport,
    FeedWebSocket,
    stream_name,
)


def feed_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/api/v1/time":
        return httpx.Response(200, json={"server_time": 1704110400.0})
    if path == "/api/v1/instruments":
        return httpx.Response(200, json=[
            {"id": 1, "name": "EURUSD-op", "is_otc": False},
            {"name": "broken"},
        ])
    if path == "/api/v1/instruments/1":
        return httpx.Response(200, json={
            "id": 1, "name": "EURUSD-op", "display_name": "EUR/USD",
            "is_otc": True, "image_url": "https://img/eurusd.png",
        })
    if path == "/api/v1/candles":
        return httpx.Response(200, json=[
            {"from": 120, "open": 1.2, "high": 1.3, "low": 1.1, "close": 1.25},
            {"from": 60, "open": 1.1, "high": 1.2, "low": 1.0, "close": 1.2},
        ])
    return httpx.Response(404)


def make_rest() -> FeedRestClient:
    return FeedRestClient(
        "https://feed.example",
        api_key="secret",
        calls_per_minute=60_000,
        transport=httpx.MockTransport(feed_handler),
    )


class TestFeedRestClient:
    """Tests for the REST client."""

    @pytest.mark.asyncio
    async def test_server_time(self):
        rest = make_rest()

        server_time = await rest.get_server_time()

        assert server_time == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        await rest.close()

    @pytest.mark.asyncio
    async def test_instruments(self):
        rest = make_rest()

        instruments = await rest.get_instruments(datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert [i.id for i in instruments] == [1, None]
        assert instruments[0].name == "EURUSD-op"
        await rest.close()

    @pytest.mark.asyncio
    async def test_instrument_metadata(self):
        rest = make_rest()

        instrument = await rest.get_instrument(1)

        assert instrument.display_name == "EUR/USD"
        assert instrument.is_otc is True
        await rest.close()

    @pytest.mark.asyncio
    async def test_candles_sorted(self):
        rest = make_rest()

        candles = await rest.get_candles(1, 60, 0)

        assert [c.open_time for c in candles] == [60, 120]
        assert candles[1].close == pytest.approx(1.25)
        await rest.close()

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        rest = make_rest()

        with pytest.raises(httpx.HTTPStatusError):
            await rest._request("GET", "/api/v1/unknown")
        await rest.close()

    @pytest.mark.asyncio
    async def test_closed_client_refuses_requests(self):
        """Test that a closed client raises instead of building a new HTTP client."""
        rest = make_rest()
        await rest.get_server_time()
        await rest.close()

        with pytest.raises(FeedSessionClosed):
            await rest.get_candles(1, 60, 0)
        assert rest.is_closed
        assert rest._client is None

    @pytest.mark.asyncio
    async def test_closed_session_refuses_fetches(self):
        rest = make_rest()
        ws = FeedWebSocket("wss://feed.example/ws", on_state=MagicMock())
        client = FeedClient(rest, ws)
        await client.close()

        with pytest.raises(FeedSessionClosed):
            await client.fetch_candles(1, 60, 0)
        with pytest.raises(FeedSessionClosed):
            await client.subscribe_last_candle(1, 60, AsyncMock())
        assert rest._client is None
        assert ws._callbacks == {}


class TestFeedWebSocket:
    """Tests for subscription bookkeeping and message dispatch."""

    @pytest.mark.asyncio
    async def test_subscribe_unsubscribe(self):
        ws = FeedWebSocket("wss://feed.example/ws", on_state=MagicMock())
        first, second = AsyncMock(), AsyncMock()

        await ws.subscribe(1, 60, first)
        await ws.subscribe(1, 60, second)
        assert ws._callbacks[stream_name(1, 60)] == [first, second]

        await ws.unsubscribe(1, 60, first)
        await ws.unsubscribe(1, 60, second)
        assert stream_name(1, 60) not in ws._callbacks

        # Unknown subscriptions are ignored
        await ws.unsubscribe(9, 60, first)

    @pytest.mark.asyncio
    async def test_candle_dispatch(self):
        callback = AsyncMock()
        listener = FeedCandleListener(
            callbacks={"candle.1.60": [callback]},
            on_state=MagicMock(),
            loop=asyncio.get_running_loop(),
        )

        listener._handle_message(json.dumps({
            "e": "candle",
            "s": "candle.1.60",
            "k": {"from": 60, "open": 1.0, "high": 1.2, "low": 0.9, "close": 1.1},
        }))
        for _ in range(10):
            await asyncio.sleep(0)
            if callback.await_count:
                break

        callback.assert_awaited_once_with(
            Candle(open_time=60, open=1.0, high=1.2, low=0.9, close=1.1)
        )

    @pytest.mark.asyncio
    async def test_stopped_session_does_not_report(self):
        on_state = MagicMock()
        ws = FeedWebSocket("wss://feed.example/ws", on_state=on_state)

        ws._report(ConnectionState.DISCONNECTED)
        await ws.stop()
        ws._report(ConnectionState.DISCONNECTED)

        on_state.assert_called_once_with(ConnectionState.DISCONNECTED)


class TestFeedTransport:
    """Tests for session construction."""

    def make_transport(self):
        transport = FeedTransport("https://feed.example", "wss://feed.example/ws")
        rest = MagicMock()
        rest.get_server_time = AsyncMock(
            return_value=datetime.now(timezone.utc)
        )
        rest.close = AsyncMock()
        ws = MagicMock()
        ws.start = AsyncMock()
        ws.stop = AsyncMock()
        return transport, rest, ws

    @pytest.mark.asyncio
    async def test_connect_builds_client(self):
        transport, rest, ws = self.make_transport()

        with patch.object(FeedTransport, "_build_rest", return_value=rest), \
                patch.object(FeedTransport, "_build_ws", return_value=ws):
            client = await transport.connect()

        assert isinstance(client, FeedClient)
        assert isinstance(client, CandleSource)
        assert isinstance(transport, ConnectionTransport)
        assert abs(client.time_offset) < 5
        ws.start.assert_awaited_once()

        await transport.close()
        ws.stop.assert_awaited_once()
        rest.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_time_check_cleans_up(self):
        transport, rest, ws = self.make_transport()
        rest.get_server_time.side_effect = httpx.ConnectError("refused")

        with patch.object(FeedTransport, "_build_rest", return_value=rest), \
                patch.object(FeedTransport, "_build_ws", return_value=ws):
            with pytest.raises(httpx.ConnectError):
                await transport.connect()

        ws.start.assert_not_awaited()
        rest.close.assert_awaited_once()
        assert transport.client is None

    def test_state_listeners(self):
        transport = FeedTransport("https://feed.example", "wss://feed.example/ws")
        failing = MagicMock(side_effect=RuntimeError("bug"))
        healthy = MagicMock()
        transport.on_state_change(failing)
        transport.on_state_change(healthy)

        transport._emit(ConnectionState.DISCONNECTED)

        healthy.assert_called_once_with(ConnectionState.DISCONNECTED)
