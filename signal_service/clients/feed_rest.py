"""Market data feed REST client."""

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx

from signal_core.models import Candle, Instrument


class FeedSessionClosed(RuntimeError):
    """Request issued on a feed session that was already closed."""


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 1200):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


def parse_instrument(item: dict[str, Any]) -> Instrument:
    """Map a feed instrument payload onto Instrument."""
    return Instrument(
        id=item.get("id"),
        name=item.get("name", ""),
        display_name=item.get("display_name"),
        is_otc=bool(item.get("is_otc", False)),
        image_url=item.get("image_url") or "",
    )


def parse_candle(item: dict[str, Any]) -> Candle:
    """Map a feed candle payload onto Candle."""
    return Candle(
        open_time=int(item["from"]),
        open=float(item["open"]),
        high=float(item["high"]),
        low=float(item["low"]),
        close=float(item["close"]),
    )


class FeedRestClient:
    """REST client for instrument listings, candles and server time."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        calls_per_minute: int = 1200,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter(calls_per_minute)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.api_key:
                headers["X-API-KEY"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client. Later requests raise FeedSessionClosed."""
        self._closed = True
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Make an API request with rate limiting."""
        if self._closed:
            raise FeedSessionClosed(f"Feed REST client for {self.base_url} is closed")
        await self.rate_limiter.acquire()
        client = await self._get_client()
        response = await client.request(method, endpoint, params=params)
        response.raise_for_status()
        return response.json()

    async def get_server_time(self) -> datetime:
        """Current server time."""
        data = await self._request("GET", "/api/v1/time")
        return datetime.fromtimestamp(float(data["server_time"]), tz=timezone.utc)

    async def get_instruments(self, at: datetime) -> list[Instrument]:
        """Instruments available for trading at ``at``."""
        data = await self._request(
            "GET", "/api/v1/instruments", {"at": int(at.timestamp())}
        )
        return [parse_instrument(item) for item in data]

    async def get_instrument(self, instrument_id: int) -> Instrument:
        """Metadata for one instrument."""
        data = await self._request("GET", f"/api/v1/instruments/{instrument_id}")
        return parse_instrument(data)

    async def get_candles(
        self,
        instrument_id: int,
        candle_size: int,
        from_time: int,
    ) -> list[Candle]:
        """
        Fetch candles from ``from_time`` up to now.

        Args:
            instrument_id: Feed instrument id
            candle_size: Candle duration in seconds
            from_time: Unix seconds, inclusive

        Returns:
            Candles sorted by open time
        """
        data = await self._request(
            "GET",
            "/api/v1/candles",
            {"instrument_id": instrument_id, "size": candle_size, "from": from_time},
        )
        candles = [parse_candle(item) for item in data]
        candles.sort(key=lambda c: c.open_time)
        return candles
