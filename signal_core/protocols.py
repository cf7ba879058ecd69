"""Collaborator protocols consumed by the live service.

This module provides:
- CandleSource: market data access used by processors and the supervisor
- ConnectionTransport: owner of the upstream connection and its state events
- SignalSink: destination for emitted signals
- Type aliases for the callbacks passed between components
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Protocol, runtime_checkable

from signal_core.models import (
    Candle,
    ConnectionState,
    Instrument,
    SignalResult,
    SignalType,
)


# ---------------------------------------------------------------------------
# Callback type aliases
# ---------------------------------------------------------------------------
CandleCallback = Callable[[Candle], Awaitable[None]]
StateCallback = Callable[[ConnectionState], None]
ConnectedCallback = Callable[[], Awaitable[None]]


# ---------------------------------------------------------------------------
# SignalChangeEvent: payload of the processor's change callback
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SignalChangeEvent:
    """A processor's signal differs from the one it evaluated before.

    Attributes:
        signal: The new evaluation result.
        previous_signal: Signal of the prior evaluation, None if this is the first.
        instrument: Instrument as listed by the feed.
        candle_size: Candle duration in seconds.
        metadata: Full instrument metadata, when the lookup succeeded.
    """

    signal: SignalResult
    previous_signal: SignalType | None
    instrument: Instrument
    candle_size: int
    metadata: Instrument | None = None


SignalChangeCallback = Callable[[SignalChangeEvent], Awaitable[None]]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------
@runtime_checkable
class CandleSource(Protocol):
    """Market data operations exposed by a live feed session."""

    def current_time(self) -> datetime:
        """Current server time (timezone-aware UTC)."""
        ...

    async def list_tradable_instruments(self, as_of: datetime) -> list[Instrument]:
        """Instruments open for trading at ``as_of``."""
        ...

    async def get_instrument(self, instrument_id: int) -> Instrument:
        """Full metadata for one instrument."""
        ...

    async def fetch_candles(
        self,
        instrument_id: int,
        candle_size: int,
        from_time: int,
    ) -> list[Candle]:
        """Candles with open_time >= ``from_time`` (seconds), oldest first."""
        ...

    async def subscribe_last_candle(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        """Register for updates of the forming candle."""
        ...

    async def unsubscribe_last_candle(
        self,
        instrument_id: int,
        candle_size: int,
        callback: CandleCallback,
    ) -> None:
        """Undo subscribe_last_candle. Unknown subscriptions are ignored."""
        ...


@runtime_checkable
class ConnectionTransport(Protocol):
    """Builds feed sessions and reports transport-level state changes."""

    async def connect(self) -> CandleSource:
        """Open a session. Raises on failure."""
        ...

    def on_state_change(self, callback: StateCallback) -> None:
        """Register a listener for CONNECTED / DISCONNECTED events."""
        ...

    async def close(self) -> None:
        """Tear down the current session, if any."""
        ...


@runtime_checkable
class SignalSink(Protocol):
    """Receives signal changes; failures must not reach the processor."""

    async def record_signal(
        self,
        signal: SignalResult,
        instrument: Instrument,
        candle_size: int,
        previous_signal: SignalType | None,
    ) -> None:
        ...
