"""Lifecycle states for processors and the upstream connection."""

from enum import Enum


class ProcessorState(str, Enum):
    """Instrument processor lifecycle only.

    The per-processor mutable record (last tick second, last signal,
    busy flag, instrument metadata) lives on InstrumentProcessor and is
    reset by its stop().
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"  # terminal


class ConnectionState(str, Enum):
    """Upstream feed connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
