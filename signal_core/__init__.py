"""Core shared logic for candle signal evaluation.

This package contains pure business logic with no I/O dependencies
(no database, HTTP or websocket access): data models, the indicator
library, the signal decision engine and the collaborator protocols
consumed by the live service (signal_service/).
"""
