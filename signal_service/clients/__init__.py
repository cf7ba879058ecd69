"""Market data feed clients."""

from signal_service.clients.feed_client import FeedClient, FeedTransport
from signal_service.clients.feed_rest import FeedRestClient, FeedSessionClosed, RateLimiter
from signal_service.clients.feed_ws import FeedCandleListener, FeedWebSocket, stream_name

__all__ = [
    "FeedClient",
    "FeedTransport",
    "FeedRestClient",
    "FeedSessionClosed",
    "RateLimiter",
    "FeedCandleListener",
    "FeedWebSocket",
    "stream_name",
]
