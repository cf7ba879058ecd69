"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Market data feed
    feed_http_url: str = "http://localhost:8080"
    feed_ws_url: str = "ws://localhost:8080/ws"
    feed_api_key: str = ""
    request_timeout: float = 10.0  # seconds, per HTTP request

    # Connection retry
    retry_max_attempts: int = 5
    retry_delay_ms: int = 3000

    # Signal processing
    candle_number: int = 100  # candles per evaluation window
    evaluation_interval_ms: int = 5000
    refresh_interval_ms: int = 60 * 60 * 1000  # instrument list refresh, hourly
    timeframes: list[int] = [60, 300]  # candle sizes in seconds

    # Database
    database_url: str = "postgresql://localhost/candle_signals"

    # Signal purge
    purge_interval_ms: int = 6 * 60 * 60 * 1000
    purge_retention_hours: int = 6

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
