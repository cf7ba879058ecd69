"""Main application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

# Configure logging FIRST, before any other imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)

# Reduce noise from third-party libraries (must be set before importing them)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)
logging.getLogger("picows").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

# Try to use uvloop for better performance (Unix only)
try:
    import uvloop
    uvloop.install()
    _UVLOOP_ENABLED = True
except ImportError:
    _UVLOOP_ENABLED = False

from signal_service.api import router
from signal_service.clients import FeedTransport
from signal_service.config import get_settings
from signal_service.services import (
    ConnectionManager,
    ProcessingSupervisor,
    PurgeService,
    SignalHandler,
)
from signal_service.storage import Database, SignalRepository, init_database

logger = logging.getLogger(__name__)

# Global services
database: Database | None = None
connection_manager: ConnectionManager | None = None
supervisor: ProcessingSupervisor | None = None
purge_service: PurgeService | None = None


async def _shutdown() -> None:
    """Stop services in reverse start order. Each step is best-effort."""
    global database, connection_manager, supervisor, purge_service

    if purge_service:
        try:
            await purge_service.stop()
        except Exception as e:
            logger.warning(f"Error stopping purge service: {e}")
        purge_service = None

    if supervisor:
        try:
            await supervisor.stop()
        except Exception as e:
            logger.warning(f"Error stopping processing supervisor: {e}")
        supervisor = None

    if connection_manager:
        try:
            await connection_manager.close()
        except Exception as e:
            logger.warning(f"Error closing feed connection: {e}")
        connection_manager = None

    if database:
        try:
            await database.close()
            logger.info("Database connections closed")
        except Exception as e:
            logger.warning(f"Error closing database: {e}")
        database = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global database, connection_manager, supervisor, purge_service

    logger.info("Starting candle signal service...")
    logger.info(f"Event loop: {'uvloop' if _UVLOOP_ENABLED else 'asyncio'}")

    settings = get_settings()

    try:
        # Initialize database with timeout
        try:
            database = await asyncio.wait_for(
                init_database(settings.database_url), timeout=30
            )
            logger.info("Database initialized")
        except asyncio.TimeoutError:
            raise RuntimeError("Database initialization timed out after 30s")

        signal_repo = SignalRepository(database)

        transport = FeedTransport(
            http_url=settings.feed_http_url,
            ws_url=settings.feed_ws_url,
            api_key=settings.feed_api_key,
            request_timeout=settings.request_timeout,
        )
        connection_manager = ConnectionManager(
            transport,
            max_attempts=settings.retry_max_attempts,
            retry_delay_ms=settings.retry_delay_ms,
        )
        handler = SignalHandler(save_signal=signal_repo.save)
        supervisor = ProcessingSupervisor(
            connection=connection_manager,
            sink=handler,
            timeframes=settings.timeframes,
            candle_number=settings.candle_number,
            evaluation_interval_ms=settings.evaluation_interval_ms,
            refresh_interval_ms=settings.refresh_interval_ms,
        )

        # Connect first so the initial refresh is not triggered twice
        await connection_manager.initialize()
        supervisor.attach()
        await supervisor.initialize()
        logger.info("Signal processing started")

        purge_service = PurgeService(
            purge=signal_repo.purge_older_than,
            interval_ms=settings.purge_interval_ms,
            retention_hours=settings.purge_retention_hours,
        )
        await purge_service.initialize()

        # Expose services to API routes via app.state
        app.state.connection_manager = connection_manager
        app.state.supervisor = supervisor

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        await _shutdown()
        raise  # Re-raise to prevent app from starting in broken state

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.connection_manager = None
    app.state.supervisor = None
    await _shutdown()
    logger.info("Shutdown complete")


# Create FastAPI app with orjson for faster JSON serialization
app = FastAPI(
    title="Candle Signals",
    description="Support/resistance candle signal service",
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)

# Include REST routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Candle Signals",
        "version": "0.1.0",
        "docs": "/docs",
        "event_loop": "uvloop" if _UVLOOP_ENABLED else "asyncio",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


def main():
    """Run the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "signal_service.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
