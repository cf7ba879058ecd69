"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from signal_service.config import get_settings

Base = declarative_base()


class SignalColumns:
    """Columns shared by every signal destination table."""

    id = Column(String(32), primary_key=True)
    message = Column(String(200), nullable=False)
    created = Column(DateTime(timezone=True), nullable=False, index=True)
    instrument_id = Column(Integer, nullable=False)
    instrument_name = Column(String(100), nullable=False)
    display_name = Column(String(100), nullable=False)
    image_url = Column(String(500), default="")
    action = Column(String(4), nullable=False)  # BUY | SELL
    zone = Column(String(20), nullable=False)
    timeframe = Column(String(20), nullable=False)
    is_otc = Column(Boolean, nullable=False, default=False)


class OneMinuteSignalTable(SignalColumns, Base):
    """1-minute signals on regular instruments."""

    __tablename__ = "signals_1m"


class OneMinuteOtcSignalTable(SignalColumns, Base):
    """1-minute signals on OTC instruments."""

    __tablename__ = "signals_1m_otc"


class FiveMinutesSignalTable(SignalColumns, Base):
    """5-minute signals on regular instruments."""

    __tablename__ = "signals_5m"


class FiveMinutesOtcSignalTable(SignalColumns, Base):
    """5-minute signals on OTC instruments."""

    __tablename__ = "signals_5m_otc"


# (timeframe, is_otc) -> destination table
SIGNAL_TABLES = {
    ("oneMinute", False): OneMinuteSignalTable,
    ("oneMinute", True): OneMinuteOtcSignalTable,
    ("fiveMinutes", False): FiveMinutesSignalTable,
    ("fiveMinutes", True): FiveMinutesOtcSignalTable,
}


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None, echo: bool = False):
        url = database_url or get_settings().database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,    # Validate before use
            pool_recycle=3600,     # Recycle every hour
            pool_timeout=30,
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create every signal table."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


async def init_database(database_url: str | None = None, echo: bool = False) -> Database:
    """Create a database instance and its tables."""
    db = Database(database_url, echo=echo)
    await db.create_tables()
    return db
