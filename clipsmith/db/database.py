"""Database connection and session management."""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from clipsmith.config import settings

# Base class for models
Base = declarative_base()


def create_session_maker(database_url: str, echo: bool = False):
    """
    Create an async engine and session factory for a database URL.

    Returns:
        Tuple of (engine, session_maker)
    """
    engine = create_async_engine(database_url, echo=echo, future=True)

    if database_url.startswith("sqlite"):
        # WAL lets status readers poll while a job is committing progress
        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Enable WAL journaling for SQLite connections."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_maker


# Create async engine
engine, async_session_maker = create_session_maker(settings.database_url, echo=settings.debug)


async def init_db(db_engine=None):
    """Initialize database tables."""
    # Make sure every model is registered on Base
    import clipsmith.models  # noqa: F401

    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(db_engine=None):
    """Close database connections."""
    await (db_engine or engine).dispose()
