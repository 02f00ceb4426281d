"""
Database Connection and Session Management.
Uses SQLAlchemy with async SQLite for the ledger and security profiles.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from voicebank.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Create declarative base
Base = declarative_base()

# Database engine (will be initialized on startup)
_engine = None
_async_session_factory = None


async def init_db(database_url: Optional[str] = None):
    """Initialize the database connection and create tables."""
    global _engine, _async_session_factory

    database_url = database_url or settings.DATABASE_URL

    # Ensure the directory of a file-backed SQLite database exists
    if database_url.startswith("sqlite") and ":memory:" not in database_url:
        db_path = Path(database_url.split("///", 1)[-1])
        db_path.parent.mkdir(parents=True, exist_ok=True)

    # StaticPool keeps one connection, so an in-memory database survives
    _engine = create_async_engine(
        database_url,
        echo=settings.DATABASE_ECHO,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )

    # Import models to register them with Base
    from voicebank.db import models  # noqa

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database initialized: {database_url}")


async def close_db():
    """Close database connections."""
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed")


def is_initialized() -> bool:
    return _async_session_factory is not None


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error."""
    if not _async_session_factory:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _async_session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
