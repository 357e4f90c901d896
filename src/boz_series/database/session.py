"""Database engine and session management."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns one async engine and its session factory."""

    def __init__(self, url: str, echo: bool = False):
        """
        Initialize database.

        Args:
            url: SQLAlchemy async database URL
            echo: Log SQL statements
        """
        self.url = url
        self._ensure_sqlite_dir(url)

        self.engine = create_async_engine(url, echo=echo, future=True)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @staticmethod
    def _ensure_sqlite_dir(url: str) -> None:
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provide a transactional session.

        Commits on success, rolls back on error.
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in ORM models.
        """
        async with self.engine.begin() as conn:
            # Import all models to register them with Base
            from .models import EpisodeCacheORM, SeasonCacheORM  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)

        logger.info(f"Database initialized: {self.url}")

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self.engine.dispose()
