"""Async engine and session factory for the verified-email table."""

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from email_verification.config import Settings
from email_verification.models.verified_email import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns one async engine and the sessions made from it.

    Built in the app lifespan from :class:`Settings` and kept on
    ``app.state.database``; tests build their own against in-memory SQLite.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine = create_async_engine(url, echo=echo)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, config: Settings) -> "Database":
        return cls(config.database_url, echo=config.debug)

    async def create_tables(self) -> None:
        """Create all tables that don't yet exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready (%s)", self.engine.url.render_as_string())

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session, committing on success and rolling back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: a session from the app's :class:`Database`."""
    database: Database = request.app.state.database
    async with database.session() as session:
        yield session
