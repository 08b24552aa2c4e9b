from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from fiskalni_api.db.base import Base


class SyncStore:
    """Handle on the persistent store.

    Built once per application (or per test) and passed to whoever needs it.
    Each unit of work opens its own session from the shared connection pool,
    so concurrent batch items never share a session.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._sessionmaker() as session, session.begin():
            yield session

    async def create_all(self) -> None:
        from fiskalni_api import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def create_store(database_url: str, *, echo: bool = False) -> SyncStore:
    if database_url.startswith("sqlite"):
        # SQLite connections are cheap and must not outlive the event loop that opened them.
        engine = create_async_engine(database_url, echo=echo, poolclass=NullPool)
    else:
        engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True, pool_size=10)
    return SyncStore(engine)
