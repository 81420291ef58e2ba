from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data.db")

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False, future=True)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


async def init_db(target: AsyncEngine | None = None) -> None:
    # Import models inside to avoid circular imports.
    from rehearsal import models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def session_factory_for(target: AsyncEngine) -> SessionFactory:
    """Build a get_session-style context manager bound to another engine."""
    maker = async_sessionmaker(target, expire_on_commit=False, class_=AsyncSession)

    @asynccontextmanager
    async def _get_session() -> AsyncIterator[AsyncSession]:
        async with maker() as session:
            yield session

    return _get_session
