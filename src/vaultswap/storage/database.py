"""Database engine and session management.

Profiles and wallets live in a single SQLite (aiosqlite) database by default.
An in-memory URL is served from one shared connection so the schema created
by ``init_db`` is visible to every later session.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from vaultswap.config import get_settings
from vaultswap.storage.models import Base

logger = logging.getLogger(__name__)

_engine = None
_session_factory = None


def normalize_database_url(url: str) -> str:
    """Use the async sqlite driver for plain ``sqlite://`` URLs."""
    if url.startswith("sqlite://") and not url.startswith("sqlite+"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


def is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith(":"))


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    In-memory SQLite gets a ``StaticPool`` (one connection for the life of
    the engine); file databases use the default pool.
    """
    url = normalize_database_url(url)
    kwargs = {"echo": echo}
    if is_memory_url(url):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def session_scope(
    session_factory: Callable[[], AsyncSession],
) -> Callable[[], AsyncContextManager[AsyncSession]]:
    """Wrap a session factory into a commit-on-success context manager."""

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of work; commits on success, rolls back on error."""
    async with session_scope(get_session_factory())() as session:
        yield session


async def init_db() -> None:
    """Create the profile and wallet tables if they do not exist."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready: {sorted(Base.metadata.tables)}")


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
