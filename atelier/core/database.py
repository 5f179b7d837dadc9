"""
Database wiring for conversations, turns and assets.

One lazily created async engine per process. Request handlers get a session
through get_db(); background runs and the turn recorder open their own
sessions from get_session_factory() because they outlive the request.
"""

import logging
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _async_url(raw: str):
    url = make_url(raw)
    if url.drivername in ("postgresql", "postgres"):
        url = url.set(drivername="postgresql+asyncpg")
    elif url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    return url


def _enforce_sqlite_foreign_keys(engine: AsyncEngine):
    # Deleting a conversation must cascade to its turns and detach its assets
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    url = _async_url(settings.database_url)
    if url.get_backend_name() == "sqlite":
        _engine = create_async_engine(url, echo=settings.debug)
        _enforce_sqlite_foreign_keys(_engine)
    else:
        _engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    logger.info("Database engine ready (%s)", url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        # Turn rows are read back after commit by the recorder and the API
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; committed when the handler returns cleanly."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


async def init_db():
    from .. import models  # noqa: F401  registers tables on Base.metadata

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


async def close_db():
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine, _session_factory = None, None
    logger.info("Database engine disposed")
