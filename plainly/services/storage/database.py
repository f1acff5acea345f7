"""
Database wiring for the recordings store.

One ``AsyncEngine`` and one session factory live at module level. Route
handlers and the coordinator open units of work with ``get_session()``;
tests swap the engine by assigning ``_engine`` and calling
``reset_engine()`` afterwards.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from plainly.core.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _is_sqlite_file(db_url: str) -> str | None:
    """Return the database path for a file-backed SQLite URL, else None."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return None
    return url.database


def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    # The coordinator writes from background tasks while routes read
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def get_engine(url: str | None = None) -> AsyncEngine:
    """Return the shared engine, building it from settings on first use."""
    global _engine
    if _engine is None:
        db_url = url or get_settings().database_url
        db_path = _is_sqlite_file(db_url)
        if db_path is not None:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        _engine = create_async_engine(db_url, echo=False)
        if db_path is not None:
            event.listen(_engine.sync_engine, "connect", _set_sqlite_pragmas)
        logger.info("Database engine created for %s", make_url(db_url).render_as_string())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the shared session factory bound to ``get_engine()``.

    Objects stay usable after commit so repositories can hand them back
    to callers outside the unit of work.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Open a unit of work: commit when the block exits cleanly, roll back otherwise."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the ``recordings`` table if it does not exist yet."""
    from plainly.services.storage import models_db  # noqa: F401  (registers tables)

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_db() -> bool:
    """Return True when the database answers a trivial query."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Database ping failed", exc_info=True)
        return False
    return True


async def close_db() -> None:
    """Dispose the shared engine and forget the factory."""
    if _engine is not None:
        await _engine.dispose()
    reset_engine()


def reset_engine() -> None:
    """Forget the shared engine and factory without disposing them."""
    global _engine, _session_factory
    _engine = None
    _session_factory = None
