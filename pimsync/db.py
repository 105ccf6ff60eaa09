# pimsync/db.py
from __future__ import annotations

import os
import pathlib
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

from pimsync.config import settings

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _resolve_dsn() -> str:
    """
    Prefer settings.DATABASE_URL, then env var DATABASE_URL,
    else default to a local SQLite database under ./data/.
    """
    dsn = (
        getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite+aiosqlite:///./data/pimsync.db"
    )

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite") and ":memory:" not in dsn:
        sep = "///" if "///" in dsn else "//"
        path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
        if path_part:
            try:
                pathlib.Path(path_part).resolve().parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def make_engine(dsn: str) -> AsyncEngine:
    return create_async_engine(dsn, echo=False, pool_pre_ping=True, future=True)


def get_engine() -> AsyncEngine:
    """
    Lazily create a global AsyncEngine and sessionmaker.
    """
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn()
        _engine = make_engine(dsn)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.
    """
    global _sessionmaker
    if _sessionmaker is None:
        get_engine()
    # _sessionmaker will be set by get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def create_tables(engine: AsyncEngine) -> None:
    # Import models so they register on Base.metadata
    from pimsync.models import catalog, sync_state  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Ensure the engine is created and all tables exist.
    """
    eng = get_engine()
    try:
        await create_tables(eng)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise


async def dispose_db() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None
