"""Database setup with SQLAlchemy async engine (PostgreSQL or SQLite fallback).

Only watchlist membership is persisted, as string values in a key-value
table.  Market data is never written to disk.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import String, Text, select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine + session factory (lazy-initialized by init_db)
# ---------------------------------------------------------------------------

_engine = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _build_url() -> str:
    """Determine async database URL from environment."""
    from coinwatch.config import DATABASE_PATH, DATABASE_URL

    if DATABASE_URL:
        url = DATABASE_URL
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url

    # Fallback to SQLite for local dev
    return f"sqlite+aiosqlite:///{DATABASE_PATH}"


# ---------------------------------------------------------------------------
# ORM Models
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


class KeyValue(Base):
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


# ---------------------------------------------------------------------------
# Initialization + session access
# ---------------------------------------------------------------------------


async def init_db(url: Optional[str] = None) -> None:
    """Initialize the async engine, session factory, and create all tables.

    Args:
        url: Explicit database URL. If None, auto-detects from env vars
             (DATABASE_URL for PostgreSQL, DATABASE_PATH for SQLite fallback).
    """
    global _engine, _session_factory

    actual_url = url or _build_url()
    _engine = create_async_engine(actual_url, echo=False)
    _session_factory = async_sessionmaker(
        _engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    safe_url = actual_url.split("@")[-1] if "@" in actual_url else actual_url
    logger.info("Database initialized: %s", safe_url)


async def get_session() -> AsyncSession:
    """Return a new async session. Requires prior ``init_db()`` call."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized: call init_db() first")
    return _session_factory()


async def close_db() -> None:
    """Dispose of the engine and reset module state."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


# ---------------------------------------------------------------------------
# Key-value storage
# ---------------------------------------------------------------------------


class SqlKeyValueStorage:
    """``KeyValueStorage`` backed by the ``kv_store`` table."""

    async def get(self, key: str) -> str | None:
        session = await get_session()
        try:
            result = await session.execute(
                select(KeyValue.value).where(KeyValue.key == key)
            )
            return result.scalar_one_or_none()
        finally:
            await session.close()

    async def set(self, key: str, value: str) -> None:
        session = await get_session()
        try:
            row = await session.get(KeyValue, key)
            if row is None:
                session.add(KeyValue(key=key, value=value))
            else:
                row.value = value
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
