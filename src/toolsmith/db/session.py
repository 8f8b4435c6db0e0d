"""Async database session management.

Two engines share the same schema:
- the scoped engine (``database_url``) used for normal reads and writes
- the admin engine (``admin_database_url``) used when a scoped
  operation is refused

Engines are created lazily so importing this module never opens a pool.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from toolsmith.config import settings

logger = structlog.get_logger()

SessionFactory = async_sessionmaker[AsyncSession]

# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

_engine: AsyncEngine | None = None
_admin_engine: AsyncEngine | None = None
_session_factory: SessionFactory | None = None
_admin_session_factory: SessionFactory | None = None


def _create_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, future=True)
    return create_async_engine(
        url,
        pool_size=20,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=False,
        future=True,
    )


def _make_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = _create_engine(settings.database_url)
    return _engine


def get_admin_engine() -> AsyncEngine:
    global _admin_engine
    if _admin_engine is None:
        url = settings.admin_database_url or settings.database_url
        _admin_engine = get_engine() if url == settings.database_url else _create_engine(url)
    return _admin_engine


def get_session_factory() -> SessionFactory:
    global _session_factory
    if _session_factory is None:
        _session_factory = _make_factory(get_engine())
    return _session_factory


def get_admin_session_factory() -> SessionFactory:
    global _admin_session_factory
    if _admin_session_factory is None:
        _admin_session_factory = _make_factory(get_admin_engine())
    return _admin_session_factory


def AsyncSessionLocal() -> AsyncSession:
    """Open a session on the scoped engine."""
    return get_session_factory()()


def AdminSessionLocal() -> AsyncSession:
    """Open a session on the admin engine."""
    return get_admin_session_factory()()


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION MANAGEMENT
# ═══════════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def db_session(admin: bool = False) -> AsyncGenerator[AsyncSession, None]:
    """Context manager for manual session handling.

    Usage:
        async with db_session() as db:
            result = await db.execute(...)
    """
    session = AdminSessionLocal() if admin else AsyncSessionLocal()
    async with session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


_MISSING_TABLE_MARKERS = ("does not exist", "no such table", "undefinedtable", "could not find the table")


def missing_table_name(exc: BaseException, tables: tuple[str, ...]) -> str | None:
    """Return which of ``tables`` the driver reported as missing, if any.

    Only the driver error (``exc.orig``) is inspected. SQLAlchemy's own
    message embeds the failing statement, which names the table on every
    error against it.
    """
    orig = getattr(exc, "orig", None)
    source = orig if orig is not None else exc
    lower = f"{type(source).__name__} {source}".lower()
    if not any(marker in lower for marker in _MISSING_TABLE_MARKERS):
        return None
    return next((t for t in tables if t in lower), None)


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables.

    In production, use Alembic migrations. This is for dev/test only.
    """
    from toolsmith.db.models import Base

    target = engine or get_admin_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_initialized", url=str(target.url.render_as_string(hide_password=True)))


async def close_db() -> None:
    """Clean shutdown: dispose of all connections."""
    global _engine, _admin_engine, _session_factory, _admin_session_factory
    if _admin_engine is not None and _admin_engine is not _engine:
        await _admin_engine.dispose()
    if _engine is not None:
        await _engine.dispose()
    _engine = _admin_engine = None
    _session_factory = _admin_session_factory = None
