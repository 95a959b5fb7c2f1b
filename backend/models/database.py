"""
Database connection and session management.

Uses SQLAlchemy async with connection pooling.

Connection Pool Strategy:
- Session mode (port 5432): local connection pool keeps connections open
- Transaction mode (port 6543): NullPool (external pooler manages connections)
- Sessions are lightweight wrappers that checkout connections from the pool
- RLS context (role + org_id) is set on checkout and cleaned up on return
"""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# Ensure URL uses asyncpg driver
_db_url = settings.DATABASE_URL
if _db_url and "+asyncpg" not in _db_url:
    _db_url = _db_url.replace("postgresql://", "postgresql+asyncpg://")

# Port 6543 = transaction-mode pooler (SET commands don't persist across statements)
_parsed_url = urlparse(_db_url) if _db_url else None
_db_port: int = _parsed_url.port if _parsed_url and _parsed_url.port else 5432
_use_null_pool: bool = _db_port == 6543

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get the database engine, creating it on first use."""
    global _engine
    if _engine is None:
        # Disable prepared statement cache for pgbouncer compatibility
        connect_args: dict[str, int] = {
            "statement_cache_size": 0,
            "prepared_statement_cache_size": 0,
        }

        if _use_null_pool:
            _engine = create_async_engine(
                _db_url,
                echo=False,
                future=True,
                poolclass=NullPool,
                connect_args=connect_args,
            )
            logger.info("Database engine created with NullPool (transaction mode, port %d)", _db_port)
        else:
            _engine = create_async_engine(
                _db_url,
                echo=False,
                future=True,
                pool_size=5,
                max_overflow=10,
                pool_recycle=300,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
            logger.info(
                "Database engine created with connection pool (session mode, port %d, "
                "pool_size=5, max_overflow=10)",
                _db_port,
            )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the async session factory, creating it on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,  # Don't auto-flush, we control when to commit
        )
    return _session_factory


@asynccontextmanager
async def get_session(organization_id: str | None = None) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session with Row-Level Security (RLS) context.

    organization_id SHOULD be provided for every tenant-scoped operation.
    Calling without it logs a warning with the call stack. For system-level
    work that legitimately spans organizations, use get_admin_session().

    The session switches to the non-superuser application role (superusers
    bypass RLS) and sets ``app.current_org_id`` so policies filter every
    query to this organization. Both are reset before the connection goes
    back to the pool.

    Usage:
        async with get_session(organization_id="...") as session:
            result = await session.execute(query)
            await session.commit()
    """
    if not organization_id:
        stack = ''.join(traceback.format_stack()[-5:-1])
        logger.warning(
            "get_session() called without organization_id - RLS context not set!\n"
            "Use get_admin_session() for system operations or pass organization_id.\n"
            "Call stack:\n%s", stack
        )

    factory = get_session_factory()
    session: AsyncSession = factory()
    try:
        await session.execute(text(f"SET ROLE {settings.DATABASE_APP_ROLE}"))

        if organization_id:
            await session.execute(
                text("SELECT set_config('app.current_org_id', :org_id, false)"),
                {"org_id": str(organization_id)}
            )
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        # Without this reset a pooled connection could leak one org's RLS context to another.
        try:
            await session.execute(text(
                "SELECT set_config('app.current_org_id', '', false); RESET ROLE"
            ))
        except Exception as e:
            logger.debug("Could not reset RLS context on session close: %s", e)
        await session.close()


@asynccontextmanager
async def get_admin_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an admin database session that BYPASSES RLS.

    Only for system-level scheduled tasks that iterate across all
    organizations (e.g. the summarization dispatcher) and maintenance.
    """
    factory = get_session_factory()
    session: AsyncSession = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


def dispose_engine() -> None:
    """
    Drop the engine and session factory without awaiting.

    Celery tasks run each coroutine on a fresh event loop; asyncpg connections
    are bound to the loop that created them, so the old pool is abandoned
    rather than closed.
    """
    global _engine, _session_factory
    if _engine is not None:
        _engine.sync_engine.dispose(close=False)
        logger.debug("Database engine disposed (connections abandoned)")
    _engine = None
    _session_factory = None

