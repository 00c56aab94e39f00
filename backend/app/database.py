"""Database engines and sessions.

- Function endpoints, services and Celery tasks use a sync Session (psycopg / sqlite).
- Read-only API endpoints use AsyncSession (asyncpg / aiosqlite).
"""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import AsyncGenerator, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from .config import settings

# Supavisor transaction-mode pooler port; it cannot use prepared statements.
SUPABASE_TRANSACTION_POOLER_PORT = 6543


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def _is_supabase_host(url: URL) -> bool:
    host = (url.host or "").lower()
    return host.endswith(".supabase.co") or host.endswith(".supabase.com") or "supabase" in host


def _resolve_backend_path(maybe_path: str) -> str:
    p = Path(maybe_path)
    if p.is_absolute():
        return str(p)
    # backend/app/database.py -> backend/
    return str((Path(__file__).resolve().parents[1] / p).resolve())


def _pool_kwargs() -> dict:
    return {
        "pool_size": max(1, settings.db_pool_size),
        "max_overflow": max(0, settings.db_max_overflow),
        "pool_timeout": max(1, settings.db_pool_timeout_s),
        "pool_recycle": max(0, settings.db_pool_recycle_s),
    }


def _supabase_ssl_context() -> ssl.SSLContext:
    cafile = settings.supabase_ssl_ca_file
    if not cafile:
        return ssl.create_default_context()
    ctx = ssl.create_default_context(cafile=_resolve_backend_path(cafile))
    # The Supabase CA lacks the key usage extension some OpenSSL builds require in strict mode.
    strict_flag = getattr(ssl, "VERIFY_X509_STRICT", None)
    if strict_flag is not None:
        ctx.verify_flags &= ~strict_flag
    return ctx


def _build_sync_engine(url: URL) -> Engine:
    if _is_sqlite(url):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": settings.sqlite_busy_timeout_ms / 1000.0},
            poolclass=NullPool,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            # WAL lets the worker read while a processor writes.
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.sqlite_busy_timeout_ms)};")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

        return engine

    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+psycopg")
    connect_args: dict = {}
    if url.port == SUPABASE_TRANSACTION_POOLER_PORT:
        connect_args["prepare_threshold"] = None
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True, **_pool_kwargs())


def _build_async_engine(url: URL) -> AsyncEngine:
    if _is_sqlite(url):
        if url.drivername == "sqlite":
            url = url.set(drivername="sqlite+aiosqlite")
        return create_async_engine(url, pool_pre_ping=True)

    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+asyncpg")
    connect_args: dict = {}
    if _is_supabase_host(url):
        connect_args["ssl"] = _supabase_ssl_context()
        # asyncpg rejects libpq-style sslmode; SSL is passed through connect_args.
        query = dict(url.query)
        query.pop("sslmode", None)
        url = url.set(query=query)
    if url.port == SUPABASE_TRANSACTION_POOLER_PORT:
        connect_args["statement_cache_size"] = 0
    return create_async_engine(url, pool_pre_ping=True, connect_args=connect_args, **_pool_kwargs())


raw_url: URL = make_url(settings.database_url)

sync_engine = _build_sync_engine(raw_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

async_engine = _build_async_engine(raw_url)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False, autoflush=False)


def init_db():
    """
    Create tables for local SQLite databases.

    Postgres schema is managed via Alembic; no implicit `create_all()` there.
    """
    if not _is_sqlite(raw_url):
        return
    from .models import Base
    Base.metadata.create_all(bind=sync_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession."""
    async with AsyncSessionLocal() as session:
        yield session


def get_sync_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a sync Session (function endpoints)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
