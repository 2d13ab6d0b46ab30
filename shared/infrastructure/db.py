"""
Database configuration and session management for the entity store.
Uses SQLAlchemy 2.0 patterns.

The event bus reads entities through a session provider. Workers use the
thread-local ``ScopedSession`` so every job thread gets its own session.
"""

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from shared.config.settings import DATABASE_URL


def _calculate_pool_size() -> int:
    """
    Calculate pool size based on CPU cores.
    Formula: (2 * CPU cores) + 1, capped at 20.
    """
    cores = os.cpu_count() or 4
    return min(cores * 2 + 1, 20)


def build_engine(url: str = DATABASE_URL) -> Engine:
    """Create an engine with connection pooling and timeouts."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=_calculate_pool_size(),
        max_overflow=15,
        pool_timeout=30,  # Wait max 30s for connection from pool
        pool_recycle=1800,  # Recycle connections after 30 minutes
        echo=False,
    )


# Engine and session factory are created lazily so importing this module
# never opens a connection pool (tests bind their own engine).
_engine: Engine | None = None
_session_factory: sessionmaker | None = None
ScopedSession: scoped_session | None = None


def get_session_factory() -> sessionmaker:
    """Get or create the process-wide session factory."""
    global _engine, _session_factory, ScopedSession
    if _session_factory is None:
        _engine = build_engine()
        _session_factory = sessionmaker(bind=_engine, autoflush=False, autocommit=False)
        ScopedSession = scoped_session(_session_factory)
    return _session_factory


def get_scoped_session() -> scoped_session:
    """Get the thread-local session registry (callable, returns a Session)."""
    get_session_factory()
    return ScopedSession  # type: ignore[return-value]


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()

