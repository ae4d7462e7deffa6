# =============================================================================
# lib/database.py - SQLAlchemy Engine & Session Helpers
# =============================================================================
# Provides the engine, session factory and transaction helpers used by the
# API (request-scoped sessions) and the Celery workers (session_scope).
#
# Usage:
#   from lib.database import session_scope
#   with session_scope() as db:
#       db.add(obj)
# =============================================================================

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM tables."""


# Engine and factory are created lazily so tests can swap the URL first.
_ENGINE: Optional[Engine] = None
_SessionLocal: Optional[Callable[..., Session]] = None


def build_engine(url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite needs check_same_thread=False under uvicorn's threadpool, and an
    in-memory SQLite database must share one connection (StaticPool) or every
    session would see an empty schema.
    """
    kwargs: dict = {"future": True, "pool_pre_ping": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _ENGINE, _SessionLocal

    if _ENGINE is not None:
        return _ENGINE

    _ENGINE = build_engine(settings.DATABASE_URL)
    _SessionLocal = sessionmaker(
        bind=_ENGINE,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    logger.info(f"Database engine created for {_ENGINE.url.render_as_string(hide_password=True)}")
    return _ENGINE


def get_session_factory() -> Callable[..., Session]:
    """Return the session factory bound to the process-wide engine."""
    if _SessionLocal is None:
        get_engine()
    assert _SessionLocal is not None
    return _SessionLocal


def configure(url: str) -> Engine:
    """
    Rebind the module to a new database URL.

    Used by tests and scripts that need an isolated database.
    """
    global _ENGINE, _SessionLocal

    if _ENGINE is not None:
        _ENGINE.dispose()

    _ENGINE = build_engine(url)
    _SessionLocal = sessionmaker(
        bind=_ENGINE,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    return _ENGINE


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Context manager for short-lived DB transactions.

    Commits on success, rolls back on exception.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    Create tables if they do not exist.

    The ORM module must be imported so its tables are registered on Base.
    """
    from lib import orm  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: yields a Session.

    Services commit explicitly; anything left uncommitted is rolled back
    when the request ends.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
