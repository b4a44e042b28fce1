"""Database connection and session management."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from worker_payouts.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def get_engine(database_url: str | None = None) -> Engine:
    """Create database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        return create_engine(url, echo=False)
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to an engine."""
    return sessionmaker(
        engine,
        class_=Session,
        expire_on_commit=False,
        autoflush=False,
    )


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db(create_tables: bool = False) -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine()
        _session_factory = make_session_factory(_engine)
    if create_tables:
        from worker_payouts.models import Base

        Base.metadata.create_all(_engine)
    assert _session_factory is not None
    return _engine, _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Run a unit of work: commit on success, roll back on any error."""
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
