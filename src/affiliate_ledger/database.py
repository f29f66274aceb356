"""Database connection and session management."""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from affiliate_ledger.config import get_settings
from affiliate_ledger.models import Base

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:")


def get_engine(database_url: str | None = None) -> Engine:
    """Create database engine."""
    url = database_url or get_settings().database_url
    if url.startswith("sqlite"):
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in IN_MEMORY_URLS:
            # One shared connection, otherwise every checkout sees an empty database.
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=False, **options)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# Global engine and session factory
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def init_db(database_url: str | None = None) -> tuple[Engine, sessionmaker[Session]]:
    """Initialize database engine and session factory."""
    global _engine, _session_factory
    if _engine is None:
        _engine = get_engine(database_url)
        _session_factory = sessionmaker(
            _engine,
            class_=Session,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine, _session_factory


def create_schema(engine: Engine) -> None:
    """Create all ledger tables that do not exist yet."""
    Base.metadata.create_all(engine)



def reset_db() -> None:
    """Dispose the global engine so the next init_db() starts fresh."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_session() -> Iterator[Session]:
    """Get a database session; commit on success, roll back on any error."""
    _, factory = init_db()
    with factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
