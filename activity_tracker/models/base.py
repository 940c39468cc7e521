"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Portable between SQLite (single-host cron) and PostgreSQL.
"""

from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from activity_tracker.config import config

SessionFactory = Callable[[], Session]


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def build_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine, applying SQLite pragmas where relevant."""
    if url.startswith('sqlite'):
        kwargs.setdefault('connect_args', {'check_same_thread': False})

    new_engine = create_engine(url, echo=echo, **kwargs)

    if url.startswith('sqlite'):
        @event.listens_for(new_engine, 'connect')
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """
            Configure SQLite for overlapping cron runs.

            WAL lets the status API read while a sync job writes.
            """
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.execute('PRAGMA synchronous=NORMAL')
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

    return new_engine


engine = build_engine(config.database.url, echo=config.debug)

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Records are read after commit for logging
)


@contextmanager
def get_session(session_factory: Optional[SessionFactory] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_session() as session:
            session.query(...)

    Automatically handles commit/rollback and session cleanup.
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize database schema.

    Creates all tables if they don't exist. For production,
    use Alembic migrations instead.
    """
    Base.metadata.create_all(bind=bind or engine)
