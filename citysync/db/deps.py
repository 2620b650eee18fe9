"""
Database dependency management for CitySync.

Provides context managers and utilities for database session handling.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from .config import DatabaseConfig


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager that yields a database session and ensures proper cleanup.

    Automatically handles:
    - Session creation
    - Transaction commit on success
    - Rollback on exception
    - Session cleanup

    Usage:
        with get_session() as session:
            # Database operations here
            citizens = session.query(Citizen).all()
            session.add(new_citizen)
            # Commit happens automatically if no exception
    """
    session = DatabaseConfig.get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_session_no_commit() -> Generator[Session, None, None]:
    """
    Context manager that yields a session without auto-commit.

    Useful for read-only operations or when you need manual transaction control.
    Still handles rollback on exceptions and session cleanup.

    Usage:
        with get_session_no_commit() as session:
            # Read-only operations
            vehicles = session.query(Vehicle).all()
            # No commit happens automatically
    """
    session = DatabaseConfig.get_session_factory()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
