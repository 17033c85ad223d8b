"""Relational store: SQLite engine and session factory.

This module provides:
- Database: Connection manager with WAL mode so walks can read while the
  business layer writes
- open_session(): the session factory handed to reindex walks
- write_transaction(): commit-or-rollback session for the business layer
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

DEFAULT_BUSY_TIMEOUT_MS = 30000


class Database:
    """SQLite connection manager with WAL mode for concurrent access.

    Sessions are usable from any thread (``check_same_thread=False``); each
    reindex walk opens its own through ``open_session``. Concurrent writers
    wait up to ``busy_timeout_ms`` for the write lock.
    """

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(engine, "connect", sqlite_pragma_listener(self.busy_timeout_ms))
        logger.debug("database_opened", path=str(self.db_path))
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata."""
        SQLModel.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Use with caution."""
        SQLModel.metadata.drop_all(self.engine)

    def open_session(self) -> Session:
        """New session owned by the caller, who must close it."""
        return Session(self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session closed on exit. Commit is up to the caller."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def write_transaction(self) -> Generator[Session, None, None]:
        """Session that commits on successful exit and rolls back on exception."""
        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()


def sqlite_pragma_listener(busy_timeout_ms: int) -> Any:
    """Connect listener applying the WAL and busy-timeout pragmas to every SQLite connection."""

    def _configure_pragmas(dbapi_conn: Any, _connection_record: Any) -> None:
        """Configure SQLite for concurrent access."""
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return _configure_pragmas
