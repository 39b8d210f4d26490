"""SQLAlchemy engine/session client for the workspace database.

Usage
-----
from db.client import Database

database = Database.from_env()
with database.session_scope() as s:
    s.execute(...)

The client is constructed explicitly and handed to the code that needs it;
there is no process-wide engine cache.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker


def database_url_from_env(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


class Database:
    """Owns one engine and its session factory."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        # Default isolation level is fine; pre-ping drops stale pooled connections.
        self._engine: Engine = create_engine(url, pool_pre_ping=True, echo=echo)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine, "connect", _configure_sqlite_connection)
            event.listen(self._engine, "begin", _emit_sqlite_begin)
        self._session_maker: sessionmaker[Session] = sessionmaker(
            bind=self._engine, expire_on_commit=False, class_=Session
        )

    @classmethod
    def from_env(cls, *, database_url: str | None = None, echo: bool = False) -> Database:
        """Build a client from ``database_url`` or ``$DATABASE_URL``."""

        return cls(database_url_from_env(database_url), echo=echo)

    @property
    def engine(self) -> Engine:
        return self._engine

    def session(self) -> Session:
        """Return a new session bound to this client's engine."""

        return self._session_maker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """Health check: ``True`` when a trivial query round-trips."""

        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def dispose(self) -> None:
        self._engine.dispose()


def _configure_sqlite_connection(dbapi_conn, _record) -> None:  # pragma: no cover - tiny bridge
    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave; enforce FKs.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def _emit_sqlite_begin(conn) -> None:  # pragma: no cover - tiny bridge
    conn.exec_driver_sql("BEGIN")


__all__ = [
    "Database",
    "database_url_from_env",
]
