# tenantdb/core/servers.py
"""
Database server backends.

A `DatabaseServer` knows how to talk to the single server that hosts every tenant
database: build a URL/engine for one tenant database, check whether a database exists,
create it, and serialize work on one database through an advisory lock.

Backends:
- PostgresServer: production. CREATE DATABASE runs in AUTOCOMMIT against the maintenance
  database; advisory locks are `pg_advisory_lock` on a stable 64-bit key.
- SQLiteServer: development and tests. One file per tenant database in a directory;
  advisory locks are process-local.

Database names reaching this module have already been validated by the provisioner.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import NullPool, QueuePool

from .config import Settings
from .locks import NamedLocks

logger = logging.getLogger(__name__)


def advisory_key(name: str) -> int:
    """Stable signed 64-bit key for `pg_advisory_lock` (hashtext() is not a stable API)."""
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class DatabaseServer(ABC):
    """Engine-level operations on the server hosting the tenant databases."""

    dialect: str = ""

    @abstractmethod
    def tenant_url(self, database: str) -> URL:
        """URL of one tenant database."""

    @abstractmethod
    def database_exists(self, database: str) -> bool:
        ...

    @abstractmethod
    def create_database(self, database: str) -> bool:
        """
        Create `database` if it does not exist.
        Returns True when this call created it, False when it already existed.
        """

    @abstractmethod
    def advisory_lock(self, connection: Connection, key: str):
        """Context manager holding a named lock for the duration of the block."""

    @abstractmethod
    def create_engine(
        self,
        database: str,
        *,
        pool_size: int,
        max_overflow: int,
        pool_timeout: int,
        pool_recycle: int,
    ) -> Engine:
        ...

    def dispose(self) -> None:
        """Release any server-level resources (admin connections)."""


# ------------------------------------------------------------------------------
# PostgreSQL
# ------------------------------------------------------------------------------


def _pgcode(exc: DBAPIError) -> Optional[str]:
    return getattr(exc.orig, "pgcode", None)


class PostgresServer(DatabaseServer):
    dialect = "postgresql"

    # duplicate_database, and unique_violation on pg_database when two sessions race
    DUPLICATE_CODES = frozenset({"42P04", "23505"})

    def __init__(
        self,
        url: Union[str, URL],
        *,
        maintenance_db: str = "postgres",
        application_name: str = "tenantdb",
    ) -> None:
        self.url = make_url(url)
        self.maintenance_db = maintenance_db
        self.application_name = application_name
        self._admin_engine: Optional[Engine] = None
        self._admin_guard = threading.Lock()

    def _admin(self) -> Engine:
        # CREATE DATABASE cannot run inside a transaction block
        with self._admin_guard:
            if self._admin_engine is None:
                self._admin_engine = create_engine(
                    self.url.set(database=self.maintenance_db),
                    isolation_level="AUTOCOMMIT",
                    poolclass=NullPool,
                    future=True,
                    connect_args={"application_name": f"{self.application_name}-admin"},
                )
            return self._admin_engine

    def tenant_url(self, database: str) -> URL:
        return self.url.set(database=database)

    def database_exists(self, database: str) -> bool:
        with self._admin().connect() as conn:
            found = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database},
            ).scalar()
        return found is not None

    def create_database(self, database: str) -> bool:
        engine = self._admin()
        quoted = engine.dialect.identifier_preparer.quote_identifier(database)
        try:
            with engine.connect() as conn:
                conn.exec_driver_sql(f"CREATE DATABASE {quoted}")
        except DBAPIError as exc:
            if _pgcode(exc) in self.DUPLICATE_CODES:
                logger.info("Database already exists", extra={"database": database})
                return False
            raise
        return True

    @contextmanager
    def advisory_lock(self, connection: Connection, key: str) -> Iterator[None]:
        lock_id = advisory_key(key)
        # Session-level lock: survives the per-migration commits below
        connection.execute(text("SELECT pg_advisory_lock(:k)"), {"k": lock_id})
        connection.commit()
        try:
            yield
        finally:
            try:
                connection.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": lock_id})
                connection.commit()
            except DBAPIError:
                # Dropping the physical connection ends the session and frees the lock
                logger.warning("advisory unlock failed; invalidating connection", exc_info=True)
                connection.invalidate()

    def create_engine(
        self,
        database: str,
        *,
        pool_size: int,
        max_overflow: int,
        pool_timeout: int,
        pool_recycle: int,
    ) -> Engine:
        return create_engine(
            self.tenant_url(database),
            future=True,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,  # Validate connections before use
            connect_args={"application_name": self.application_name},
        )

    def dispose(self) -> None:
        with self._admin_guard:
            if self._admin_engine is not None:
                self._admin_engine.dispose()
                self._admin_engine = None


# ------------------------------------------------------------------------------
# SQLite
# ------------------------------------------------------------------------------


class SQLiteServer(DatabaseServer):
    dialect = "sqlite"

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        self._locks = NamedLocks()

    def path_for(self, database: str) -> Path:
        return self.directory / f"{database}.sqlite3"

    def tenant_url(self, database: str) -> URL:
        return URL.create("sqlite+pysqlite", database=str(self.path_for(database)))

    def database_exists(self, database: str) -> bool:
        return self.path_for(database).exists()

    def create_database(self, database: str) -> bool:
        self.directory.mkdir(parents=True, exist_ok=True)
        # O_EXCL: exactly one concurrent creator wins; an empty file is a valid database
        try:
            fd = os.open(self.path_for(database), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        os.close(fd)
        return True

    @contextmanager
    def advisory_lock(self, connection: Connection, key: str) -> Iterator[None]:
        with self._locks.hold(key):
            yield

    def create_engine(
        self,
        database: str,
        *,
        pool_size: int,
        max_overflow: int,
        pool_timeout: int,
        pool_recycle: int,
    ) -> Engine:
        engine = create_engine(
            self.tenant_url(database),
            future=True,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # pysqlite defers BEGIN and never wraps DDL; take over transaction control so a
        # migration and its record commit or roll back together.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_conn, conn_record):  # type: ignore[no-redef]
            dbapi_conn.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):  # type: ignore[no-redef]
            conn.exec_driver_sql("BEGIN")

        return engine


def server_for_settings(settings: Settings) -> DatabaseServer:
    """Pick the backend matching the central database URL."""
    url = make_url(settings.database_url)
    backend = url.get_backend_name()
    if backend == "postgresql":
        return PostgresServer(
            url,
            maintenance_db=settings.postgres_maintenance_db,
            application_name=settings.app_name.replace(" ", "-").lower(),
        )
    if backend == "sqlite":
        return SQLiteServer(settings.sqlite_tenant_dir())
    raise ValueError(f"Unsupported database backend: {backend}")


__all__ = [
    "DatabaseServer",
    "PostgresServer",
    "SQLiteServer",
    "advisory_key",
    "server_for_settings",
]
