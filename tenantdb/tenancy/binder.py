# tenantdb/tenancy/binder.py
"""
Connection Binder.

`TenantEngines` keeps one SQLAlchemy Engine per tenant database; each engine owns a
bounded QueuePool, so repeated requests for a tenant reuse pooled connections instead
of reconnecting. Engines with no checkout in flight that stay unused longer than
`idle_seconds` are disposed.

`ConnectionBinder` scopes one unit of work to one tenant database: it checks out a
connection, builds a Session on it, exposes both as a `TenantBinding`, and returns the
connection on every exit path.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from tenantdb.core.config import Settings
from tenantdb.core.errors import ConnectionPoolExhausted
from tenantdb.core.servers import DatabaseServer

from .context import TenantBinding, activate, deactivate
from .provisioner import validate_database_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Slot:
    __slots__ = ("engine", "last_used", "in_use")

    def __init__(self, engine: Engine, now: float) -> None:
        self.engine = engine
        self.last_used = now
        self.in_use = 0


class TenantEngines:
    """Per-database engine cache with bounded pools and idle eviction."""

    def __init__(
        self,
        server: DatabaseServer,
        *,
        pool_size: int = 5,
        max_overflow: int = 5,
        pool_timeout: int = 10,
        pool_recycle: int = 1800,
        idle_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._server = server
        self._pool_kwargs = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
        }
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._slots: Dict[str, _Slot] = {}
        self._guard = threading.Lock()

    @classmethod
    def from_settings(cls, server: DatabaseServer, settings: Settings) -> "TenantEngines":
        return cls(
            server,
            pool_size=settings.tenant_pool_size,
            max_overflow=settings.tenant_max_overflow,
            pool_timeout=settings.tenant_pool_timeout,
            pool_recycle=settings.tenant_pool_recycle,
            idle_seconds=settings.tenant_engine_idle_seconds,
        )

    # ---------------------------------------------------------------- slots

    def _pin(self, database: str) -> _Slot:
        with self._guard:
            slot = self._slots.get(database)
            if slot is None:
                engine = self._server.create_engine(database, **self._pool_kwargs)
                slot = self._slots[database] = _Slot(engine, self._clock())
                logger.debug("Tenant engine created", extra={"database": database})
            slot.in_use += 1
            slot.last_used = self._clock()
            return slot

    def _unpin(self, database: str) -> None:
        with self._guard:
            slot = self._slots[database]
            slot.in_use -= 1
            slot.last_used = self._clock()

    def engine_for(self, database: str) -> Optional[Engine]:
        """Cached engine for `database`, if one is live."""
        with self._guard:
            slot = self._slots.get(database)
            return slot.engine if slot else None

    # ------------------------------------------------------------ checkout

    def checkout(self, database: str) -> Connection:
        """
        Check a connection out of the database's pool.
        Pair with `checkin`; prefer the `connection()` context manager.
        """
        self.evict_idle()
        slot = self._pin(database)
        try:
            return slot.engine.connect()
        except PoolTimeoutError as exc:
            self._unpin(database)
            logger.warning("Tenant connection pool exhausted", extra={"database": database})
            raise ConnectionPoolExhausted(
                f"No connection available for database {database!r}", database=database
            ) from exc
        except BaseException:
            self._unpin(database)
            raise

    def checkin(self, database: str, connection: Connection) -> None:
        try:
            connection.close()
        finally:
            self._unpin(database)

    @contextmanager
    def connection(self, database: str) -> Iterator[Connection]:
        conn = self.checkout(database)
        try:
            yield conn
        finally:
            self.checkin(database, conn)

    # ------------------------------------------------------------ lifecycle

    def evict_idle(self) -> List[str]:
        """Dispose engines that have been idle for at least `idle_seconds`."""
        now = self._clock()
        evicted: List[_Slot] = []
        names: List[str] = []
        with self._guard:
            for name, slot in list(self._slots.items()):
                if slot.in_use == 0 and now - slot.last_used >= self._idle_seconds:
                    evicted.append(self._slots.pop(name))
                    names.append(name)
        for slot in evicted:
            slot.engine.dispose()
        if names:
            logger.info("Evicted idle tenant engines: %s", ", ".join(names))
        return names

    def dispose(self) -> None:
        with self._guard:
            slots = list(self._slots.values())
            self._slots.clear()
        for slot in slots:
            slot.engine.dispose()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        with self._guard:
            return {
                name: {
                    "pool": slot.engine.pool.status(),
                    "in_use": slot.in_use,
                    "idle_seconds": round(now - slot.last_used, 3),
                }
                for name, slot in self._slots.items()
            }

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


class ConnectionBinder:
    """Scopes units of work to a tenant database."""

    def __init__(self, engines: TenantEngines) -> None:
        self.engines = engines

    def open(self, tenant_id: str, database: str) -> TenantBinding:
        """
        Check out a connection and wrap it in a binding.
        Blocking (pool wait); the caller owns the binding until `release()`.
        """
        database = validate_database_name(database)
        conn = self.engines.checkout(database)
        try:
            session = Session(bind=conn, autoflush=False, expire_on_commit=False)
        except BaseException:
            self.engines.checkin(database, conn)
            raise
        return TenantBinding(tenant_id=tenant_id, database=database, connection=conn, session=session)

    def release(self, binding: TenantBinding) -> None:
        """Roll back anything uncommitted and return the connection to its pool."""
        try:
            binding.session.close()
        finally:
            self.engines.checkin(binding.database, binding.connection)

    @contextmanager
    def bind(self, tenant_id: str, database: str) -> Iterator[TenantBinding]:
        binding = self.open(tenant_id, database)
        token = activate(binding)
        try:
            yield binding
        finally:
            deactivate(token)
            self.release(binding)

    def with_tenant_connection(
        self, tenant_id: str, database: str, unit_of_work: Callable[[TenantBinding], T]
    ) -> T:
        with self.bind(tenant_id, database) as binding:
            return unit_of_work(binding)
