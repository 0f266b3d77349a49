# tenantdb/tenancy/migrations.py
"""
Tenant migration runner.

Tenant databases are migrated by an explicit `ensure_schema` call rather than by the
Alembic environment that manages the central registry. Each tenant database records what
it has applied in its own `schema_migrations` table; migrations are Python modules in
`tenantdb.tenant_migrations` exposing:

    version = "0001"
    description = "create products"

    def upgrade(op):   # alembic.operations.Operations bound to the tenant connection
        op.create_table(...)

Application protocol for one database:
  1. check out a connection from the tenant's pool
  2. take the advisory lock for that database
  3. create schema_migrations if absent, read recorded versions
  4. apply each pending migration in its own transaction together with its record,
     re-checking the record inside the transaction first
  5. release the lock on every exit path
"""
from __future__ import annotations

import importlib
import logging
import pkgutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, DateTime, MetaData, String, Table, inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tenantdb.core.errors import MigrationError
from tenantdb.core.locks import NamedLocks
from tenantdb.core.metrics import MIGRATIONS_APPLIED
from tenantdb.core.servers import DatabaseServer

from .binder import TenantEngines
from .provisioner import validate_database_name

logger = logging.getLogger(__name__)

MIGRATIONS_PACKAGE = "tenantdb.tenant_migrations"

_tracking_metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _tracking_metadata,
    Column("version", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    upgrade: Callable[[Operations], None]


def load_migrations(package: str = MIGRATIONS_PACKAGE) -> List[Migration]:
    """Import every migration module of `package`, ordered by version."""
    pkg = importlib.import_module(package)
    found: List[Migration] = []
    for info in pkgutil.iter_modules(pkg.__path__):
        if info.ispkg or info.name.startswith("_"):
            continue
        module = importlib.import_module(f"{package}.{info.name}")
        version = getattr(module, "version", None)
        upgrade = getattr(module, "upgrade", None)
        if not version or not callable(upgrade):
            raise ValueError(f"{module.__name__} must define `version` and `upgrade(op)`")
        found.append(
            Migration(
                version=str(version),
                name=str(getattr(module, "description", info.name)),
                upgrade=upgrade,
            )
        )
    return sort_migrations(found)


def sort_migrations(migrations: Iterable[Migration]) -> List[Migration]:
    ordered = sorted(migrations, key=lambda m: m.version)
    seen: Set[str] = set()
    for migration in ordered:
        if migration.version in seen:
            raise ValueError(f"Duplicate tenant migration version {migration.version}")
        seen.add(migration.version)
    return ordered


class MigrationRunner:
    """Brings tenant databases to the latest schema, at most once per process."""

    def __init__(
        self,
        server: DatabaseServer,
        engines: TenantEngines,
        migrations: Optional[Iterable[Migration]] = None,
    ) -> None:
        self._server = server
        self._engines = engines
        self._migrations = (
            sort_migrations(migrations) if migrations is not None else load_migrations()
        )
        self._current: Set[str] = set()
        self._guard = threading.Lock()
        self._locks = NamedLocks()

    @property
    def migrations(self) -> List[Migration]:
        return list(self._migrations)

    @property
    def head(self) -> Optional[str]:
        return self._migrations[-1].version if self._migrations else None

    def is_current(self, database: str) -> bool:
        with self._guard:
            return database in self._current

    def evict(self, database: Optional[str] = None) -> None:
        with self._guard:
            if database is None:
                self._current.clear()
            else:
                self._current.discard(database)

    def ensure_schema(self, database: str, *, tenant_id: Optional[str] = None) -> List[str]:
        """
        Apply every pending migration to `database`.

        Returns the versions applied by this call (empty when already current).

        Raises:
            MigrationError: a migration failed or the recorded history is out of order;
                migrations applied before the failure stay recorded.
        """
        database = validate_database_name(database)
        if self.is_current(database):
            return []

        with self._locks.hold(database):
            if self.is_current(database):
                return []
            try:
                with self._engines.connection(database) as conn:
                    with self._server.advisory_lock(conn, f"tenant-migrations:{database}"):
                        applied = self._apply_pending(conn, database, tenant_id)
            except MigrationError:
                raise
            except SQLAlchemyError as exc:
                logger.error(
                    "Tenant migration bookkeeping failed: %s",
                    exc,
                    extra={"tenant_id": tenant_id, "database": database},
                )
                raise MigrationError(
                    f"Could not migrate database {database!r}",
                    tenant_id=tenant_id,
                    database=database,
                ) from exc

            with self._guard:
                self._current.add(database)
        return applied

    def applied_versions(self, database: str) -> List[str]:
        """Versions recorded in `database`, in order (diagnostics and CLI)."""
        database = validate_database_name(database)
        with self._engines.connection(database) as conn:
            with conn.begin():
                if not inspect(conn).has_table(schema_migrations.name):
                    return []
                rows = conn.execute(
                    select(schema_migrations.c.version).order_by(schema_migrations.c.version)
                )
                return list(rows.scalars())

    # ------------------------------------------------------------------ internals

    def _apply_pending(
        self, conn: Connection, database: str, tenant_id: Optional[str]
    ) -> List[str]:
        with conn.begin():
            schema_migrations.create(conn, checkfirst=True)
        with conn.begin():
            recorded = set(conn.execute(select(schema_migrations.c.version)).scalars())

        known = {m.version for m in self._migrations}
        unknown = sorted(recorded - known)
        if unknown:
            logger.warning(
                "Database records unknown tenant migrations: %s",
                ", ".join(unknown),
                extra={"tenant_id": tenant_id, "database": database},
            )

        pending = [m for m in self._migrations if m.version not in recorded]
        applied_known = recorded & known
        if pending and applied_known:
            latest = max(applied_known)
            if pending[0].version < latest:
                first = pending[0]
                raise MigrationError(
                    f"Migration {first.version} ({first.name}) is pending but later "
                    f"migration {latest} is already applied",
                    version=first.version,
                    migration_name=first.name,
                    tenant_id=tenant_id,
                    database=database,
                )

        applied: List[str] = []
        for migration in pending:
            if self._apply_one(conn, migration, database, tenant_id):
                applied.append(migration.version)
        return applied

    def _apply_one(
        self,
        conn: Connection,
        migration: Migration,
        database: str,
        tenant_id: Optional[str],
    ) -> bool:
        extra = {"tenant_id": tenant_id, "database": database, "migration": migration.version}
        try:
            with conn.begin():
                already = conn.execute(
                    select(schema_migrations.c.version).where(
                        schema_migrations.c.version == migration.version
                    )
                ).first()
                if already is not None:
                    return False
                try:
                    migration.upgrade(Operations(MigrationContext.configure(conn)))
                except Exception as exc:
                    # Constraint violations in the body are failures, never a lost race
                    raise self._failed(migration, database, tenant_id, exc) from exc
                conn.execute(
                    schema_migrations.insert().values(
                        version=migration.version,
                        name=migration.name,
                        applied_at=datetime.now(timezone.utc),
                    )
                )
        except MigrationError:
            raise
        except IntegrityError:
            # Only the record insert gets here: another applier recorded this version first
            logger.info("Tenant migration already recorded", extra=extra)
            return False
        except Exception as exc:
            raise self._failed(migration, database, tenant_id, exc) from exc

        MIGRATIONS_APPLIED.inc()
        logger.info("Applied tenant migration %s (%s)", migration.version, migration.name, extra=extra)
        return True

    @staticmethod
    def _failed(
        migration: Migration, database: str, tenant_id: Optional[str], exc: Exception
    ) -> MigrationError:
        logger.error(
            "Tenant migration failed: %s",
            exc,
            extra={"tenant_id": tenant_id, "database": database, "migration": migration.version},
        )
        return MigrationError(
            f"Migration {migration.version} ({migration.name}) failed on {database!r}",
            version=migration.version,
            migration_name=migration.name,
            tenant_id=tenant_id,
            database=database,
        )
