# tenantdb/tenancy/provisioner.py
from __future__ import annotations

import logging
import re
import threading
from typing import Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from tenantdb.core.errors import InvalidDatabaseName, ProvisionFailed
from tenantdb.core.locks import NamedLocks
from tenantdb.core.metrics import DATABASES_CREATED
from tenantdb.core.servers import DatabaseServer

logger = logging.getLogger(__name__)

# PostgreSQL truncates identifiers past NAMEDATALEN - 1
MAX_DATABASE_NAME_LENGTH = 63
_DATABASE_NAME = re.compile(r"^[A-Za-z0-9_]+$")


def validate_database_name(name: Optional[str]) -> str:
    """
    Allow-list check for a physical database name.
    Must run before the name reaches any engine-level statement.
    """
    if not isinstance(name, str) or not name:
        raise InvalidDatabaseName("Database name is empty", database=None)
    if len(name) > MAX_DATABASE_NAME_LENGTH:
        raise InvalidDatabaseName(
            f"Database name exceeds {MAX_DATABASE_NAME_LENGTH} characters",
            database=name[:MAX_DATABASE_NAME_LENGTH],
        )
    if not _DATABASE_NAME.match(name):
        raise InvalidDatabaseName(
            "Database name may only contain letters, digits and underscores",
            database=None,
        )
    return name


class DatabaseProvisioner:
    """
    Idempotently creates tenant databases.

    Names already ensured by this process are memoized so a long-lived tenant costs no
    round trip per request; the memo is a latency optimization only, a miss falls back
    to the create-if-not-exists path.
    """

    def __init__(self, server: DatabaseServer) -> None:
        self._server = server
        self._ensured: Set[str] = set()
        self._guard = threading.Lock()
        self._locks = NamedLocks()

    def is_ensured(self, name: str) -> bool:
        with self._guard:
            return name in self._ensured

    def ensure_database(self, name: str, *, tenant_id: Optional[str] = None) -> bool:
        """
        Make sure database `name` exists.

        Returns True when this call created it.

        Raises:
            InvalidDatabaseName: name fails validation (nothing sent to the server)
            ProvisionFailed: the server rejected the check or the create
        """
        name = validate_database_name(name)
        if self.is_ensured(name):
            return False

        # Concurrent first requests for one tenant wait here instead of racing the server
        with self._locks.hold(name):
            if self.is_ensured(name):
                return False

            try:
                created = False
                if not self._server.database_exists(name):
                    created = self._server.create_database(name)
            except (SQLAlchemyError, OSError) as exc:
                logger.error(
                    "Failed to provision database: %s",
                    exc,
                    extra={"tenant_id": tenant_id, "database": name},
                )
                raise ProvisionFailed(
                    f"Could not provision database {name!r}",
                    tenant_id=tenant_id,
                    database=name,
                ) from exc

            with self._guard:
                self._ensured.add(name)

        if created:
            DATABASES_CREATED.inc()
            logger.info(
                "Database created", extra={"tenant_id": tenant_id, "database": name}
            )
        return created

    def evict(self, name: Optional[str] = None) -> None:
        """Forget one (or every) ensured name; the next call re-checks the server."""
        with self._guard:
            if name is None:
                self._ensured.clear()
            else:
                self._ensured.discard(name)
