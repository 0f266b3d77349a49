# tenantdb/tenancy/resolver.py
from __future__ import annotations

import logging
import time
from typing import Optional

from tenantdb.core.errors import (
    InvalidDatabaseName,
    MigrationError,
    ProvisionFailed,
    SchemaNotReady,
)
from tenantdb.core.metrics import RESOLUTION_SECONDS
from tenantdb.core.tenant import parse_tenant_id
from tenantdb.models.tenant import Tenant

from .migrations import MigrationRunner
from .provisioner import DatabaseProvisioner
from .registry import TenantRegistry

logger = logging.getLogger(__name__)


class TenantResolver:
    """
    Request-time pipeline up to (not including) binding:
    parse id -> registry lookup -> ensure database -> ensure schema.

    Each step only runs when the previous one succeeded, so a rejected id never
    reaches the registry and an unknown tenant never reaches the database server.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        provisioner: DatabaseProvisioner,
        migrator: MigrationRunner,
    ) -> None:
        self.registry = registry
        self.provisioner = provisioner
        self.migrator = migrator

    def resolve(self, raw_tenant_id: Optional[str], *, header: Optional[str] = None) -> Tenant:
        tenant_id = parse_tenant_id(raw_tenant_id, header=header)
        started = time.perf_counter()

        database: Optional[str] = None
        try:
            tenant = self.registry.find(tenant_id)
            database = tenant.database_name
            self.provisioner.ensure_database(database, tenant_id=tenant_id)
        except InvalidDatabaseName as exc:
            # A stored name that fails validation is a server-side data problem
            raise ProvisionFailed(
                f"Tenant {tenant_id!r} has an invalid database name",
                tenant_id=tenant_id,
                database=database,
            ) from exc

        try:
            applied = self.migrator.ensure_schema(database, tenant_id=tenant_id)
        except MigrationError as exc:
            raise SchemaNotReady(
                f"Database for tenant {tenant_id!r} is not at the current schema",
                tenant_id=tenant_id,
                database=database,
            ) from exc

        RESOLUTION_SECONDS.observe(time.perf_counter() - started)
        if applied:
            logger.info(
                "Tenant schema brought current: %s",
                ", ".join(applied),
                extra={"tenant_id": tenant_id, "database": database},
            )
        return tenant
