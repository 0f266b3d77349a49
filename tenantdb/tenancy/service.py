# tenantdb/tenancy/service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from tenantdb.models.tenant import Tenant

from .runtime import Tenancy

logger = logging.getLogger(__name__)


def create_tenant(
    tenancy: Tenancy,
    name: str,
    database_name: str,
    *,
    tenant_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Tenant:
    """
    Register a tenant and make it servable immediately.

    The record is persisted first, then the database is created and migrated. If
    provisioning fails the record stays; `prepare_tenant` (or the tenant's first
    request) finishes the job.
    """
    tenant = tenancy.registry.create(name, database_name, tenant_id=tenant_id, data=data)
    prepare_tenant(tenancy, tenant)
    return tenant


def prepare_tenant(tenancy: Tenancy, tenant: Tenant) -> List[str]:
    """Ensure the tenant's database exists and is current; returns applied versions."""
    tenancy.provisioner.ensure_database(tenant.database_name, tenant_id=tenant.id)
    applied = tenancy.migrator.ensure_schema(tenant.database_name, tenant_id=tenant.id)
    logger.info(
        "Tenant ready (%d migrations applied)",
        len(applied),
        extra={"tenant_id": tenant.id, "database": tenant.database_name},
    )
    return applied
