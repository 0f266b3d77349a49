# tenantdb/core/metrics.py
from __future__ import annotations

from prometheus_client import Counter, Histogram

DATABASES_CREATED = Counter(
    "tenantdb_databases_created_total",
    "Tenant databases created by this process",
)

MIGRATIONS_APPLIED = Counter(
    "tenantdb_migrations_applied_total",
    "Tenant migrations applied by this process",
)

TENANT_REJECTIONS = Counter(
    "tenantdb_tenant_rejections_total",
    "Requests rejected by the tenant pipeline",
    ["reason"],
)

RESOLUTION_SECONDS = Histogram(
    "tenantdb_tenant_resolution_seconds",
    "Time spent resolving, provisioning and migrating a tenant per request",
)
