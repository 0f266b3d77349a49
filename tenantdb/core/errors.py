# tenantdb/core/errors.py
from __future__ import annotations

from typing import Optional


class TenancyError(Exception):
    """
    Base class for every failure of the tenant pipeline.

    Each subclass carries the HTTP status it maps to and a stable machine-readable
    `code` used in the error envelope. `tenant_id` and `database` are kept for logs.
    """

    status_code: int = 500
    code: str = "tenancy_error"

    def __init__(
        self,
        message: str,
        *,
        tenant_id: Optional[str] = None,
        database: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.database = database

    def log_extra(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "database": self.database,
            "error_code": self.code,
        }


class MissingTenantId(TenancyError):
    """Raised when the tenant header is absent, blank or malformed."""

    status_code = 400
    code = "missing_tenant_id"


class TenantNotFound(TenancyError):
    status_code = 404
    code = "tenant_not_found"


class MissingDatabaseName(TenantNotFound):
    """The tenant exists but carries no database name."""

    code = "database_name_missing"


class InvalidDatabaseName(TenancyError):
    """Raised before any statement is built for a name outside the allow-list."""

    status_code = 400
    code = "invalid_database_name"


class InvalidTenantId(TenancyError):
    """A tenant id that could never be sent in the tenant header."""

    status_code = 400
    code = "invalid_tenant_id"


class TenantAlreadyExists(TenancyError):
    status_code = 409
    code = "tenant_exists"


class ProvisionFailed(TenancyError):
    status_code = 500
    code = "provision_failed"


class MigrationError(TenancyError):
    """
    A tenant migration failed.

    `version` and `migration_name` identify the offending migration; the underlying
    exception is chained as `__cause__`. Earlier migrations of the same run stay
    recorded, so a retry resumes at the failed one.
    """

    status_code = 500
    code = "migration_failed"

    def __init__(
        self,
        message: str,
        *,
        version: Optional[str] = None,
        migration_name: Optional[str] = None,
        tenant_id: Optional[str] = None,
        database: Optional[str] = None,
    ) -> None:
        super().__init__(message, tenant_id=tenant_id, database=database)
        self.version = version
        self.migration_name = migration_name

    def log_extra(self) -> dict:
        extra = super().log_extra()
        extra["migration"] = self.version
        return extra


class SchemaNotReady(TenancyError):
    status_code = 500
    code = "schema_not_ready"


class ConnectionPoolExhausted(TenancyError):
    status_code = 503
    code = "connection_pool_exhausted"


__all__ = [
    "TenancyError",
    "MissingTenantId",
    "TenantNotFound",
    "MissingDatabaseName",
    "InvalidDatabaseName",
    "InvalidTenantId",
    "TenantAlreadyExists",
    "ProvisionFailed",
    "MigrationError",
    "SchemaNotReady",
    "ConnectionPoolExhausted",
]
