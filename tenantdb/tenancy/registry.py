# tenantdb/tenancy/registry.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tenantdb.core.errors import (
    MissingDatabaseName,
    ProvisionFailed,
    TenantAlreadyExists,
    TenantNotFound,
)
from tenantdb.core.tenant import validate_tenant_id
from tenantdb.models.tenant import Tenant

from .provisioner import validate_database_name

logger = logging.getLogger(__name__)


class TenantRegistry:
    """
    Tenant id -> database name mapping, stored in the central database.

    Returned Tenant objects are detached from their session; they are plain values for
    the caller and never hold a central connection open.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def find(self, tenant_id: str) -> Tenant:
        """
        Load a tenant by id.

        Raises:
            TenantNotFound: no such tenant
            MissingDatabaseName: the record carries no database name
            InvalidDatabaseName: a legacy database name fails validation
            ProvisionFailed: a legacy database name belongs to another tenant
        """
        with self._session_factory() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFound(f"Tenant {tenant_id!r} not found", tenant_id=tenant_id)

            if not tenant.database_name:
                legacy = tenant.legacy_database_name
                if legacy is None:
                    raise MissingDatabaseName(
                        f"Tenant {tenant_id!r} has no database name", tenant_id=tenant_id
                    )
                self._backfill(session, tenant, legacy)

            session.expunge(tenant)
            return tenant

    def _backfill(self, session: Session, tenant: Tenant, legacy: str) -> None:
        """Move a database name kept in the attribute blob into the typed column."""
        tenant_id = tenant.id
        tenant.database_name = validate_database_name(legacy)
        data = dict(tenant.data or {})
        data.pop("database_name", None)
        tenant.data = data or None
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.error(
                "Legacy database name is already used by another tenant",
                extra={"tenant_id": tenant_id, "database": legacy},
            )
            raise ProvisionFailed(
                f"Tenant {tenant_id!r} has a legacy database name owned by another tenant",
                tenant_id=tenant_id,
                database=legacy,
            ) from exc
        logger.info(
            "Migrated legacy database name to column",
            extra={"tenant_id": tenant.id, "database": tenant.database_name},
        )

    def create(
        self,
        name: str,
        database_name: str,
        *,
        tenant_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Tenant:
        """
        Persist a new tenant; a UUID is generated when no id is given.

        Raises:
            InvalidDatabaseName, InvalidTenantId: nothing is written
            TenantAlreadyExists: the id or database name is taken
        """
        database_name = validate_database_name(database_name)
        tenant = Tenant(
            id=validate_tenant_id(tenant_id) if tenant_id is not None else str(uuid.uuid4()),
            name=name,
            database_name=database_name,
            data=data or None,
        )
        with self._session_factory() as session:
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise TenantAlreadyExists(
                    "A tenant with this id or database name already exists",
                    tenant_id=tenant.id,
                    database=database_name,
                ) from exc
            session.refresh(tenant)
            session.expunge(tenant)

        logger.info("Tenant registered", extra={"tenant_id": tenant.id, "database": database_name})
        return tenant

    def list(self) -> List[Tenant]:
        with self._session_factory() as session:
            tenants = list(
                session.scalars(select(Tenant).order_by(Tenant.created_at, Tenant.id))
            )
            session.expunge_all()
            return tenants
