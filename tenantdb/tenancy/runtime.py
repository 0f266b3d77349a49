# tenantdb/tenancy/runtime.py
"""
Process-wide wiring of the tenancy components.

    tenancy = build_tenancy(get_settings())
    tenant = tenancy.resolver.resolve("acme")
    with tenancy.binder.bind(tenant.id, tenant.database_name) as binding:
        binding.session.execute(...)
    tenancy.close()

One `Tenancy` per process (the app lifespan, a CLI invocation, a test fixture).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tenantdb.core.config import Settings, get_settings
from tenantdb.core.database import create_database_engine, make_session_factory
from tenantdb.core.servers import DatabaseServer, server_for_settings

from .binder import ConnectionBinder, TenantEngines
from .migrations import MigrationRunner
from .provisioner import DatabaseProvisioner
from .registry import TenantRegistry
from .resolver import TenantResolver

logger = logging.getLogger(__name__)


@dataclass
class Tenancy:
    settings: Settings
    central_engine: Engine
    session_factory: sessionmaker[Session]
    server: DatabaseServer
    engines: TenantEngines
    binder: ConnectionBinder
    provisioner: DatabaseProvisioner
    migrator: MigrationRunner
    registry: TenantRegistry
    resolver: TenantResolver

    def close(self) -> None:
        """Dispose every pool this process opened."""
        self.engines.dispose()
        self.server.dispose()
        self.central_engine.dispose()
        logger.info("Tenancy resources released")


def build_tenancy(
    settings: Optional[Settings] = None,
    *,
    central_engine: Optional[Engine] = None,
    server: Optional[DatabaseServer] = None,
) -> Tenancy:
    settings = settings or get_settings()
    central_engine = central_engine or create_database_engine(settings)
    session_factory = make_session_factory(central_engine)
    server = server or server_for_settings(settings)

    engines = TenantEngines.from_settings(server, settings)
    provisioner = DatabaseProvisioner(server)
    migrator = MigrationRunner(server, engines)
    registry = TenantRegistry(session_factory)

    return Tenancy(
        settings=settings,
        central_engine=central_engine,
        session_factory=session_factory,
        server=server,
        engines=engines,
        binder=ConnectionBinder(engines),
        provisioner=provisioner,
        migrator=migrator,
        registry=registry,
        resolver=TenantResolver(registry, provisioner, migrator),
    )
