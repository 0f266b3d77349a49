"""
Test configuration for tenantdb.

Unit and end-to-end tests run on the SQLite backend: a central registry file plus one
file per tenant database, all under pytest's tmp_path. PostgreSQL tests are opt-in via
RUN_DB_TESTS=1 and the POSTGRES_* variables.
"""
import os

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient

from tenantdb.core.config import DEFAULT_EXEMPT_PATHS, Settings
from tenantdb.core.servers import SQLiteServer
from tenantdb.main import create_app
from tenantdb.models import Base
from tenantdb.tenancy.binder import ConnectionBinder, TenantEngines
from tenantdb.tenancy.runtime import build_tenancy

# Load environment variables from .env file (PostgreSQL credentials for RUN_DB_TESTS)
load_dotenv()

RUN_DB = os.getenv("RUN_DB_TESTS") == "1"


def pytest_configure(config):
    config.addinivalue_line("markers", "db: mark test as requiring a PostgreSQL server")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="test",
        database_url=f"sqlite+pysqlite:///{tmp_path / 'central.sqlite3'}",
        tenant_sqlite_dir=str(tmp_path / "tenants"),
        tenant_pool_size=3,
        tenant_max_overflow=2,
        tenant_pool_timeout=5,
        tenant_exempt_paths=list(DEFAULT_EXEMPT_PATHS),
        cors_origins=[],
    )


@pytest.fixture
def tenancy(settings):
    t = build_tenancy(settings)
    Base.metadata.create_all(t.central_engine)
    try:
        yield t
    finally:
        t.close()


@pytest.fixture
def app(settings, tenancy):
    return create_app(settings, tenancy)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def server(tmp_path):
    return SQLiteServer(tmp_path / "tenants")


@pytest.fixture
def engines(server):
    e = TenantEngines(server, pool_size=3, max_overflow=2, pool_timeout=5)
    try:
        yield e
    finally:
        e.dispose()


@pytest.fixture
def binder(engines):
    return ConnectionBinder(engines)
