from click.testing import CliRunner
from sqlalchemy import create_engine, inspect

from tenantdb.cli import cli
from tenantdb.core.config import Settings


def _invoke(args, settings, tenancy=None):
    obj = {"settings": settings, "configure_logging": False}
    if tenancy is not None:
        obj["tenancy"] = tenancy
    return CliRunner().invoke(cli, args, obj=obj)


def test_db_upgrade_creates_registry_schema(tmp_path):
    settings = Settings(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'registry.sqlite3'}",
        tenant_sqlite_dir=str(tmp_path / "tenants"),
    )

    result = _invoke(["db", "upgrade"], settings)
    assert result.exit_code == 0, result.output

    engine = create_engine(settings.database_url)
    try:
        insp = inspect(engine)
        assert "tenants" in insp.get_table_names()
        assert {c["name"] for c in insp.get_columns("tenants")} >= {"id", "name", "database_name", "data"}
    finally:
        engine.dispose()


def test_db_check(settings):
    result = _invoke(["db", "check"], settings)
    assert result.exit_code == 0, result.output
    assert "Database connection successful" in result.output


def test_tenant_create_provisions_and_migrates(settings, tenancy):
    result = _invoke(
        ["tenant", "create", "Acme", "tenant_acme", "--id", "acme", "--attr", "plan=pro"],
        settings,
        tenancy,
    )
    assert result.exit_code == 0, result.output
    assert "Tenant acme created" in result.output

    assert (settings.sqlite_tenant_dir() / "tenant_acme.sqlite3").exists()
    assert tenancy.migrator.applied_versions("tenant_acme") == ["0001", "0002"]
    assert tenancy.registry.find("acme").data == {"plan": "pro"}


def test_tenant_create_rejects_bad_database_name(settings, tenancy):
    result = _invoke(["tenant", "create", "Evil", "x;DROP TABLE tenants"], settings, tenancy)
    assert result.exit_code == 1
    assert "Tenant creation failed" in result.output
    assert tenancy.registry.list() == []


def test_tenant_create_rejects_bad_attr(settings, tenancy):
    result = _invoke(["tenant", "create", "Acme", "tenant_acme", "--attr", "novalue"], settings, tenancy)
    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_tenant_list(settings, tenancy):
    result = _invoke(["tenant", "list"], settings, tenancy)
    assert result.exit_code == 0
    assert "No tenants registered" in result.output

    tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")
    result = _invoke(["tenant", "list"], settings, tenancy)
    assert "acme\tAcme\ttenant_acme" in result.output


def test_tenant_migrate(settings, tenancy):
    tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")
    tenancy.registry.create("Globex", "tenant_globex", tenant_id="globex")

    result = _invoke(["tenant", "migrate", "acme"], settings, tenancy)
    assert result.exit_code == 0, result.output
    assert "acme: applied 0001, 0002" in result.output

    result = _invoke(["tenant", "migrate", "--all"], settings, tenancy)
    assert result.exit_code == 0, result.output
    assert "acme: up to date" in result.output
    assert "globex: applied 0001, 0002" in result.output


def test_tenant_migrate_reports_failures(settings, tenancy):
    tenancy.registry.create("Acme", "tenant_acme", tenant_id="acme")

    result = _invoke(["tenant", "migrate", "acme", "ghost"], settings, tenancy)
    assert result.exit_code == 1
    assert "acme: applied" in result.output
    assert "ghost" in result.output
    assert "1 tenant(s) failed" in result.output


def test_tenant_create_rejects_id_unusable_as_header(settings, tenancy):
    result = _invoke(["tenant", "create", "Acme", "tenant_acme", "--id", "acme.corp"], settings, tenancy)
    assert result.exit_code == 1
    assert "Tenant creation failed" in result.output
    assert tenancy.registry.list() == []
    assert not (settings.sqlite_tenant_dir() / "tenant_acme.sqlite3").exists()
