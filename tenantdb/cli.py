# tenantdb/cli.py
"""
tenantdb management CLI.

Examples:
    tenantdb db upgrade                                  # migrate the registry database
    tenantdb db check                                    # check registry connectivity
    tenantdb tenant create "Acme" tenant_acme --id acme  # register + provision + migrate
    tenantdb tenant list
    tenantdb tenant migrate --all                        # bring every tenant current
    tenantdb serve --port 8000
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
from sqlalchemy.exc import SQLAlchemyError

from tenantdb.core.config import Settings, get_settings
from tenantdb.core.database import check_database_connection, create_database_engine
from tenantdb.core.errors import TenancyError
from tenantdb.logging_setup import setup_logging
from tenantdb.tenancy.runtime import Tenancy, build_tenancy
from tenantdb.tenancy.service import create_tenant, prepare_tenant

REGISTRY_MIGRATIONS = Path(__file__).resolve().parent / "registry_migrations"


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _tenancy(ctx: click.Context) -> Tenancy:
    """One Tenancy per invocation, closed when the command finishes."""
    tenancy = ctx.obj.get("tenancy")
    if tenancy is None:
        tenancy = ctx.obj["tenancy"] = build_tenancy(_settings(ctx))
        ctx.call_on_close(tenancy.close)
    return tenancy


def _parse_attrs(pairs: Tuple[str, ...]) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--attr")
        attrs[key.strip()] = value
    return attrs


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """tenantdb management CLI."""
    ctx.ensure_object(dict)
    # Tests and embedding tools may pass their own settings in obj
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = get_settings()
    if ctx.obj.get("configure_logging", True):
        setup_logging("DEBUG" if verbose else ctx.obj["settings"].log_level)


# ------------------------------------------------------------------------------
# tenant
# ------------------------------------------------------------------------------


@cli.group()
def tenant() -> None:
    """Register, list and migrate tenants."""


@tenant.command("create")
@click.argument("name")
@click.argument("database_name")
@click.option("--id", "tenant_id", default=None, help="Tenant id (default: generated UUID)")
@click.option("--attr", "attrs", multiple=True, help="Extra attribute KEY=VALUE (repeatable)")
@click.pass_context
def tenant_create(
    ctx: click.Context,
    name: str,
    database_name: str,
    tenant_id: Optional[str],
    attrs: Tuple[str, ...],
) -> None:
    """Register a tenant, create its database and migrate it."""
    data = _parse_attrs(attrs)
    try:
        created = create_tenant(
            _tenancy(ctx), name, database_name, tenant_id=tenant_id, data=data or None
        )
    except (TenancyError, ValueError) as e:
        click.echo(f"❌ Tenant creation failed: {e}", err=True)
        sys.exit(1)
    click.echo(f"✅ Tenant {created.id} created (database {created.database_name})")


@tenant.command("list")
@click.pass_context
def tenant_list(ctx: click.Context) -> None:
    """List registered tenants."""
    try:
        tenants = _tenancy(ctx).registry.list()
    except SQLAlchemyError as e:
        click.echo(f"❌ Could not read the tenant registry: {e}", err=True)
        sys.exit(1)
    if not tenants:
        click.echo("No tenants registered")
        return
    for t in tenants:
        click.echo(f"{t.id}\t{t.name}\t{t.database_name or '-'}")


@tenant.command("migrate")
@click.argument("tenant_ids", nargs=-1)
@click.option("--all", "all_tenants", is_flag=True, help="Migrate every registered tenant")
@click.pass_context
def tenant_migrate(ctx: click.Context, tenant_ids: Tuple[str, ...], all_tenants: bool) -> None:
    """Ensure tenant databases exist and are at the latest schema."""
    tenancy = _tenancy(ctx)
    if all_tenants:
        tenant_ids = tuple(t.id for t in tenancy.registry.list())
    if not tenant_ids:
        click.echo("Nothing to migrate (pass tenant ids or --all)")
        return

    failures = 0
    for tid in tenant_ids:
        try:
            applied = prepare_tenant(tenancy, tenancy.registry.find(tid))
        except TenancyError as e:
            failures += 1
            click.echo(f"❌ {tid}: {e}", err=True)
            continue
        if applied:
            click.echo(f"✅ {tid}: applied {', '.join(applied)}")
        else:
            click.echo(f"✅ {tid}: up to date")

    if failures:
        click.echo(f"{failures} tenant(s) failed", err=True)
        sys.exit(1)


# ------------------------------------------------------------------------------
# db (central registry)
# ------------------------------------------------------------------------------


@cli.group()
def db() -> None:
    """Central registry database."""


@db.command("upgrade")
@click.option("--revision", default="head", show_default=True)
@click.pass_context
def db_upgrade(ctx: click.Context, revision: str) -> None:
    """Apply registry migrations with Alembic."""
    from alembic import command
    from alembic.config import Config

    settings = _settings(ctx)
    cfg = Config()
    cfg.set_main_option("script_location", str(REGISTRY_MIGRATIONS))
    # ConfigParser interpolation: escape percent signs of URL-encoded passwords
    cfg.set_main_option("sqlalchemy.url", settings.database_url.replace("%", "%%"))
    cfg.attributes["configure_logger"] = False

    click.echo("🚀 Upgrading registry database...")
    try:
        command.upgrade(cfg, revision)
    except SQLAlchemyError as e:
        click.echo(f"❌ Migration failed: {e}", err=True)
        sys.exit(1)
    click.echo("✅ Registry database at latest revision")


@db.command("check")
@click.pass_context
def db_check(ctx: click.Context) -> None:
    """Check registry database connectivity."""
    settings = _settings(ctx)
    click.echo(f"🔍 Checking {settings.masked_database_url} ...")
    engine = create_database_engine(settings)
    try:
        ok, message = check_database_connection(engine)
    finally:
        engine.dispose()
    if not ok:
        click.echo(f"❌ {message}", err=True)
        sys.exit(1)
    click.echo(f"✅ {message}")


# ------------------------------------------------------------------------------
# serve
# ------------------------------------------------------------------------------


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "tenantdb.main:serve_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,  # logging_setup owns the handlers
    )


if __name__ == "__main__":
    cli()
