"""
Tenant schema migrations.

Every module here is one migration, applied in `version` order by
`tenantdb.tenancy.migrations.MigrationRunner`. Add new modules with a higher version;
never edit one that has shipped.
"""
