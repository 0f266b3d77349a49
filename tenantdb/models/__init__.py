"""
Model package re-exports.

    from tenantdb.models import Base, Tenant, TenantBase, Product

- `Base` / `Tenant`: central registry (Alembic-managed).
- `TenantBase` / `Product`: per-tenant databases (tenant migration set).
"""

from .base import Base, TenantBase
from .product import Product
from .tenant import Tenant

__all__ = [
    "Base",
    "TenantBase",
    "Product",
    "Tenant",
]
